"""
Language detection for repository paths.

Lookup order: compound extension (``.d.ts``), extension, well-known file
name, then the shebang interpreter of the first line. Anything else is
``unknown``.
"""

import re
from typing import Dict, Mapping, Optional

from .models import UNKNOWN_LANGUAGE

# ============================================================================
# FILE EXTENSION TO LANGUAGE MAPPING
# ============================================================================

EXTENSION_TO_LANGUAGE: Dict[str, str] = {
    # Python
    ".py": "python", ".pyi": "python", ".pyx": "python", ".pxd": "python", ".pyw": "python",
    # JavaScript
    ".js": "javascript", ".mjs": "javascript", ".cjs": "javascript", ".jsx": "javascript",
    # TypeScript
    ".ts": "typescript", ".tsx": "typescript", ".mts": "typescript", ".cts": "typescript",
    # JVM
    ".java": "java", ".kt": "kotlin", ".kts": "kotlin", ".scala": "scala", ".groovy": "groovy",
    # C family
    ".c": "c", ".h": "c",
    ".cc": "cpp", ".cpp": "cpp", ".cxx": "cpp", ".hh": "cpp", ".hpp": "cpp", ".hxx": "cpp",
    ".cs": "csharp", ".m": "objective-c", ".mm": "objective-c",
    # Systems
    ".go": "go", ".rs": "rust", ".swift": "swift", ".zig": "zig",
    # Scripting
    ".rb": "ruby", ".php": "php", ".pl": "perl", ".pm": "perl", ".lua": "lua", ".r": "r",
    ".sh": "shell", ".bash": "shell", ".zsh": "shell", ".ps1": "powershell",
    # Functional
    ".hs": "haskell", ".ex": "elixir", ".exs": "elixir", ".erl": "erlang",
    ".clj": "clojure", ".ml": "ocaml", ".mli": "ocaml",
    # Data and markup
    ".sql": "sql", ".html": "html", ".htm": "html", ".xml": "xml", ".css": "css",
    ".scss": "scss", ".yaml": "yaml", ".yml": "yaml", ".toml": "toml", ".json": "json",
    ".md": "markdown", ".rst": "restructuredtext", ".tex": "tex",
    ".cmake": "cmake", ".mk": "make", ".dockerfile": "dockerfile", ".proto": "protobuf",
    ".vue": "vue", ".dart": "dart",
}

COMPOUND_EXTENSIONS: Dict[str, str] = {
    ".d.ts": "typescript",
    ".blade.php": "php",
}

FILENAME_TO_LANGUAGE: Dict[str, str] = {
    "Makefile": "make",
    "GNUmakefile": "make",
    "makefile": "make",
    "Dockerfile": "dockerfile",
    "CMakeLists.txt": "cmake",
    "Rakefile": "ruby",
    "Gemfile": "ruby",
    "Jenkinsfile": "groovy",
    "BUILD": "starlark",
    "WORKSPACE": "starlark",
    ".bashrc": "shell",
    ".zshrc": "shell",
}

INTERPRETER_TO_LANGUAGE: Dict[str, str] = {
    "python": "python",
    "pypy": "python",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
    "dash": "shell",
    "ksh": "shell",
    "node": "javascript",
    "deno": "typescript",
    "ts-node": "typescript",
    "ruby": "ruby",
    "perl": "perl",
    "php": "php",
    "lua": "lua",
    "Rscript": "r",
}

_SHEBANG_RE = re.compile(r"^#!\s*(\S+)(?:\s+(\S+))?")
_VERSION_SUFFIX_RE = re.compile(r"[\d.]+$")


def shebang_language(head: bytes) -> Optional[str]:
    """
    Language named by a ``#!`` line, if any.

    ``/usr/bin/env python3`` and ``/usr/bin/python3.11`` both map to python;
    version digits are stripped from the interpreter name.
    """
    if not head.startswith(b"#!"):
        return None
    first_line = head.split(b"\n", 1)[0].decode("utf-8", errors="replace")
    match = _SHEBANG_RE.match(first_line)
    if not match:
        return None
    program, argument = match.groups()
    interpreter = program.rsplit("/", 1)[-1]
    if interpreter == "env" and argument:
        interpreter = argument
    interpreter = _VERSION_SUFFIX_RE.sub("", interpreter) or interpreter
    return INTERPRETER_TO_LANGUAGE.get(interpreter)


class LanguageClassifier:
    """
    Map paths to language tags.

    Args:
        extra_extensions: Additional ``{".ext": "language"}`` mappings; they
            take precedence over the built-in table
    """

    def __init__(self, extra_extensions: Optional[Mapping[str, str]] = None):
        self.extensions = dict(EXTENSION_TO_LANGUAGE)
        self.compound = dict(COMPOUND_EXTENSIONS)
        for ext, language in (extra_extensions or {}).items():
            ext = ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            if ext.count(".") > 1:
                self.compound[ext] = language
            else:
                self.extensions[ext] = language

    def classify(self, path: str, head: bytes = b"") -> str:
        """
        Language tag for ``path``.

        Args:
            path: Repository-relative path
            head: First bytes of the file, used for shebang detection

        Returns:
            Language tag, or ``unknown``
        """
        name = path.rsplit("/", 1)[-1]
        lowered = name.lower()

        for ext, language in self.compound.items():
            if lowered.endswith(ext) and len(lowered) > len(ext):
                return language

        dot = lowered.rfind(".")
        if dot > 0:
            language = self.extensions.get(lowered[dot:])
            if language:
                return language

        if name in FILENAME_TO_LANGUAGE:
            return FILENAME_TO_LANGUAGE[name]
        if lowered.startswith("dockerfile"):
            return "dockerfile"

        if head:
            language = shebang_language(head)
            if language:
                return language
        return UNKNOWN_LANGUAGE

    __call__ = classify
