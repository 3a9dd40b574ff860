"""
Code / comment / blank classification of source lines.

Each known language is described by a LanguageSyntax (comment markers and
string delimiters) and classified by a small lexical state machine that
carries block-comment, string and doc-string state across lines:

- a whitespace-only line is ``blank``, whatever the surrounding state;
- a line with any code character is ``code``, even if it also holds a
  comment;
- every other line is ``comment``.

Text inside string literals counts as code. Python doc strings (triple-quoted
strings that start a line) count as comment.

Languages without a syntax entry use HeuristicLineClassifier, which is
approximate: it only recognizes lines starting with ``//`` or ``#`` as
comments and treats everything else as code.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional, Sequence, Tuple

from .models import LineType


@dataclass(frozen=True)
class LanguageSyntax:
    """Lexical markers of one language."""

    line_comments: Tuple[str, ...] = ()
    block_comments: Tuple[Tuple[str, str], ...] = ()
    nested_comments: bool = False
    strings: Tuple[str, ...] = ('"', "'")
    multiline_strings: Tuple[str, ...] = ()
    doc_strings: bool = False
    escape: str = "\\"


C_STYLE = LanguageSyntax(line_comments=("//",), block_comments=(("/*", "*/"),))
HASH_STYLE = LanguageSyntax(line_comments=("#",))

SYNTAX: Dict[str, LanguageSyntax] = {
    "python": LanguageSyntax(
        line_comments=("#",),
        multiline_strings=('"""', "'''"),
        doc_strings=True,
    ),
    "c": C_STYLE,
    "cpp": C_STYLE,
    "csharp": C_STYLE,
    "objective-c": C_STYLE,
    "java": LanguageSyntax(
        line_comments=("//",), block_comments=(("/*", "*/"),), multiline_strings=('"""',)
    ),
    "kotlin": LanguageSyntax(
        line_comments=("//",),
        block_comments=(("/*", "*/"),),
        nested_comments=True,
        multiline_strings=('"""',),
    ),
    "scala": LanguageSyntax(
        line_comments=("//",), block_comments=(("/*", "*/"),), multiline_strings=('"""',)
    ),
    "groovy": LanguageSyntax(
        line_comments=("//",),
        block_comments=(("/*", "*/"),),
        multiline_strings=('"""', "'''"),
    ),
    "javascript": LanguageSyntax(
        line_comments=("//",), block_comments=(("/*", "*/"),), multiline_strings=("`",)
    ),
    "typescript": LanguageSyntax(
        line_comments=("//",), block_comments=(("/*", "*/"),), multiline_strings=("`",)
    ),
    "go": LanguageSyntax(
        line_comments=("//",), block_comments=(("/*", "*/"),), multiline_strings=("`",)
    ),
    # Single quotes start lifetimes as often as char literals
    "rust": LanguageSyntax(
        line_comments=("//",),
        block_comments=(("/*", "*/"),),
        nested_comments=True,
        strings=('"',),
    ),
    "swift": LanguageSyntax(
        line_comments=("//",),
        block_comments=(("/*", "*/"),),
        nested_comments=True,
        strings=('"',),
        multiline_strings=('"""',),
    ),
    "dart": LanguageSyntax(
        line_comments=("//",),
        block_comments=(("/*", "*/"),),
        nested_comments=True,
        multiline_strings=('"""', "'''"),
    ),
    "zig": LanguageSyntax(line_comments=("//",)),
    "php": LanguageSyntax(line_comments=("//", "#"), block_comments=(("/*", "*/"),)),
    "css": LanguageSyntax(block_comments=(("/*", "*/"),)),
    "scss": C_STYLE,
    "ruby": HASH_STYLE,
    "perl": HASH_STYLE,
    "r": HASH_STYLE,
    "shell": HASH_STYLE,
    "yaml": HASH_STYLE,
    "toml": LanguageSyntax(line_comments=("#",), multiline_strings=('"""', "'''")),
    "make": LanguageSyntax(line_comments=("#",), strings=()),
    "cmake": HASH_STYLE,
    "dockerfile": LanguageSyntax(line_comments=("#",), strings=()),
    "starlark": LanguageSyntax(line_comments=("#",), multiline_strings=('"""', "'''")),
    "elixir": LanguageSyntax(line_comments=("#",), multiline_strings=('"""',)),
    "powershell": LanguageSyntax(line_comments=("#",), block_comments=(("<#", "#>"),), escape="`"),
    "sql": LanguageSyntax(line_comments=("--",), block_comments=(("/*", "*/"),), strings=("'",)),
    "lua": LanguageSyntax(line_comments=("--",), block_comments=(("--[[", "]]"),)),
    "haskell": LanguageSyntax(
        line_comments=("--",), block_comments=(("{-", "-}"),), nested_comments=True, strings=('"',)
    ),
    "ocaml": LanguageSyntax(block_comments=(("(*", "*)"),), nested_comments=True, strings=('"',)),
    "erlang": LanguageSyntax(line_comments=("%",), strings=('"',)),
    "clojure": LanguageSyntax(line_comments=(";",), strings=('"',)),
    "tex": LanguageSyntax(line_comments=("%",), strings=()),
    "html": LanguageSyntax(block_comments=(("<!--", "-->"),), strings=()),
    "xml": LanguageSyntax(block_comments=(("<!--", "-->"),), strings=()),
    "vue": LanguageSyntax(
        line_comments=("//",), block_comments=(("<!--", "-->"), ("/*", "*/")), multiline_strings=("`",)
    ),
    "markdown": LanguageSyntax(block_comments=(("<!--", "-->"),), strings=()),
    "protobuf": C_STYLE,
    "json": LanguageSyntax(strings=('"',)),
}


class _State(Enum):
    NORMAL = auto()
    BLOCK = auto()
    STRING = auto()


class LexicalLineClassifier:
    """
    Classifies lines with a per-language lexical state machine.

    The instance is stateless between calls; state only lives for the
    duration of one ``classify`` call over a file's full line sequence.
    """

    def __init__(self, syntax: LanguageSyntax):
        self.syntax = syntax
        # Longest markers first so '"""' wins over '"' and '--[[' over '--'
        self._line_comments = sorted(syntax.line_comments, key=len, reverse=True)
        self._blocks = sorted(syntax.block_comments, key=lambda pair: len(pair[0]), reverse=True)
        self._multiline = sorted(syntax.multiline_strings, key=len, reverse=True)
        self._strings = sorted(syntax.strings, key=len, reverse=True)

    def classify(self, lines: Sequence[str]) -> List[LineType]:
        """
        Classify every line of one file.

        Args:
            lines: The file's full line sequence, without line terminators

        Returns:
            One LineType per input line
        """
        syntax = self.syntax
        state = _State.NORMAL
        block_start, block_end, depth = "", "", 0
        delimiter, multiline, in_doc = "", False, False
        result = []

        for line in lines:
            if not line.strip():
                result.append(LineType.BLANK)
                continue

            has_code = False
            has_comment = False
            i, n = 0, len(line)
            while i < n:
                if state is _State.BLOCK:
                    has_comment = True
                    if syntax.nested_comments and line.startswith(block_start, i):
                        depth += 1
                        i += len(block_start)
                    elif line.startswith(block_end, i):
                        depth -= 1
                        i += len(block_end)
                        if depth == 0:
                            state = _State.NORMAL
                    else:
                        i += 1
                    continue

                if state is _State.STRING:
                    if in_doc:
                        has_comment = True
                    else:
                        has_code = True
                    if syntax.escape and line.startswith(syntax.escape, i):
                        i += len(syntax.escape) + 1
                    elif line.startswith(delimiter, i):
                        i += len(delimiter)
                        state = _State.NORMAL
                        in_doc = False
                    else:
                        i += 1
                    continue

                char = line[i]
                if char.isspace():
                    i += 1
                    continue

                block = self._match_block(line, i)
                if block is not None:
                    block_start, block_end = block
                    state = _State.BLOCK
                    depth = 1
                    has_comment = True
                    i += len(block_start)
                    continue

                if any(line.startswith(marker, i) for marker in self._line_comments):
                    has_comment = True
                    break

                opener = self._match(self._multiline, line, i)
                if opener:
                    in_doc = syntax.doc_strings and not has_code and not line[:i].strip()
                    delimiter, multiline = opener, True
                    state = _State.STRING
                    if in_doc:
                        has_comment = True
                    else:
                        has_code = True
                    i += len(opener)
                    continue

                opener = self._match(self._strings, line, i)
                if opener:
                    delimiter, multiline, in_doc = opener, False, False
                    state = _State.STRING
                    has_code = True
                    i += len(opener)
                    continue

                has_code = True
                i += 1

            if state is _State.STRING and not multiline:
                state = _State.NORMAL

            if has_code:
                result.append(LineType.CODE)
            elif has_comment:
                result.append(LineType.COMMENT)
            else:
                result.append(LineType.CODE)

        return result

    def _match_block(self, line: str, index: int) -> Optional[Tuple[str, str]]:
        for start, end in self._blocks:
            if line.startswith(start, index):
                return start, end
        return None

    @staticmethod
    def _match(markers: Sequence[str], line: str, index: int) -> str:
        for marker in markers:
            if line.startswith(marker, index):
                return marker
        return ""


class HeuristicLineClassifier:
    """
    Approximate classifier for languages without known syntax.

    A line whose first non-space characters are ``//`` or ``#`` is a
    comment; block comments and strings are not tracked.
    """

    markers = ("//", "#")

    def classify(self, lines: Sequence[str]) -> List[LineType]:
        result = []
        for line in lines:
            stripped = line.lstrip()
            if not stripped:
                result.append(LineType.BLANK)
            elif stripped.startswith(self.markers):
                result.append(LineType.COMMENT)
            else:
                result.append(LineType.CODE)
        return result


CLASSIFIERS: Dict[str, LexicalLineClassifier] = {
    language: LexicalLineClassifier(syntax) for language, syntax in SYNTAX.items()
}

HEURISTIC_CLASSIFIER = HeuristicLineClassifier()


def get_line_classifier(language: str):
    """Classifier for a language tag; unknown tags get the heuristic one."""
    return CLASSIFIERS.get(language, HEURISTIC_CLASSIFIER)


def classify_lines(language: str, lines: Sequence[str]) -> List[LineType]:
    return get_line_classifier(language).classify(lines)
