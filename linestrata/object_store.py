"""
Read-only access to a content-addressed commit/tree/blob graph.

Two stores are provided:

- GitObjectStore reads a local git repository through the ``git`` executable
  (plumbing commands only, nothing is ever written).
- MemoryObjectStore keeps objects in process. It hashes objects the way git
  does and has a small builder API, which makes it handy for tests and for
  embedding the engine over synthetic histories.
"""

import hashlib
import logging
import os
import re
import subprocess
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from .errors import NotFound, ObjectError, ObjectStoreTimeout
from .models import Commit

logger = logging.getLogger(__name__)

_SIGNATURE_RE = re.compile(rb"^(?P<name>.*?) ?<(?P<email>[^>]*)> (?P<ts>-?\d+)(?: [+-]\d{4})?$")


def parse_commit(commit_id: str, raw: bytes) -> Commit:
    """
    Parse a raw git commit object.

    Raises:
        ObjectError: If the object has no tree header or a malformed author
    """
    header, _, message = raw.partition(b"\n\n")
    tree_id = None
    parents = []
    author = None
    for line in header.split(b"\n"):
        if line.startswith(b"tree "):
            tree_id = line[5:].strip().decode("ascii", errors="replace")
        elif line.startswith(b"parent "):
            parents.append(line[7:].strip().decode("ascii", errors="replace"))
        elif line.startswith(b"author "):
            author = line[7:]

    if tree_id is None:
        raise ObjectError(commit_id, "commit without tree")

    name, email, timestamp = "", "", 0
    if author is not None:
        match = _SIGNATURE_RE.match(author.strip())
        if not match:
            raise ObjectError(commit_id, "malformed author signature")
        name = match.group("name").decode("utf-8", errors="replace").strip()
        email = match.group("email").decode("utf-8", errors="replace").strip()
        timestamp = int(match.group("ts"))

    summary = message.decode("utf-8", errors="replace").strip().split("\n", 1)[0]

    return Commit(
        commit_id=commit_id,
        parents=tuple(parents),
        tree_id=tree_id,
        author_name=name,
        author_email=email,
        timestamp=timestamp,
        contributor_key=email.lower(),
        summary=summary,
    )


class ObjectStore(ABC):
    """
    Abstract read-only object store.

    Implementations must be safe for concurrent reads: the engine shares one
    store across its worker threads.
    """

    @abstractmethod
    def resolve_ref(self, name: str) -> str:
        """Resolve a reference name to a commit id, raising NotFound."""

    @abstractmethod
    def read_commit(self, commit_id: str) -> Commit:
        """Read a commit, raising ObjectError."""

    @abstractmethod
    def read_tree(self, tree_id: str) -> Dict[str, str]:
        """Read a tree recursively as {path: blob_id}, raising ObjectError."""

    @abstractmethod
    def read_blob(self, blob_id: str) -> bytes:
        """Read blob content, raising ObjectError."""

    def close(self) -> None:
        """Release resources held by the store."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


# ============================================================================
# GIT REPOSITORY STORE
# ============================================================================


class GitObjectStore(ObjectStore):
    """
    Object store backed by a local git repository.

    Every read is a bounded ``git`` subprocess call; a call exceeding
    ``timeout`` seconds raises ObjectStoreTimeout. Commits and trees are kept
    in LRU caches for the lifetime of the store.
    """

    def __init__(
        self,
        repo_path: str,
        timeout: Optional[float] = 60.0,
        cache_size: int = 4096,
        git_executable: str = "git",
    ):
        self.repo_path = os.path.abspath(repo_path)
        self.timeout = timeout
        self.git_executable = git_executable
        self.exectime_external = 0.0
        self._commit_cache = lru_cache(maxsize=cache_size)(self._read_commit)
        self._tree_cache = lru_cache(maxsize=max(16, cache_size // 16))(self._read_tree)

    @staticmethod
    def is_repository(path: str, git_executable: str = "git") -> bool:
        """Return True if ``path`` is inside a git work tree or a bare repository."""
        try:
            result = subprocess.run(
                [git_executable, "-C", path, "rev-parse", "--git-dir"],
                capture_output=True,
                timeout=30,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def _git(self, *args: str) -> subprocess.CompletedProcess:
        cmd = [self.git_executable, "-C", self.repo_path, *args]
        start = time.time()
        try:
            result = subprocess.run(
                cmd, capture_output=True, timeout=self.timeout, check=False
            )
        except subprocess.TimeoutExpired as e:
            raise ObjectStoreTimeout(
                f"git {args[0]} exceeded {self.timeout}s in {self.repo_path}"
            ) from e
        except OSError as e:
            raise ObjectError(" ".join(args), f"cannot run git: {e}") from e
        finally:
            self.exectime_external += time.time() - start
        logger.debug("[%.5f] >> %s", time.time() - start, " ".join(cmd))
        return result

    def resolve_ref(self, name: str) -> str:
        result = self._git("rev-parse", "--verify", "--quiet", f"{name}^{{commit}}")
        if result.returncode != 0:
            raise NotFound(f"Reference not found: {name}")
        return result.stdout.decode("ascii").strip()

    def read_commit(self, commit_id: str) -> Commit:
        return self._commit_cache(commit_id)

    def read_tree(self, tree_id: str) -> Dict[str, str]:
        # Copy so callers cannot mutate the cached mapping
        return dict(self._tree_cache(tree_id))

    def read_blob(self, blob_id: str) -> bytes:
        result = self._git("cat-file", "blob", blob_id)
        if result.returncode != 0:
            raise ObjectError(blob_id, _stderr_reason(result, "blob unreadable"))
        return result.stdout

    def _read_commit(self, commit_id: str) -> Commit:
        result = self._git("cat-file", "commit", commit_id)
        if result.returncode != 0:
            raise ObjectError(commit_id, _stderr_reason(result, "commit unreadable"))
        return parse_commit(commit_id, result.stdout)

    def _read_tree(self, tree_id: str) -> Dict[str, str]:
        result = self._git("ls-tree", "-r", "-z", "--full-tree", tree_id)
        if result.returncode != 0:
            raise ObjectError(tree_id, _stderr_reason(result, "tree unreadable"))
        entries = {}
        for entry in result.stdout.split(b"\x00"):
            if not entry:
                continue
            meta, _, path = entry.partition(b"\t")
            parts = meta.split()
            if len(parts) != 3:
                raise ObjectError(tree_id, "malformed tree entry")
            _mode, obj_type, obj_id = parts
            # Submodules show up as commit entries
            if obj_type != b"blob":
                continue
            entries[path.decode("utf-8", errors="replace")] = obj_id.decode("ascii")
        return entries


def _stderr_reason(result: subprocess.CompletedProcess, default: str) -> str:
    stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
    return stderr.splitlines()[-1] if stderr else default


# ============================================================================
# IN-MEMORY STORE
# ============================================================================


class MemoryObjectStore(ObjectStore):
    """
    Content-addressed in-memory store.

    Blobs and commits are hashed exactly like git objects. Trees are stored
    flattened (one ``mode blob id<TAB>path`` line per file), which keeps the
    store simple while remaining content addressed.
    """

    def __init__(self):
        self._objects: Dict[str, Tuple[str, bytes]] = {}
        self.refs: Dict[str, str] = {}

    # Builder API -------------------------------------------------------

    def add_object(self, obj_type: str, data: bytes) -> str:
        header = f"{obj_type} {len(data)}\x00".encode("ascii")
        object_id = hashlib.sha1(header + data).hexdigest()
        self._objects[object_id] = (obj_type, data)
        return object_id

    def add_blob(self, content: Union[str, bytes]) -> str:
        if isinstance(content, str):
            content = content.encode("utf-8")
        return self.add_object("blob", content)

    def add_tree(self, entries: Mapping[str, str]) -> str:
        lines = [f"100644 blob {blob_id}\t{path}" for path, blob_id in sorted(entries.items())]
        return self.add_object("tree", "\n".join(lines).encode("utf-8"))

    def add_commit(
        self,
        tree_id: str,
        parents: Iterable[str] = (),
        author_name: str = "Anonymous",
        author_email: str = "anonymous@example.com",
        timestamp: int = 0,
        message: str = "",
    ) -> str:
        signature = f"{author_name} <{author_email}> {timestamp} +0000"
        lines = [f"tree {tree_id}"]
        lines.extend(f"parent {parent}" for parent in parents)
        lines.append(f"author {signature}")
        lines.append(f"committer {signature}")
        raw = "\n".join(lines) + "\n\n" + message + "\n"
        return self.add_object("commit", raw.encode("utf-8"))

    def commit(
        self,
        files: Mapping[str, Union[str, bytes]],
        parents: Iterable[str] = (),
        author_name: str = "Anonymous",
        author_email: str = "anonymous@example.com",
        timestamp: int = 0,
        message: str = "",
        ref: Optional[str] = "HEAD",
    ) -> str:
        """Store a full snapshot of ``files`` as a commit and move ``ref`` to it."""
        tree_id = self.add_tree({path: self.add_blob(data) for path, data in files.items()})
        commit_id = self.add_commit(
            tree_id, parents, author_name, author_email, timestamp, message
        )
        if ref:
            self.refs[ref] = commit_id
        return commit_id

    def set_ref(self, name: str, commit_id: str) -> None:
        self.refs[name] = commit_id

    def remove_object(self, object_id: str) -> None:
        """Drop an object, simulating a corrupt or incomplete store."""
        self._objects.pop(object_id, None)

    # ObjectStore API ---------------------------------------------------

    def _get(self, object_id: str, expected: str) -> bytes:
        try:
            obj_type, data = self._objects[object_id]
        except KeyError:
            raise ObjectError(object_id, f"missing {expected}") from None
        if obj_type != expected:
            raise ObjectError(object_id, f"expected {expected}, found {obj_type}")
        return data

    def resolve_ref(self, name: str) -> str:
        if name in self.refs:
            return self.refs[name]
        if self._objects.get(name, ("",))[0] == "commit":
            return name
        raise NotFound(f"Reference not found: {name}")

    def read_commit(self, commit_id: str) -> Commit:
        return parse_commit(commit_id, self._get(commit_id, "commit"))

    def read_tree(self, tree_id: str) -> Dict[str, str]:
        entries = {}
        for line in self._get(tree_id, "tree").decode("utf-8").split("\n"):
            if not line:
                continue
            meta, _, path = line.partition("\t")
            entries[path] = meta.split()[2]
        return entries

    def read_blob(self, blob_id: str) -> bytes:
        return self._get(blob_id, "blob")
