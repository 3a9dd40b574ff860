"""
Error kinds and diagnostics for line-strata.

Structural problems (broken history, timeouts, cancellation) are raised as
exceptions and abort the current analysis run. Per-file and per-object
problems are collected as Diagnostic entries and surfaced next to the results.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class LineStrataError(Exception):
    """Base class for all line-strata errors."""


class ObjectError(LineStrataError):
    """A missing or corrupt object in the object store."""

    def __init__(self, object_id: str, reason: str = "object unreadable"):
        self.object_id = object_id
        self.reason = reason
        super().__init__(f"{reason}: {object_id}")


class NotFound(LineStrataError, LookupError):
    """Unknown reference, contributor, commit or path."""


class CorruptHistory(LineStrataError):
    """Broken parent chain or cycle in the commit graph."""


class UnreadableFile(LineStrataError):
    """A file whose content cannot be read from the object store."""

    def __init__(self, path: str, blob_id: str, reason: str = "blob unreadable"):
        self.path = path
        self.blob_id = blob_id
        self.reason = reason
        super().__init__(f"{path} ({blob_id}): {reason}")


class ObjectStoreTimeout(LineStrataError):
    """An object store read exceeded the configured I/O timeout."""


class Cancelled(LineStrataError):
    """The run was cancelled through its cancellation signal."""


class NotReady(LineStrataError):
    """A query was issued before the engine reached the Ready state."""


class FailureKind(Enum):
    """Why an analysis run ended in the Failed state."""

    CORRUPT_HISTORY = "corrupt_history"
    OBJECT_STORE_TIMEOUT = "object_store_timeout"
    OBJECT_ERROR = "object_error"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    MEMORY = "memory"
    INTERNAL = "internal"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FailureKind":
        if isinstance(exc, CorruptHistory):
            return cls.CORRUPT_HISTORY
        if isinstance(exc, ObjectStoreTimeout):
            return cls.OBJECT_STORE_TIMEOUT
        if isinstance(exc, Cancelled):
            return cls.CANCELLED
        if isinstance(exc, NotFound):
            return cls.NOT_FOUND
        if isinstance(exc, ObjectError):
            return cls.OBJECT_ERROR
        if isinstance(exc, MemoryError):
            return cls.MEMORY
        return cls.INTERNAL


# Diagnostic kinds
UNREADABLE_FILE = "unreadable_file"
BINARY_FILE = "binary_file"
OVERSIZED_FILE = "oversized_file"
EXCLUDED_FILE = "excluded_file"
OBJECT_ERROR = "object_error"


@dataclass(frozen=True)
class Diagnostic:
    """A per-file or per-object problem recorded during a run."""

    kind: str
    reason: str
    path: Optional[str] = None
    commit_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "reason": self.reason,
            "path": self.path,
            "commit_id": self.commit_id,
        }
