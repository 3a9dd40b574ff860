"""
Data model shared by the attribution pipeline.

Commits and file states are immutable projections of the object store.
Line records are the ground truth that every statistic is aggregated from.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class LineType(str, Enum):
    """Classification of a single line."""

    CODE = "code"
    COMMENT = "comment"
    BLANK = "blank"


LINE_TYPES = (LineType.CODE, LineType.COMMENT, LineType.BLANK)

UNKNOWN_LANGUAGE = "unknown"


@dataclass(frozen=True)
class Commit:
    """
    A commit as read from the object store.

    The contributor key is the normalized author identity; two commits with
    the same key belong to the same contributor.
    """

    commit_id: str
    parents: Tuple[str, ...]
    tree_id: str
    author_name: str
    author_email: str
    timestamp: int
    contributor_key: str = ""
    summary: str = ""

    @property
    def is_root(self) -> bool:
        return not self.parents

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


# File content status
TEXT = "text"
BINARY = "binary"
OVERSIZED = "oversized"
UNREADABLE = "unreadable"


@dataclass(frozen=True)
class FileState:
    """
    One path of a snapshot: its blob and the owning commit of every line.

    ``provenance`` is ``None`` for binary or unreadable content. Such a state
    carries the path's last text version in ``text_blob_id`` and
    ``text_provenance`` so the path can be diffed against it once it is text
    again.
    """

    blob_id: str
    provenance: Optional[Tuple[str, ...]]
    status: str = TEXT
    text_blob_id: Optional[str] = None
    text_provenance: Optional[Tuple[str, ...]] = None

    @property
    def line_count(self) -> int:
        return len(self.provenance) if self.provenance is not None else 0

    def text_source(self) -> Tuple[Optional[str], Optional[Tuple[str, ...]]]:
        """Blob id and provenance of the most recent text version of the path."""
        if self.provenance is not None:
            return self.blob_id, self.provenance
        return self.text_blob_id, self.text_provenance


@dataclass(frozen=True)
class LineRecord:
    """Attribution and classification of one line of the final snapshot."""

    path: str
    line_index: int
    commit_id: str
    contributor_key: str
    language: str
    classification: LineType

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "line_index": self.line_index,
            "commit_id": self.commit_id,
            "contributor_key": self.contributor_key,
            "language": self.language,
            "classification": self.classification.value,
        }


@dataclass
class CommitDelta:
    """Lines inserted and deleted by one commit at the time it was made."""

    lines_added: int = 0
    lines_deleted: int = 0
    files_changed: int = 0

    def add(self, inserted: int, deleted: int) -> None:
        self.lines_added += inserted
        self.lines_deleted += deleted
        if inserted or deleted:
            self.files_changed += 1


@dataclass
class SkippedFile:
    """A final-snapshot file present in the tree but excluded from lines."""

    path: str
    blob_id: str
    status: str
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "blob_id": self.blob_id,
            "status": self.status,
            "reason": self.reason,
        }


def empty_counts() -> Dict[str, int]:
    """A fresh {code, comment, blank} mapping."""
    return {line_type.value: 0 for line_type in LINE_TYPES}


@dataclass
class CommitInfo:
    """Per-commit metadata kept by the aggregation layer for timelines."""

    commit_id: str
    contributor_key: str
    timestamp: int
    sequence: int
    delta: CommitDelta = field(default_factory=CommitDelta)
    is_merge: bool = False
    # Languages of the paths the commit changed relative to its first parent
    languages: Tuple[str, ...] = ()
