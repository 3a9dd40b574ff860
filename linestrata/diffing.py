"""
Line-level diffing, tree diffing and rename detection.

Edit scripts come from Myers' O((N+M)D) algorithm in its linear-space form
(the same algorithm git's xdiff uses). The common prefix and suffix are
stripped at every level of the recursion, so a small edit in a large file
costs little more than reading it. Replacements are split into a delete
followed by an insert, so every op is one of ``insert``, ``delete`` or
``equal``.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import ObjectError, UnreadableFile
from .models import BINARY, TEXT, UNREADABLE
from .object_store import ObjectStore

logger = logging.getLogger(__name__)

INSERT = "insert"
DELETE = "delete"
EQUAL = "equal"

# git's heuristic: a NUL byte in the first 8000 bytes marks binary content
BINARY_SNIFF_BYTES = 8000


@dataclass(frozen=True)
class EditOp:
    """One edit script operation over half-open line ranges."""

    tag: str
    old_start: int
    old_end: int
    new_start: int
    new_end: int

    @property
    def old_len(self) -> int:
        return self.old_end - self.old_start

    @property
    def new_len(self) -> int:
        return self.new_end - self.new_start


def diff_lines(old: Sequence[str], new: Sequence[str]) -> List[EditOp]:
    """
    Compute the edit script transforming ``old`` into ``new``.

    Args:
        old: Lines of the previous version
        new: Lines of the new version

    Returns:
        Ordered list of EditOp covering both sequences completely
    """
    line_ids: Dict[str, int] = {}
    a = [line_ids.setdefault(line, len(line_ids)) for line in old]
    b = [line_ids.setdefault(line, len(line_ids)) for line in new]
    pairs: List[Tuple[int, int]] = []
    _match_lines(a, b, 0, len(a), 0, len(b), pairs)

    ops = []
    i = j = 0
    for old_start, new_start, size in _matching_blocks(pairs) + [(len(a), len(b), 0)]:
        if i < old_start:
            ops.append(EditOp(DELETE, i, old_start, j, j))
        if j < new_start:
            ops.append(EditOp(INSERT, old_start, old_start, j, new_start))
        if size:
            ops.append(EditOp(EQUAL, old_start, old_start + size, new_start, new_start + size))
        i, j = old_start + size, new_start + size
    return ops


def _matching_blocks(pairs: List[Tuple[int, int]]) -> List[Tuple[int, int, int]]:
    """Group ordered (old, new) line pairs into runs of consecutive lines."""
    blocks: List[List[int]] = []
    for i, j in pairs:
        if blocks and blocks[-1][0] + blocks[-1][2] == i and blocks[-1][1] + blocks[-1][2] == j:
            blocks[-1][2] += 1
        else:
            blocks.append([i, j, 1])
    return [(i, j, size) for i, j, size in blocks]


def _match_lines(
    a: List[int], b: List[int], a_lo: int, a_hi: int, b_lo: int, b_hi: int, pairs: List[Tuple[int, int]]
) -> None:
    """Append the matched (old, new) index pairs of a[a_lo:a_hi] and b[b_lo:b_hi] in order."""
    while a_lo < a_hi and b_lo < b_hi and a[a_lo] == b[b_lo]:
        pairs.append((a_lo, b_lo))
        a_lo += 1
        b_lo += 1
    tail = 0
    while a_lo < a_hi - tail and b_lo < b_hi - tail and a[a_hi - tail - 1] == b[b_hi - tail - 1]:
        tail += 1
    a_end, b_end = a_hi - tail, b_hi - tail

    if a_lo < a_end and b_lo < b_end:
        x, y = _middle_snake(a, b, a_lo, a_end, b_lo, b_end)
        _match_lines(a, b, a_lo, x, b_lo, y, pairs)
        _match_lines(a, b, x, a_end, y, b_end, pairs)
    pairs.extend((a_end + k, b_end + k) for k in range(tail))


def _middle_snake(a: List[int], b: List[int], a_lo: int, a_hi: int, b_lo: int, b_hi: int) -> Tuple[int, int]:
    """
    Split point of a shortest edit script of two non-empty windows.

    Runs the forward and reverse Myers searches until their paths overlap and
    returns the end of the forward path, so each half holds about half of the
    edits. Both windows must differ in their first and last lines.
    """
    n = a_hi - a_lo
    m = b_hi - b_lo
    max_d = (n + m + 1) // 2
    offset = max_d + 1
    size = 2 * max_d + 3
    forward = [-1] * size
    backward = [-1] * size
    forward[offset + 1] = 0
    backward[offset + 1] = 0
    delta = n - m
    odd = delta % 2 != 0
    # Diagonals that ran off the edit graph are not walked again
    k1_start = k1_end = k2_start = k2_end = 0

    for d in range(max_d + 1):
        for k1 in range(-d + k1_start, d + 1 - k1_end, 2):
            i = offset + k1
            if k1 == -d or (k1 != d and forward[i - 1] < forward[i + 1]):
                x = forward[i + 1]
            else:
                x = forward[i - 1] + 1
            y = x - k1
            while x < n and y < m and a[a_lo + x] == b[b_lo + y]:
                x += 1
                y += 1
            forward[i] = x
            if x > n:
                k1_end += 2
            elif y > m:
                k1_start += 2
            elif odd:
                j = offset + delta - k1
                if 0 <= j < size and backward[j] != -1 and x >= n - backward[j]:
                    return a_lo + x, b_lo + y

        for k2 in range(-d + k2_start, d + 1 - k2_end, 2):
            i = offset + k2
            if k2 == -d or (k2 != d and backward[i - 1] < backward[i + 1]):
                x = backward[i + 1]
            else:
                x = backward[i - 1] + 1
            y = x - k2
            while x < n and y < m and a[a_hi - x - 1] == b[b_hi - y - 1]:
                x += 1
                y += 1
            backward[i] = x
            if x > n:
                k2_end += 2
            elif y > m:
                k2_start += 2
            elif not odd:
                j = offset + delta - k2
                if 0 <= j < size and forward[j] != -1:
                    forward_x = forward[j]
                    if forward_x >= n - x:
                        return a_lo + forward_x, b_lo + forward_x - (j - offset)

    # Paths never met: treat the windows as a full replacement
    return a_hi, b_lo


def similarity(old: Sequence[str], new: Sequence[str]) -> float:
    """
    Share of line content two files have in common.

    Lines are compared as a multiset; the shared count is divided by the
    larger of the two line counts, so 1.0 means identical content up to
    line order.
    """
    if not old and not new:
        return 1.0
    if not old or not new:
        return 0.0
    shared = sum((Counter(old) & Counter(new)).values())
    return shared / max(len(old), len(new))


# ============================================================================
# BLOB LOADING
# ============================================================================


@dataclass(frozen=True)
class BlobContent:
    """Decoded blob: its status and, for text, its lines."""

    blob_id: str
    status: str
    lines: Tuple[str, ...] = ()
    size: int = 0
    head: bytes = b""
    reason: str = ""


def split_lines(text: str) -> Tuple[str, ...]:
    """Split on newlines; a trailing newline does not open an empty line."""
    if not text:
        return ()
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return tuple(line[:-1] if line.endswith("\r") else line for line in lines)


class BlobLoader:
    """
    Reads and decodes blobs, classifying them as text or binary.

    Size limits are not applied here: an oversized text file is still diffed
    so its lines keep their provenance, and is only left out of line
    classification.

    Results are cached by blob id; an unreadable blob is cached as such so the
    store is not asked again for the same broken object.
    """

    def __init__(self, store: ObjectStore, cache_size: int = 2048):
        self.store = store
        self._cached = lru_cache(maxsize=cache_size)(self._load)

    def load(self, blob_id: str) -> BlobContent:
        return self._cached(blob_id)

    def lines(self, blob_id: str, path: str = "") -> Tuple[str, ...]:
        """
        Lines of a text blob.

        Raises:
            UnreadableFile: If the blob cannot be read from the store
        """
        content = self.load(blob_id)
        if content.status == UNREADABLE:
            raise UnreadableFile(path, blob_id, content.reason)
        return content.lines

    def cache_info(self):
        return self._cached.cache_info()

    def _load(self, blob_id: str) -> BlobContent:
        try:
            data = self.store.read_blob(blob_id)
        except ObjectError as e:
            logger.warning("Unreadable blob %s: %s", blob_id, e.reason)
            return BlobContent(blob_id, UNREADABLE, reason=e.reason)

        head = data[:BINARY_SNIFF_BYTES]
        if b"\x00" in head:
            return BlobContent(blob_id, BINARY, size=len(data), head=head[:128], reason="binary content")
        text = data.decode("utf-8", errors="replace")
        return BlobContent(blob_id, TEXT, split_lines(text), size=len(data), head=head[:128])


# ============================================================================
# TREE DIFFING
# ============================================================================


@dataclass(frozen=True)
class RenameMatch:
    old_path: str
    new_path: str
    similarity: float


@dataclass
class TreeDiff:
    """Changes between two tree snapshots ({path: blob_id})."""

    added: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    renames: Dict[str, RenameMatch] = field(default_factory=dict)

    @property
    def rename_sources(self) -> Dict[str, str]:
        return {match.old_path: new_path for new_path, match in self.renames.items()}

    def is_empty(self) -> bool:
        return not (self.added or self.deleted or self.modified)


class DiffEngine:
    """
    Computes edit scripts between file versions and snapshots.

    Args:
        loader: Blob loader used to read file contents for rename detection
        rename_threshold: Minimum similarity for a delete + add to be a rename
        rename_limit: Maximum added x deleted pairs scored for inexact renames
    """

    def __init__(self, loader: BlobLoader, rename_threshold: float = 0.5, rename_limit: int = 250_000):
        self.loader = loader
        self.rename_threshold = rename_threshold
        self.rename_limit = rename_limit

    def diff_lines(self, old: Sequence[str], new: Sequence[str]) -> List[EditOp]:
        return diff_lines(old, new)

    def diff_file(self, old_blob: Optional[str], new_blob: Optional[str], path: str = "") -> List[EditOp]:
        """Edit script between two blob versions; ``None`` means the file is absent."""
        old = self.loader.lines(old_blob, path) if old_blob else ()
        new = self.loader.lines(new_blob, path) if new_blob else ()
        return diff_lines(old, new)

    def diff_trees(self, old_tree: Mapping[str, str], new_tree: Mapping[str, str]) -> TreeDiff:
        """
        Compare two snapshots and detect renames among deleted/added paths.

        Args:
            old_tree: {path: blob_id} of the parent
            new_tree: {path: blob_id} of the child

        Returns:
            TreeDiff; renamed paths are listed in ``renames`` and removed from
            ``added`` and ``deleted``
        """
        diff = TreeDiff()
        for path, blob_id in new_tree.items():
            old_blob = old_tree.get(path)
            if old_blob is None:
                diff.added.append(path)
            elif old_blob != blob_id:
                diff.modified.append(path)
        diff.deleted = [path for path in old_tree if path not in new_tree]
        diff.added.sort()
        diff.deleted.sort()
        diff.modified.sort()

        if diff.added and diff.deleted:
            diff.renames = self.detect_renames(diff.deleted, diff.added, old_tree, new_tree)
            if diff.renames:
                sources = diff.rename_sources
                diff.added = [p for p in diff.added if p not in diff.renames]
                diff.deleted = [p for p in diff.deleted if p not in sources]
        return diff

    def detect_renames(
        self,
        deleted: Sequence[str],
        added: Sequence[str],
        old_tree: Mapping[str, str],
        new_tree: Mapping[str, str],
    ) -> Dict[str, RenameMatch]:
        """Pair deleted and added paths whose content similarity passes the threshold."""
        renames: Dict[str, RenameMatch] = {}
        used_sources = set()

        # Identical blobs first
        by_blob: Dict[str, List[str]] = {}
        for path in deleted:
            by_blob.setdefault(old_tree[path], []).append(path)
        for path in added:
            candidates = by_blob.get(new_tree[path])
            if candidates:
                source = candidates.pop(0)
                used_sources.add(source)
                renames[path] = RenameMatch(source, path, 1.0)

        remaining_added = [p for p in added if p not in renames]
        remaining_deleted = [p for p in deleted if p not in used_sources]
        if not remaining_added or not remaining_deleted:
            return renames
        if len(remaining_added) * len(remaining_deleted) > self.rename_limit:
            logger.info(
                "Skipping inexact rename detection: %d x %d pairs exceeds limit %d",
                len(remaining_added),
                len(remaining_deleted),
                self.rename_limit,
            )
            return renames

        old_lines = {p: self._text_lines(old_tree[p]) for p in remaining_deleted}
        new_lines = {p: self._text_lines(new_tree[p]) for p in remaining_added}
        scored = []
        for new_path, new_content in new_lines.items():
            if not new_content:
                continue
            for old_path, old_content in old_lines.items():
                if not old_content:
                    continue
                score = similarity(old_content, new_content)
                if score >= self.rename_threshold:
                    scored.append((-score, old_path, new_path))

        scored.sort()
        for negative_score, old_path, new_path in scored:
            if new_path in renames or old_path in used_sources:
                continue
            used_sources.add(old_path)
            renames[new_path] = RenameMatch(old_path, new_path, -negative_score)
        return renames

    def _text_lines(self, blob_id: str) -> Tuple[str, ...]:
        content = self.loader.load(blob_id)
        return content.lines if content.status == TEXT else ()
