"""
Commit graph traversal.

The walker first discovers every commit reachable from the heads, keeping only
parent links and timestamps, then yields commits lazily in topological order
(parents before children). Ties between independent commits are broken by
author timestamp, then by commit id, so the order is deterministic.
"""

import heapq
import logging
import threading
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import Cancelled, CorruptHistory, NotFound, ObjectError
from .models import Commit
from .object_store import ObjectStore

logger = logging.getLogger(__name__)


class HistoryWalker:
    """
    Deterministic parents-before-children traversal of a commit DAG.

    After ``discover`` the walker knows, for every commit, how many of its
    children are reachable; ``ordered`` then yields each commit exactly once.
    """

    def __init__(self, store: ObjectStore, cancel: Optional[threading.Event] = None):
        self.store = store
        self.cancel = cancel
        self.heads: List[str] = []
        self.parents: Dict[str, Tuple[str, ...]] = {}
        self.timestamps: Dict[str, int] = {}
        self.child_counts: Dict[str, int] = {}
        self._discovered = False

    @property
    def total(self) -> int:
        return len(self.parents)

    def _check_cancel(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise Cancelled("Cancelled during history discovery")

    def discover(self, heads: Iterable[str]) -> int:
        """
        Collect all commits reachable from ``heads``.

        Args:
            heads: Commit ids (already resolved) to start from

        Returns:
            Number of reachable commits

        Raises:
            NotFound: If a head commit cannot be read
            CorruptHistory: If a parent reference cannot be resolved
        """
        self.heads = list(dict.fromkeys(heads))
        self.parents.clear()
        self.timestamps.clear()
        self.child_counts.clear()

        for head in self.heads:
            try:
                self._record(self.store.read_commit(head))
            except ObjectError as e:
                raise NotFound(f"Head commit not found: {head}") from e

        stack = [p for head in self.heads for p in self.parents[head]]
        while stack:
            commit_id = stack.pop()
            if commit_id in self.parents:
                continue
            self._check_cancel()
            try:
                commit = self.store.read_commit(commit_id)
            except ObjectError as e:
                raise CorruptHistory(f"Unresolvable parent commit {commit_id}: {e}") from e
            self._record(commit)
            stack.extend(p for p in commit.parents if p not in self.parents)

        for commit_id, parents in self.parents.items():
            for parent in parents:
                self.child_counts[parent] += 1

        self._discovered = True
        logger.debug("Discovered %d commits from %d heads", self.total, len(self.heads))
        return self.total

    def _record(self, commit: Commit) -> None:
        if len(set(commit.parents)) != len(commit.parents):
            raise CorruptHistory(f"Commit {commit.commit_id} lists a parent twice")
        self.parents[commit.commit_id] = commit.parents
        self.timestamps[commit.commit_id] = commit.timestamp
        self.child_counts.setdefault(commit.commit_id, 0)

    def ordered(self) -> Iterator[Commit]:
        """
        Yield discovered commits, every parent before each of its children.

        Raises:
            CorruptHistory: If the graph contains a cycle
        """
        if not self._discovered:
            raise RuntimeError("discover() must be called before ordered()")

        pending = {commit_id: len(parents) for commit_id, parents in self.parents.items()}
        children: Dict[str, List[str]] = {commit_id: [] for commit_id in self.parents}
        for commit_id, parents in self.parents.items():
            for parent in parents:
                children[parent].append(commit_id)

        ready = [
            (self.timestamps[commit_id], commit_id)
            for commit_id, count in pending.items()
            if count == 0
        ]
        heapq.heapify(ready)
        emitted = 0
        while ready:
            _, commit_id = heapq.heappop(ready)
            emitted += 1
            yield self.store.read_commit(commit_id)
            for child in children.pop(commit_id):
                pending[child] -= 1
                if pending[child] == 0:
                    heapq.heappush(ready, (self.timestamps[child], child))

        if emitted != len(self.parents):
            stuck = sorted(c for c, count in pending.items() if count > 0)
            raise CorruptHistory(
                f"Cycle in commit graph involving {len(stuck)} commits (e.g. {stuck[0]})"
            )

    def walk(self, heads: Iterable[str]) -> Iterator[Commit]:
        """Discover then lazily yield commits in parents-before-children order."""
        self.discover(heads)
        return self.ordered()
