"""
Line provenance tracking across history.

Every commit gets a snapshot mapping path -> FileState, where a FileState
holds the blob id and a provenance vector: the owning commit id of each line.
A child snapshot starts as a copy of its first parent's snapshot and only the
paths whose blob changed are recomputed, so work is proportional to the edit
volume of the history rather than to commits x files.

Merge policy: a line equal to a line of any parent's version keeps that
parent's stamp. When several parents could supply the stamp, the earliest
parent in the commit's parent list wins (first-parent precedence). Only lines
matching no parent are stamped with the merge commit.
"""

import fnmatch
import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .diffing import EQUAL, DiffEngine, TreeDiff
from .errors import (
    OBJECT_ERROR,
    UNREADABLE_FILE,
    Diagnostic,
    ObjectError,
)
from .models import TEXT, UNREADABLE, Commit, CommitDelta, FileState
from .object_store import ObjectStore

logger = logging.getLogger(__name__)

Snapshot = Dict[str, FileState]


@dataclass
class CommitPlan:
    """Tree-level changes of one commit, ready for line-level blame."""

    commit: Commit
    parent_snapshots: Sequence[Snapshot]
    tree_diff: Optional[TreeDiff] = None
    jobs: List[Tuple[str, str, str, List[Optional[FileState]]]] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


@dataclass
class BlameStep:
    """Result of applying one commit."""

    snapshot: Snapshot
    delta: CommitDelta
    diagnostics: List[Diagnostic] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)
    tree_diff: Optional[TreeDiff] = None


@dataclass
class _PathResult:
    path: str
    state: FileState
    inserted: int
    deleted: int
    diagnostic: Optional[Diagnostic] = None


def is_excluded(path: str, patterns: Sequence[str]) -> bool:
    """Match a path, or its file name, against fnmatch-style patterns."""
    name = path.rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(path, pat) or fnmatch.fnmatch(name, pat) for pat in patterns)


def snapshot_tree(snapshot: Snapshot) -> Dict[str, str]:
    return {path: state.blob_id for path, state in snapshot.items()}


class BlameEngine:
    """
    Applies commits in walk order to per-path provenance vectors.

    Each commit goes through ``plan`` (tree diff and rename detection against
    every parent) and ``execute`` (line diffs and provenance stamping).

    Args:
        store: Object store to read trees from
        diff_engine: Diff engine (and its blob loader) for file contents
        exclude: fnmatch patterns of paths ignored across the whole history
        executor: Optional pool used to process independent paths of a commit
    """

    def __init__(
        self,
        store: ObjectStore,
        diff_engine: DiffEngine,
        exclude: Sequence[str] = (),
        executor: Optional[Executor] = None,
    ):
        self.store = store
        self.diff_engine = diff_engine
        self.loader = diff_engine.loader
        self.exclude = tuple(exclude)
        self.executor = executor

    def read_tree(self, commit: Commit) -> Tuple[Dict[str, str], List[str]]:
        """Tree of ``commit`` without excluded paths, plus the excluded paths."""
        tree = self.store.read_tree(commit.tree_id)
        if not self.exclude:
            return tree, []
        excluded = sorted(p for p in tree if is_excluded(p, self.exclude))
        for path in excluded:
            del tree[path]
        return tree, excluded

    def apply(self, commit: Commit, parent_snapshots: Sequence[Snapshot]) -> BlameStep:
        """
        Compute the snapshot of ``commit`` from its parents' snapshots.

        Args:
            commit: Commit being processed
            parent_snapshots: Snapshots of ``commit.parents``, in parent order

        Returns:
            BlameStep with the new snapshot and the commit's line delta
        """
        return self.execute(self.plan(commit, parent_snapshots))

    def plan(self, commit: Commit, parent_snapshots: Sequence[Snapshot]) -> CommitPlan:
        """Diff the commit's tree against its parents and list the paths to blame."""
        plan = CommitPlan(commit, parent_snapshots)
        try:
            tree, plan.excluded = self.read_tree(commit)
        except ObjectError as e:
            diagnostic = Diagnostic(OBJECT_ERROR, f"tree unreadable: {e.reason}", None, commit.commit_id)
            logger.warning("Commit %s: %s", commit.commit_id, diagnostic.reason)
            plan.diagnostics.append(diagnostic)
            return plan

        parent_trees = [snapshot_tree(snap) for snap in parent_snapshots]
        first_diff = self.diff_engine.diff_trees(parent_trees[0] if parent_trees else {}, tree)
        other_diffs: Dict[int, TreeDiff] = {}
        plan.tree_diff = first_diff

        def source(index: int, path: str) -> Optional[FileState]:
            snap = parent_snapshots[index]
            if path in snap:
                return snap[path]
            if index == 0:
                renames = first_diff.renames
            else:
                if index not in other_diffs:
                    other_diffs[index] = self.diff_engine.diff_trees(parent_trees[index], tree)
                renames = other_diffs[index].renames
            match = renames.get(path)
            return snap.get(match.old_path) if match else None

        changed = sorted(first_diff.added + first_diff.modified + list(first_diff.renames))
        for path in changed:
            sources = [source(i, path) for i in range(len(parent_snapshots))]
            plan.jobs.append((commit.commit_id, path, tree[path], sources))
        return plan

    def execute(self, plan: CommitPlan) -> BlameStep:
        """Stamp the planned paths and assemble the commit's snapshot."""
        parent_snapshots = plan.parent_snapshots
        snapshot = dict(parent_snapshots[0]) if parent_snapshots else {}
        step = BlameStep(
            snapshot,
            CommitDelta(),
            diagnostics=list(plan.diagnostics),
            excluded=plan.excluded,
            tree_diff=plan.tree_diff,
        )
        # Unreadable tree: keep the first parent's content
        if plan.tree_diff is None:
            return step

        if self.executor is not None and len(plan.jobs) > 1:
            results = list(self.executor.map(self._blame_path, plan.jobs))
        else:
            results = [self._blame_path(job) for job in plan.jobs]

        for old_path in plan.tree_diff.rename_sources:
            del snapshot[old_path]
        for path in plan.tree_diff.deleted:
            del snapshot[path]
            step.delta.add(0, self._deleted_lines(path, parent_snapshots))

        for result in results:
            snapshot[result.path] = result.state
            step.delta.add(result.inserted, result.deleted)
            if result.diagnostic is not None:
                step.diagnostics.append(result.diagnostic)

        return step

    def _deleted_lines(self, path: str, parent_snapshots: Sequence[Snapshot]) -> int:
        # A parent that no longer has the path did not need this commit to delete it
        counts = [snap[path].line_count if path in snap else 0 for snap in parent_snapshots]
        return min(counts) if counts else 0

    def _blame_path(self, job: Tuple[str, str, str, List[Optional[FileState]]]) -> _PathResult:
        commit_id, path, blob_id, sources = job

        # Identical to some parent's version while the first parent lacks it
        if sources and sources[0] is None:
            for state in sources[1:]:
                if state is not None and state.blob_id == blob_id and state.provenance is not None:
                    return _PathResult(path, state, 0, 0)

        content = self.loader.load(blob_id)
        if content.status != TEXT:
            # Carry the last text version across binary or unreadable versions
            text_blob_id, text_provenance = None, None
            for state in sources:
                if state is not None and state.text_source()[1] is not None:
                    text_blob_id, text_provenance = state.text_source()
                    break
            state = FileState(blob_id, None, content.status, text_blob_id, text_provenance)
            diagnostic = None
            if content.status == UNREADABLE:
                diagnostic = Diagnostic(UNREADABLE_FILE, content.reason, path, commit_id)
            return _PathResult(path, state, 0, 0, diagnostic)

        new_lines = content.lines
        provenance: List[Optional[str]] = [None] * len(new_lines)
        deletions = []
        for state in sources:
            old_blob_id, old_provenance = state.text_source() if state is not None else (None, None)
            if old_provenance is None:
                deletions.append(0)
                continue
            old_lines = self.loader.load(old_blob_id).lines
            deleted = 0
            for op in self.diff_engine.diff_lines(old_lines, new_lines):
                if op.tag == EQUAL:
                    for offset in range(op.new_len):
                        index = op.new_start + offset
                        if provenance[index] is None:
                            provenance[index] = old_provenance[op.old_start + offset]
                elif op.old_len:
                    deleted += op.old_len
            deletions.append(deleted)

        inserted = 0
        for index, owner in enumerate(provenance):
            if owner is None:
                provenance[index] = commit_id
                inserted += 1

        return _PathResult(
            path,
            FileState(blob_id, tuple(provenance), TEXT),
            inserted,
            min(deletions) if deletions else 0,
        )
