"""
Attribution pipeline orchestration.

AttributionEngine drives one analysis run through the states

    Idle -> Walking -> (Diffing <-> Blaming per commit) -> Classifying
         -> Aggregated -> Ready

and serves queries only in Ready. Any error moves the engine to Failed with
a FailureKind and is re-raised to the caller. Everything a run builds lives
in its RunContext and is dropped when the run ends or fails.
"""

import dataclasses
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .aggregation import AggregationStore
from .authors import AuthorNormalizer
from .blame import BlameEngine, BlameStep, Snapshot
from .config import AnalysisConfig
from .diffing import BlobLoader, DiffEngine
from .errors import (
    BINARY_FILE,
    EXCLUDED_FILE,
    OVERSIZED_FILE,
    UNREADABLE_FILE,
    Cancelled,
    Diagnostic,
    FailureKind,
    NotReady,
)
from .history import HistoryWalker
from .languages import LanguageClassifier
from .line_classifier import classify_lines
from .models import (
    BINARY,
    OVERSIZED,
    TEXT,
    UNREADABLE,
    Commit,
    FileState,
    LineRecord,
    SkippedFile,
)
from .object_store import GitObjectStore, ObjectStore
from .reporting import MemoryMonitor, PerformanceMetrics, ProgressReporter

logger = logging.getLogger(__name__)

_SKIP_KINDS = {
    BINARY: BINARY_FILE,
    OVERSIZED: OVERSIZED_FILE,
    UNREADABLE: UNREADABLE_FILE,
}

# Files per classification partition
PARTITION_SIZE = 200

# Commits between two memory samples
MEMORY_CHECK_INTERVAL = 100


class EngineState(Enum):
    IDLE = "idle"
    WALKING = "walking"
    DIFFING = "diffing"
    BLAMING = "blaming"
    CLASSIFYING = "classifying"
    AGGREGATED = "aggregated"
    READY = "ready"
    FAILED = "failed"


def chunk_iterator(items: List, chunk_size: int = 1000):
    """Split a list into consecutive chunks."""
    for i in range(0, len(items), chunk_size):
        yield items[i : i + chunk_size]


@dataclass
class RunContext:
    """Everything one analysis run owns."""

    store: ObjectStore
    config: AnalysisConfig
    cancel: threading.Event
    normalizer: AuthorNormalizer
    loader: BlobLoader
    diff_engine: DiffEngine
    languages: LanguageClassifier
    metrics: PerformanceMetrics
    memory: MemoryMonitor
    reporter: ProgressReporter
    executor: Optional[ThreadPoolExecutor] = None
    aggregation: Optional[AggregationStore] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise Cancelled("Analysis cancelled")


@dataclass
class RunResult:
    """Output of a completed run, served by the query API."""

    aggregation: AggregationStore
    records: List[LineRecord]
    skipped: List[SkippedFile]
    diagnostics: List[Diagnostic]
    heads: List[str]
    metrics: PerformanceMetrics


class AttributionEngine:
    """
    Line attribution over the full history of one repository.

    Args:
        store: Object store holding the repository
        config: Analysis settings (defaults when omitted)
        reporter: Progress output; silent when omitted
        cancel: Event that aborts the run when set
        memory_limit_mb: Fail the run with MemoryError above this RSS
    """

    def __init__(
        self,
        store: ObjectStore,
        config: Optional[AnalysisConfig] = None,
        reporter: Optional[ProgressReporter] = None,
        cancel: Optional[threading.Event] = None,
        memory_limit_mb: Optional[float] = None,
    ):
        self.store = store
        self.config = config or AnalysisConfig()
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.cancel_event = cancel or threading.Event()
        self.memory_limit_mb = memory_limit_mb
        self.state = EngineState.IDLE
        self.failure: Optional[FailureKind] = None
        self.error: Optional[BaseException] = None
        self.transitions: List[EngineState] = [EngineState.IDLE]
        self._result: Optional[RunResult] = None

    @classmethod
    def for_repository(cls, repo_path: str, config: Optional[AnalysisConfig] = None, **kwargs) -> "AttributionEngine":
        """Engine over a local git repository, honoring the configured I/O timeout."""
        config = config or AnalysisConfig()
        store = GitObjectStore(repo_path, timeout=config.io_timeout)
        return cls(store, config, **kwargs)

    # State handling ------------------------------------------------------

    def _set_state(self, state: EngineState) -> None:
        if state is not self.state:
            logger.debug("Engine state %s -> %s", self.state.value, state.value)
            self.state = state
            self.transitions.append(state)

    def _require_ready(self) -> RunResult:
        if self.state is not EngineState.READY or self._result is None:
            raise NotReady(f"Engine is {self.state.value}, not ready")
        return self._result

    def cancel(self) -> None:
        """Request cancellation; honored at the next commit boundary."""
        self.cancel_event.set()

    def analyze(self) -> "AttributionEngine":
        """
        Run the full pipeline.

        A Ready engine is returned as is; use ``reanalyze`` to rebuild.
        A Failed engine starts over from Idle.

        Raises:
            NotFound: If a head reference cannot be resolved
            CorruptHistory: If the commit graph is broken
            ObjectStoreTimeout: If an object read exceeds the I/O timeout
            Cancelled: If the cancellation event was set
            MemoryError: If the memory limit was exceeded
        """
        if self.state is EngineState.READY:
            return self
        if self.state is EngineState.FAILED:
            if self.failure is FailureKind.CANCELLED:
                self.cancel_event.clear()
            self.failure = None
            self.error = None
            self._set_state(EngineState.IDLE)

        try:
            self._result = self._run()
        except Exception as e:
            self._result = None
            self.failure = FailureKind.from_exception(e)
            self.error = e
            self._set_state(EngineState.FAILED)
            logger.error("Analysis failed (%s): %s", self.failure.value, e)
            raise
        self._set_state(EngineState.READY)
        return self

    def reanalyze(self) -> "AttributionEngine":
        """Drop the current results and rebuild them from scratch."""
        if self.state is EngineState.READY:
            self._result = None
            self._set_state(EngineState.IDLE)
        return self.analyze()

    # Pipeline ------------------------------------------------------------

    def _new_context(self, executor: Optional[ThreadPoolExecutor]) -> RunContext:
        config = self.config
        loader = BlobLoader(self.store, config.blob_cache_size)
        return RunContext(
            store=self.store,
            config=config,
            cancel=self.cancel_event,
            normalizer=AuthorNormalizer(config.contributor_aliases),
            loader=loader,
            diff_engine=DiffEngine(loader, config.rename_threshold, config.rename_limit),
            languages=LanguageClassifier(config.extra_extensions),
            metrics=PerformanceMetrics(),
            memory=MemoryMonitor(self.memory_limit_mb),
            reporter=self.reporter,
            executor=executor,
        )

    def _run(self) -> RunResult:
        start = time.time()
        workers = self.config.workers
        executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
        try:
            ctx = self._new_context(executor)
            heads, final = self._walk(ctx)
            records, skipped = self._classify(ctx, final)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        info = ctx.loader.cache_info()
        ctx.metrics.blob_cache_hits = info.hits
        ctx.metrics.blob_cache_misses = info.misses
        ctx.metrics.memory_peak_mb = ctx.memory.get_peak()
        ctx.metrics.total_time = time.time() - start
        self._set_state(EngineState.AGGREGATED)
        return RunResult(ctx.aggregation, records, skipped, ctx.diagnostics, heads, ctx.metrics)

    def _walk(self, ctx: RunContext) -> Tuple[List[str], Snapshot]:
        """Replay history and return the final snapshot of the primary head."""
        self._set_state(EngineState.WALKING)
        ctx.reporter.stage_start("Walking history", f"Heads: {', '.join(ctx.config.heads)}")
        stage_start = time.time()

        heads = list(dict.fromkeys(ctx.store.resolve_ref(ref) for ref in ctx.config.heads))
        primary = heads[0]
        walker = HistoryWalker(ctx.store, ctx.cancel)
        total = walker.discover(heads)
        ctx.reporter.info(f"Discovered {total:,} commits")

        ctx.aggregation = AggregationStore(include_unknown=ctx.config.include_unknown)
        blame = BlameEngine(ctx.store, ctx.diff_engine, ctx.config.exclude, ctx.executor)
        remaining = dict(walker.child_counts)
        snapshots: Dict[str, Snapshot] = {}
        excluded: List[str] = []

        progress_bar = ctx.reporter.create_progress_bar(total, "Blaming")
        try:
            for sequence, commit in enumerate(walker.ordered()):
                ctx.check_cancelled()
                commit = self._normalize(ctx, commit)

                self._set_state(EngineState.DIFFING)
                plan = blame.plan(commit, [snapshots[p] for p in commit.parents])
                self._set_state(EngineState.BLAMING)
                step = blame.execute(plan)

                ctx.diagnostics.extend(step.diagnostics)
                snapshots[commit.commit_id] = step.snapshot
                ctx.aggregation.process_commit(commit, step.delta, sequence, self._touched_languages(ctx, step))
                if commit.commit_id == primary:
                    excluded = step.excluded

                # Release snapshots no remaining child needs
                for parent in commit.parents:
                    remaining[parent] -= 1
                    if remaining[parent] == 0 and parent != primary:
                        snapshots.pop(parent, None)
                if remaining[commit.commit_id] == 0 and commit.commit_id != primary:
                    snapshots.pop(commit.commit_id, None)

                ctx.metrics.commits_processed += 1
                if ctx.metrics.commits_processed % MEMORY_CHECK_INTERVAL == 0:
                    ctx.memory.check_memory()
                if progress_bar is not None:
                    progress_bar.update(1)
        finally:
            if progress_bar is not None:
                progress_bar.close()

        ctx.memory.check_memory()
        for path in excluded:
            ctx.diagnostics.append(Diagnostic(EXCLUDED_FILE, "matches exclude pattern", path, primary))
        ctx.excluded = excluded

        ctx.metrics.stage_times["walk"] = time.time() - stage_start
        ctx.reporter.stage_complete(
            "Walking history",
            {"Commits": f"{total:,}", "Files in final snapshot": f"{len(snapshots[primary]):,}"},
        )
        return heads, snapshots[primary]

    def _touched_languages(self, ctx: RunContext, step: BlameStep) -> List[str]:
        diff = step.tree_diff
        if diff is None:
            return []
        paths = diff.added + diff.modified + diff.deleted + list(diff.renames)
        return [ctx.languages.classify(path) for path in paths]

    def _normalize(self, ctx: RunContext, commit: Commit) -> Commit:
        identity = ctx.normalizer.normalize(commit.author_name, commit.author_email)
        return dataclasses.replace(
            commit,
            contributor_key=identity["contributor_key"],
            author_name=identity["display_name"],
        )

    def _classify(self, ctx: RunContext, final: Snapshot) -> Tuple[List[LineRecord], List[SkippedFile]]:
        """Classify the final snapshot in partitions and merge their counters."""
        self._set_state(EngineState.CLASSIFYING)
        ctx.reporter.stage_start("Classifying lines", f"{len(final):,} files")
        stage_start = time.time()

        owners = {
            commit_id: info.contributor_key
            for commit_id, info in ctx.aggregation.commits.items()
        }
        include_unknown = ctx.config.include_unknown
        paths = sorted(final)

        def classify_partition(chunk: List[str]) -> Tuple[AggregationStore, List[LineRecord], List[SkippedFile]]:
            partition = AggregationStore(include_unknown=include_unknown)
            records: List[LineRecord] = []
            skipped: List[SkippedFile] = []
            for path in chunk:
                ctx.check_cancelled()
                file_records, skip = self._classify_file(ctx, path, final[path], owners)
                if skip is not None:
                    skipped.append(skip)
                    continue
                partition.process_lines(file_records)
                records.extend(file_records)
            return partition, records, skipped

        chunks = list(chunk_iterator(paths, PARTITION_SIZE))
        if ctx.executor is not None and len(chunks) > 1:
            partitions = list(ctx.executor.map(classify_partition, chunks))
        else:
            partitions = [classify_partition(chunk) for chunk in chunks]

        records: List[LineRecord] = []
        skipped: List[SkippedFile] = []
        for partition, partition_records, partition_skipped in partitions:
            ctx.aggregation.merge(partition)
            records.extend(partition_records)
            skipped.extend(partition_skipped)

        skipped.extend(
            SkippedFile(path, "", "excluded", "matches exclude pattern") for path in ctx.excluded
        )
        skipped.sort(key=lambda s: s.path)

        recorded = {(d.kind, d.path) for d in ctx.diagnostics}
        for skip in skipped:
            kind = _SKIP_KINDS.get(skip.status)
            if kind and (kind, skip.path) not in recorded:
                ctx.diagnostics.append(Diagnostic(kind, skip.reason, skip.path, None))

        ctx.metrics.files_classified = len(paths) - len(skipped) + len(ctx.excluded)
        ctx.metrics.lines_attributed = len(records)
        ctx.metrics.stage_times["classify"] = time.time() - stage_start
        ctx.reporter.stage_complete(
            "Classifying lines",
            {"Lines": f"{len(records):,}", "Skipped files": f"{len(skipped):,}"},
        )
        return records, skipped

    def _classify_file(
        self,
        ctx: RunContext,
        path: str,
        state: FileState,
        owners: Dict[str, str],
    ) -> Tuple[List[LineRecord], Optional[SkippedFile]]:
        content = ctx.loader.load(state.blob_id)
        if state.status != TEXT or state.provenance is None or content.status != TEXT:
            status = state.status if state.status != TEXT else content.status
            reason = content.reason or f"{status} content"
            return [], SkippedFile(path, state.blob_id, status, reason)
        max_size = ctx.config.max_file_size
        if max_size and content.size > max_size:
            reason = f"{content.size} bytes exceeds limit of {max_size}"
            return [], SkippedFile(path, state.blob_id, OVERSIZED, reason)

        language = ctx.languages.classify(path, content.head)
        kinds = classify_lines(language, content.lines)
        records = [
            LineRecord(path, index, commit_id, owners[commit_id], language, kinds[index])
            for index, commit_id in enumerate(state.provenance)
        ]
        return records, None

    # Queries -------------------------------------------------------------

    def list_contributors(self) -> List[Dict[str, Any]]:
        return self._require_ready().aggregation.list_contributors()

    def contributor_breakdown(self, key: str) -> Dict[str, Dict[str, int]]:
        return self._require_ready().aggregation.contributor_breakdown(key)

    def contributor_commits(self, key: str) -> List[Dict[str, Any]]:
        return self._require_ready().aggregation.contributor_commits(key)

    def commit_breakdown(self, commit_id: str) -> Dict[str, Dict[str, int]]:
        return self._require_ready().aggregation.commit_breakdown(commit_id)

    def repository_totals(self) -> Dict[str, Dict[str, int]]:
        return self._require_ready().aggregation.repository_totals()

    def contributor_stats(self) -> Dict[str, Dict[str, Any]]:
        return self._require_ready().aggregation.contributor_stats()

    def file_breakdown(self, path: str) -> Dict[str, Any]:
        return self._require_ready().aggregation.file_breakdown(path)

    def contributor_files(self, key: str) -> List[str]:
        return self._require_ready().aggregation.contributor_files(key)

    def diff_stats(self) -> Dict[str, Dict[str, int]]:
        return self._require_ready().aggregation.diff_stats()

    def line_records(self) -> Iterator[LineRecord]:
        return iter(self._require_ready().records)

    @property
    def aggregation(self) -> AggregationStore:
        return self._require_ready().aggregation

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._require_ready().diagnostics)

    @property
    def skipped_files(self) -> List[SkippedFile]:
        return list(self._require_ready().skipped)

    @property
    def heads(self) -> List[str]:
        return list(self._require_ready().heads)

    @property
    def metrics(self) -> PerformanceMetrics:
        return self._require_ready().metrics

    def summary(self) -> Dict[str, Any]:
        result = self._require_ready()
        return {
            "Commits": f"{len(result.aggregation.commits):,}",
            "Contributors": f"{len(result.aggregation.contributor_keys()):,}",
            "Files": f"{len(result.aggregation.files()):,}",
            "Lines attributed": f"{len(result.records):,}",
            "Skipped files": f"{len(result.skipped):,}",
            "Diagnostics": f"{len(result.diagnostics):,}",
        }
