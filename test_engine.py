from collections import Counter
from unittest.mock import patch

import pytest

from conftest import ALICE, BOB, CAROL, DAVE
from linestrata import engine as engine_module
from linestrata.config import AnalysisConfig
from linestrata.engine import AttributionEngine, EngineState
from linestrata.errors import (
    BINARY_FILE,
    EXCLUDED_FILE,
    OVERSIZED_FILE,
    Cancelled,
    CorruptHistory,
    FailureKind,
    NotFound,
    NotReady,
    ObjectStoreTimeout,
)

ALICE_KEY = "alice@example.com"
BOB_KEY = "bob@example.com"
CAROL_KEY = "carol@example.com"
DAVE_KEY = "dave@example.com"


def totals(engine):
    return {s["key"]: s["total_lines"] for s in engine.list_contributors()}


# ============================================================================
# ATTRIBUTION SCENARIOS
# ============================================================================


def test_two_authors(two_author_store, make_engine):
    store, c1, c2 = two_author_store
    engine = make_engine(store).analyze()

    assert engine.list_contributors() == [
        {"key": ALICE_KEY, "display_name": "Alice Smith", "total_lines": 10},
        {"key": BOB_KEY, "display_name": "Bob Jones", "total_lines": 2},
    ]
    assert engine.contributor_breakdown(ALICE_KEY) == {"python": {"code": 10, "comment": 0, "blank": 0}}
    assert engine.contributor_breakdown(BOB_KEY) == {"python": {"code": 0, "comment": 2, "blank": 0}}
    assert engine.commit_breakdown(c1) == {"python": {"code": 10, "comment": 0, "blank": 0}}
    assert engine.contributor_commits(BOB_KEY) == [
        {
            "commit_id": c2,
            "timestamp": store.read_commit(c2).timestamp,
            "lines_added_attributed": 2,
            "lines_added": 2,
            "lines_deleted": 0,
        }
    ]


def test_changed_then_deleted_line(store, commit, make_engine):
    c0 = commit({"a.py": "keep = 1\nold = 2\n"}, CAROL, ts=0)
    c1 = commit({"a.py": "keep = 1\nnew = 2\n"}, ALICE, parents=[c0], ts=10)
    c2 = commit({"a.py": "keep = 1\n"}, BOB, parents=[c1], ts=20)
    engine = make_engine(store).analyze()

    assert totals(engine) == {CAROL_KEY: 1, ALICE_KEY: 0, BOB_KEY: 0}
    [alice_commit] = engine.contributor_commits(ALICE_KEY)
    assert alice_commit["commit_id"] == c1
    assert alice_commit["lines_added_attributed"] == 0
    assert (alice_commit["lines_added"], alice_commit["lines_deleted"]) == (1, 1)
    [bob_commit] = engine.contributor_commits(BOB_KEY)
    assert bob_commit["commit_id"] == c2
    assert (bob_commit["lines_added"], bob_commit["lines_deleted"]) == (0, 1)


def test_merge_does_not_inflate_merger(store, commit, make_engine):
    base = commit({"a.py": "a = 1\n"}, ALICE, ts=0)
    left = commit({"a.py": "a = 1\nb = 2\n"}, BOB, parents=[base], ts=10)
    right = commit({"a.py": "a = 1\n", "c.py": "c = 3\n"}, CAROL, parents=[base], ts=20)
    merge = commit({"a.py": "a = 1\nb = 2\n", "c.py": "c = 3\n"}, DAVE, parents=[left, right], ts=30)
    engine = make_engine(store).analyze()

    assert totals(engine) == {ALICE_KEY: 1, BOB_KEY: 1, CAROL_KEY: 1, DAVE_KEY: 0}
    assert engine.commit_breakdown(merge) == {"python": {"code": 0, "comment": 0, "blank": 0}}
    [dave_commit] = engine.contributor_commits(DAVE_KEY)
    assert dave_commit["lines_added"] == 0


def test_conflict_resolution_goes_to_merger(store, commit, make_engine):
    base = commit({"a.py": "x = 0\n"}, ALICE, ts=0)
    left = commit({"a.py": "x = 1\n"}, BOB, parents=[base], ts=10)
    right = commit({"a.py": "x = 2\n"}, CAROL, parents=[base], ts=20)
    commit({"a.py": "x = 3\n"}, DAVE, parents=[left, right], ts=30)
    engine = make_engine(store).analyze()
    assert totals(engine)[DAVE_KEY] == 1


def test_rename_keeps_authorship(store, commit, make_engine):
    c1 = commit({"old.py": "a = 1\nb = 2\nc = 3\n"}, ALICE, ts=0)
    commit({"new.py": "a = 1\nb = 2\nc = 3\nd = 4\n"}, BOB, parents=[c1], ts=10)
    engine = make_engine(store).analyze()

    assert totals(engine) == {ALICE_KEY: 3, BOB_KEY: 1}
    assert engine.file_breakdown("new.py")["contributors"][ALICE_KEY]["lines"] == 3
    with pytest.raises(NotFound):
        engine.file_breakdown("old.py")


def test_aliases_merge_identities(store, commit, make_engine):
    c1 = commit({"a.py": "a = 1\n"}, ("Alice", "alice+work@example.com"), ts=0)
    commit({"a.py": "a = 1\nb = 2\n"}, ("A. Smith", "asmith@corp.example"), parents=[c1], ts=10)
    engine = make_engine(store, contributor_aliases={"asmith@corp.example": ALICE_KEY}).analyze()
    assert totals(engine) == {ALICE_KEY: 2}


# ============================================================================
# INVARIANTS
# ============================================================================


def test_conservation_and_single_ownership(store, commit, make_engine):
    c1 = commit({"a.py": "a = 1\n# note\n\n", "b.js": "let b = 2;\n"}, ALICE, ts=0)
    c2 = commit({"a.py": "a = 1\n# note\n\nz = 0\n", "b.js": "let b = 3;\n"}, BOB, parents=[c1], ts=10)
    engine = make_engine(store).analyze()

    records = list(engine.line_records())
    keys = Counter((r.path, r.line_index) for r in records)
    assert all(count == 1 for count in keys.values())
    assert {r.commit_id for r in records} <= {c1, c2}

    repo_total = sum(sum(counts.values()) for counts in engine.repository_totals().values())
    assert repo_total == len(records) == sum(totals(engine).values()) == 5


def test_analyze_is_idempotent(two_author_store, make_engine):
    store, _, _ = two_author_store
    engine = make_engine(store).analyze()
    first = engine.contributor_stats()
    assert engine.analyze() is engine
    assert engine.reanalyze().contributor_stats() == first
    assert make_engine(store).analyze().contributor_stats() == first


def test_workers_do_not_change_results(store, commit, make_engine, monkeypatch):
    files = {f"pkg/m{i}.py": f"# module {i}\nvalue = {i}\n\n" for i in range(12)}
    c1 = commit(files, ALICE, ts=0)
    edited = dict(files)
    for i in range(0, 12, 3):
        edited[f"pkg/m{i}.py"] += "extra = 1\n"
    commit(edited, BOB, parents=[c1], ts=10)
    monkeypatch.setattr(engine_module, "PARTITION_SIZE", 5)

    sequential = make_engine(store, workers=1).analyze()
    parallel = make_engine(store, workers=4).analyze()

    assert parallel.contributor_stats() == sequential.contributor_stats()
    assert parallel.repository_totals() == sequential.repository_totals()
    assert totals(parallel) == {ALICE_KEY: 36, BOB_KEY: 4}


# ============================================================================
# SKIPPED FILES & DIAGNOSTICS
# ============================================================================


def test_binary_and_oversized_files_are_skipped(store, commit, make_engine):
    commit({"a.py": "a = 1\n", "logo.png": b"\x89PNG\x00\x01", "dump.sql": "x" * 100}, ALICE)
    engine = make_engine(store, max_file_size=50).analyze()

    assert totals(engine) == {ALICE_KEY: 1}
    assert {(s.path, s.status) for s in engine.skipped_files} == {
        ("logo.png", "binary"),
        ("dump.sql", "oversized"),
    }
    kinds = {(d.kind, d.path) for d in engine.diagnostics}
    assert (BINARY_FILE, "logo.png") in kinds
    assert (OVERSIZED_FILE, "dump.sql") in kinds


@pytest.mark.parametrize("intermediate", ["x" * 200 + "\n", "\x00\n"], ids=["oversized", "binary"])
def test_briefly_skipped_version_keeps_authorship(store, commit, make_engine, intermediate):
    text = "".join(f"value_{i} = {i}\n" for i in range(5))
    c1 = commit({"a.py": text}, ALICE)
    c2 = commit({"a.py": text + intermediate}, BOB, parents=[c1], ts=10)
    commit({"a.py": text}, CAROL, parents=[c2], ts=20)
    engine = make_engine(store, max_file_size=100).analyze()

    assert totals(engine) == {ALICE_KEY: 5, BOB_KEY: 0, CAROL_KEY: 0}
    assert engine.skipped_files == []


def test_oversized_final_version_is_skipped_but_tracked(store, commit, make_engine):
    text = "".join(f"value_{i} = {i}\n" for i in range(5))
    c1 = commit({"a.py": text}, ALICE)
    commit({"a.py": text + "x" * 200 + "\n"}, BOB, parents=[c1], ts=10)
    engine = make_engine(store, max_file_size=100).analyze()

    assert totals(engine) == {ALICE_KEY: 0, BOB_KEY: 0}
    assert [(s.path, s.status) for s in engine.skipped_files] == [("a.py", "oversized")]

    engine = make_engine(store).analyze()
    assert totals(engine) == {ALICE_KEY: 5, BOB_KEY: 1}


def test_excluded_files(store, commit, make_engine):
    commit({"a.py": "a = 1\n", "vendor/lib.py": "v = 1\n"}, ALICE)
    engine = make_engine(store, exclude=["vendor/*"]).analyze()

    assert engine.aggregation.files() == ["a.py"]
    assert [(s.path, s.status) for s in engine.skipped_files] == [("vendor/lib.py", "excluded")]
    assert [(d.kind, d.path) for d in engine.diagnostics] == [(EXCLUDED_FILE, "vendor/lib.py")]


def test_unknown_language_counts_toward_totals(store, commit, make_engine):
    commit({"README": "hello\nworld\n", "a.py": "a = 1\n"}, ALICE)
    engine = make_engine(store).analyze()

    assert totals(engine) == {ALICE_KEY: 3}
    assert "unknown" not in engine.contributor_breakdown(ALICE_KEY)
    assert engine.repository_totals()["unknown"]["code"] == 2

    engine = make_engine(store, include_unknown=True).analyze()
    assert engine.contributor_breakdown(ALICE_KEY)["unknown"]["code"] == 2


def test_multiple_heads(store, commit, make_engine):
    c1 = commit({"a.py": "a = 1\n"}, ALICE, ts=0)
    commit({"a.py": "a = 1\nb = 2\n"}, BOB, parents=[c1], ts=10)
    side = commit({"a.py": "a = 1\nside = 3\n"}, CAROL, parents=[c1], ts=20, ref="side")
    engine = make_engine(store, heads=["HEAD", "side"]).analyze()

    assert totals(engine) == {ALICE_KEY: 1, BOB_KEY: 1, CAROL_KEY: 0}
    assert [c["commit_id"] for c in engine.contributor_commits(CAROL_KEY)] == [side]
    assert len(engine.heads) == 2


# ============================================================================
# STATES & FAILURES
# ============================================================================


def test_state_transitions(two_author_store, make_engine):
    store, _, _ = two_author_store
    engine = make_engine(store)
    assert engine.state is EngineState.IDLE
    engine.analyze()

    assert engine.transitions == [
        EngineState.IDLE,
        EngineState.WALKING,
        EngineState.DIFFING,
        EngineState.BLAMING,
        EngineState.DIFFING,
        EngineState.BLAMING,
        EngineState.CLASSIFYING,
        EngineState.AGGREGATED,
        EngineState.READY,
    ]
    engine.reanalyze()
    assert engine.transitions[9:11] == [EngineState.IDLE, EngineState.WALKING]
    assert engine.state is EngineState.READY


def test_queries_require_ready(two_author_store, make_engine):
    store, _, _ = two_author_store
    engine = make_engine(store)
    with pytest.raises(NotReady):
        engine.list_contributors()
    with pytest.raises(NotReady):
        engine.diagnostics

    engine.analyze()
    with pytest.raises(NotFound):
        engine.contributor_breakdown("mallory@example.com")
    with pytest.raises(NotFound):
        engine.commit_breakdown("0" * 40)


def test_cancel_then_retry(two_author_store, make_engine):
    store, _, _ = two_author_store
    engine = make_engine(store)
    engine.cancel()

    with pytest.raises(Cancelled):
        engine.analyze()
    assert engine.state is EngineState.FAILED
    assert engine.failure is FailureKind.CANCELLED
    with pytest.raises(NotReady):
        engine.list_contributors()

    engine.analyze()
    assert engine.state is EngineState.READY
    assert totals(engine) == {ALICE_KEY: 10, BOB_KEY: 2}


def test_object_store_timeout(two_author_store, make_engine):
    store, _, _ = two_author_store
    engine = make_engine(store)
    with patch.object(store, "read_tree", side_effect=ObjectStoreTimeout("git timed out")):
        with pytest.raises(ObjectStoreTimeout):
            engine.analyze()
    assert engine.failure is FailureKind.OBJECT_STORE_TIMEOUT


def test_corrupt_history(store, commit, make_engine):
    commit({"a.py": "a = 1\n"}, parents=["f" * 40])
    engine = make_engine(store)
    with pytest.raises(CorruptHistory):
        engine.analyze()
    assert engine.failure is FailureKind.CORRUPT_HISTORY


def test_missing_head(two_author_store, make_engine):
    store, _, _ = two_author_store
    engine = make_engine(store, heads=["no-such-branch"])
    with pytest.raises(NotFound):
        engine.analyze()
    assert engine.failure is FailureKind.NOT_FOUND


def test_memory_limit(two_author_store, quiet_reporter):
    store, _, _ = two_author_store
    engine = AttributionEngine(store, AnalysisConfig(workers=1), reporter=quiet_reporter, memory_limit_mb=0.001)
    with pytest.raises(MemoryError):
        engine.analyze()
    assert engine.failure is FailureKind.MEMORY


# ============================================================================
# REAL REPOSITORY
# ============================================================================


def test_git_repository_end_to_end(git_repo, quiet_reporter):
    engine = AttributionEngine.for_repository(git_repo, AnalysisConfig(workers=1), reporter=quiet_reporter)
    engine.analyze()

    assert totals(engine) == {ALICE_KEY: 5, CAROL_KEY: 2, BOB_KEY: 1, DAVE_KEY: 0}
    assert engine.repository_totals()["python"] == {"code": 5, "comment": 1, "blank": 1}
    assert engine.repository_totals()["unknown"] == {"code": 1, "comment": 0, "blank": 0}
    assert engine.contributor_breakdown(ALICE_KEY) == {"python": {"code": 2, "comment": 1, "blank": 1}}

    [merge] = engine.contributor_commits(DAVE_KEY)
    assert engine.commit_breakdown(merge["commit_id"]) == {"python": {"code": 0, "comment": 0, "blank": 0}}
    assert engine.aggregation.files() == ["lib.py", "main.py", "notes.txt"]
    assert engine.metrics.commits_processed == 5
