import hashlib
import json
import os

import pytest

from conftest import BASE_TS
from linestrata.export import (
    DATASETS,
    SCHEMA_VERSION,
    AttributionReportGenerator,
    TemporalLabeler,
    build_datasets,
    diff_stats_table,
    export_datasets,
    export_line_records,
    files_table,
    final_contributions_table,
    generate_manifest,
)


@pytest.fixture
def ready_engine(two_author_store, make_engine, commit):
    """Two-author history plus a commit that only adds a binary file."""
    store, _, c2 = two_author_store
    x_py = store.read_tree(store.read_commit(c2).tree_id)["x.py"]
    commit({"x.py": store.read_blob(x_py), "logo.png": b"\x00\x01"}, parents=[c2], ts=200)
    return make_engine(store).analyze()


def test_temporal_labels():
    labels = TemporalLabeler.get_temporal_labels(BASE_TS)
    assert labels == {
        "datetime": "2023-11-14T22:13:20+00:00",
        "year": 2023,
        "quarter": 4,
        "month": 11,
        "week_no": 46,
        "day_of_week": 1,
        "day_of_year": 318,
    }


def test_build_datasets(ready_engine):
    datasets = build_datasets(ready_engine)
    assert set(datasets) == set(DATASETS)
    assert all(d["schema_version"] == SCHEMA_VERSION for d in datasets.values())

    contributors = datasets["contributors"]["contributors"]
    assert [c["key"] for c in contributors] == ["alice@example.com", "bob@example.com"]
    assert contributors[0]["files"] == 1
    assert contributors[1]["breakdown"] == {"python": {"code": 0, "comment": 2, "blank": 0}}

    timeline = datasets["contributor_commits"]["timelines"]["bob@example.com"]
    assert timeline[0]["temporal"]["year"] == 2023

    commits = datasets["commit_breakdown"]["commits"]
    assert datasets["commit_breakdown"]["total_commits"] == 3
    assert [c["lines_added"] for c in commits.values()] == [10, 2, 0]

    assert datasets["repository_totals"]["total_lines"] == 12
    assert datasets["diagnostics"]["skipped_files"][0]["path"] == "logo.png"


def test_export_and_manifest(ready_engine, tmp_path):
    output = str(tmp_path / "out")
    written = export_datasets(ready_engine, output)
    assert written == DATASETS

    with open(os.path.join(output, "contributors.json"), encoding="utf-8") as f:
        assert json.load(f)["total_contributors"] == 2

    manifest = generate_manifest(output, ready_engine, written, "/repo")
    with open(os.path.join(output, "contributors.json"), "rb") as f:
        digest = hashlib.sha256(f.read()).hexdigest()
    assert manifest["datasets"]["contributors"]["sha256"] == digest
    assert manifest["performance_metrics"]["commits_processed"] == 3
    assert os.path.exists(os.path.join(output, "manifest.json"))


def test_export_line_records(ready_engine, tmp_path):
    pd = pytest.importorskip("pandas")
    path = tmp_path / "lines.csv"
    assert export_line_records(ready_engine, str(path)) == 12

    df = pd.read_csv(path)
    assert list(df.columns) == ["path", "line_index", "commit_id", "contributor_key", "language", "classification"]
    assert df["classification"].value_counts().to_dict() == {"code": 10, "comment": 2}


def test_report(ready_engine, tmp_path):
    written = export_datasets(ready_engine, str(tmp_path))
    report = AttributionReportGenerator(ready_engine, str(tmp_path), written, "/repo").generate()
    text = report.read_text(encoding="utf-8")

    assert "# Line Attribution Report" in text
    assert "| Alice Smith (`alice@example.com`) | 10 | 10 | 0 | 0 |" in text
    assert "`binary_file` logo.png" in text
    assert "`contributors.json`" in text


def test_report_rows_add_up_with_unknown_languages(store, commit, make_engine, tmp_path):
    commit({"x.py": "a = 1\n", "README": "hello\nworld\n"})
    engine = make_engine(store).analyze()
    assert "unknown" not in engine.contributor_breakdown("alice@example.com")

    report = AttributionReportGenerator(engine, str(tmp_path), {}, "/repo").generate()
    text = report.read_text(encoding="utf-8")
    assert "| Alice Smith (`alice@example.com`) | 3 | 3 | 0 | 0 |" in text


def test_text_tables(ready_engine):
    final = final_contributions_table(ready_engine)
    assert "Alice Smith's contributions" in final
    assert "python" in final

    diff = diff_stats_table(ready_engine)
    assert diff.index("alice@example.com") < diff.index("bob@example.com")

    files = files_table(ready_engine, key="bob@example.com")
    assert "bob@example.com (1 files)" in files
    assert "x.py" in files
