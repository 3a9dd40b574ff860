"""
Dataset export, manifest, Markdown report and text tables.

Every dataset is a JSON file written from the engine's query API, so the
exported files contain exactly what a presentation layer would read.
"""

import hashlib
import json
import os
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .engine import AttributionEngine
from .models import LINE_TYPES

SCHEMA_VERSION = "1.0.0"

DATASETS = {
    "contributors": "contributors.json",
    "contributor_commits": "contributor_commits.json",
    "commit_breakdown": "commit_breakdown.json",
    "repository_totals": "repository_totals.json",
    "diagnostics": "diagnostics.json",
}

LINE_RECORDS_FILE = "line_records.csv"


# ============================================================================
# TEMPORAL LABELS
# ============================================================================


class TemporalLabeler:
    """
    Generate structured temporal labels from commit timestamps.
    Uses ISO 8601 week numbering (Monday start, weeks can span years).
    """

    @staticmethod
    @lru_cache(maxsize=10000)
    def get_temporal_labels(timestamp: int) -> Dict[str, Any]:
        """
        Extract temporal labels from a Unix timestamp (UTC).

        Returns:
            Dict with datetime, year, quarter, month, week_no, day_of_week, day_of_year
        """
        dt = datetime.fromtimestamp(timestamp, timezone.utc)
        _, iso_week, iso_weekday = dt.isocalendar()

        return {
            "datetime": dt.isoformat(),
            "year": dt.year,
            "quarter": ((dt.month - 1) // 3) + 1,
            "month": dt.month,
            "week_no": iso_week,
            "day_of_week": iso_weekday - 1,  # 0=Monday, 6=Sunday
            "day_of_year": dt.timetuple().tm_yday,
        }


# ============================================================================
# DATASETS
# ============================================================================


def _write_json(path: str, data: Any) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=False)


def build_datasets(engine: AttributionEngine) -> Dict[str, Any]:
    """Collect every dataset from a Ready engine."""
    contributors = []
    timelines = {}
    for summary in engine.list_contributors():
        key = summary["key"]
        contributors.append(
            dict(
                summary,
                breakdown=engine.contributor_breakdown(key),
                files=len(engine.contributor_files(key)),
            )
        )
        timelines[key] = [
            dict(entry, temporal=TemporalLabeler.get_temporal_labels(entry["timestamp"]))
            for entry in engine.contributor_commits(key)
        ]

    commits = {}
    for info in sorted(engine.aggregation.commits.values(), key=lambda i: i.sequence):
        commits[info.commit_id] = {
            "contributor_key": info.contributor_key,
            "timestamp": info.timestamp,
            "is_merge": info.is_merge,
            "lines_added": info.delta.lines_added,
            "lines_deleted": info.delta.lines_deleted,
            "breakdown": engine.commit_breakdown(info.commit_id),
        }

    return {
        "contributors": {
            "schema_version": SCHEMA_VERSION,
            "total_contributors": len(contributors),
            "contributors": contributors,
            "diff_stats": engine.diff_stats(),
        },
        "contributor_commits": {
            "schema_version": SCHEMA_VERSION,
            "timelines": timelines,
        },
        "commit_breakdown": {
            "schema_version": SCHEMA_VERSION,
            "total_commits": len(commits),
            "commits": commits,
        },
        "repository_totals": {
            "schema_version": SCHEMA_VERSION,
            "heads": engine.heads,
            "total_lines": engine.aggregation.line_count,
            "languages": engine.repository_totals(),
        },
        "diagnostics": {
            "schema_version": SCHEMA_VERSION,
            "diagnostics": [d.to_dict() for d in engine.diagnostics],
            "skipped_files": [s.to_dict() for s in engine.skipped_files],
        },
    }


def export_datasets(engine: AttributionEngine, output_dir: str) -> Dict[str, str]:
    """
    Write all JSON datasets.

    Returns:
        {dataset name: file name relative to ``output_dir``}
    """
    written = {}
    for name, data in build_datasets(engine).items():
        _write_json(os.path.join(output_dir, DATASETS[name]), data)
        written[name] = DATASETS[name]
    return written


def export_line_records(engine: AttributionEngine, output_path: str) -> int:
    """
    Write every line record as CSV through pandas.

    Raises:
        ImportError: If pandas is not installed (``pip install line-strata[report]``)
    """
    import pandas as pd

    columns = ["path", "line_index", "commit_id", "contributor_key", "language", "classification"]
    df = pd.DataFrame([record.to_dict() for record in engine.line_records()], columns=columns)
    df.to_csv(output_path, index=False)
    return len(df)


# ============================================================================
# MANIFEST & REPORT
# ============================================================================


def generate_manifest(output_dir: str, engine: AttributionEngine, datasets: Dict[str, str], repo_path: str):
    """Generate manifest.json with dataset metadata"""
    manifest = {
        "generator_version": __version__,
        "schema_version": SCHEMA_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "repository": repo_path,
        "heads": engine.heads,
        "performance_metrics": engine.metrics.to_dict(),
        "datasets": {},
    }

    for dataset_name, file_path in datasets.items():
        full_path = os.path.join(output_dir, file_path)
        if os.path.exists(full_path):
            with open(full_path, "rb") as f:
                data = f.read()
            manifest["datasets"][dataset_name] = {
                "file": file_path,
                "schema_version": SCHEMA_VERSION,
                "file_size_bytes": len(data),
                "sha256": hashlib.sha256(data).hexdigest(),
            }

    _write_json(os.path.join(output_dir, "manifest.json"), manifest)
    return manifest


class AttributionReportGenerator:
    """Generates a Markdown report summarizing an analysis and its datasets."""

    def __init__(self, engine: AttributionEngine, output_dir: str, datasets: Dict[str, str], repo_path: str):
        self.engine = engine
        self.output_dir = Path(output_dir)
        self.datasets = datasets
        self.repo_path = repo_path
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def generate(self, output_filename: str = "attribution_report.md") -> Path:
        engine = self.engine
        metrics = engine.metrics
        report_path = self.output_dir / output_filename

        lines = [
            "# Line Attribution Report",
            "",
            f"**Generated:** {self.timestamp}",
            f"**Repository:** `{self.repo_path}`",
            f"**Generator Version:** {__version__}",
            f"**Schema Version:** {SCHEMA_VERSION}",
            "",
            "---",
            "",
            "## 📊 Analysis Overview",
            "",
            f"- **Commits Walked:** {metrics.commits_processed:,}",
            f"- **Files Classified:** {metrics.files_classified:,}",
            f"- **Lines Attributed:** {metrics.lines_attributed:,}",
            f"- **Skipped Files:** {len(engine.skipped_files):,}",
            f"- **Execution Time:** {metrics.total_time:.2f}s",
            f"- **Peak Memory:** {metrics.memory_peak_mb:.1f} MB",
            "",
            "## 👥 Contributors",
            "",
            "| Contributor | Lines | Code | Comment | Blank |",
            "|---|---:|---:|---:|---:|",
        ]

        # Include unknown languages so the columns add up to the line total
        stats = engine.contributor_stats()
        for summary in engine.list_contributors():
            totals = {t.value: 0 for t in LINE_TYPES}
            for counts in stats[summary["key"]]["languages"].values():
                for line_type, count in counts.items():
                    totals[line_type] += count
            lines.append(
                f"| {summary['display_name']} (`{summary['key']}`) | {summary['total_lines']:,} "
                f"| {totals['code']:,} | {totals['comment']:,} | {totals['blank']:,} |"
            )

        lines.extend(["", "## 🗂 Languages", "", "| Language | Code | Comment | Blank |", "|---|---:|---:|---:|"])
        for language, counts in engine.repository_totals().items():
            lines.append(f"| {language} | {counts['code']:,} | {counts['comment']:,} | {counts['blank']:,} |")

        diagnostics = engine.diagnostics
        if diagnostics:
            lines.extend(["", "## ⚠️ Diagnostics", ""])
            for diagnostic in diagnostics[:50]:
                where = diagnostic.path or diagnostic.commit_id or ""
                lines.append(f"- `{diagnostic.kind}` {where}: {diagnostic.reason}")
            if len(diagnostics) > 50:
                lines.append(f"- ... {len(diagnostics) - 50:,} more in `diagnostics.json`")

        lines.extend(["", "---", "", "## 📂 Dataset Files", ""])
        for name, rel_path in sorted(self.datasets.items()):
            full_path = self.output_dir / rel_path
            if not full_path.exists():
                continue
            lines.append(f"- `{rel_path}` ({full_path.stat().st_size:,} bytes)")
        lines.append("")

        with open(report_path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))

        return report_path


# ============================================================================
# TEXT TABLES
# ============================================================================


def _truncate(name: str, width: int) -> str:
    return name if len(name) <= width else name[: width - 3] + "..."


def final_contributions_table(engine: AttributionEngine, width: int = 72) -> str:
    """Per-contributor language tables of the final snapshot."""
    column = width // 6
    separator = "-" * width
    out: List[str] = []
    row = "{:>%d} {:>%d} {:>%d} {:>%d} {:>%d}" % ((column,) * 5)

    for summary in engine.list_contributors():
        breakdown = engine.contributor_breakdown(summary["key"])
        if not breakdown:
            continue
        out.append(f"{summary['display_name']}'s contributions".center(width))
        out.append(separator)
        out.append(row.format("Language", "Lines", "Code", "Comments", "Blanks"))
        out.append(separator)
        total = {"code": 0, "comment": 0, "blank": 0}
        ranked = sorted(breakdown.items(), key=lambda item: (-sum(item[1].values()), item[0]))
        for language, counts in ranked:
            for line_type in total:
                total[line_type] += counts[line_type]
            out.append(
                row.format(
                    _truncate(language, column),
                    sum(counts.values()),
                    counts["code"],
                    counts["comment"],
                    counts["blank"],
                )
            )
        out.append(separator)
        out.append(row.format("Total", sum(total.values()), total["code"], total["comment"], total["blank"]))
        out.append(separator)
        out.append("")
    return "\n".join(out)


def diff_stats_table(engine: AttributionEngine, width: int = 60) -> str:
    """Insertions and deletions per contributor over the whole history."""
    column = width // 5
    author_width = 2 * column
    separator = "-" * width
    row = "{:^%d} {:>%d} {:>%d}" % (author_width, column, column)
    out = [separator, row.format("Contributor", "Insertions", "Deletions"), separator]
    stats = engine.diff_stats()
    ranked = sorted(stats.items(), key=lambda item: (-item[1]["insertions"], item[0]))
    for key, entry in ranked:
        out.append(row.format(_truncate(key, author_width), entry["insertions"], entry["deletions"]))
    out.append(separator)
    return "\n".join(out)


def files_table(engine: AttributionEngine, width: int = 72, key: Optional[str] = None) -> str:
    """Files each contributor still owns lines in."""
    separator = "-" * width
    out: List[str] = []
    keys = [key] if key else [s["key"] for s in engine.list_contributors()]
    for contributor in keys:
        paths = engine.contributor_files(contributor)
        if not paths:
            continue
        out.append(f"{contributor} ({len(paths)} files)".center(width))
        out.append(separator)
        out.extend(_truncate(path, width) for path in paths)
        out.append("")
    return "\n".join(out)


TABLES = {
    "final": final_contributions_table,
    "diff": diff_stats_table,
    "files": files_table,
}
