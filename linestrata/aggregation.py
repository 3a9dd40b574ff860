"""
Counter index over line records and commit deltas.

All counts are kept in ``collections.Counter`` objects keyed by tuples, so
two stores built from disjoint partitions of the line records merge by plain
counter addition and the result does not depend on processing order.
"""

import json
import os
import time
from collections import Counter
from typing import Any, Dict, Iterable, List

from .errors import NotFound
from .models import (
    LINE_TYPES,
    UNKNOWN_LANGUAGE,
    Commit,
    CommitDelta,
    CommitInfo,
    LineRecord,
    empty_counts,
)


def _nest(counter: Counter, include_unknown: bool = True) -> Dict[str, Dict[str, int]]:
    """{(language, classification): n} -> {language: {code, comment, blank}}"""
    result: Dict[str, Dict[str, int]] = {}
    for (language, classification), count in sorted(counter.items()):
        if language == UNKNOWN_LANGUAGE and not include_unknown:
            continue
        result.setdefault(language, empty_counts())[classification] += count
    return result


class AggregationStore:
    """
    Layered counters keyed by (contributor, language, classification) and by
    (contributor, commit), plus per-commit metadata for timelines.

    Follows the dataset aggregator protocol: ``process_commit`` and
    ``process_line`` accumulate, ``finalize`` returns a JSON-ready snapshot,
    ``export`` writes it. Queries never mutate the store.

    Args:
        include_unknown: Keep the ``unknown`` language in per-language
            breakdowns (it always counts toward totals)
    """

    def __init__(self, include_unknown: bool = False):
        self.include_unknown = include_unknown
        self.contributor_lines: Counter = Counter()  # (key, language, classification)
        self.commit_lines: Counter = Counter()  # (commit_id, language, classification)
        self.contributor_commit_lines: Counter = Counter()  # (key, commit_id)
        self.file_lines: Counter = Counter()  # (path, key, classification)
        self.file_languages: Dict[str, str] = {}
        self.commits: Dict[str, CommitInfo] = {}
        self.display_names: Dict[str, str] = {}
        self.line_count = 0
        self.processing_time = 0.0

    # Accumulation ------------------------------------------------------

    def process_commit(
        self, commit: Commit, delta: CommitDelta, sequence: int, languages: Iterable[str] = ()
    ) -> None:
        """Record metadata and the historical line delta of one visited commit."""
        key = commit.contributor_key
        self.commits[commit.commit_id] = CommitInfo(
            commit_id=commit.commit_id,
            contributor_key=key,
            timestamp=commit.timestamp,
            sequence=sequence,
            delta=delta,
            is_merge=commit.is_merge,
            languages=tuple(sorted(set(languages))),
        )
        self.display_names.setdefault(key, commit.author_name or key)

    def process_line(self, record: LineRecord) -> None:
        classification = record.classification.value
        self.contributor_lines[(record.contributor_key, record.language, classification)] += 1
        self.commit_lines[(record.commit_id, record.language, classification)] += 1
        self.contributor_commit_lines[(record.contributor_key, record.commit_id)] += 1
        self.file_lines[(record.path, record.contributor_key, classification)] += 1
        self.file_languages[record.path] = record.language
        self.line_count += 1

    def process_lines(self, records: Iterable[LineRecord]) -> None:
        for record in records:
            self.process_line(record)

    def merge(self, other: "AggregationStore") -> "AggregationStore":
        """Add another partition's counts into this store."""
        self.contributor_lines.update(other.contributor_lines)
        self.commit_lines.update(other.commit_lines)
        self.contributor_commit_lines.update(other.contributor_commit_lines)
        self.file_lines.update(other.file_lines)
        self.file_languages.update(other.file_languages)
        self.commits.update(other.commits)
        for key, name in other.display_names.items():
            self.display_names.setdefault(key, name)
        self.line_count += other.line_count
        return self

    # Queries -----------------------------------------------------------

    def _require_contributor(self, key: str) -> None:
        if key not in self.display_names and not any(
            k == key for k, _, _ in self.contributor_lines
        ):
            raise NotFound(f"Unknown contributor: {key}")

    def contributor_keys(self) -> List[str]:
        keys = set(self.display_names)
        keys.update(k for k, _, _ in self.contributor_lines)
        return sorted(keys)

    def total_lines(self, key: str) -> int:
        return sum(n for (k, _, _), n in self.contributor_lines.items() if k == key)

    def list_contributors(self) -> List[Dict[str, Any]]:
        """Contributor summaries ordered by total lines descending, then key."""
        totals = Counter()
        for (key, _, _), count in self.contributor_lines.items():
            totals[key] += count
        summaries = [
            {
                "key": key,
                "display_name": self.display_names.get(key, key),
                "total_lines": totals[key],
            }
            for key in self.contributor_keys()
        ]
        summaries.sort(key=lambda s: (-s["total_lines"], s["key"]))
        return summaries

    def contributor_breakdown(self, key: str) -> Dict[str, Dict[str, int]]:
        self._require_contributor(key)
        counter = Counter(
            {(lang, cls): n for (k, lang, cls), n in self.contributor_lines.items() if k == key}
        )
        return _nest(counter, self.include_unknown)

    def contributor_commits(self, key: str) -> List[Dict[str, Any]]:
        """Commits authored by ``key``, oldest first, with their line deltas."""
        self._require_contributor(key)
        infos = [info for info in self.commits.values() if info.contributor_key == key]
        infos.sort(key=lambda info: (info.timestamp, info.sequence))
        return [
            {
                "commit_id": info.commit_id,
                "timestamp": info.timestamp,
                "lines_added_attributed": self.contributor_commit_lines[(key, info.commit_id)],
                "lines_added": info.delta.lines_added,
                "lines_deleted": info.delta.lines_deleted,
            }
            for info in infos
        ]

    def commit_breakdown(self, commit_id: str) -> Dict[str, Dict[str, int]]:
        """
        Final-snapshot lines still attributed to ``commit_id``, per language.

        Every language the commit touched is listed, with zero counts when
        none of its lines survive, so a merge that only combined its parents
        reports zeros rather than nothing.
        """
        if commit_id not in self.commits:
            raise NotFound(f"Unknown commit: {commit_id}")
        counter = Counter(
            {(lang, cls): n for (c, lang, cls), n in self.commit_lines.items() if c == commit_id}
        )
        result = {
            language: empty_counts()
            for language in self.commits[commit_id].languages
            if self.include_unknown or language != UNKNOWN_LANGUAGE
        }
        result.update(_nest(counter, self.include_unknown))
        return dict(sorted(result.items()))

    def repository_totals(self) -> Dict[str, Dict[str, int]]:
        counter = Counter()
        for (_, language, classification), count in self.contributor_lines.items():
            counter[(language, classification)] += count
        return _nest(counter, include_unknown=True)

    def contributor_stats(self) -> Dict[str, Dict[str, Any]]:
        """Complete per-contributor statistics, including ``unknown``."""
        stats = {}
        for key in self.contributor_keys():
            languages = Counter(
                {(lang, cls): n for (k, lang, cls), n in self.contributor_lines.items() if k == key}
            )
            commits = {
                commit_id: count
                for (k, commit_id), count in sorted(self.contributor_commit_lines.items())
                if k == key
            }
            stats[key] = {
                "display_name": self.display_names.get(key, key),
                "total_lines": sum(languages.values()),
                "languages": _nest(languages),
                "commits": commits,
            }
        return stats

    def file_breakdown(self, path: str) -> Dict[str, Any]:
        """Final contributions of one file."""
        if path not in self.file_languages:
            raise NotFound(f"Unknown path: {path}")
        contributors: Dict[str, Dict[str, int]] = {}
        for (p, key, classification), count in sorted(self.file_lines.items()):
            if p != path:
                continue
            entry = contributors.setdefault(key, dict(empty_counts(), lines=0))
            entry[classification] += count
            entry["lines"] += count
        return {"language": self.file_languages[path], "contributors": contributors}

    def contributor_files(self, key: str) -> List[str]:
        self._require_contributor(key)
        return sorted({p for (p, k, _), n in self.file_lines.items() if k == key and n})

    def files(self) -> List[str]:
        return sorted(self.file_languages)

    def diff_stats(self) -> Dict[str, Dict[str, int]]:
        """Insertions and deletions per contributor over the whole history."""
        stats = {key: {"insertions": 0, "deletions": 0} for key in self.contributor_keys()}
        for info in self.commits.values():
            entry = stats.setdefault(info.contributor_key, {"insertions": 0, "deletions": 0})
            entry["insertions"] += info.delta.lines_added
            entry["deletions"] += info.delta.lines_deleted
        return stats

    # Dataset protocol --------------------------------------------------

    def finalize(self) -> Dict[str, Any]:
        return {
            "total_lines": self.line_count,
            "total_commits": len(self.commits),
            "include_unknown": self.include_unknown,
            "line_types": [t.value for t in LINE_TYPES],
            "contributors": self.contributor_stats(),
            "repository_totals": self.repository_totals(),
        }

    def export(self, output_path: str) -> int:
        """Export aggregated data to JSON"""
        start = time.time()
        data = self.finalize()
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        self.processing_time = time.time() - start
        return len(json.dumps(data))


def merge_stores(stores: Iterable[AggregationStore], include_unknown: bool = False) -> AggregationStore:
    merged = AggregationStore(include_unknown=include_unknown)
    for store in stores:
        merged.merge(store)
    return merged
