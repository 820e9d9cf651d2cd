"""
core/pipeline.py -- Pure query pipeline over an already-fetched Snapshot.

No side effects. No caching. Every view is recomputed from the raw batches
on each request; dataset sizes are bounded by the query window. Designed to
be called by both the CLI (via main.py) and the REST API (via api/routes/v1/).
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence

from core.models import (
    SEVERITIES,
    UNKNOWN,
    AlertSummary,
    AnalyticsBundle,
    LogRecord,
    MetricSample,
    NetworkSample,
    ProcessUsage,
)

# Fixed severity order; anything not listed ranks as unknown.
SEVERITY_RANK = {name: rank for rank, name in enumerate(SEVERITIES)}
UNKNOWN_RANK = len(SEVERITIES)


class SortField(str, Enum):
    timestamp = "timestamp"
    source = "source"
    severity = "severity"


@dataclass(frozen=True)
class LogQuery:
    text: str = ""
    severity: Optional[str] = None
    sort_field: SortField = SortField.timestamp
    descending: bool = True


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def matches_text(record: LogRecord, text: str) -> bool:
    """Case-insensitive substring match against source, content or category."""
    needle = text.lower()
    return (
        needle in record.source.lower()
        or needle in record.content.lower()
        or (record.category is not None and needle in record.category.lower())
    )


def filter_logs(logs: Iterable[LogRecord], text: str = "", severity: Optional[str] = None) -> list[LogRecord]:
    result = list(logs)
    if text:
        result = [r for r in result if matches_text(r, text)]
    if severity:
        result = [r for r in result if r.severity == severity]
    return result


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def severity_rank(severity: Optional[str]) -> int:
    return SEVERITY_RANK.get(severity, UNKNOWN_RANK) if severity else UNKNOWN_RANK


def sort_logs(logs: Iterable[LogRecord], field: SortField = SortField.timestamp, descending: bool = True) -> list[LogRecord]:
    """Stable sort. For severity, unranked records stay last in either direction."""
    logs = list(logs)
    if field is SortField.timestamp:
        return sorted(logs, key=lambda r: r.timestamp, reverse=descending)
    if field is SortField.source:
        return sorted(logs, key=lambda r: r.source.casefold(), reverse=descending)
    ranked = [r for r in logs if severity_rank(r.severity) < UNKNOWN_RANK]
    unranked = [r for r in logs if severity_rank(r.severity) == UNKNOWN_RANK]
    return sorted(ranked, key=lambda r: severity_rank(r.severity), reverse=descending) + unranked


def view(logs: Iterable[LogRecord], query: LogQuery = LogQuery()) -> list[LogRecord]:
    """Filter (text AND severity) then sort. Returns a new list; input untouched."""
    filtered = filter_logs(logs, query.text, query.severity)
    return sort_logs(filtered, query.sort_field, query.descending)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def count_by_severity(logs: Iterable[LogRecord]) -> dict[str, int]:
    return dict(Counter(r.severity or UNKNOWN for r in logs))


def count_by_category(logs: Iterable[LogRecord]) -> dict[str, int]:
    return dict(Counter(r.category or UNKNOWN for r in logs))


def severity_distribution(logs: Sequence[LogRecord]) -> dict[str, float]:
    """Percentage of records per severity, in fixed severity order. Empty input -> {}."""
    if not logs:
        return {}
    counts = count_by_severity(logs)
    order = list(SEVERITIES) + sorted(k for k in counts if k not in SEVERITY_RANK)
    return {name: counts[name] * 100.0 / len(logs) for name in order if name in counts}


# ---------------------------------------------------------------------------
# Dashboard derivations
# ---------------------------------------------------------------------------


def latest_metrics(samples: Sequence[MetricSample]) -> Optional[MetricSample]:
    return samples[-1] if samples else None


def latest_network(samples: Sequence[NetworkSample]) -> Optional[NetworkSample]:
    return samples[-1] if samples else None


def _opt_float(value) -> Optional[float]:
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


def top_processes(logs: Iterable[LogRecord], by: str = "memory", limit: int = 7) -> list[ProcessUsage]:
    """Process rows from logs of category "process", ranked by cpu or memory.

    Takes the first `limit` process records in delivered order, then ranks
    them descending. Missing usage values stay None and rank last.
    """
    if by not in ("memory", "cpu"):
        raise ValueError(f"by must be 'memory' or 'cpu', got {by!r}")
    rows = [
        ProcessUsage(
            name=str(r.attributes.get("process_name") or UNKNOWN),
            cpu_percent=_opt_float(r.attributes.get("cpu_percent")),
            memory_percent=_opt_float(r.attributes.get("memory_percent")),
        )
        for r in logs
        if r.category == "process"
    ][:limit]
    attr = "memory_percent" if by == "memory" else "cpu_percent"
    present = [p for p in rows if getattr(p, attr) is not None]
    missing = [p for p in rows if getattr(p, attr) is None]
    return sorted(present, key=lambda p: getattr(p, attr), reverse=True) + missing


def performance_series(analytics: Optional[AnalyticsBundle]) -> list[dict]:
    """Zip the analytics time series into rows of {timestamp, cpu, memory}."""
    if analytics is None:
        return []
    series = analytics.time_series
    return [
        {"timestamp": ts, "cpu": cpu, "memory": memory}
        for ts, cpu, memory in zip(series.timestamps, series.cpu, series.memory)
    ]


def alert_breakdown(summary: Optional[AlertSummary], by: str = "type") -> list[dict]:
    """Chart rows of {name, count} from the alert summary.

    By type, rows rank by descending count. By severity, they follow the fixed
    severity order with unlisted severities last. No summary -> [].
    """
    if by not in ("type", "severity"):
        raise ValueError(f"by must be 'type' or 'severity', got {by!r}")
    if summary is None:
        return []
    if by == "type":
        ordered = sorted(summary.by_type.items(), key=lambda item: (-item[1], item[0]))
    else:
        ordered = sorted(summary.by_severity.items(), key=lambda item: (severity_rank(item[0]), item[0]))
    return [{"name": name, "count": count} for name, count in ordered]
