"""
classifier.py -- Deterministic severity/category assignment for log records.

Rules only fill fields that are absent; a record that already carries a
severity or category keeps it. First matching rule wins.
"""

from dataclasses import replace
from typing import Iterable

from .models import LogRecord

# (keywords, severity) checked in order against the lower-cased content.
SEVERITY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("critical",), "critical"),
    (("alert", "warning"), "high"),
    (("notice",), "medium"),
)
DEFAULT_SEVERITY = "low"

# (substrings, category) checked in order against the lower-cased source.
CATEGORY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("ids", "snort"), "intrusion"),
    (("auth",), "authentication"),
    (("fw", "firewall"), "firewall"),
)
DEFAULT_CATEGORY = "system"


def _first_match(text: str, rules: tuple[tuple[tuple[str, ...], str], ...], default: str) -> str:
    text = text.lower()
    for needles, label in rules:
        if any(needle in text for needle in needles):
            return label
    return default


def classify_severity(content: str) -> str:
    return _first_match(content, SEVERITY_RULES, DEFAULT_SEVERITY)


def classify_category(source: str) -> str:
    return _first_match(source, CATEGORY_RULES, DEFAULT_CATEGORY)


def classify(record: LogRecord) -> LogRecord:
    """Return record with missing severity/category filled in. Never mutates the input."""
    if record.severity and record.category:
        return record
    return replace(
        record,
        severity=record.severity or classify_severity(record.content),
        category=record.category or classify_category(record.source),
    )


def classify_all(records: Iterable[LogRecord]) -> tuple[LogRecord, ...]:
    return tuple(classify(r) for r in records)
