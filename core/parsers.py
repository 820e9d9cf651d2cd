"""
parsers.py -- Raw JSON to domain objects, one parser per source kind.

This is the normalization boundary. Missing numeric fields become None here
and nowhere else; renderers never substitute display defaults. Every parser
raises KeyError / TypeError / ValueError on schema mismatch, numbers out of
range included, so the Source Client can map the failure to a bad_response
FetchError.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .models import (
    AlertSummary,
    AnalyticsBundle,
    CpuBreakdown,
    LoadAverage,
    LogRecord,
    MetricSample,
    NetworkSample,
    PortCount,
    ProtocolShare,
    SourceKind,
    StatusInfo,
    ThreatCount,
    ThreatSummary,
    TimeSeries,
)

# Keys consumed into LogRecord fields; everything else lands in attributes.
_LOG_FIELDS = {"timestamp", "source", "content", "severity", "type"}


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch seconds into an aware UTC datetime."""
    if isinstance(value, bool):
        raise TypeError("timestamp must be a string or a number")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"epoch timestamp out of range: {value!r}") from e
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string or a number, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _opt_float(raw: dict, *keys: str) -> Optional[float]:
    """Return the first present key as float, or None when all are absent/null."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return float(value)
    return None


def _opt_int(raw: dict, *keys: str) -> Optional[int]:
    value = _opt_float(raw, *keys)
    if value is None:
        return None
    try:
        return int(value)
    except OverflowError as e:
        raise ValueError(f"integer field out of range: {value!r}") from e


def _opt_str(raw: dict, key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _require_list(raw: Any) -> list:
    if not isinstance(raw, list):
        raise TypeError(f"expected a JSON array, got {type(raw).__name__}")
    return raw


def _require_dict(raw: Any) -> dict:
    if not isinstance(raw, dict):
        raise TypeError(f"expected a JSON object, got {type(raw).__name__}")
    return raw


def _counts(raw: Any) -> dict[str, int]:
    if raw is None:
        return {}
    return {str(k): int(v) for k, v in _require_dict(raw).items()}


def _ordered_by_timestamp(samples: list) -> tuple:
    """Sort a batch ascending and drop duplicate timestamps, keeping the last seen."""
    by_ts = {}
    for sample in samples:
        by_ts[sample.timestamp] = sample
    return tuple(by_ts[ts] for ts in sorted(by_ts))


# ---------------------------------------------------------------------------
# Per-kind parsers
# ---------------------------------------------------------------------------


def parse_status(raw: Any) -> StatusInfo:
    raw = _require_dict(raw)
    last_update = raw.get("last_update")
    return StatusInfo(
        status=str(raw["status"]),
        uptime=_opt_float(raw, "uptime"),
        last_update=parse_timestamp(last_update) if last_update else None,
    )


def parse_metric(raw: dict) -> MetricSample:
    raw = _require_dict(raw)
    return MetricSample(
        timestamp=parse_timestamp(raw["timestamp"]),
        cpu_percent=_opt_float(raw, "cpu_percent"),
        memory_percent=_opt_float(raw, "memory_percent"),
        load=LoadAverage(
            one=_opt_float(raw, "load_1m", "load"),
            five=_opt_float(raw, "load_5m"),
            fifteen=_opt_float(raw, "load_15m"),
        ),
        swap_percent=_opt_float(raw, "swap_percent"),
        disk_percent=_opt_float(raw, "disk_percent"),
        process_count=_opt_int(raw, "process_count", "processes"),
        memory_used_mb=_opt_float(raw, "memory_used_mb", "memory_used"),
        memory_total_mb=_opt_float(raw, "memory_total_mb", "memory_total"),
        cpu_breakdown=CpuBreakdown(
            user=_opt_float(raw, "cpu_user"),
            system=_opt_float(raw, "cpu_system"),
            nice=_opt_float(raw, "cpu_nice"),
            io=_opt_float(raw, "cpu_io"),
            softirq=_opt_float(raw, "cpu_softirq"),
            iowait=_opt_float(raw, "cpu_iowait"),
        ),
    )


def parse_metrics(raw: Any) -> tuple[MetricSample, ...]:
    return _ordered_by_timestamp([parse_metric(item) for item in _require_list(raw)])


def parse_network_sample(raw: dict) -> NetworkSample:
    raw = _require_dict(raw)
    return NetworkSample(
        timestamp=parse_timestamp(raw["timestamp"]),
        incoming_mbps=_opt_float(raw, "incoming_mbps"),
        outgoing_kbps=_opt_float(raw, "outgoing_kbps"),
        total_incoming_gb=_opt_float(raw, "total_incoming_gb"),
        total_outgoing_mb=_opt_float(raw, "total_outgoing_mb"),
        packet_loss_mb=_opt_float(raw, "packet_loss_mb"),
    )


def parse_network(raw: Any) -> tuple[NetworkSample, ...]:
    return _ordered_by_timestamp([parse_network_sample(item) for item in _require_list(raw)])


def parse_log(raw: dict) -> LogRecord:
    """Build an unclassified LogRecord. Severity/category stay None when absent."""
    raw = _require_dict(raw)
    severity = _opt_str(raw, "severity")
    return LogRecord(
        timestamp=parse_timestamp(raw["timestamp"]),
        source=str(raw["source"]),
        content=str(raw.get("content") or ""),
        severity=severity.lower() if severity else None,
        category=_opt_str(raw, "type"),
        attributes={k: v for k, v in raw.items() if k not in _LOG_FIELDS},
    )


def parse_logs(raw: Any) -> tuple[LogRecord, ...]:
    # Log batches keep their delivered order; duplicates are legitimate here.
    return tuple(parse_log(item) for item in _require_list(raw))


def parse_alert_summary(raw: Any) -> AlertSummary:
    raw = _require_dict(raw)
    return AlertSummary(
        total_alerts=int(raw["total_alerts"]),
        by_type=_counts(raw.get("by_type")),
        by_severity=_counts(raw.get("by_severity")),
    )


def parse_threat_summary(raw: Any) -> ThreatSummary:
    raw = _require_dict(raw)
    threats = [ThreatCount(type=str(t["type"]), count=int(t["count"])) for t in _require_list(raw.get("top_threats") or [])]
    return ThreatSummary(
        total_alerts=int(raw["total_alerts"]),
        alerts_last_hour=int(raw.get("alerts_last_hour") or 0),
        alerts_last_day=int(raw.get("alerts_last_day") or 0),
        severity_counts=_counts(raw.get("severity_counts")),
        top_threats=tuple(sorted(threats, key=lambda t: t.count, reverse=True)),
    )


def parse_analytics(raw: Any) -> AnalyticsBundle:
    raw = _require_dict(raw)
    series = _require_dict(raw.get("time_series") or {})
    network = _require_dict(raw.get("network") or {})
    timestamps = tuple(parse_timestamp(ts) for ts in _require_list(series.get("timestamps") or []))
    cpu = tuple(None if v is None else float(v) for v in _require_list(series.get("cpu") or []))
    memory = tuple(None if v is None else float(v) for v in _require_list(series.get("memory") or []))
    if not len(timestamps) == len(cpu) == len(memory):
        raise ValueError(
            f"time_series arrays differ in length: timestamps={len(timestamps)} cpu={len(cpu)} memory={len(memory)}"
        )
    return AnalyticsBundle(
        time_series=TimeSeries(timestamps=timestamps, cpu=cpu, memory=memory),
        protocols=tuple(
            ProtocolShare(name=str(p["name"]), value=float(p["value"]))
            for p in _require_list(network.get("protocols") or [])
        ),
        top_ports=tuple(
            PortCount(port=int(p["port"]), count=int(p["count"])) for p in _require_list(network.get("top_ports") or [])
        ),
        alerts_count=int(raw.get("alerts_count") or 0),
        network_packets_count=int(raw.get("network_packets_count") or 0),
        total_log_entries=int(raw.get("total_log_entries") or 0),
    )


PARSERS: dict[SourceKind, Callable[[Any], Any]] = {
    SourceKind.status: parse_status,
    SourceKind.threats: parse_threat_summary,
    SourceKind.metrics: parse_metrics,
    SourceKind.network: parse_network,
    SourceKind.alerts: parse_alert_summary,
    SourceKind.logs: parse_logs,
    SourceKind.analytics: parse_analytics,
}
