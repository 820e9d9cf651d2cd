from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Canonical severity levels, most severe first. Index doubles as sort rank.
SEVERITIES = ("critical", "high", "medium", "low")

# Label used when a record carries no severity or category.
UNKNOWN = "unknown"


class SourceKind(str, Enum):
    status = "status"
    threats = "threats"
    metrics = "metrics"
    network = "network"
    alerts = "alerts"
    logs = "logs"
    analytics = "analytics"


class FetchErrorKind(str, Enum):
    timeout = "timeout"
    unreachable = "unreachable"
    bad_response = "bad_response"
    unauthorized = "unauthorized"


class SlotState(str, Enum):
    unpopulated = "unpopulated"
    stale = "stale"
    fresh = "fresh"


class TimeRange(int, Enum):
    """Query window presets offered by the dashboard, in seconds."""

    hour = 3600
    six_hours = 21600
    day = 86400
    week = 604800


# ---------------------------------------------------------------------------
# Telemetry samples
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadAverage:
    one: Optional[float] = None
    five: Optional[float] = None
    fifteen: Optional[float] = None


@dataclass(frozen=True)
class CpuBreakdown:
    user: Optional[float] = None
    system: Optional[float] = None
    nice: Optional[float] = None
    io: Optional[float] = None
    softirq: Optional[float] = None
    iowait: Optional[float] = None


@dataclass(frozen=True)
class MetricSample:
    timestamp: datetime
    cpu_percent: Optional[float] = None
    memory_percent: Optional[float] = None
    load: LoadAverage = field(default_factory=LoadAverage)
    swap_percent: Optional[float] = None
    disk_percent: Optional[float] = None
    process_count: Optional[int] = None
    memory_used_mb: Optional[float] = None
    memory_total_mb: Optional[float] = None
    cpu_breakdown: CpuBreakdown = field(default_factory=CpuBreakdown)


@dataclass(frozen=True)
class NetworkSample:
    timestamp: datetime
    incoming_mbps: Optional[float] = None
    outgoing_kbps: Optional[float] = None
    total_incoming_gb: Optional[float] = None
    total_outgoing_mb: Optional[float] = None
    packet_loss_mb: Optional[float] = None


@dataclass(frozen=True)
class LogRecord:
    timestamp: datetime
    source: str
    content: str
    severity: Optional[str] = None
    category: Optional[str] = None  # wire key: "type"
    # Extra raw keys (process_name, cpu_percent, ...) kept verbatim.
    attributes: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ProcessUsage:
    name: str
    cpu_percent: Optional[float] = None
    memory_percent: Optional[float] = None


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatusInfo:
    status: str
    uptime: Optional[float] = None
    last_update: Optional[datetime] = None


@dataclass(frozen=True)
class AlertSummary:
    total_alerts: int
    by_type: Mapping[str, int] = field(default_factory=dict)
    by_severity: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ThreatCount:
    type: str
    count: int


@dataclass(frozen=True)
class ThreatSummary:
    total_alerts: int
    alerts_last_hour: int = 0
    alerts_last_day: int = 0
    severity_counts: Mapping[str, int] = field(default_factory=dict)
    top_threats: tuple[ThreatCount, ...] = ()  # descending by count


@dataclass(frozen=True)
class TimeSeries:
    timestamps: tuple[datetime, ...] = ()
    cpu: tuple[Optional[float], ...] = ()
    memory: tuple[Optional[float], ...] = ()


@dataclass(frozen=True)
class ProtocolShare:
    name: str
    value: float


@dataclass(frozen=True)
class PortCount:
    port: int
    count: int


@dataclass(frozen=True)
class AnalyticsBundle:
    time_series: TimeSeries = field(default_factory=TimeSeries)
    protocols: tuple[ProtocolShare, ...] = ()
    top_ports: tuple[PortCount, ...] = ()
    alerts_count: int = 0
    network_packets_count: int = 0
    total_log_entries: int = 0


# ---------------------------------------------------------------------------
# Fetch results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FetchError:
    kind: FetchErrorKind
    detail: str
    source: Optional[SourceKind] = None


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one Source Client call: exactly one of payload / error is meaningful."""

    kind: SourceKind
    payload: Any = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, kind: SourceKind, payload: Any) -> FetchOutcome:
        return cls(kind=kind, payload=payload)

    @classmethod
    def failure(cls, kind: SourceKind, error_kind: FetchErrorKind, detail: str) -> FetchOutcome:
        return cls(kind=kind, error=FetchError(kind=error_kind, detail=detail, source=kind))


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Slot:
    payload: Any = None
    fetched_at: Optional[datetime] = None
    last_error: Optional[FetchError] = None
    consecutive_failures: int = 0

    @property
    def populated(self) -> bool:
        return self.fetched_at is not None

    @property
    def state(self) -> SlotState:
        if not self.populated:
            return SlotState.unpopulated
        if self.last_error is not None:
            return SlotState.stale
        return SlotState.fresh

    def succeeded(self, payload: Any, at: datetime) -> Slot:
        return Slot(payload=payload, fetched_at=at)

    def failed(self, error: FetchError) -> Slot:
        # payload and fetched_at are deliberately carried over
        return replace(self, last_error=error, consecutive_failures=self.consecutive_failures + 1)


@dataclass(frozen=True)
class Snapshot:
    slots: Mapping[SourceKind, Slot] = field(default_factory=lambda: MappingProxyType({}))
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.slots, MappingProxyType):
            object.__setattr__(self, "slots", MappingProxyType(dict(self.slots)))

    def slot(self, kind: SourceKind) -> Slot:
        """Return the slot for kind; a kind never fetched reads as unpopulated."""
        return self.slots.get(kind, Slot())

    def payload(self, kind: SourceKind, default: Any = None) -> Any:
        slot = self.slot(kind)
        return slot.payload if slot.populated else default
