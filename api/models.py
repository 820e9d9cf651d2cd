"""
API request and response models for TeleGuard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two,
using core.formatter.to_data() for the nested payloads.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.formatter import slot_to_dict
from core.models import Slot, SourceKind

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SeverityEnum(str, Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class SortFieldEnum(str, Enum):
    timestamp = "timestamp"
    source = "source"
    severity = "severity"


class OrderEnum(str, Enum):
    asc = "asc"
    desc = "desc"


class TimeRangeEnum(str, Enum):
    hour = "hour"
    six_hours = "six_hours"
    day = "day"
    week = "week"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class WindowRequest(BaseModel):
    """Request body for PUT /api/v1/contexts/{name}/window."""

    model_config = ConfigDict(str_strip_whitespace=True)

    range: TimeRangeEnum


# ---------------------------------------------------------------------------
# Shared response models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class SlotResponse(BaseModel):
    """One snapshot slot. payload is null while the slot is unpopulated.

    state distinguishes "unpopulated" (never fetched) from "stale" (last fetch
    failed, payload is from an earlier success) and "fresh".
    """

    model_config = ConfigDict(frozen=True)

    state: str
    fetched_at: Optional[datetime]
    last_error: Optional[dict[str, Any]]
    consecutive_failures: int
    payload: Any = None

    @classmethod
    def from_slot(cls, slot: Slot) -> "SlotResponse":
        """Factory Method: mapping lives beside the output model, not in handlers."""
        return cls(**slot_to_dict(slot))


# ---------------------------------------------------------------------------
# Context / view responses
# ---------------------------------------------------------------------------


class ContextResponse(BaseModel):
    """Scheduler state for one view context plus per-source slot metadata."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: str
    interval_seconds: Optional[float]
    window_seconds: Optional[int]
    skipped_ticks: int
    completed_cycles: int
    snapshot_version: int
    updated_at: Optional[datetime]
    sources: dict[str, SlotResponse]


class OverviewResponse(BaseModel):
    """Response for GET /api/v1/overview."""

    model_config = ConfigDict(frozen=True)

    updated_at: Optional[datetime]
    sources: dict[str, SlotResponse]
    latest_metrics: Optional[dict[str, Any]]
    latest_network: Optional[dict[str, Any]]
    top_processes_by_memory: list[dict[str, Any]]
    top_processes_by_cpu: list[dict[str, Any]]


class LogsResponse(BaseModel):
    """Response for GET /api/v1/logs."""

    model_config = ConfigDict(frozen=True)

    updated_at: Optional[datetime]
    logs_state: str
    total: int
    returned: int
    logs: list[dict[str, Any]]
    severity_counts: dict[str, int]
    category_counts: dict[str, int]
    severity_distribution: dict[str, float]
    alerts: SlotResponse
    threats: SlotResponse


class AnalyticsResponse(BaseModel):
    """Response for GET /api/v1/analytics."""

    model_config = ConfigDict(frozen=True)

    updated_at: Optional[datetime]
    sources: dict[str, SlotResponse]
    performance: list[dict[str, Any]]
    alert_types: list[dict[str, Any]]
    alert_severities: list[dict[str, Any]]


def sources_dict(slots: dict[SourceKind, Slot], kinds) -> dict[str, SlotResponse]:
    """Build the {kind: SlotResponse} map for the given kinds, unpopulated if absent."""
    return {kind.value: SlotResponse.from_slot(slots.get(kind, Slot())) for kind in kinds}
