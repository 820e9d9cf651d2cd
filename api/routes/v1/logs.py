"""
api/routes/v1/logs.py -- Filtered, sorted log view for the logs context.

Query params map straight onto core.pipeline.LogQuery. Enum-typed params give
422 on unknown values through the shared validation handler, so the pipeline
only ever sees valid sort fields and severities.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Query, Request

from api.dependencies import get_context
from api.models import LogsResponse, OrderEnum, SeverityEnum, SlotResponse, SortFieldEnum
from core.formatter import to_data
from core.models import SourceKind
from core.pipeline import LogQuery, SortField, count_by_category, count_by_severity, severity_distribution, view

router = APIRouter()


@router.get("/logs", response_model=LogsResponse)
def get_logs(
    request: Request,
    q: Annotated[str, Query(max_length=200)] = "",
    severity: Optional[SeverityEnum] = None,
    sort: SortFieldEnum = SortFieldEnum.timestamp,
    order: OrderEnum = OrderEnum.desc,
    limit: Annotated[Optional[int], Query(ge=1, le=5000)] = None,
) -> LogsResponse:
    """Return the log view plus counts computed over the filtered set.

    Query params:
        q        -- case-insensitive text matched against source, content, type
        severity -- exact severity selector (critical | high | medium | low)
        sort     -- timestamp | source | severity (default: timestamp)
        order    -- asc | desc (default: desc)
        limit    -- cap on returned rows; counts still cover the full view
    """
    context = get_context(request, "logs")
    snapshot = context.snapshot()
    logs_slot = snapshot.slot(SourceKind.logs)
    all_logs = logs_slot.payload or ()

    query = LogQuery(
        text=q.strip(),
        severity=severity.value if severity else None,
        sort_field=SortField(sort.value),
        descending=order is OrderEnum.desc,
    )
    rows = view(all_logs, query)
    returned = rows[:limit] if limit else rows

    return LogsResponse(
        updated_at=snapshot.updated_at,
        logs_state=logs_slot.state.value,
        total=len(rows),
        returned=len(returned),
        logs=to_data(returned),
        severity_counts=count_by_severity(rows),
        category_counts=count_by_category(rows),
        severity_distribution=severity_distribution(rows),
        alerts=SlotResponse.from_slot(snapshot.slot(SourceKind.alerts)),
        threats=SlotResponse.from_slot(snapshot.slot(SourceKind.threats)),
    )
