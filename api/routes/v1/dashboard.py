"""
api/routes/v1/dashboard.py -- Overview and analytics views over published snapshots.

Both routes are read-only: they never trigger a fetch. They read the latest
snapshot the scheduler published for their context and derive the widget
data (latest samples, top processes, performance series) on every request.
"""

from fastapi import APIRouter, Request

from api.dependencies import get_context
from api.models import AnalyticsResponse, OverviewResponse, sources_dict
from core.formatter import to_data
from core.models import SourceKind
from core.pipeline import alert_breakdown, latest_metrics, latest_network, performance_series, top_processes

router = APIRouter()


@router.get("/overview", response_model=OverviewResponse)
def get_overview(request: Request) -> OverviewResponse:
    """Return the overview snapshot plus the derived gauge values.

    Response:
      sources                  -- per-source slot (state, fetched_at, last_error, payload)
      latest_metrics           -- newest metric sample, or null when unpopulated/empty
      latest_network           -- newest network sample, or null
      top_processes_by_memory  -- up to 7 process rows from the log batch
      top_processes_by_cpu     -- same rows ranked by CPU
    """
    context = get_context(request, "overview")
    snapshot = context.snapshot()
    logs = snapshot.payload(SourceKind.logs, ())

    return OverviewResponse(
        updated_at=snapshot.updated_at,
        sources=sources_dict(snapshot.slots, context.aggregator.kinds),
        latest_metrics=to_data(latest_metrics(snapshot.payload(SourceKind.metrics, ()))),
        latest_network=to_data(latest_network(snapshot.payload(SourceKind.network, ()))),
        top_processes_by_memory=to_data(top_processes(logs, by="memory")),
        top_processes_by_cpu=to_data(top_processes(logs, by="cpu")),
    )


@router.get("/analytics", response_model=AnalyticsResponse)
def get_analytics(request: Request) -> AnalyticsResponse:
    """Return the analytics snapshot with the CPU/memory series zipped into rows
    and the alert summary broken down by type and by severity.
    """
    context = get_context(request, "analytics")
    snapshot = context.snapshot()
    alerts = snapshot.payload(SourceKind.alerts)

    return AnalyticsResponse(
        updated_at=snapshot.updated_at,
        sources=sources_dict(snapshot.slots, context.aggregator.kinds),
        performance=to_data(performance_series(snapshot.payload(SourceKind.analytics))),
        alert_types=alert_breakdown(alerts, by="type"),
        alert_severities=alert_breakdown(alerts, by="severity"),
    )
