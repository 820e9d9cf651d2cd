"""
api/routes/v1/contexts.py -- Scheduler state and control for the view contexts.

GET routes expose each context's timer state and the per-source slot
metadata a presentation layer needs to mark data as stale or unpopulated.

Rate limits are applied via slowapi. The @limiter.limit() decorator must sit
ABOVE @router.post so that slowapi can attach the limit string to the
function object before FastAPI wraps it.
"""

from fastapi import APIRouter, HTTPException, Request

from api.dependencies import get_context, get_scheduler
from api.limiter import limiter, refresh_limit
from api.models import ContextResponse, ErrorDetail, WindowRequest, sources_dict
from core.models import TimeRange
from core.scheduler import RefreshContext

router = APIRouter()


def _describe(context: RefreshContext) -> ContextResponse:
    snapshot = context.snapshot()
    return ContextResponse(
        name=context.name,
        state=context.state.value,
        interval_seconds=context.interval_seconds,
        window_seconds=context.window_seconds,
        skipped_ticks=context.skipped_ticks,
        completed_cycles=context.completed_cycles,
        snapshot_version=context.store.version(context.name),
        updated_at=snapshot.updated_at,
        sources=sources_dict(snapshot.slots, context.aggregator.kinds),
    )


@router.get("/contexts", response_model=list[ContextResponse])
def list_contexts(request: Request) -> list[ContextResponse]:
    return [_describe(context) for context in get_scheduler(request)]


@router.get("/contexts/{name}", response_model=ContextResponse)
def get_context_detail(request: Request, name: str) -> ContextResponse:
    return _describe(get_context(request, name))


@limiter.limit(refresh_limit)
@router.post("/contexts/{name}/refresh", response_model=ContextResponse)
async def refresh_context(request: Request, name: str) -> ContextResponse:
    """Run a refresh cycle now (or join the one in flight) and return the result.

    409 when the context has been stopped (application shutting down).
    """
    context = get_context(request, name)
    try:
        await context.refresh_now()
    except RuntimeError as e:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="context_stopped", message=str(e)).model_dump(),
        ) from e
    return _describe(context)


@router.put("/contexts/{name}/window", response_model=ContextResponse)
def set_context_window(request: Request, name: str, body: WindowRequest) -> ContextResponse:
    """Switch the context's query window to a preset. Applies from the next cycle."""
    context = get_context(request, name)
    context.set_window(TimeRange[body.range.value].value)
    return _describe(context)
