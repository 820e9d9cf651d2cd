"""
api/dependencies.py -- FastAPI dependencies shared by the v1 routers.

The scheduler lives on app.state (set up by the lifespan in api/main.py).
Route handlers receive contexts through these helpers instead of reaching
into app.state themselves, so tests can swap the scheduler in one place.
"""

from fastapi import HTTPException, Request

from api.models import ErrorDetail
from core.scheduler import RefreshContext, RefreshScheduler


def get_scheduler(request: Request) -> RefreshScheduler:
    return request.app.state.scheduler


def get_context(request: Request, name: str) -> RefreshContext:
    """Return the named context or raise a structured 404."""
    scheduler = get_scheduler(request)
    if name not in scheduler:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(
                code="context_not_found",
                message=f"No view context named {name!r}.",
                detail=f"Known contexts: {', '.join(scheduler.names())}",
            ).model_dump(),
        )
    return scheduler.get(name)
