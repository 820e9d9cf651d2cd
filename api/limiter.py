"""
api/limiter.py -- The one slowapi Limiter shared by api/main.py and the routes.

Only on-demand refreshes are limited: each one fans out to every upstream
source of a context, so an unthrottled client could hammer the data source.
Counters are per client address and kept in memory.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def refresh_limit() -> str:
    """Limit string for POST /contexts/{name}/refresh, read from settings per request."""
    return get_settings().refresh_rate_limit
