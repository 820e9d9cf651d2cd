"""
fetcher.py -- All external data fetching.

One SourceClient talks to the upstream telemetry API. Every call returns a
FetchOutcome value; transport, HTTP and schema failures are mapped onto the
FetchErrorKind taxonomy and logged, never raised to the caller.
"""

import logging
from typing import Optional
from urllib.parse import urljoin

import requests

from core.models import FetchErrorKind, FetchOutcome, SourceKind
from core.parsers import PARSERS

logger = logging.getLogger("teleguard.fetcher")

ENDPOINTS: dict[SourceKind, str] = {
    SourceKind.status: "status",
    SourceKind.metrics: "metrics",
    SourceKind.network: "network",
    SourceKind.logs: "logs",
    SourceKind.alerts: "alerts/summary",
    SourceKind.threats: "threats/summary",
    SourceKind.analytics: "analytics",
}

# Endpoints that honour ?window=. Others always return current state.
WINDOWED = frozenset({SourceKind.metrics, SourceKind.network, SourceKind.logs})


class SourceClient:
    """Typed accessor for the upstream telemetry API.

    Safe to call from several worker threads at once: each call builds its own
    request with requests.get() rather than sharing a requests.Session, whose
    connection pool and cookie jar are not guaranteed thread-safe.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0) -> None:
        # urljoin drops the last path segment unless the base ends with "/"
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self._headers = {"Accept": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def url_for(self, kind: SourceKind) -> str:
        return urljoin(self.base_url, ENDPOINTS[kind])

    def fetch(self, kind: SourceKind, window_seconds: Optional[int] = None) -> FetchOutcome:
        """Fetch and parse one source.

        Args:
            kind:           Which upstream endpoint to query.
            window_seconds: Restrict a windowed query to [now - window, now].
                            Ignored for endpoints that only report current state.
        """
        params: dict[str, int] = {}
        if window_seconds is not None and kind in WINDOWED:
            params["window"] = int(window_seconds)

        try:
            resp = requests.get(self.url_for(kind), params=params, headers=self._headers, timeout=self.timeout)
        except requests.Timeout as e:
            logger.warning("%s fetch timed out: %s", kind.value, e)
            return FetchOutcome.failure(kind, FetchErrorKind.timeout, str(e))
        except requests.RequestException as e:
            logger.warning("%s fetch failed: %s", kind.value, e)
            return FetchOutcome.failure(kind, FetchErrorKind.unreachable, str(e))

        if resp.status_code in (401, 403):
            logger.warning("%s fetch rejected with HTTP %d", kind.value, resp.status_code)
            return FetchOutcome.failure(kind, FetchErrorKind.unauthorized, f"HTTP {resp.status_code}")
        if not 200 <= resp.status_code < 300:
            logger.warning("%s fetch returned HTTP %d", kind.value, resp.status_code)
            return FetchOutcome.failure(kind, FetchErrorKind.bad_response, f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as e:
            logger.warning("%s returned malformed JSON: %s", kind.value, e)
            return FetchOutcome.failure(kind, FetchErrorKind.bad_response, f"malformed JSON: {e}")

        try:
            payload = PARSERS[kind](body)
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning("%s response did not match schema: %r", kind.value, e)
            return FetchOutcome.failure(kind, FetchErrorKind.bad_response, f"schema mismatch: {e!r}")

        return FetchOutcome.success(kind, payload)
