"""
tests/conftest.py -- Shared test fixtures for TeleGuard API integration tests.

This module provides:
  - FakeSourceClient: stands in for core.fetcher.SourceClient; serves canned
    upstream JSON through the real parsers, or a failure outcome
  - _patch_lifespan(): wires a scheduler built on the fake client into
    app.state, bypassing the real startup (no timers, no network)
  - api_client: TestClient plus the fake client, so tests can flip a source
    to failing and trigger a refresh

Design: the patched lifespan runs one refresh_now() per context before the
first request, so every test module starts from published snapshots. Timers
are never started; the ManualClock only supplies deterministic timestamps.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from cache.store import SnapshotStore
from core.clock import ManualClock
from core.config import Settings
from core.models import FetchErrorKind, FetchOutcome, SourceKind
from core.parsers import PARSERS
from core.scheduler import build_scheduler

# ---------------------------------------------------------------------------
# Canned upstream payloads
# ---------------------------------------------------------------------------

RAW_LOGS = [
    {
        "timestamp": "2024-01-01T00:00:05Z",
        "source": "snort",
        "content": "Possible exploit attempt blocked",
        "severity": "CRITICAL",
        "type": "intrusion",
    },
    {"timestamp": "2024-01-01T00:00:03Z", "source": "sshd-auth", "content": "Failed password for root (warning)"},
    {
        "timestamp": "2024-01-01T00:00:04Z",
        "source": "psmon",
        "content": "process usage sample",
        "severity": "low",
        "type": "process",
        "process_name": "nginx",
        "cpu_percent": 12.5,
        "memory_percent": 3.0,
    },
    {
        "timestamp": "2024-01-01T00:00:01Z",
        "source": "psmon",
        "content": "process usage sample",
        "severity": "low",
        "type": "process",
        "process_name": "python3",
        "cpu_percent": 40.0,
        "memory_percent": 1.5,
    },
    {"timestamp": "2024-01-01T00:00:02Z", "source": "ufw", "content": "Inbound blocked", "severity": "medium", "type": "firewall"},
]

RAW_RESPONSES: dict[SourceKind, Any] = {
    SourceKind.status: {"status": "running", "uptime": 3600, "last_update": "2024-01-01T00:00:00Z"},
    SourceKind.threats: {
        "total_alerts": 12,
        "alerts_last_hour": 2,
        "alerts_last_day": 9,
        "severity_counts": {"critical": 1, "high": 4},
        "top_threats": [{"type": "port_scan", "count": 3}, {"type": "brute_force", "count": 7}],
    },
    SourceKind.metrics: [
        {"timestamp": "2024-01-01T00:00:00Z", "cpu_percent": 20.0, "memory_percent": 40.0, "load_1m": 0.5},
        {"timestamp": "2024-01-01T00:01:00Z", "cpu_percent": 25.0, "memory_percent": 41.0},
    ],
    SourceKind.network: [
        {"timestamp": "2024-01-01T00:00:00Z", "incoming_mbps": 1.2, "outgoing_kbps": 300.0},
    ],
    SourceKind.alerts: {"total_alerts": 12, "by_type": {"port_scan": 3}, "by_severity": {"high": 4}},
    SourceKind.logs: RAW_LOGS,
    SourceKind.analytics: {
        "time_series": {
            "timestamps": ["2024-01-01T00:00:00Z", "2024-01-01T01:00:00Z"],
            "cpu": [10.0, 30.0],
            "memory": [50.0, None],
        },
        "network": {"protocols": [{"name": "TCP", "value": 80.0}], "top_ports": [{"port": 443, "count": 120}]},
        "alerts_count": 12,
        "network_packets_count": 5000,
        "total_log_entries": 5,
    },
}


class FakeSourceClient:
    """SourceClient double. A kind mapped to None fails as unreachable."""

    def __init__(self, responses: dict[SourceKind, Any]) -> None:
        self.responses: dict[SourceKind, Optional[Any]] = dict(responses)
        self.calls: list[tuple[SourceKind, Optional[int]]] = []

    def fetch(self, kind: SourceKind, window_seconds: Optional[int] = None) -> FetchOutcome:
        self.calls.append((kind, window_seconds))
        raw = self.responses.get(kind)
        if raw is None:
            return FetchOutcome.failure(kind, FetchErrorKind.unreachable, "connection refused")
        return FetchOutcome.success(kind, PARSERS[kind](raw))


# ---------------------------------------------------------------------------
# Lifespan patch
# ---------------------------------------------------------------------------


def _patch_lifespan(client: FakeSourceClient):
    """Return an async context manager that replaces the real lifespan.

    The analytics source is left failing so tests can see an unpopulated slot
    alongside populated ones.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = SnapshotStore()
        app.state.scheduler = build_scheduler(Settings(), client, app.state.store, ManualClock())
        for context in app.state.scheduler:
            await context.refresh_now()
        yield
        app.state.scheduler.stop()
        for context in app.state.scheduler:
            await context.wait_idle()
        app.state.scheduler.close()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, FakeSourceClient], None, None]:
    """Yield (client, fake_source) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, middleware and rate limits.
    """
    responses = dict(RAW_RESPONSES)
    responses[SourceKind.analytics] = None
    fake = FakeSourceClient(responses)

    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(fake)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, fake
