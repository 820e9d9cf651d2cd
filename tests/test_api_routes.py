"""
tests/test_api_routes.py -- Integration tests for the v1 view and context routes.

These tests exercise the full stack: FastAPI routing -> dependency lookup of
the view context -> snapshot read / refresh cycle -> pipeline derivation ->
response model serialization.

Coverage:
  - Overview: latest samples, top processes ranked both ways, slot states
  - Logs: default ordering, text and severity filters, sort/order, limit, 422s
  - Analytics: unpopulated slot (source failing) next to fresh slots, alert
    breakdown by type and severity
  - Contexts: list, detail, 404, on-demand refresh, stale-after-failure,
    window switch, 409 on a stopped context, 429 past the refresh limit

Fixtures used (from conftest.py):
  - api_client: (client, fake_source) -- every context refreshed once at startup;
    the analytics source fails as unreachable.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from api.limiter import limiter
from cache.store import SnapshotStore
from core.aggregator import Aggregator, SourceRequest
from core.config import get_settings
from core.models import SourceKind
from core.scheduler import RefreshContext, RefreshScheduler


class TestOverview:
    def test_overview_sources_all_fresh(self, api_client) -> None:
        client, _fake = api_client
        resp = client.get("/api/v1/overview")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert set(data["sources"]) == {"status", "threats", "metrics", "network", "alerts", "logs"}
        assert all(s["state"] == "fresh" for s in data["sources"].values())
        assert data["updated_at"].startswith("2024-01-01T00:00:00")

    def test_latest_metrics_is_newest_sample(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/overview").json()
        latest = data["latest_metrics"]
        assert latest["cpu_percent"] == 25.0
        # Absent upstream field stays null, never a display default.
        assert latest["load"]["one"] is None
        assert data["latest_network"]["incoming_mbps"] == 1.2

    def test_top_processes_ranked(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/overview").json()
        assert [p["name"] for p in data["top_processes_by_memory"]] == ["nginx", "python3"]
        assert [p["name"] for p in data["top_processes_by_cpu"]] == ["python3", "nginx"]

    def test_threat_payload_sorted(self, api_client) -> None:
        client, _fake = api_client
        threats = client.get("/api/v1/overview").json()["sources"]["threats"]["payload"]
        assert [t["type"] for t in threats["top_threats"]] == ["brute_force", "port_scan"]


class TestLogs:
    def test_default_view_newest_first(self, api_client) -> None:
        client, _fake = api_client
        resp = client.get("/api/v1/logs")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["logs_state"] == "fresh"
        assert data["total"] == 5
        assert data["returned"] == 5
        assert data["logs"][0]["source"] == "snort"
        assert data["logs"][0]["severity"] == "critical"
        assert data["logs"][-1]["attributes"]["process_name"] == "python3"

    def test_missing_fields_classified(self, api_client) -> None:
        client, _fake = api_client
        logs = client.get("/api/v1/logs").json()["logs"]
        sshd = next(r for r in logs if r["source"] == "sshd-auth")
        assert sshd["severity"] == "high"
        assert sshd["type"] == "authentication"
        assert "category" not in sshd

    def test_counts_cover_filtered_set(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/logs").json()
        assert data["severity_counts"] == {"critical": 1, "high": 1, "low": 2, "medium": 1}
        assert data["category_counts"]["process"] == 2
        assert list(data["severity_distribution"]) == ["critical", "high", "medium", "low"]
        assert data["severity_distribution"]["low"] == 40.0

    def test_text_filter_case_insensitive(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/logs", params={"q": "BLOCKED"}).json()
        assert {r["source"] for r in data["logs"]} == {"snort", "ufw"}
        assert data["total"] == 2

    def test_severity_filter_and_text_compose(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/logs", params={"q": "blocked", "severity": "medium"}).json()
        assert [r["source"] for r in data["logs"]] == ["ufw"]

    def test_no_match_returns_empty_view(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/logs", params={"q": "no-such-text"}).json()
        assert data["logs"] == []
        assert data["severity_distribution"] == {}

    def test_severity_sort_ascending_most_severe_first(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/logs", params={"sort": "severity", "order": "asc"}).json()
        assert [r["severity"] for r in data["logs"]] == ["critical", "high", "medium", "low", "low"]

    def test_limit_caps_rows_not_total(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/logs", params={"limit": 2}).json()
        assert data["returned"] == 2
        assert data["total"] == 5

    def test_logs_view_carries_alert_and_threat_slots(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/logs").json()
        assert data["alerts"]["payload"]["total_alerts"] == 12
        assert data["threats"]["state"] == "fresh"

    def test_unknown_severity_rejected(self, api_client) -> None:
        client, _fake = api_client
        resp = client.get("/api/v1/logs", params={"severity": "bogus"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_overlong_query_rejected(self, api_client) -> None:
        client, _fake = api_client
        resp = client.get("/api/v1/logs", params={"q": "x" * 201})
        assert resp.status_code == 422


class TestAnalytics:
    def test_failing_source_unpopulated_others_fresh(self, api_client) -> None:
        client, _fake = api_client
        resp = client.get("/api/v1/analytics")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        analytics = data["sources"]["analytics"]
        assert analytics["state"] == "unpopulated"
        assert analytics["payload"] is None
        assert analytics["last_error"]["kind"] == "unreachable"
        assert analytics["consecutive_failures"] == 1
        assert data["sources"]["metrics"]["state"] == "fresh"
        assert data["performance"] == []

    def test_alert_breakdown_from_alert_summary(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/analytics").json()
        assert data["sources"]["alerts"]["state"] == "fresh"
        assert data["alert_types"] == [{"name": "port_scan", "count": 3}]
        assert data["alert_severities"] == [{"name": "high", "count": 4}]


class TestContexts:
    def test_list_contexts(self, api_client) -> None:
        client, _fake = api_client
        data = client.get("/api/v1/contexts").json()
        by_name = {c["name"]: c for c in data}
        assert list(by_name) == ["overview", "logs", "analytics"]
        assert by_name["logs"]["interval_seconds"] == 15
        assert by_name["logs"]["window_seconds"] == 3600
        assert by_name["overview"]["window_seconds"] == 900
        assert all(c["state"] == "idle" for c in data)

    def test_unknown_context_404(self, api_client) -> None:
        client, _fake = api_client
        resp = client.get("/api/v1/contexts/nope")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "context_not_found"

    def test_refresh_runs_a_cycle(self, api_client) -> None:
        client, _fake = api_client
        before = client.get("/api/v1/contexts/logs").json()
        resp = client.post("/api/v1/contexts/logs/refresh")
        assert resp.status_code == 200, resp.text
        assert resp.json()["completed_cycles"] == before["completed_cycles"] + 1
        assert resp.json()["snapshot_version"] == before["snapshot_version"] + 1

    def test_failure_after_success_marks_slot_stale(self, api_client) -> None:
        client, fake = api_client
        saved = fake.responses[SourceKind.alerts]
        fake.responses[SourceKind.alerts] = None
        try:
            data = client.post("/api/v1/contexts/logs/refresh").json()
            alerts = data["sources"]["alerts"]
            assert alerts["state"] == "stale"
            assert alerts["payload"]["total_alerts"] == 12
            assert alerts["last_error"]["kind"] == "unreachable"
            assert data["sources"]["logs"]["state"] == "fresh"
        finally:
            fake.responses[SourceKind.alerts] = saved
        data = client.post("/api/v1/contexts/logs/refresh").json()
        assert data["sources"]["alerts"]["state"] == "fresh"
        assert data["sources"]["alerts"]["consecutive_failures"] == 0

    def test_window_switch_applies_to_next_cycle(self, api_client) -> None:
        client, fake = api_client
        resp = client.put("/api/v1/contexts/logs/window", json={"range": "day"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["window_seconds"] == 86400
        try:
            fake.calls.clear()
            client.post("/api/v1/contexts/logs/refresh")
            assert (SourceKind.logs, 86400) in fake.calls
            assert (SourceKind.alerts, None) in fake.calls
        finally:
            client.put("/api/v1/contexts/logs/window", json={"range": "hour"})

    def test_window_unknown_range_rejected(self, api_client) -> None:
        client, _fake = api_client
        resp = client.put("/api/v1/contexts/logs/window", json={"range": "fortnight"})
        assert resp.status_code == 422

    def test_refresh_on_stopped_context_409(self, api_client, monkeypatch) -> None:
        client, fake = api_client
        stopped = RefreshContext("logs", Aggregator(fake, [SourceRequest(SourceKind.logs, 60)]), SnapshotStore())
        stopped.stop()
        scheduler = RefreshScheduler()
        scheduler.add(stopped)
        monkeypatch.setattr(client.app.state, "scheduler", scheduler)

        resp = client.post("/api/v1/contexts/logs/refresh")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "context_stopped"

    def test_refresh_past_limit_429(self, api_client, monkeypatch) -> None:
        client, _fake = api_client
        monkeypatch.setenv("TELEGUARD_REFRESH_RATE_LIMIT", "2/minute")
        get_settings.cache_clear()
        limiter.reset()
        try:
            codes = [client.post("/api/v1/contexts/logs/refresh").status_code for _ in range(3)]
            assert codes == [200, 200, 429]
            resp = client.post("/api/v1/contexts/logs/refresh")
            assert resp.status_code == 429
            assert resp.json()["error"]["code"] == "rate_limited"
            assert int(resp.headers["Retry-After"]) > 0
        finally:
            get_settings.cache_clear()
            limiter.reset()


def test_openapi_schema_lists_v1_routes(api_client) -> None:
    client: TestClient = api_client[0]
    paths = client.get("/openapi.json").json()["paths"]
    for path in ("/api/v1/overview", "/api/v1/logs", "/api/v1/analytics", "/api/v1/contexts/{name}/refresh"):
        assert path in paths
