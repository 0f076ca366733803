"""
tests/test_api.py

HTTP surface: /metrics, /collect/* and /health with the orchestrators
swapped for test instances through dependency overrides.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from adpulse.core.errors import AuthError
from adpulse.core.periods import month_period
from adpulse.main import app
from adpulse.services.snapshots import build_snapshot
from adpulse.wiring import get_collector, get_reader
from conftest import NOW, FakeSource, make_payload


@pytest.fixture()
def client(reader, collector):
    app.dependency_overrides[get_reader] = lambda: reader
    app.dependency_overrides[get_collector] = lambda: collector
    # No ``with``: the lifespan (real DB, scheduler) is not started
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["database"] is True
        assert body["collections_in_flight"] == 0
        assert body["last_refresh"] is None

    def test_health_reports_last_refresh(self, client):
        client.post("/collect/refresh")
        assert client.get("/health").json()["last_refresh"] == NOW.isoformat()


class TestMetrics:
    def test_closed_month_collected_then_archived(self, client, store, source):
        params = {"tenant": "havet", "start": "2025-03-01", "end": "2025-03-31"}

        first = client.get("/metrics", params=params)
        assert first.status_code == 200
        body = first.json()
        assert body["source"] == "live"
        assert body["snapshot"]["period_id"] == "2025-03"
        assert Decimal(body["snapshot"]["spend"]) == Decimal("150")
        assert body["snapshot"]["funnel"]["reservations"] == 2
        assert body["snapshot"]["roas"] == 2.0

        second = client.get("/metrics", params=params)
        assert second.json()["source"] == "archive"
        assert len(source.calls) == 1
        assert len(store.list_archive("havet")) == 1

    def test_current_cache_hit(self, client, store):
        april = month_period(date(2025, 4, 1))
        collected = NOW - timedelta(minutes=30)
        store.put_current(build_snapshot("havet", "meta", april, make_payload(42), collected_at=collected))

        resp = client.get("/metrics", params={"tenant": "havet", "start": "2025-04-01", "end": "2025-04-30"})
        body = resp.json()
        assert body["source"] == "current-cache"
        assert body["collectedAt"] == collected.isoformat()

    def test_custom_range(self, client):
        resp = client.get("/metrics", params={"tenant": "havet", "start": "2025-01-10", "end": "2025-02-20"})
        body = resp.json()
        assert body["source"] == "aggregated-custom"
        assert body["snapshot"]["period_id"] is None
        assert Decimal(body["snapshot"]["spend"]) == Decimal("300")

    def test_invalid_range(self, client):
        resp = client.get("/metrics", params={"tenant": "havet", "start": "2025-03-31", "end": "2025-03-01"})
        assert resp.status_code == 422

    def test_beyond_retention(self, client):
        resp = client.get("/metrics", params={"tenant": "havet", "start": "2020-01-01", "end": "2020-01-31"})
        assert resp.status_code == 422

    def test_unknown_tenant(self, client):
        resp = client.get("/metrics", params={"tenant": "ghost", "start": "2025-03-01", "end": "2025-03-31"})
        assert resp.status_code == 404

    def test_collection_failed(self, client, source):
        source.script = [AuthError("token revoked", 401)]
        resp = client.get("/metrics", params={"tenant": "havet", "start": "2025-03-01", "end": "2025-03-31"})
        assert resp.status_code == 502

    def test_missing_params(self, client):
        assert client.get("/metrics", params={"tenant": "havet"}).status_code == 422


class TestCollect:
    def test_backfill_by_period_id(self, client, store):
        resp = client.post("/collect/backfill", json={"tenant": "havet", "periods": [{"period_id": "2025-03"}]})
        assert resp.status_code == 200
        report = resp.json()["report"]
        assert report["kind"] == "backfill"
        assert report["succeeded"] == 1
        assert store.get_archive("havet", "meta", "monthly", date(2025, 3, 1)) is not None

    def test_backfill_is_idempotent(self, client, source):
        body = {"tenant": "havet", "periods": [{"period_id": "2025-03"}]}
        client.post("/collect/backfill", json=body)
        report = client.post("/collect/backfill", json=body).json()["report"]
        assert report["skipped"] == 1
        assert len(source.calls) == 1

    def test_backfill_recollect(self, client, store, source):
        client.post("/collect/backfill", json={"tenant": "havet", "periods": [{"period_id": "2025-03"}]})
        source.default = make_payload(999)
        client.post(
            "/collect/backfill",
            json={"tenant": "havet", "periods": [{"period_id": "2025-03"}], "recollect": True},
        )
        record = store.get_archive("havet", "meta", "monthly", date(2025, 3, 1))
        assert record.snapshot.spend == Decimal("999")
        assert record.recollection_count == 1

    def test_backfill_range_for_all_tenants(self, client, source):
        resp = client.post(
            "/collect/backfill",
            json={"periods": [{"start": "2025-01-01", "end": "2025-02-28"}]},
        )
        report = resp.json()["report"]
        assert report["tenants_processed"] == 2
        assert report["succeeded"] == 4

    def test_backfill_bad_period(self, client):
        resp = client.post("/collect/backfill", json={"periods": [{"period_id": "2025-13"}]})
        assert resp.status_code == 422
        resp = client.post("/collect/backfill", json={"periods": [{}]})
        assert resp.status_code == 422

    def test_last_run_before_and_after_refresh(self, client):
        assert client.get("/collect/last-run").json()["status"] == "no_data"

        resp = client.post("/collect/refresh")
        assert resp.status_code == 200
        assert resp.json()["report"]["succeeded"] == 4

        last = client.get("/collect/last-run").json()
        assert last["status"] == "success"
        assert last["report"]["kind"] == "refresh"

    def test_refresh_reports_failures(self, client, make_collector):
        failing = make_collector(FakeSource(script=[AuthError("revoked", 401)] * 2))
        app.dependency_overrides[get_collector] = lambda: failing

        report = client.post("/collect/refresh").json()["report"]
        assert report["failed"] == 2
        assert report["succeeded"] == 2
        assert report["tenants_processed"] == 2
