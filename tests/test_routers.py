"""
Tests for the HTTP surface

Webhook and reconciliation routers mounted on a bare FastAPI app with
services placed on app.state directly (no lifespan, no scheduler thread).
"""

import pytest
from datetime import date
from unittest.mock import MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


def build_app(**services):
    from bookingsync.routers import health, reconciliation, webhooks

    app = FastAPI()
    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(reconciliation.router)
    for name in ("pipeline", "sync_scheduler", "checkfront", "alerter"):
        setattr(app.state, name, services.get(name))
    return app


@pytest.fixture
def pipeline(store):
    from bookingsync.services.booking_normalizer import BookingNormalizer
    from bookingsync.services.booking_pipeline import BookingPipeline
    from bookingsync.utils.keyed_lock import KeyedLock

    return BookingPipeline(
        store=store,
        normalizer=BookingNormalizer(tz_name="Australia/Sydney"),
        dispatcher=None,
        locks=KeyedLock()
    )


@pytest.fixture
def client(pipeline):
    return TestClient(build_app(pipeline=pipeline))


class TestWebhooks:
    """Tests for /api/webhooks"""

    def test_checkfront_webhook_creates_row(self, client, store):
        response = client.post("/api/webhooks/checkfront", json={
            "booking": {
                "code": "X1",
                "status": "PEND",
                "customer": {"name": "Jane Citizen"},
                "order": {"total": "250.00", "items": [{"sku": "pontoon-bbq-boat", "category_id": "2"}]},
            }
        })

        assert response.status_code == 200
        assert response.json()["action"] == "created"
        assert len(store.rows_for("X1")) == 1

    def test_airtable_webhook_flat_shape(self, client, store):
        from bookingsync.services.booking_fields import STATUS

        response = client.post("/api/webhooks/airtable", json={"bookingCode": "X2", "status": "PAID"})

        assert response.status_code == 200
        assert store.rows_for("X2")[0].fields[STATUS] == "PAID"

    def test_invalid_json_is_skipped(self, client, store):
        response = client.post(
            "/api/webhooks/checkfront",
            content=b"{not json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json()["action"] == "skipped"
        assert store.rows == {}

    def test_missing_code_is_skipped(self, client):
        response = client.post("/api/webhooks/checkfront", json={"booking": {"status": "PAID"}})

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["action"] == "skipped"

    def test_upstream_failure_returns_503(self, client, store):
        from bookingsync.utils.http_retry import UpstreamError

        store.find = MagicMock(side_effect=UpstreamError("airtable", "All retries failed"))

        response = client.post("/api/webhooks/checkfront", json={"booking": {"code": "X1", "status": "PEND"}})

        assert response.status_code == 503

    def test_unexpected_store_error_returns_503(self, client, store):
        store.find = MagicMock(side_effect=RuntimeError("driver crashed"))

        response = client.post("/api/webhooks/checkfront", json={"booking": {"code": "X1", "status": "PEND"}})

        assert response.status_code == 503

    def test_missing_pipeline_returns_503(self):
        client = TestClient(build_app())

        response = client.post("/api/webhooks/checkfront", json={"booking": {"code": "X1"}})

        assert response.status_code == 503


class TestManualTrigger:
    """Tests for POST /api/reconciliation/bookings/{code}"""

    def test_reconciles_found_booking(self, pipeline, store):
        checkfront = MagicMock()
        checkfront.find_booking_by_code.return_value = {
            "booking_id": "9", "code": "M1", "status_id": "PAID", "summary": "Pontoon BBQ Boat"
        }
        client = TestClient(build_app(pipeline=pipeline, checkfront=checkfront))

        response = client.post("/api/reconciliation/bookings/M1")

        assert response.status_code == 200
        assert response.json()["action"] == "created"
        checkfront.find_booking_by_code.assert_called_once_with("M1")
        assert len(store.rows_for("M1")) == 1

    def test_not_found(self, pipeline):
        checkfront = MagicMock()
        checkfront.find_booking_by_code.return_value = None
        client = TestClient(build_app(pipeline=pipeline, checkfront=checkfront))

        response = client.post("/api/reconciliation/bookings/NOPE")

        assert response.status_code == 404

    def test_checkfront_unavailable(self, pipeline):
        from bookingsync.utils.http_retry import UpstreamError

        checkfront = MagicMock()
        checkfront.find_booking_by_code.side_effect = UpstreamError("checkfront", "HTTP 502")
        client = TestClient(build_app(pipeline=pipeline, checkfront=checkfront))

        response = client.post("/api/reconciliation/bookings/M1")

        assert response.status_code == 503


class TestReconciliationRun:
    """Tests for /api/reconciliation/run and /status"""

    def _scheduler(self):
        from bookingsync.services.sync_scheduler import LookbackWindow

        scheduler = MagicMock()
        scheduler.default_window.return_value = LookbackWindow(date(2025, 11, 17), date(2025, 12, 15))
        scheduler.run_reconciliation.return_value.to_dict.return_value = {"success": True, "gaps": []}
        scheduler.status.return_value = {"scheduled": True, "last_report": None}
        return scheduler

    def test_run_with_default_window(self):
        scheduler = self._scheduler()
        client = TestClient(build_app(sync_scheduler=scheduler))

        response = client.post("/api/reconciliation/run")

        assert response.status_code == 200
        assert response.json() == {"success": True, "gaps": []}
        scheduler.run_reconciliation.assert_called_once_with(None)

    def test_run_with_explicit_window(self):
        scheduler = self._scheduler()
        client = TestClient(build_app(sync_scheduler=scheduler))

        response = client.post("/api/reconciliation/run", json={"start_date": "2025-12-01"})

        assert response.status_code == 200
        window = scheduler.run_reconciliation.call_args[0][0]
        assert window.start == date(2025, 12, 1)
        assert window.end == date(2025, 12, 15)

    def test_inverted_window_rejected(self):
        client = TestClient(build_app(sync_scheduler=self._scheduler()))

        response = client.post("/api/reconciliation/run", json={
            "start_date": "2025-12-31", "end_date": "2025-12-01"
        })

        assert response.status_code == 400

    def test_run_in_progress_returns_409(self):
        from bookingsync.services.sync_scheduler import ReconciliationInProgress

        scheduler = self._scheduler()
        scheduler.run_reconciliation.side_effect = ReconciliationInProgress("A reconciliation run is already in progress")
        client = TestClient(build_app(sync_scheduler=scheduler))

        response = client.post("/api/reconciliation/run")

        assert response.status_code == 409

    def test_status(self):
        client = TestClient(build_app(sync_scheduler=self._scheduler()))

        response = client.get("/api/reconciliation/status")

        assert response.status_code == 200
        assert response.json()["scheduled"] is True

    def test_status_without_scheduler(self):
        client = TestClient(build_app())

        assert client.get("/api/reconciliation/status").status_code == 503


class TestAlerts:
    """Tests for /api/reconciliation/alerts"""

    def test_list_and_acknowledge(self, session_factory):
        from bookingsync.services.operator_alerts import OperatorAlerter

        alerter = OperatorAlerter(session_factory=session_factory, admin_recipient="")
        alerter.alert("Booking sync gap: 1 paid booking(s) missing locally: C")
        client = TestClient(build_app(alerter=alerter))

        listed = client.get("/api/reconciliation/alerts", params={"status": "open"})
        assert listed.status_code == 200
        assert len(listed.json()) == 1
        alert_id = listed.json()[0]["id"]

        acknowledged = client.post(f"/api/reconciliation/alerts/{alert_id}/acknowledge")
        assert acknowledged.status_code == 200
        assert acknowledged.json()["status"] == "acknowledged"

        assert client.get("/api/reconciliation/alerts", params={"status": "open"}).json() == []

    def test_acknowledge_missing(self, session_factory):
        from bookingsync.services.operator_alerts import OperatorAlerter

        client = TestClient(build_app(alerter=OperatorAlerter(session_factory=session_factory)))

        assert client.post("/api/reconciliation/alerts/missing/acknowledge").status_code == 404


class TestHealth:

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
