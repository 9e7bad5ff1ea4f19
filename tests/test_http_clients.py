"""
Tests for outbound HTTP: retry policy, Checkfront, Airtable and Twilio clients

All traffic goes through httpx.MockTransport.
"""

import json
import pytest
from datetime import date, datetime, timezone
from unittest.mock import patch

import httpx

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


def mock_client(handler, **kwargs):
    return httpx.Client(transport=httpx.MockTransport(handler), **kwargs)


class TestRequestWithRetry:
    """Tests for request_with_retry()"""

    def test_retries_server_errors_with_backoff(self):
        from bookingsync.utils.http_retry import request_with_retry

        responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json={"ok": True})])
        delays = []

        response = request_with_retry(
            mock_client(lambda request: next(responses)), "GET", "https://api.test/x", "test",
            max_retries=3, base_delay=1.0, max_delay=30.0, sleep=delays.append
        )

        assert response.json() == {"ok": True}
        assert delays == [1.0, 2.0]

    def test_exhaustion_raises_retryable(self):
        from bookingsync.utils.http_retry import UpstreamError, request_with_retry

        delays = []
        with pytest.raises(UpstreamError) as exc_info:
            request_with_retry(
                mock_client(lambda request: httpx.Response(429)), "GET", "https://api.test/x", "test",
                max_retries=3, base_delay=1.0, max_delay=1.5, sleep=delays.append
            )

        assert exc_info.value.retryable
        assert exc_info.value.status_code == 429
        assert delays == [1.0, 1.5]

    def test_client_error_not_retried(self):
        from bookingsync.utils.http_retry import UpstreamError, request_with_retry

        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(422, json={"error": {"message": "Invalid field"}})

        with pytest.raises(UpstreamError) as exc_info:
            request_with_retry(mock_client(handler), "POST", "https://api.test/x", "test", sleep=lambda d: None)

        assert not exc_info.value.retryable
        assert exc_info.value.message == "Invalid field"
        assert len(calls) == 1

    def test_transport_errors_retried(self):
        from bookingsync.utils.http_retry import UpstreamError, request_with_retry

        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(UpstreamError) as exc_info:
            request_with_retry(
                mock_client(handler), "GET", "https://api.test/x", "test",
                max_retries=2, sleep=lambda d: None
            )

        assert exc_info.value.retryable
        assert exc_info.value.status_code == 0


class TestCheckfrontClient:
    """Tests for CheckfrontClient"""

    def test_list_bookings_follows_pagination(self):
        from bookingsync.services.checkfront_client import CheckfrontClient

        seen_params = []

        def handler(request):
            params = dict(request.url.params)
            seen_params.append(params)
            page = int(params["page"])
            entry = {"booking_id": str(page), "code": f"CF-{page}", "status_id": "PAID"}
            return httpx.Response(200, json={
                "request": {"page": page, "pages": 2},
                "booking/index": {"1": entry, "meta": "ignored"},
            })

        client = CheckfrontClient(host="example.checkfront.com", client=mock_client(handler))

        bookings = client.list_bookings(date(2025, 12, 1), date(2025, 12, 31))

        assert [b["code"] for b in bookings] == ["CF-1", "CF-2"]
        assert seen_params[0]["start_date"] == "2025-12-01"
        assert seen_params[0]["end_date"] == "2025-12-31"
        assert len(seen_params) == 2

    def test_list_bookings_page_failure_raises(self):
        from bookingsync.services.checkfront_client import CheckfrontClient
        from bookingsync.utils.http_retry import UpstreamError

        client = CheckfrontClient(
            host="example.checkfront.com",
            client=mock_client(lambda request: httpx.Response(401, json={"error": "unauthorized"}))
        )

        with pytest.raises(UpstreamError):
            client.list_bookings(date(2025, 12, 1), date(2025, 12, 31))

    def test_get_booking_returns_detail_or_none(self):
        from bookingsync.services.checkfront_client import CheckfrontClient

        def handler(request):
            if request.url.path.endswith("/booking/42"):
                return httpx.Response(200, json={"booking": {"code": "CF-42"}})
            return httpx.Response(404, json={"error": "not found"})

        client = CheckfrontClient(host="example.checkfront.com", client=mock_client(handler))

        assert client.get_booking(42) == {"code": "CF-42"}
        assert client.get_booking(7) is None

    def test_find_booking_by_code(self):
        from bookingsync.services.checkfront_client import CheckfrontClient

        seen = []

        def handler(request):
            seen.append(request.url)
            if request.url.path.endswith("/booking/index"):
                return httpx.Response(200, json={
                    "request": {"pages": 1},
                    "booking/index": {
                        "1": {"booking_id": "5", "code": "OTHER"},
                        "2": {"booking_id": "6", "code": "WANTED"},
                    },
                })
            return httpx.Response(200, json={"booking": {"code": "WANTED", "customer": {"phone": "+61400000005"}}})

        client = CheckfrontClient(host="example.checkfront.com", client=mock_client(handler))

        found = client.find_booking_by_code("WANTED", today=date(2025, 12, 1))

        assert found["customer"]["phone"] == "+61400000005"
        assert seen[0].params["start_date"] == "2025-06-01"
        assert seen[0].params["end_date"] == "2026-06-02"
        assert seen[1].path.endswith("/booking/6")

    def test_find_booking_by_code_missing(self):
        from bookingsync.services.checkfront_client import CheckfrontClient

        client = CheckfrontClient(
            host="example.checkfront.com",
            client=mock_client(lambda request: httpx.Response(200, json={"booking/index": {}}))
        )

        assert client.find_booking_by_code("NOPE") is None


class TestAirtableStore:
    """Tests for AirtableBookingStore"""

    def _store(self, handler):
        from bookingsync.services.airtable_store import AirtableBookingStore
        return AirtableBookingStore(api_key="key", base_id="app1", table_id="tbl1", client=mock_client(handler))

    def test_find_filters_by_code_and_follows_offset(self):
        requests = []

        def handler(request):
            requests.append(request)
            if "offset" not in request.url.params:
                return httpx.Response(200, json={
                    "records": [{"id": "rec1", "createdTime": "2025-12-01T10:00:00.000Z", "fields": {"Booking Code": "X1"}}],
                    "offset": "itr1",
                })
            return httpx.Response(200, json={
                "records": [{"id": "rec2", "createdTime": "2025-12-02T10:00:00.000Z", "fields": {"Booking Code": "X1"}}],
            })

        rows = self._store(handler).find("X1")

        assert [r.row_id for r in rows] == ["rec1", "rec2"]
        assert rows[0].created_at == datetime(2025, 12, 1, 10, 0, tzinfo=timezone.utc)
        assert requests[0].url.params["filterByFormula"] == '{Booking Code} = "X1"'
        assert requests[0].headers["Authorization"] == "Bearer key"
        assert requests[1].url.params["offset"] == "itr1"

    def test_formula_escapes_quotes(self):
        from bookingsync.services.airtable_store import escape_formula_string

        assert escape_formula_string('A"B') == 'A\\"B'

    def test_update_patches_only_given_fields(self):
        captured = {}

        def handler(request):
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "rec1", "fields": {"Status": "PAID"}})

        row = self._store(handler).update("rec1", {"Status": "PAID"})

        assert captured["method"] == "PATCH"
        assert captured["path"].endswith("/app1/tbl1/rec1")
        assert captured["body"] == {"fields": {"Status": "PAID"}}
        assert row.row_id == "rec1"

    def test_create_and_delete(self):
        methods = []

        def handler(request):
            methods.append(request.method)
            if request.method == "POST":
                return httpx.Response(200, json={"id": "recNew", "createdTime": "2025-12-01T00:00:00.000Z", "fields": {}})
            return httpx.Response(200, json={"deleted": True, "id": "recOld"})

        store = self._store(handler)

        assert store.create({"Booking Code": "X2"}).row_id == "recNew"
        store.delete("recOld")

        assert methods == ["POST", "DELETE"]

    def test_list_between_formula(self):
        captured = {}

        def handler(request):
            captured["formula"] = request.url.params["filterByFormula"]
            return httpx.Response(200, json={"records": []})

        self._store(handler).list_between(date(2025, 12, 1), date(2025, 12, 31))

        assert "'2025-12-01'" in captured["formula"]
        assert "'2025-12-31'" in captured["formula"]

    def test_server_errors_surface_as_upstream_error(self):
        from bookingsync.utils.http_retry import UpstreamError

        with patch("bookingsync.utils.http_retry.time.sleep"):
            with pytest.raises(UpstreamError):
                self._store(lambda request: httpx.Response(500)).find("X1")


class TestTwilioSmsClient:
    """Tests for TwilioSmsClient.send()"""

    def test_send_posts_form(self):
        from bookingsync.services.notifications import TwilioSmsClient

        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["body"] = request.content.decode()
            return httpx.Response(201, json={"sid": "SM1"})

        sms = TwilioSmsClient(account_sid="AC1", auth_token="tok", from_number="+61400000000", client=mock_client(handler))

        assert sms.send("+61400000001", "Hello") is True
        assert captured["path"] == "/2010-04-01/Accounts/AC1/Messages.json"
        assert "To=%2B61400000001" in captured["body"]
        assert "Body=Hello" in captured["body"]

    def test_send_failure_returns_false(self):
        from bookingsync.services.notifications import TwilioSmsClient

        sms = TwilioSmsClient(
            account_sid="AC1", auth_token="tok", from_number="+61400000000",
            client=mock_client(lambda request: httpx.Response(400, json={"message": "Invalid To"}))
        )

        assert sms.send("bad", "Hello") is False

    def test_unconfigured_does_not_send(self):
        from bookingsync.services.notifications import TwilioSmsClient

        def handler(request):
            raise AssertionError("no request expected")

        sms = TwilioSmsClient(account_sid="", auth_token="", from_number="", client=mock_client(handler))

        assert sms.send("+61400000001", "Hello") is False
