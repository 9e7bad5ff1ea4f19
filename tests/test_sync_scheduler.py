"""
Tests for the Sync Scheduler

Tests cover:
- Gap detection (only PAID/PART codes missing locally)
- Gap fill from full detail and from the index summary
- Per-gap failure isolation
- One operator alert per run
- Non-overlapping runs and cooperative stop
"""

import pytest
import threading
from datetime import date
from unittest.mock import MagicMock

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

WINDOW_START = date(2025, 12, 1)
WINDOW_END = date(2025, 12, 31)


def index_record(booking_id, code, status, **extra):
    record = {
        "booking_id": str(booking_id),
        "code": code,
        "status_id": status,
        "customer_name": f"Customer {code}",
        "total": "300.00",
        "summary": "Pontoon BBQ Boat",
        "date_desc": "Sat Dec 13, 2025",
    }
    record.update(extra)
    return record


@pytest.fixture
def checkfront():
    checkfront = MagicMock()
    checkfront.list_bookings.return_value = [
        index_record(1, "A", "PAID"),
        index_record(2, "B", "PEND"),
        index_record(3, "C", "PAID"),
    ]
    checkfront.get_booking.return_value = None
    return checkfront


@pytest.fixture
def alerter():
    alerter = MagicMock()
    alerter.alert.return_value = True
    return alerter


@pytest.fixture
def seeded_store(store):
    from bookingsync.services.booking_fields import BOOKING_CODE, BOOKING_DATE, STATUS

    store.add({BOOKING_CODE: "A", STATUS: "PAID", BOOKING_DATE: "2025-12-10"})
    store.add({BOOKING_CODE: "B", STATUS: "PEND", BOOKING_DATE: "2025-12-11"})
    return store


@pytest.fixture
def scheduler(checkfront, seeded_store, alerter):
    from bookingsync.services.booking_normalizer import BookingNormalizer
    from bookingsync.services.booking_pipeline import BookingPipeline
    from bookingsync.services.sync_scheduler import SyncScheduler
    from bookingsync.utils.keyed_lock import KeyedLock

    pipeline = BookingPipeline(
        store=seeded_store,
        normalizer=BookingNormalizer(tz_name="Australia/Sydney"),
        dispatcher=MagicMock(),
        locks=KeyedLock()
    )
    return SyncScheduler(
        checkfront=checkfront,
        store=seeded_store,
        pipeline=pipeline,
        alerter=alerter,
        concurrency=2,
        example_limit=3
    )


@pytest.fixture
def window():
    from bookingsync.services.sync_scheduler import LookbackWindow
    return LookbackWindow(WINDOW_START, WINDOW_END)


class TestFindGaps:

    def test_only_missing_paid_codes(self):
        """A present, B wrong status, C is the gap"""
        from bookingsync.services.sync_scheduler import find_gaps

        gaps = find_gaps(
            [index_record(1, "A", "PAID"), index_record(2, "B", "PEND"), index_record(3, "C", "PAID")],
            {"A", "B"}
        )

        assert [g.code for g in gaps] == ["C"]
        assert gaps[0].present_in == "checkfront"

    def test_part_paid_counts_and_duplicates_collapse(self):
        from bookingsync.services.sync_scheduler import find_gaps

        gaps = find_gaps(
            [index_record(1, "D", "PART"), index_record(1, "D", "PART"), index_record(2, "E", "VOID")],
            set()
        )

        assert [g.code for g in gaps] == ["D"]

    def test_alert_message_truncates_examples(self):
        from bookingsync.services.sync_scheduler import SyncGap, format_gap_alert

        gaps = [SyncGap(code=f"G{i}") for i in range(5)]

        message = format_gap_alert(gaps, example_limit=3)

        assert "5 paid booking(s)" in message
        assert "G0, G1, G2" in message
        assert "G3" not in message
        assert "...and 2 more" in message


class TestRunReconciliation:
    """Tests for SyncScheduler.run_reconciliation()"""

    def test_fills_gap_and_alerts_once(self, scheduler, seeded_store, alerter, window):
        from bookingsync.services.booking_fields import BOOKING_DATE, BOOKING_ITEMS, STATUS

        report = scheduler.run_reconciliation(window)

        assert report.success
        assert [g.code for g in report.gaps] == ["C"]
        assert report.filled == ["C"]
        assert report.failed == {}
        assert report.external_count == 3
        assert report.local_count == 2
        assert report.alert_sent

        alerter.alert.assert_called_once()
        assert "C" in alerter.alert.call_args[0][0]

        created = seeded_store.rows_for("C")
        assert len(created) == 1
        assert created[0].fields[STATUS] == "PAID"
        assert created[0].fields[BOOKING_ITEMS] == "Pontoon BBQ Boat"
        assert created[0].fields[BOOKING_DATE] == "2025-12-13"

    def test_window_passed_to_both_sources(self, scheduler, checkfront, window):
        scheduler.run_reconciliation(window)

        checkfront.list_bookings.assert_called_once_with(WINDOW_START, WINDOW_END)

    def test_uses_full_detail_when_available(self, scheduler, checkfront, seeded_store, window):
        from bookingsync.services.booking_fields import PHONE_NUMBER

        checkfront.get_booking.return_value = {
            "code": "C",
            "status_id": "PAID",
            "customer": {"name": "Carol", "phone": "+61400000007"},
            "order": {"total": "300.00", "items": {"item": [{"sku": "pontoon-bbq-boat", "category_id": "2"}]}},
        }

        scheduler.run_reconciliation(window)

        checkfront.get_booking.assert_called_once_with("3")
        assert seeded_store.rows_for("C")[0].fields[PHONE_NUMBER] == "+61400000007"

    def test_gap_fill_never_notifies_customers(self, scheduler, window):
        scheduler.run_reconciliation(window)

        scheduler.pipeline.dispatcher.notify.assert_not_called()

    def test_failure_isolated_per_gap(self, scheduler, checkfront, seeded_store, alerter, window):
        checkfront.list_bookings.return_value = [
            index_record(3, "C", "PAID"),
            index_record(4, "D", "PART"),
        ]
        seeded_store.fail_create_codes = {"C"}

        report = scheduler.run_reconciliation(window)

        assert report.filled == ["D"]
        assert list(report.failed) == ["C"]
        alerter.alert.assert_called_once()

    def test_database_error_isolated_per_gap(self, scheduler, checkfront, seeded_store, alerter, window):
        """A raw SQLAlchemy error on one gap does not abort the run"""
        from sqlalchemy.exc import OperationalError
        from bookingsync.services.booking_fields import BOOKING_CODE

        checkfront.list_bookings.return_value = [
            index_record(3, "C", "PAID"),
            index_record(4, "D", "PAID"),
        ]
        real_create = seeded_store.create

        def create(fields):
            if fields.get(BOOKING_CODE) == "C":
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return real_create(fields)

        seeded_store.create = create

        report = scheduler.run_reconciliation(window)

        assert report.success
        assert report.filled == ["D"]
        assert list(report.failed) == ["C"]
        assert "OperationalError" in report.failed["C"]
        assert scheduler.last_report is report
        alerter.alert.assert_called_once()
        assert len(seeded_store.rows_for("D")) == 1

    def test_no_gaps_no_alert(self, scheduler, checkfront, alerter, window):
        checkfront.list_bookings.return_value = [index_record(1, "A", "PAID")]

        report = scheduler.run_reconciliation(window)

        assert report.gaps == []
        assert not report.alert_sent
        alerter.alert.assert_not_called()

    def test_fetch_failure_reported(self, scheduler, checkfront, alerter, window):
        from bookingsync.models.integration_alert import AlertType
        from bookingsync.utils.http_retry import UpstreamError

        checkfront.list_bookings.side_effect = UpstreamError("checkfront", "HTTP 503")

        report = scheduler.run_reconciliation(window)

        assert not report.success
        assert "HTTP 503" in report.error
        assert alerter.alert.call_args.kwargs["alert_type"] == AlertType.SYNC_ERROR

    def test_last_report_in_status(self, scheduler, window):
        assert scheduler.status()["last_report"] is None

        scheduler.run_reconciliation(window)
        status = scheduler.status()

        assert status["last_report"]["filled"] == ["C"]
        assert status["run_in_progress"] is False
        assert status["scheduled"] is False
        assert status["store"] == "memory"


class TestRunExclusion:

    def test_overlapping_run_rejected(self, scheduler, checkfront, window):
        from bookingsync.services.sync_scheduler import ReconciliationInProgress

        started = threading.Event()
        release = threading.Event()

        def slow_listing(start, end):
            started.set()
            release.wait(5)
            return []

        checkfront.list_bookings.side_effect = slow_listing
        worker = threading.Thread(target=scheduler.run_reconciliation, args=(window,))
        worker.start()
        try:
            assert started.wait(5)
            assert scheduler.is_running
            with pytest.raises(ReconciliationInProgress):
                scheduler.run_reconciliation(window)
        finally:
            release.set()
            worker.join(5)

        assert not scheduler.is_running

    def test_stop_request_skips_unstarted_gaps(self, scheduler, checkfront, seeded_store, window):
        records = [index_record(3, "C", "PAID")]

        def listing_then_stop(start, end):
            scheduler.request_stop()
            return records

        checkfront.list_bookings.side_effect = listing_then_stop

        report = scheduler.run_reconciliation(window)

        assert report.skipped == ["C"]
        assert report.filled == []
        assert seeded_store.rows_for("C") == []
