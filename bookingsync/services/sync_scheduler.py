"""
Sync Scheduler

Periodic safety net for missed webhooks. Every run:

1. Lists Checkfront bookings for the lookback window (all pages)
2. Lists local store rows for the same window
3. Treats PAID/PART bookings missing locally as gaps
4. Fills each gap independently (bounded thread pool, per-code lock)
5. Raises at most one operator alert for the whole run

Runs on an APScheduler interval (default every 6 hours) and on demand.
Runs never overlap. The last report lives in memory only.
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..models.integration_alert import AlertSeverity, AlertType
from ..schemas.booking import PayloadShape
from ..utils.http_retry import UpstreamError
from ..utils.logging_config import get_logger
from .booking_fields import BOOKING_CODE
from .booking_normalizer import BookingNormalizer, MalformedPayloadError
from .booking_pipeline import BookingPipeline
from .booking_store import BookingStore
from .checkfront_client import CheckfrontClient
from .operator_alerts import OperatorAlerter

logger = get_logger(__name__)

GAP_STATUSES = frozenset({"PAID", "PART"})
JOB_ID = "booking_reconciliation"


class ReconciliationInProgress(RuntimeError):
    pass


@dataclass
class LookbackWindow:
    start: date
    end: date

    @classmethod
    def around(cls, today: date, days_back: int, days_forward: int) -> "LookbackWindow":
        return cls(start=today - timedelta(days=days_back), end=today + timedelta(days=days_forward))

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class SyncGap:
    code: str
    status: Optional[str] = None
    present_in: str = "checkfront"
    missing_from: str = "store"


@dataclass
class SyncReport:
    """Outcome of one reconciliation run"""
    window: LookbackWindow
    started_at: datetime
    finished_at: Optional[datetime] = None
    success: bool = True
    error: Optional[str] = None
    external_count: int = 0
    local_count: int = 0
    gaps: List[SyncGap] = field(default_factory=list)
    filled: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    alert_sent: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window": self.window.to_dict(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "success": self.success,
            "error": self.error,
            "external_count": self.external_count,
            "local_count": self.local_count,
            "gaps": [
                {"code": g.code, "status": g.status, "present_in": g.present_in, "missing_from": g.missing_from}
                for g in self.gaps
            ],
            "filled": self.filled,
            "failed": self.failed,
            "skipped": self.skipped,
            "alert_sent": self.alert_sent,
        }


def _status_of(record: Dict) -> Optional[str]:
    status = record.get("status_id") or record.get("status")
    return str(status).strip().upper() if status else None


def find_gaps(external: List[Dict], local_codes, missing_from: str = "store") -> List[SyncGap]:
    """Paid or part-paid external bookings whose code has no local row."""
    gaps = []
    seen = set()
    for record in external:
        code = str(record.get("code") or "").strip()
        if not code or code in seen:
            continue
        seen.add(code)

        status = _status_of(record)
        if status in GAP_STATUSES and code not in local_codes:
            gaps.append(SyncGap(code=code, status=status, missing_from=missing_from))
    return gaps


def format_gap_alert(gaps: List[SyncGap], example_limit: int, filled: int = 0) -> str:
    examples = ", ".join(g.code for g in gaps[:example_limit])
    message = f"Booking sync gap: {len(gaps)} paid booking(s) missing locally: {examples}"
    if len(gaps) > example_limit:
        message += f" ...and {len(gaps) - example_limit} more"
    if filled:
        message += f". {filled} recreated automatically."
    return message


class SyncScheduler:
    def __init__(
        self,
        checkfront: CheckfrontClient,
        store: BookingStore,
        pipeline: BookingPipeline,
        alerter: Optional[OperatorAlerter] = None,
        normalizer: Optional[BookingNormalizer] = None,
        interval_hours: Optional[float] = None,
        days_back: Optional[int] = None,
        days_forward: Optional[int] = None,
        concurrency: Optional[int] = None,
        example_limit: Optional[int] = None
    ):
        self.checkfront = checkfront
        self.store = store
        self.pipeline = pipeline
        self.alerter = alerter
        self.normalizer = normalizer or pipeline.normalizer
        self.interval_hours = interval_hours or settings.reconciliation_interval_hours
        self.days_back = settings.reconciliation_days_back if days_back is None else days_back
        self.days_forward = settings.reconciliation_days_forward if days_forward is None else days_forward
        self.concurrency = max(1, concurrency or settings.gap_fill_concurrency)
        self.example_limit = example_limit or settings.gap_alert_example_limit
        self.tz = ZoneInfo(settings.booking_timezone)

        self._run_lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self.last_report: Optional[SyncReport] = None

    # ==================
    # Run
    # ==================

    def default_window(self) -> LookbackWindow:
        return LookbackWindow.around(datetime.now(self.tz).date(), self.days_back, self.days_forward)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def run_reconciliation(self, window: Optional[LookbackWindow] = None) -> SyncReport:
        """One full pass. Raises ReconciliationInProgress if a run is already active."""
        if not self._run_lock.acquire(blocking=False):
            raise ReconciliationInProgress("A reconciliation run is already in progress")

        try:
            self._stop_requested.clear()
            report = self._run(window or self.default_window())
            self.last_report = report
            return report
        finally:
            self._run_lock.release()

    def request_stop(self):
        """Stop starting new gap fills; in-flight ones finish."""
        self._stop_requested.set()

    def _run(self, window: LookbackWindow) -> SyncReport:
        report = SyncReport(window=window, started_at=datetime.now(timezone.utc))
        logger.info(f"Reconciliation run for {window.start} to {window.end}")

        try:
            external = self.checkfront.list_bookings(window.start, window.end)
            local_rows = self.store.list_between(window.start, window.end)
        except UpstreamError as e:
            report.success = False
            report.error = str(e)
            report.finished_at = datetime.now(timezone.utc)
            logger.error(f"Reconciliation aborted, could not list bookings: {e}")
            if self.alerter:
                report.alert_sent = self.alerter.alert(
                    f"Booking sync failed: {e.message}",
                    alert_type=AlertType.SYNC_ERROR,
                    severity=AlertSeverity.HIGH,
                    payload={"window": window.to_dict(), "error": str(e)}
                )
            return report

        local_codes = {
            str(row.fields.get(BOOKING_CODE)).strip()
            for row in local_rows
            if row.fields.get(BOOKING_CODE)
        }
        report.external_count = len(external)
        report.local_count = len(local_rows)
        report.gaps = find_gaps(external, local_codes, missing_from=self.store.name)

        if report.gaps:
            logger.sync_gap_detected(len(report.gaps), [g.code for g in report.gaps[:self.example_limit]])
            self._fill_gaps(report, external)
            report.alert_sent = self._alert_gaps(report)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Reconciliation finished: {report.external_count} external, {report.local_count} local, "
            f"{len(report.gaps)} gaps, {len(report.filled)} filled, {len(report.failed)} failed"
        )
        return report

    # ==================
    # Gap fill
    # ==================

    def _fill_gaps(self, report: SyncReport, external: List[Dict]):
        records = {}
        for record in external:
            code = str(record.get("code") or "").strip()
            records.setdefault(code, record)

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="gap-fill") as pool:
            futures = {
                gap.code: pool.submit(self._fill_gap, records[gap.code])
                for gap in report.gaps
            }
            for code, future in futures.items():
                error = future.result()
                if error is None:
                    report.filled.append(code)
                elif error == "cancelled":
                    report.skipped.append(code)
                else:
                    report.failed[code] = error

    def _fill_gap(self, record: Dict) -> Optional[str]:
        """Create one missing booking. Returns None on success, else an error string."""
        code = record.get("code")
        if self._stop_requested.is_set():
            return "cancelled"

        try:
            booking = self._load_booking(record)
            result = self.pipeline.ingest(booking, notify=False)
        except MalformedPayloadError as e:
            logger.error(f"[{code}] Gap fill skipped: {e}")
            return str(e)
        except Exception as e:
            logger.error(f"[{code}] Gap fill failed: {e}", exc_info=True)
            return f"{type(e).__name__}: {e}"

        if not result.success:
            return result.error or "failed"
        return None

    def _load_booking(self, record: Dict):
        """Full detail when the index gives a booking id, else the index summary."""
        booking_id = record.get("booking_id")
        if booking_id and str(booking_id).isdigit():
            try:
                detail = self.checkfront.get_booking(booking_id)
            except UpstreamError as e:
                logger.warning(f"[{record.get('code')}] Full detail unavailable: {e}")
                detail = None

            if detail:
                try:
                    return self.normalizer.normalize(detail, PayloadShape.POLLED)
                except MalformedPayloadError as e:
                    logger.warning(f"[{record.get('code')}] Full detail unusable ({e}), using index record")

        return self.normalizer.normalize(record, PayloadShape.POLLED)

    def _alert_gaps(self, report: SyncReport) -> bool:
        if not self.alerter:
            return False
        message = format_gap_alert(report.gaps, self.example_limit, filled=len(report.filled))
        return self.alerter.alert(
            message,
            alert_type=AlertType.SYNC_GAP,
            severity=AlertSeverity.MEDIUM if not report.failed else AlertSeverity.HIGH,
            payload={
                "window": report.window.to_dict(),
                "gaps": [g.code for g in report.gaps],
                "filled": report.filled,
                "failed": report.failed,
            }
        )

    # ==================
    # Scheduling
    # ==================

    async def _scheduled_job(self):
        try:
            await asyncio.to_thread(self.run_reconciliation)
        except ReconciliationInProgress:
            logger.warning("Scheduled reconciliation skipped: previous run still active")
        except Exception as e:
            logger.error(f"Scheduled reconciliation failed: {e}", exc_info=True)

    def start(self, startup_delay_seconds: Optional[int] = None) -> bool:
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Reconciliation scheduler is already running")
            return True

        delay = settings.reconciliation_startup_delay_seconds if startup_delay_seconds is None else startup_delay_seconds
        try:
            self._scheduler = AsyncIOScheduler(timezone=settings.booking_timezone)
            self._scheduler.add_job(
                self._scheduled_job,
                IntervalTrigger(hours=self.interval_hours, timezone=settings.booking_timezone),
                id=JOB_ID,
                name="Checkfront -> store reconciliation",
                next_run_time=datetime.now(self.tz) + timedelta(seconds=delay),
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )
            self._scheduler.start()
            logger.info(f"Reconciliation scheduler started (every {self.interval_hours}h, first run in {delay}s)")
            return True
        except Exception as e:
            logger.error(f"Failed to start reconciliation scheduler: {e}")
            return False

    def stop(self) -> bool:
        self.request_stop()
        if self._scheduler is None:
            return True
        try:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Reconciliation scheduler stopped")
            return True
        except Exception as e:
            logger.error(f"Failed to stop reconciliation scheduler: {e}")
            return False

    def status(self) -> Dict[str, Any]:
        next_run = None
        scheduled = self._scheduler is not None and self._scheduler.running
        if scheduled:
            job = self._scheduler.get_job(JOB_ID)
            if job and job.next_run_time:
                next_run = job.next_run_time.isoformat()

        return {
            "scheduled": scheduled,
            "run_in_progress": self.is_running,
            "interval_hours": self.interval_hours,
            "days_back": self.days_back,
            "days_forward": self.days_forward,
            "alerting_enabled": self.alerter is not None,
            "store": self.store.name,
            "next_run": next_run,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }
