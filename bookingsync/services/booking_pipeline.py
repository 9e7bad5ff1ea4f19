"""
Booking Pipeline

Single-booking path shared by webhooks, the manual trigger and gap fill:

1. Normalize the raw payload (malformed -> skipped, never retried)
2. Under the per-code lock: find rows -> reconcile -> apply
3. Decide on a customer notification and record its outcome on the row

Collaborator failures and unexpected errors while reading or writing rows
come back as a failed PipelineResult instead of raising. Exhausted retries
and unexpected errors are retryable, so the webhook router answers 503.
"""

import time
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..schemas.booking import Booking, NotificationState, PayloadShape
from ..utils.http_retry import UpstreamError
from ..utils.keyed_lock import KeyedLock, booking_locks
from ..utils.logging_config import get_logger
from . import reconciliation
from .booking_fields import NOTIFICATION_STATE
from .booking_normalizer import BookingNormalizer, MalformedPayloadError
from .booking_store import BookingStore
from .notifications import NotificationDispatcher
from .status_transitions import is_significant, select_template

logger = get_logger(__name__)


@dataclass
class PipelineResult:
    """Result of processing one booking event"""
    success: bool
    action: str  # created, updated, unchanged, skipped, failed
    booking_code: Optional[str] = None
    row_id: Optional[str] = None
    fields_written: List[str] = field(default_factory=list)
    rows_deleted: List[str] = field(default_factory=list)
    notification: Optional[str] = None  # template name when a send was attempted
    notification_state: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False


class BookingPipeline:
    def __init__(
        self,
        store: BookingStore,
        normalizer: Optional[BookingNormalizer] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        locks: Optional[KeyedLock] = None
    ):
        self.store = store
        self.normalizer = normalizer or BookingNormalizer()
        self.dispatcher = dispatcher
        self.locks = locks or booking_locks

    def process(self, payload: Any, shape: PayloadShape, notify: bool = True) -> PipelineResult:
        try:
            booking = self.normalizer.normalize(payload, shape)
        except MalformedPayloadError as e:
            logger.warning(f"Skipping malformed {PayloadShape(shape).value} payload: {e}")
            return PipelineResult(success=False, action="skipped", error=str(e))

        return self.ingest(booking, notify=notify)

    def ingest(self, booking: Booking, notify: bool = True) -> PipelineResult:
        """Reconcile an already-normalized booking."""
        code = booking.code
        started = time.monotonic()

        try:
            with self.locks.hold(code):
                rows = self.store.find(code)
                result = reconciliation.reconcile(code, rows, booking)
                outcome = reconciliation.apply(self.store, result)

                pipeline_result = PipelineResult(
                    success=True,
                    action=self._action_name(result),
                    booking_code=code,
                    row_id=outcome.row_id,
                    fields_written=sorted(result.fields) if outcome.written else [],
                    rows_deleted=outcome.deleted
                )

                if notify:
                    self._notify(result, outcome.row_id, pipeline_result)
        except UpstreamError as e:
            logger.error(f"[{code}] Reconciliation failed: {e}")
            return PipelineResult(
                success=False,
                action="failed",
                booking_code=code,
                error=str(e),
                retryable=e.retryable
            )
        except Exception as e:
            # Store bugs or unexpected driver errors: fail this booking only
            logger.error(f"[{code}] Reconciliation failed unexpectedly: {e}", exc_info=True)
            return PipelineResult(
                success=False,
                action="failed",
                booking_code=code,
                error=f"{type(e).__name__}: {e}",
                retryable=True
            )

        logger.booking_reconciled(
            booking_code=code,
            action=pipeline_result.action,
            row_id=pipeline_result.row_id,
            fields_written=pipeline_result.fields_written,
            rows_deleted=len(pipeline_result.rows_deleted),
            duration_ms=round((time.monotonic() - started) * 1000, 1)
        )
        return pipeline_result

    @staticmethod
    def _action_name(result: reconciliation.ReconcileResult) -> str:
        if result.action == reconciliation.ACTION_CREATE:
            return "created"
        if result.is_noop:
            return "unchanged"
        return "updated"

    def _notify(self, result: reconciliation.ReconcileResult, row_id: Optional[str], pipeline_result: PipelineResult):
        if self.dispatcher is None or result.merged is None or row_id is None:
            return

        merged = result.merged
        is_new = result.action == reconciliation.ACTION_CREATE
        pending = merged.notification_state in (None, NotificationState.UNSENT)

        if is_new:
            wanted = True
        else:
            wanted = pending and is_significant(result.previous_status, merged.status)

        template = select_template(result.previous_status, merged.status, is_new=is_new) if wanted else None
        state = self.dispatcher.notify(merged, template) if template else None

        logger.status_notification(
            booking_code=result.code,
            old_status=result.previous_status,
            new_status=merged.status,
            template=template.value if template else None,
            sent=state == NotificationState.SENT
        )

        if state is None:
            return

        pipeline_result.notification = template.value
        pipeline_result.notification_state = state.value
        try:
            self.store.update(row_id, {NOTIFICATION_STATE: state.value})
        except Exception as e:
            # The SMS already went out; only the bookkeeping is lost
            logger.error(f"[{result.code}] Could not record notification state {state.value}: {e}")
