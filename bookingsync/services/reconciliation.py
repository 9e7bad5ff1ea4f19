"""
Reconciliation Engine

Collapses every store row for one booking code into a single canonical row
and merges the latest sighting of the booking into it.

Canonical row selection:
- If any row is PAID: the PAID row with the highest total
- Otherwise: the row with the highest status rank
- Ties: most recently created, then highest row id

reconcile() is pure and returns a write-set; apply() executes it against a
store, updating the canonical row BEFORE deleting any duplicate so a failed
update can never leave a code with zero rows.
"""

import logging
from dataclasses import dataclass, field
from datetime import timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from ..schemas.booking import Booking, NotificationState
from . import addons
from .booking_fields import diff_fields, from_fields, to_fields
from .booking_store import BookingStore, StoredRow

logger = logging.getLogger(__name__)

STATUS_RANKS = {
    "PAID": 4,
    "PART": 3,
    "WAIT": 2,
    "HOLD": 2,
    "PEND": 1,
}

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_NOOP = "noop"


def status_rank(status) -> int:
    if not status:
        return 0
    return STATUS_RANKS.get(str(status).strip().upper(), 0)


def _is_paid(status) -> bool:
    return bool(status) and str(status).strip().upper() == "PAID"


@dataclass
class ReconcileResult:
    """Write-set for one booking code"""
    code: str
    action: str
    canonical_row_id: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    delete_row_ids: List[str] = field(default_factory=list)
    previous_status: Optional[str] = None
    merged: Optional[Booking] = None

    @property
    def is_noop(self) -> bool:
        return self.action == ACTION_NOOP or (
            self.action == ACTION_UPDATE and not self.fields and not self.delete_row_ids
        )

    @property
    def status_changed(self) -> bool:
        new_status = self.merged.status if self.merged else None
        return (self.previous_status or None) != (new_status or None)


@dataclass
class ApplyOutcome:
    row_id: Optional[str] = None
    written: bool = False
    deleted: List[str] = field(default_factory=list)
    delete_failures: List[str] = field(default_factory=list)


def _created_key(row: StoredRow) -> float:
    if row.created_at is None:
        return float("-inf")
    created = row.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created.timestamp()


def _selection_key(row: StoredRow, booking: Booking):
    amount = Decimal("0")
    if _is_paid(booking.status) and booking.total_amount is not None:
        amount = booking.total_amount
    return (status_rank(booking.status), amount, _created_key(row), row.row_id)


def select_canonical(rows: Sequence[StoredRow]) -> Optional[StoredRow]:
    """Deterministic winner among rows of the same code, independent of input order."""
    if not rows:
        return None
    return max(rows, key=lambda row: _selection_key(row, from_fields(row.fields)))


def merge_booking(current: Booking, incoming: Booking) -> Booking:
    """
    Overlay incoming onto current.

    - Non-None incoming scalars win
    - add_ons merged by normalized name
    - staff_assignments always kept from current
    - notification_state reset to UNSENT when the status changes
    """
    merged = current.model_copy(deep=True)

    for attr in ("name", "email", "phone"):
        value = getattr(incoming.customer, attr)
        if value is not None:
            setattr(merged.customer, attr, value)

    for attr in ("booking_date", "end_date", "start_time", "finish_time", "created_date", "duration"):
        value = getattr(incoming.schedule, attr)
        if value is not None:
            setattr(merged.schedule, attr, value)

    if incoming.status is not None:
        merged.status = incoming.status
    if incoming.total_amount is not None:
        merged.total_amount = incoming.total_amount
    if incoming.primary_item is not None:
        merged.primary_item = incoming.primary_item

    merged.add_ons = addons.merge(current.add_ons, incoming.add_ons)

    if (merged.status or None) != (current.status or None):
        merged.notification_state = NotificationState.UNSENT

    return merged


def _carry_over_staff(merged: Booking, duplicates: List[StoredRow]):
    """Fill empty staff slots on the survivor from the best-ranked duplicate that has them."""
    staff = merged.staff_assignments
    ranked = sorted(
        ((row, from_fields(row.fields)) for row in duplicates),
        key=lambda pair: _selection_key(*pair),
        reverse=True
    )

    for _, booking in ranked:
        if not staff.onboarding_staff_id and booking.staff_assignments.onboarding_staff_id:
            staff.onboarding_staff_id = booking.staff_assignments.onboarding_staff_id
        if not staff.deloading_staff_id and booking.staff_assignments.deloading_staff_id:
            staff.deloading_staff_id = booking.staff_assignments.deloading_staff_id
        if staff.onboarding_staff_id and staff.deloading_staff_id:
            break


def reconcile(
    code: str,
    candidate_rows: Sequence[StoredRow],
    incoming: Optional[Booking]
) -> ReconcileResult:
    if incoming is None:
        return ReconcileResult(code=code, action=ACTION_NOOP)

    if not candidate_rows:
        created = incoming.model_copy(deep=True)
        created.code = code
        created.notification_state = NotificationState.UNSENT
        return ReconcileResult(
            code=code,
            action=ACTION_CREATE,
            fields=to_fields(created),
            merged=created
        )

    canonical = select_canonical(candidate_rows)
    current = from_fields(canonical.fields, code=code)
    merged = merge_booking(current, incoming)

    duplicates = [row for row in candidate_rows if row.row_id != canonical.row_id]
    delete_row_ids = []
    if _is_paid(merged.status) and duplicates:
        _carry_over_staff(merged, duplicates)
        delete_row_ids = sorted(row.row_id for row in duplicates)

    return ReconcileResult(
        code=code,
        action=ACTION_UPDATE,
        canonical_row_id=canonical.row_id,
        fields=diff_fields(canonical.fields, to_fields(merged)),
        delete_row_ids=delete_row_ids,
        previous_status=current.status,
        merged=merged
    )


def apply(store: BookingStore, result: ReconcileResult) -> ApplyOutcome:
    """
    Execute a write-set.

    Update/create errors propagate and nothing is deleted. A failed delete is
    logged and the rest continue; the next reconciliation of the code retries it.
    """
    if result.action == ACTION_NOOP:
        return ApplyOutcome()

    if result.action == ACTION_CREATE:
        row = store.create(result.fields)
        return ApplyOutcome(row_id=row.row_id, written=True)

    outcome = ApplyOutcome(row_id=result.canonical_row_id)
    if result.fields:
        store.update(result.canonical_row_id, result.fields)
        outcome.written = True

    for row_id in result.delete_row_ids:
        try:
            store.delete(row_id)
            outcome.deleted.append(row_id)
        except Exception as e:
            logger.error(f"[{result.code}] Failed to delete duplicate row {row_id}: {e}")
            outcome.delete_failures.append(row_id)

    if outcome.deleted:
        logger.info(f"[{result.code}] Removed {len(outcome.deleted)} duplicate row(s)")

    return outcome
