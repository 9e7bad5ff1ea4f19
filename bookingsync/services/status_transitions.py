"""
Status Transition Classifier

Decides whether a booking status change deserves a customer notification.
Rules are evaluated in order; the first match wins:

1. Into VOID / STOP                          -> significant
2. Into PAID from PEND / HOLD / WAIT / PART  -> significant
3. No change                                 -> not significant
4. PEND->HOLD, PEND->WAIT, HOLD<->WAIT       -> not significant
5. Into PART from PEND / HOLD / WAIT         -> significant
6. Anything else                             -> not significant

Rule 1 runs before rule 3, so a repeated VOID still counts.
"""

from enum import Enum
from typing import Optional

TERMINAL_STATUSES = frozenset({"VOID", "STOP"})
PRE_PAYMENT_STATUSES = frozenset({"PEND", "HOLD", "WAIT"})

QUIET_TRANSITIONS = frozenset({
    ("PEND", "HOLD"),
    ("PEND", "WAIT"),
    ("HOLD", "WAIT"),
    ("WAIT", "HOLD"),
})


class NotificationTemplate(str, Enum):
    NEW_BOOKING = "NEW_BOOKING"
    CANCELLED = "CANCELLED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PARTIAL_PAYMENT = "PARTIAL_PAYMENT"
    UPDATED = "UPDATED"


def _code(status) -> Optional[str]:
    if status is None:
        return None
    code = str(status).strip().upper()
    return code or None


def is_significant(old_status, new_status) -> bool:
    old = _code(old_status)
    new = _code(new_status)

    if new in TERMINAL_STATUSES:
        return True
    if new == "PAID" and old in PRE_PAYMENT_STATUSES | {"PART"}:
        return True
    if old == new:
        return False
    if (old, new) in QUIET_TRANSITIONS:
        return False
    if new == "PART" and old in PRE_PAYMENT_STATUSES:
        return True
    return False


def select_template(old_status, new_status, is_new: bool = False) -> NotificationTemplate:
    """Template for a notification that has already been judged worth sending."""
    if is_new:
        return NotificationTemplate.NEW_BOOKING

    new = _code(new_status)
    if new in TERMINAL_STATUSES:
        return NotificationTemplate.CANCELLED
    if new == "PAID":
        return NotificationTemplate.PAYMENT_CONFIRMED
    if new == "PART":
        return NotificationTemplate.PARTIAL_PAYMENT
    return NotificationTemplate.UPDATED
