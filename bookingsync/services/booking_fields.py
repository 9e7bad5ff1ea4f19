"""
Booking <-> store row field map.

Rows in every store are flat dicts keyed by the Airtable "Bookings Dashboard"
column names. Absent values are omitted, never written as blanks, so a
partial Booking can never erase data already on a row.
"""

from datetime import date
from typing import Any, Dict, Optional

from ..schemas.booking import (
    Booking,
    Customer,
    NotificationState,
    Schedule,
    StaffAssignments,
    to_money,
)
from . import addons

BOOKING_CODE = "Booking Code"
CUSTOMER_NAME = "Customer Name"
CUSTOMER_EMAIL = "Customer Email"
PHONE_NUMBER = "Phone Number"
STATUS = "Status"
TOTAL_AMOUNT = "Total Amount"
BOOKING_DATE = "Booking Date"
END_DATE = "End Date"
CREATED_DATE = "Created Date"
START_TIME = "Start Time"
FINISH_TIME = "Finish Time"
DURATION = "Duration"
BOOKING_ITEMS = "Booking Items"
ADD_ONS = "Add-ons"
ONBOARDING_EMPLOYEE = "Onboarding Employee"
DELOADING_EMPLOYEE = "Deloading Employee"
NOTIFICATION_STATE = "Notification State"

STAFF_FIELDS = (ONBOARDING_EMPLOYEE, DELOADING_EMPLOYEE)


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == []


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _linked_id(value) -> Optional[str]:
    """Linked-record fields hold a list of record ids; only the first is used."""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def to_fields(booking: Booking) -> Dict[str, Any]:
    total = float(booking.total_amount) if booking.total_amount is not None else None
    staff = booking.staff_assignments

    fields = {
        BOOKING_CODE: booking.code,
        CUSTOMER_NAME: booking.customer.name,
        CUSTOMER_EMAIL: booking.customer.email,
        PHONE_NUMBER: booking.customer.phone,
        STATUS: booking.status,
        TOTAL_AMOUNT: total,
        BOOKING_DATE: _iso(booking.schedule.booking_date),
        END_DATE: _iso(booking.schedule.end_date),
        CREATED_DATE: _iso(booking.schedule.created_date),
        START_TIME: booking.schedule.start_time,
        FINISH_TIME: booking.schedule.finish_time,
        DURATION: booking.schedule.duration,
        BOOKING_ITEMS: booking.primary_item,
        ADD_ONS: addons.format_addons(booking.add_ons),
        ONBOARDING_EMPLOYEE: [staff.onboarding_staff_id] if staff.onboarding_staff_id else None,
        DELOADING_EMPLOYEE: [staff.deloading_staff_id] if staff.deloading_staff_id else None,
        NOTIFICATION_STATE: booking.notification_state.value if booking.notification_state else None,
    }
    return {key: value for key, value in fields.items() if not _is_blank(value)}


def from_fields(fields: Dict[str, Any], code: Optional[str] = None) -> Booking:
    notification_state = fields.get(NOTIFICATION_STATE)
    try:
        notification_state = NotificationState(notification_state) if notification_state else None
    except ValueError:
        notification_state = None

    return Booking(
        code=code or str(fields.get(BOOKING_CODE) or "").strip() or "?",
        customer=Customer(
            name=fields.get(CUSTOMER_NAME) or None,
            email=fields.get(CUSTOMER_EMAIL) or None,
            phone=fields.get(PHONE_NUMBER) or None
        ),
        status=fields.get(STATUS),
        total_amount=to_money(fields.get(TOTAL_AMOUNT)),
        schedule=Schedule(
            booking_date=_parse_date(fields.get(BOOKING_DATE)),
            end_date=_parse_date(fields.get(END_DATE)),
            created_date=_parse_date(fields.get(CREATED_DATE)),
            start_time=fields.get(START_TIME) or None,
            finish_time=fields.get(FINISH_TIME) or None,
            duration=fields.get(DURATION) or None
        ),
        primary_item=fields.get(BOOKING_ITEMS) or None,
        add_ons=addons.parse(fields.get(ADD_ONS)),
        staff_assignments=StaffAssignments(
            onboarding_staff_id=_linked_id(fields.get(ONBOARDING_EMPLOYEE)),
            deloading_staff_id=_linked_id(fields.get(DELOADING_EMPLOYEE))
        ),
        notification_state=notification_state
    )


def diff_fields(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Fields of `after` that are present and differ from `before`."""
    return {
        key: value
        for key, value in after.items()
        if not _is_blank(value) and before.get(key) != value
    }
