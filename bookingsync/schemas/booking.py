from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum


CENT = Decimal("0.01")


def to_money(value) -> Optional[Decimal]:
    """Coerce a number/string to a 2-decimal Decimal, None when unparseable."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value).replace("$", "").replace(",", "").strip()).quantize(CENT, rounding=ROUND_HALF_UP)
    except (ArithmeticError, ValueError):
        return None


class BookingStatus(str, Enum):
    """
    Known Checkfront status codes.

    Booking.status is a plain string: codes outside this set are passed
    through unchanged.
    """
    PEND = "PEND"
    HOLD = "HOLD"
    WAIT = "WAIT"
    PART = "PART"
    PAID = "PAID"
    VOID = "VOID"
    STOP = "STOP"


class NotificationState(str, Enum):
    """Customer notification lifecycle for the booking's current status"""
    UNSENT = "unsent"
    SENT = "sent"
    FAILED = "failed"


class PayloadShape(str, Enum):
    """Inbound payload shapes accepted by the normalizer"""
    WEBHOOK = "webhook"  # Checkfront webhook JSON, order.items array
    FLAT = "flat"        # Airtable automation input config, pre-split fields
    POLLED = "polled"    # Checkfront API record, order.items.item


class AddOn(BaseModel):
    name: str
    quantity: int = 1
    price: Decimal = Decimal("0.00")

    @field_validator('price', mode='before')
    @classmethod
    def quantize_price(cls, v):
        return to_money(v) or Decimal("0.00")


class Customer(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class Schedule(BaseModel):
    booking_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[str] = None   # "09:30 am"
    finish_time: Optional[str] = None
    created_date: Optional[date] = None
    duration: Optional[str] = None     # "4 hours 0 minutes"


class StaffAssignments(BaseModel):
    """Owned by staff scheduling; reconciliation never overwrites these."""
    onboarding_staff_id: Optional[str] = None
    deloading_staff_id: Optional[str] = None


class Booking(BaseModel):
    code: str = Field(..., min_length=1)
    customer: Customer = Field(default_factory=Customer)
    status: Optional[str] = None
    total_amount: Optional[Decimal] = None
    schedule: Schedule = Field(default_factory=Schedule)
    primary_item: Optional[str] = None
    add_ons: List[AddOn] = Field(default_factory=list)
    staff_assignments: StaffAssignments = Field(default_factory=StaffAssignments)
    notification_state: Optional[NotificationState] = None

    @field_validator('total_amount', mode='before')
    @classmethod
    def quantize_total(cls, v):
        return to_money(v)

    @field_validator('status', mode='before')
    @classmethod
    def clean_status(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None
