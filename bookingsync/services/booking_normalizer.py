"""
Booking Normalizer

Adapter layer for untrusted inbound payloads. Maps each supported shape onto
one Booking:

- WEBHOOK: Checkfront webhook JSON ({"booking": {...}}). order.items is an
  array, but elements sometimes arrive wrapped in an object keyed by "1",
  "2", ... instead of being the items themselves.
- FLAT:    Airtable automation input config. Fields are pre-split and
           bookingItems is one opaque string (the vessel); no add-ons.
- POLLED:  Checkfront API record. order.items.item is a single object or a
           list; index listings use status_id / customer_name / total.

Source timestamps are UTC epoch seconds and are converted to the configured
civil timezone. Fields missing from the source stay None.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from ..config import settings
from ..schemas.booking import AddOn, Booking, Customer, PayloadShape, Schedule, to_money
from .item_classifier import ItemClassifier, get_item_classifier

logger = logging.getLogger(__name__)


class MalformedPayloadError(ValueError):
    """Payload cannot be turned into a Booking (wrong type, no booking code)."""


def _has_index_keys(value: Any) -> bool:
    """Probe for the spurious {"1": item, "2": item} wrapper."""
    return (
        isinstance(value, dict)
        and "sku" not in value
        and any(isinstance(k, str) and k.isdigit() for k in value)
    )


def _unwrap_indexed(value: Dict) -> List[Any]:
    keys = sorted((k for k in value if isinstance(k, str) and k.isdigit()), key=int)
    return [value[k] for k in keys]


def coerce_items(raw: Any) -> List[Dict]:
    """Flatten every known items container into a plain list of item dicts."""
    if raw is None:
        return []

    if isinstance(raw, list):
        items = []
        for element in raw:
            if _has_index_keys(element):
                items.extend(_unwrap_indexed(element))
            else:
                items.append(element)
        return [item for item in items if isinstance(item, dict)]

    if isinstance(raw, dict):
        if "item" in raw:
            return coerce_items(raw["item"])
        if _has_index_keys(raw):
            return coerce_items(_unwrap_indexed(raw))
        return [raw]

    return []


def parse_epoch(value: Any) -> Optional[datetime]:
    """Epoch seconds (int or numeric string) -> aware UTC datetime. 0/garbage -> None."""
    if value is None or value == "":
        return None
    try:
        seconds = int(float(value))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable timestamp: {value!r}")
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def format_civil_time(moment: datetime) -> str:
    """'09:30 am' style, matching the Airtable time columns."""
    return f"{moment:%I:%M} {moment:%p}".lower()


def format_duration(start: datetime, end: datetime) -> str:
    total_minutes = int((end - start).total_seconds() // 60)
    hours, minutes = divmod(max(total_minutes, 0), 60)
    return f"{hours} hours {minutes} minutes"


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first(*values: Any) -> Optional[str]:
    for value in values:
        cleaned = _clean(value)
        if cleaned:
            return cleaned
    return None


def _parse_quantity(value: Any) -> int:
    try:
        quantity = int(float(value))
    except (TypeError, ValueError):
        return 1
    return quantity if quantity > 0 else 1


class BookingNormalizer:
    """Turns raw payloads into Booking records"""

    def __init__(
        self,
        classifier: Optional[ItemClassifier] = None,
        tz_name: Optional[str] = None
    ):
        self.classifier = classifier or get_item_classifier()
        self.tz = ZoneInfo(tz_name or settings.booking_timezone)

    def normalize(self, payload: Any, shape: PayloadShape) -> Booking:
        if not isinstance(payload, dict):
            raise MalformedPayloadError(f"Expected a JSON object, got {type(payload).__name__}")

        shape = PayloadShape(shape)
        if shape == PayloadShape.WEBHOOK:
            return self._from_webhook(payload)
        if shape == PayloadShape.FLAT:
            return self._from_flat(payload)
        return self._from_polled(payload)

    # ==================
    # Shapes
    # ==================

    def _from_webhook(self, payload: Dict) -> Booking:
        booking = payload.get("booking") if isinstance(payload.get("booking"), dict) else payload
        order = booking.get("order") or payload.get("order") or {}
        if not isinstance(order, dict):
            order = {}
        customer = booking.get("customer") if isinstance(booking.get("customer"), dict) else {}

        primary_item, add_ons = self._split_items(coerce_items(order.get("items")))

        return self._build(
            code=booking.get("code"),
            customer=Customer(
                name=_clean(customer.get("name")),
                email=_clean(customer.get("email")),
                phone=_clean(customer.get("phone"))
            ),
            status=booking.get("status"),
            total=order.get("total"),
            start=booking.get("start_date"),
            end=booking.get("end_date"),
            created=booking.get("created_date"),
            primary_item=primary_item,
            add_ons=add_ons
        )

    def _from_flat(self, payload: Dict) -> Booking:
        return self._build(
            code=payload.get("bookingCode"),
            customer=Customer(
                name=_clean(payload.get("customerName")),
                email=_clean(payload.get("customerEmail")),
                phone=_first(payload.get("customerPhone"), payload.get("phoneNumber"))
            ),
            status=payload.get("status") or payload.get("bookingStatus"),
            total=payload.get("totalAmount"),
            start=payload.get("startDate"),
            end=payload.get("endDate"),
            created=payload.get("createdDate"),
            primary_item=_clean(payload.get("bookingItems")),
            add_ons=[]
        )

    def _from_polled(self, record: Dict) -> Booking:
        customer = record.get("customer") if isinstance(record.get("customer"), dict) else {}
        order = record.get("order") if isinstance(record.get("order"), dict) else {}

        items = coerce_items(order.get("items"))
        # The single-booking endpoint also returns a top-level items map
        items.extend(item for item in coerce_items(record.get("items")) if item.get("sku"))
        primary_item, add_ons = self._split_items(items)
        if not primary_item:
            primary_item = _clean(record.get("summary"))

        booking = self._build(
            code=_first(record.get("code"), record.get("id")),
            customer=Customer(
                name=_first(record.get("customer_name"), customer.get("name")),
                email=_first(record.get("customer_email"), customer.get("email")),
                phone=_first(record.get("customer_phone"), customer.get("phone"))
            ),
            status=_first(record.get("status_id"), record.get("status")),
            total=record.get("total") if record.get("total") not in (None, "") else order.get("total"),
            start=record.get("start_date"),
            end=record.get("end_date"),
            created=record.get("created_date"),
            primary_item=primary_item,
            add_ons=add_ons
        )

        if booking.schedule.booking_date is None and record.get("date_desc"):
            booking.schedule.booking_date = self._parse_date_desc(record.get("date_desc"))

        return booking

    # ==================
    # Helpers
    # ==================

    def _build(
        self,
        code,
        customer: Customer,
        status,
        total,
        start,
        end,
        created,
        primary_item: Optional[str],
        add_ons: List[AddOn]
    ) -> Booking:
        code = _clean(code)
        if not code:
            raise MalformedPayloadError("Payload has no booking code")

        return Booking(
            code=code,
            customer=customer,
            status=status,
            total_amount=to_money(total),
            schedule=self._schedule(start, end, created),
            primary_item=primary_item,
            add_ons=add_ons
        )

    def _schedule(self, start, end, created) -> Schedule:
        start_at = parse_epoch(start)
        end_at = parse_epoch(end)
        created_at = parse_epoch(created)

        schedule = Schedule()
        if start_at:
            local_start = start_at.astimezone(self.tz)
            schedule.booking_date = local_start.date()
            schedule.start_time = format_civil_time(local_start)
        if end_at:
            local_end = end_at.astimezone(self.tz)
            schedule.end_date = local_end.date()
            schedule.finish_time = format_civil_time(local_end)
        if start_at and end_at:
            schedule.duration = format_duration(start_at, end_at)
        if created_at:
            schedule.created_date = created_at.astimezone(self.tz).date()
        return schedule

    def _split_items(self, items: List[Dict]) -> Tuple[Optional[str], List[AddOn]]:
        """First primary item is the vessel; everything else becomes an add-on."""
        primary_item = None
        add_ons = []

        for item in items:
            sku = _clean(item.get("sku"))
            if not sku:
                continue

            classification = self.classifier.classify(sku, item.get("category_id"))
            if classification.is_primary and primary_item is None:
                primary_item = classification.display_name
                continue

            if classification.is_primary:
                logger.warning(f"Second vessel item {sku} kept as add-on")
                name = _clean(item.get("name")) or sku
            else:
                name = classification.display_name

            add_ons.append(AddOn(
                name=name,
                quantity=_parse_quantity(item.get("qty")),
                price=item.get("total")
            ))

        return primary_item, add_ons

    @staticmethod
    def _parse_date_desc(value) -> Optional[Any]:
        """'Sat Dec 13, 2025' -> date"""
        for fmt in ("%a %b %d, %Y", "%b %d, %Y", "%Y-%m-%d"):
            try:
                return datetime.strptime(str(value).strip(), fmt).date()
            except ValueError:
                continue
        logger.warning(f"Could not parse date_desc: {value!r}")
        return None


def detect_shape(payload: Dict) -> PayloadShape:
    """Best guess for callers that do not know where a payload came from."""
    if "bookingCode" in payload:
        return PayloadShape.FLAT
    if isinstance(payload.get("booking"), dict):
        return PayloadShape.WEBHOOK
    return PayloadShape.POLLED


_default_normalizer: Optional[BookingNormalizer] = None


def normalize(payload: Any, shape: PayloadShape) -> Booking:
    global _default_normalizer
    if _default_normalizer is None:
        _default_normalizer = BookingNormalizer()
    return _default_normalizer.normalize(payload, shape)
