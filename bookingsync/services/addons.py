"""
Add-on Parser / Formatter

Converts between the structured add-on list and the display string stored in
the "Add-ons" column:

    "Lilly Pad - $55.00, 2 x Fishing Rods - $40.00"

Each entry is "[<N> x ]<name>[ - $<price>]"; discounts carry a negative
price ("Promo Discount - $-20.00"). format_addons() writes the
quantity prefix only when N > 1 and always writes the price, so any string it
produces parses back to the same list. Entries that do not match the grammar
are kept as name-only items (quantity 1, price 0) instead of being dropped.
"""

import re
from decimal import Decimal
from typing import Iterable, List, Optional

from ..schemas.booking import AddOn, to_money

ENTRY_SEPARATOR = ", "

_ENTRY_RE = re.compile(
    r"^(?:(?P<qty>\d+)\s*x\s+)?(?P<name>.+?)(?:\s+-\s+\$(?P<price>-?\d+(?:\.\d{1,2})?))?$"
)


def normalize_name(name: Optional[str]) -> str:
    """Merge key for an add-on: case-insensitive, whitespace-collapsed."""
    return " ".join((name or "").split()).lower()


def parse(display: Optional[str]) -> List[AddOn]:
    """Parse an add-ons display string into items, in display order."""
    if not display or not display.strip():
        return []

    items = []
    for raw_entry in display.split(","):
        entry = raw_entry.strip()
        if not entry:
            continue

        match = _ENTRY_RE.match(entry)
        if not match:
            items.append(AddOn(name=entry))
            continue

        quantity = int(match.group("qty")) if match.group("qty") else 1
        price = to_money(match.group("price")) if match.group("price") else Decimal("0.00")
        items.append(AddOn(
            name=match.group("name").strip(),
            quantity=max(quantity, 1),
            price=price
        ))

    return items


def format_addons(items: Iterable[AddOn]) -> str:
    """Render items as the canonical display string."""
    entries = []
    for item in items:
        if not item or not item.name:
            continue
        prefix = f"{item.quantity} x " if item.quantity and item.quantity > 1 else ""
        entries.append(f"{prefix}{item.name} - ${item.price:.2f}")
    return ENTRY_SEPARATOR.join(entries)


def merge(existing: Iterable[AddOn], incoming: Iterable[AddOn]) -> List[AddOn]:
    """
    Merge incoming add-ons into existing ones.

    - Same normalized name: incoming item wins, keeps existing's position
    - Only in existing: preserved (manually added items)
    - Only in incoming: appended in incoming order
    """
    merged = {}
    for item in existing:
        key = normalize_name(item.name)
        if key and key not in merged:
            merged[key] = item

    for item in incoming:
        key = normalize_name(item.name)
        if key:
            merged[key] = item

    return list(merged.values())
