"""
Item Classifier

Decides whether a Checkfront line item is the rentable vessel ("primary") or a
supplementary add-on, in strict priority order:

1. Category ID found in the configured category map
2. Normalized SKU contains a configured primary keyword ("boat", "bbq", ...)
3. Add-on

Runs on every inbound item, so it never raises: malformed input falls through
to the add-on default.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterable, Optional

from ..config import settings

PRIMARY = "primary"
ADDON = "addon"

_SEPARATORS_RE = re.compile(r"[-_\s]")
_WORD_START_RE = re.compile(r"\b\w")


@dataclass(frozen=True)
class Classification:
    kind: str  # "primary" or "addon"
    display_name: str

    @property
    def is_primary(self) -> bool:
        return self.kind == PRIMARY


def normalize_sku(sku) -> str:
    """Lowercase and strip '-', '_' and whitespace."""
    if sku is None:
        return ""
    return _SEPARATORS_RE.sub("", str(sku).lower())


def title_case_sku(sku: str) -> str:
    """'fishing-rods' -> 'Fishing Rods' (only word starts are touched)."""
    spaced = re.sub(r"[-_]", " ", sku).strip()
    return _WORD_START_RE.sub(lambda m: m.group(0).upper(), spaced)


class ItemClassifier:
    """Priority-ordered vessel / add-on classification"""

    def __init__(
        self,
        category_kinds: Dict[str, str],
        primary_keywords: Iterable[str],
        display_names: Dict[str, str]
    ):
        self.category_kinds = {str(k).strip(): v for k, v in category_kinds.items()}
        self.primary_keywords = [normalize_sku(k) for k in primary_keywords if normalize_sku(k)]
        self.display_names = {normalize_sku(k): v for k, v in display_names.items()}

    def classify(self, sku, category_id: Optional[str] = None) -> Classification:
        raw_sku = "" if sku is None else str(sku).strip()
        kind = self._kind(raw_sku, category_id)

        if kind == PRIMARY:
            return Classification(PRIMARY, raw_sku)
        return Classification(ADDON, self.addon_display_name(raw_sku))

    def addon_display_name(self, sku) -> str:
        raw_sku = "" if sku is None else str(sku).strip()
        mapped = self.display_names.get(normalize_sku(raw_sku))
        if mapped:
            return mapped
        return title_case_sku(raw_sku)

    def _kind(self, sku: str, category_id) -> str:
        if category_id is not None:
            kind = self.category_kinds.get(str(category_id).strip())
            if kind in (PRIMARY, ADDON):
                return kind

        normalized = normalize_sku(sku)
        if normalized and any(keyword in normalized for keyword in self.primary_keywords):
            return PRIMARY

        return ADDON


@lru_cache()
def get_item_classifier() -> ItemClassifier:
    """Classifier built from the configured tables"""
    return ItemClassifier(
        category_kinds=settings.item_category_kinds,
        primary_keywords=settings.primary_item_keywords,
        display_names=settings.addon_display_names
    )


def classify(sku, category_id: Optional[str] = None) -> Classification:
    return get_item_classifier().classify(sku, category_id)
