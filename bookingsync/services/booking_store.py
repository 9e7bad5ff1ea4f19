"""
Booking store interface.

A store holds rows keyed by an opaque row id. Several rows may carry the same
booking code; the reconciliation engine is what collapses them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


@dataclass
class StoredRow:
    row_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


class BookingStore(ABC):
    """Storage operations used by reconciliation and the scheduler"""

    name = "store"

    @abstractmethod
    def find(self, code: str) -> List[StoredRow]:
        """All rows whose Booking Code equals `code`."""

    @abstractmethod
    def create(self, fields: Dict[str, Any]) -> StoredRow:
        ...

    @abstractmethod
    def update(self, row_id: str, fields: Dict[str, Any]) -> StoredRow:
        """Partial update: only the given fields change."""

    @abstractmethod
    def delete(self, row_id: str) -> None:
        ...

    @abstractmethod
    def list_between(self, start: date, end: date) -> List[StoredRow]:
        """Rows whose Booking Date falls in [start, end]."""
