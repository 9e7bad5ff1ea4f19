import itertools
import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bookingsync.services.booking_fields import BOOKING_CODE, BOOKING_DATE
from bookingsync.services.booking_store import BookingStore, StoredRow
from bookingsync.utils.http_retry import UpstreamError


class InMemoryStore(BookingStore):
    """Thread-safe dict store that records every write in call order"""

    name = "memory"

    def __init__(self):
        self.rows = {}
        self.calls = []
        self.fail_update = False
        self.fail_create_codes = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._clock = datetime(2025, 1, 1, 9, 0, 0)

    def add(self, fields, created_at=None, row_id=None) -> StoredRow:
        with self._lock:
            n = next(self._ids)
            row = StoredRow(
                row_id=row_id or f"rec{n:03d}",
                fields=dict(fields),
                created_at=created_at or self._clock + timedelta(seconds=n)
            )
            self.rows[row.row_id] = row
            return row

    def rows_for(self, code):
        return [r for r in self.rows.values() if r.fields.get(BOOKING_CODE) == code]

    def find(self, code):
        with self._lock:
            return [
                StoredRow(r.row_id, dict(r.fields), r.created_at)
                for r in self.rows.values()
                if r.fields.get(BOOKING_CODE) == code
            ]

    def create(self, fields):
        if fields.get(BOOKING_CODE) in self.fail_create_codes:
            raise UpstreamError("memory", "create rejected")
        row = self.add(fields)
        with self._lock:
            self.calls.append(("create", row.row_id))
        return StoredRow(row.row_id, dict(row.fields), row.created_at)

    def update(self, row_id, fields):
        with self._lock:
            if self.fail_update:
                raise UpstreamError("memory", "update rejected")
            self.rows[row_id].fields.update(fields)
            self.calls.append(("update", row_id))
            row = self.rows[row_id]
            return StoredRow(row.row_id, dict(row.fields), row.created_at)

    def delete(self, row_id):
        with self._lock:
            self.calls.append(("delete", row_id))
            del self.rows[row_id]

    def list_between(self, start, end):
        with self._lock:
            return [
                StoredRow(r.row_id, dict(r.fields), r.created_at)
                for r in self.rows.values()
                if r.fields.get(BOOKING_DATE)
                and start.isoformat() <= r.fields[BOOKING_DATE] <= end.isoformat()
            ]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def session_factory():
    """In-memory SQLite shared across threads"""
    from bookingsync.database import create_tables

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    create_tables(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()
