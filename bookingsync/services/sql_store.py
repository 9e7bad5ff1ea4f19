"""
SQL booking store.

Local fallback for the Airtable table, backed by the booking_records table.
Each attempt opens its own session so the store is safe to share between
the webhook handlers and the scheduler's worker threads.

Database failures surface the same way as Airtable failures: OperationalError
(lock timeouts, dropped connections) is retried with backoff and then raised
as a retryable UpstreamError; any other SQLAlchemyError is a non-retryable
UpstreamError.
"""

import logging
import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..database import SessionLocal
from ..models.booking_record import BookingRecord
from ..utils.http_retry import UpstreamError
from .booking_fields import BOOKING_CODE, BOOKING_DATE, STATUS
from .booking_store import BookingStore, StoredRow

logger = logging.getLogger(__name__)

SERVICE = "sql"

T = TypeVar("T")


class RowNotFoundError(LookupError):
    pass


def _to_row(record: BookingRecord) -> StoredRow:
    return StoredRow(
        row_id=record.id,
        fields=dict(record.fields or {}),
        created_at=record.created_at
    )


def _sync_columns(record: BookingRecord):
    """Keep the indexed columns in step with the field map."""
    fields = record.fields or {}
    record.booking_code = fields.get(BOOKING_CODE)
    record.status = fields.get(STATUS)
    record.booking_date = str(fields.get(BOOKING_DATE))[:10] if fields.get(BOOKING_DATE) else None


def _db_error(error: SQLAlchemyError) -> str:
    return str(getattr(error, "orig", None) or error).splitlines()[0][:200]


class SqlBookingStore(BookingStore):
    name = "sql"

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        max_retries: Optional[int] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self.session_factory = session_factory or SessionLocal
        self.max_retries = max(1, max_retries if max_retries is not None else settings.store_max_retries)
        self.sleep = sleep

    def _execute(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run `work` in a fresh session, retrying transient database errors."""
        last_error = None
        for attempt in range(self.max_retries):
            db = self.session_factory()
            try:
                return work(db)
            except OperationalError as e:
                db.rollback()
                last_error = _db_error(e)
            except SQLAlchemyError as e:
                db.rollback()
                raise UpstreamError(SERVICE, f"{operation}: {_db_error(e)}", retryable=False) from e
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

            if attempt < self.max_retries - 1:
                delay = min(settings.http_retry_base_delay * (2 ** attempt), settings.http_retry_max_delay)
                logger.warning(f"sql {operation} failed ({last_error}), retrying in {delay}s")
                (self.sleep or time.sleep)(delay)

        logger.error(f"sql {operation}: all {self.max_retries} attempts failed: {last_error}")
        raise UpstreamError(SERVICE, f"{operation}: {last_error}", retryable=True)

    def find(self, code: str) -> List[StoredRow]:
        def work(db: Session):
            records = db.query(BookingRecord).filter(
                BookingRecord.booking_code == code
            ).order_by(BookingRecord.created_at).all()
            return [_to_row(r) for r in records]

        return self._execute("find", work)

    def create(self, fields: Dict[str, Any]) -> StoredRow:
        def work(db: Session):
            record = BookingRecord(fields=dict(fields))
            _sync_columns(record)
            db.add(record)
            db.commit()
            db.refresh(record)
            return _to_row(record)

        row = self._execute("create", work)
        logger.info(f"[{fields.get(BOOKING_CODE)}] Created row {row.row_id}")
        return row

    def update(self, row_id: str, fields: Dict[str, Any]) -> StoredRow:
        def work(db: Session):
            record = db.query(BookingRecord).filter(BookingRecord.id == row_id).first()
            if not record:
                raise RowNotFoundError(f"Row {row_id} not found")

            # Reassign so the JSON column is flagged dirty
            merged = dict(record.fields or {})
            merged.update(fields)
            record.fields = merged
            _sync_columns(record)

            db.commit()
            db.refresh(record)
            return _to_row(record)

        return self._execute("update", work)

    def delete(self, row_id: str) -> None:
        def work(db: Session):
            deleted = db.query(BookingRecord).filter(BookingRecord.id == row_id).delete()
            db.commit()
            return deleted

        if not self._execute("delete", work):
            logger.warning(f"Delete of missing row {row_id} ignored")

    def list_between(self, start: date, end: date) -> List[StoredRow]:
        def work(db: Session):
            records = db.query(BookingRecord).filter(
                BookingRecord.booking_date >= start.isoformat(),
                BookingRecord.booking_date <= end.isoformat()
            ).all()
            return [_to_row(r) for r in records]

        return self._execute("list_between", work)
