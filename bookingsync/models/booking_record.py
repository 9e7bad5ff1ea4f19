"""
Booking Record Model

Local booking store rows. Mirrors the Airtable "Bookings Dashboard" table:
the row payload is an opaque field map keyed by the Airtable column names,
with the booking code and status lifted into columns for lookups.

Several rows may share a booking_code (duplicate webhook delivery), so the
column is indexed but NOT unique.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Index, JSON
from ..database import Base


class BookingRecord(Base):
    __tablename__ = "booking_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_code = Column(String(64), nullable=True)
    status = Column(String(20), nullable=True)
    booking_date = Column(String(10), nullable=True)  # YYYY-MM-DD, civil timezone

    fields = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_booking_record_code", "booking_code"),
        Index("ix_booking_record_date", "booking_date"),
    )

    def __repr__(self):
        return f"<BookingRecord {self.booking_code} status={self.status}>"
