"""
Logging setup for bookingsync.

Plain text in development, one JSON object per line when LOG_JSON is set.
Every record carries the current request id and booking code (from context
variables set by the request middleware and the webhook router), and the
booking events logged through StructuredLogger carry their data under "data".
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

request_id_var: ContextVar[str] = ContextVar('request_id', default='')
booking_code_var: ContextVar[str] = ContextVar('booking_code', default='')

NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "apscheduler")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get() or None,
            "booking_code": getattr(record, "booking_code", None) or booking_code_var.get() or None,
            "data": getattr(record, "event_data", None),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps({k: v for k, v in entry.items() if v is not None}, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Module logger with helpers for the booking events worth querying later."""

    def process(self, msg, kwargs):
        kwargs.setdefault("extra", {}).update(self.extra)
        return msg, kwargs

    def _event(self, level: int, msg: str, booking_code: Optional[str] = None, **data):
        self.log(level, msg, extra={"booking_code": booking_code, "event_data": data})

    def booking_reconciled(
        self,
        booking_code: str,
        action: str,
        row_id: Optional[str],
        fields_written: List[str],
        rows_deleted: int,
        duration_ms: float = None
    ):
        self._event(
            logging.INFO,
            f"[{booking_code}] Reconciled: {action}",
            booking_code=booking_code,
            action=action,
            row_id=row_id,
            fields_written=fields_written,
            rows_deleted=rows_deleted,
            duration_ms=duration_ms
        )

    def status_notification(
        self,
        booking_code: str,
        old_status: Optional[str],
        new_status: Optional[str],
        template: Optional[str],
        sent: bool
    ):
        outcome = f"notified ({template})" if sent else "no notification"
        self._event(
            logging.INFO,
            f"[{booking_code}] Status {old_status} -> {new_status}: {outcome}",
            booking_code=booking_code,
            old_status=old_status,
            new_status=new_status,
            template=template,
            sent=sent
        )

    def sync_gap_detected(self, gap_count: int, example_codes: List[str]):
        self._event(
            logging.WARNING,
            f"Sync gap: {gap_count} booking(s) missing from local store",
            gap_count=gap_count,
            examples=example_codes
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """Install one stdout handler on the root logger (and uvicorn's, when asked)."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        JSONFormatter() if json_format
        else logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
            logging.getLogger(name).handlers = [handler]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str, booking_code: Optional[str] = None):
    request_id_var.set(request_id)
    if booking_code:
        booking_code_var.set(booking_code)


def clear_request_context():
    request_id_var.set('')
    booking_code_var.set('')
