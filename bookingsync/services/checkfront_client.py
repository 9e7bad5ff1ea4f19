"""
Checkfront API Client

Read-only wrapper for the Checkfront v3.0 API:
- Basic auth with the API consumer key/secret
- booking/index listing for a date range, following pagination to exhaustion
- booking/{id} for full detail (phone, start/end timestamps, order items)
- Lookup by booking code across a +/- 6 month window

Index responses key the bookings by position:

    {"booking/index": {"1": {...}, "2": {...}}, "request": {"page": 1, "pages": 3}}
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..utils.http_retry import UpstreamError, build_client, request_with_retry

logger = logging.getLogger(__name__)

SERVICE = "checkfront"
LOOKUP_WINDOW_DAYS = 183
MAX_PAGES = 200


@dataclass
class CheckfrontResponse:
    """Wrapper for Checkfront API responses with structured error info"""
    success: bool
    status_code: int
    data: Optional[Dict] = None
    error: Optional[str] = None
    should_retry: bool = False


def extract_index_entries(data: Dict) -> List[Dict]:
    """Pull booking dicts out of a booking/index page."""
    entries = data.get("booking/index")
    if entries is None:
        entries = data.get("booking")

    if isinstance(entries, dict):
        return [
            value for key, value in entries.items()
            if str(key).isdigit() and isinstance(value, dict) and value.get("booking_id")
        ]
    if isinstance(entries, list):
        return [e for e in entries if isinstance(e, dict)]
    if isinstance(data.get("bookings"), list):
        return [e for e in data["bookings"] if isinstance(e, dict)]
    return []


class CheckfrontClient:
    """Client for the Checkfront booking engine"""

    def __init__(
        self,
        host: Optional[str] = None,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        page_size: Optional[int] = None
    ):
        self.host = host or settings.checkfront_host
        self.base_url = f"https://{self.host}/api/3.0"
        self.page_size = page_size or settings.checkfront_page_size
        self.client = client or build_client(
            auth=(
                consumer_key or settings.checkfront_consumer_key,
                consumer_secret or settings.checkfront_consumer_secret
            )
        )

    def _make_request(self, endpoint: str, params: Optional[Dict] = None) -> CheckfrontResponse:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = request_with_retry(
                self.client, "GET", url, SERVICE,
                params=params,
                headers={"Accept": "application/json"}
            )
        except UpstreamError as e:
            return CheckfrontResponse(
                success=False,
                status_code=e.status_code,
                error=e.message,
                should_retry=e.retryable
            )

        try:
            data = response.json()
        except ValueError:
            return CheckfrontResponse(
                success=False,
                status_code=response.status_code,
                error="Response is not JSON"
            )

        return CheckfrontResponse(success=True, status_code=response.status_code, data=data)

    def list_bookings(
        self,
        start: date,
        end: date,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        All index records with a booking date in [start, end].

        Raises UpstreamError if any page cannot be fetched, so a caller never
        mistakes a partial listing for a complete one.
        """
        params: Dict[str, Any] = {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "limit": self.page_size,
        }
        if status:
            params["status_id"] = status

        bookings = []
        page = 1
        while page <= MAX_PAGES:
            result = self._make_request("booking/index", {**params, "page": page})
            if not result.success:
                raise UpstreamError(
                    SERVICE,
                    f"booking/index page {page}: {result.error}",
                    status_code=result.status_code,
                    retryable=result.should_retry
                )

            bookings.extend(extract_index_entries(result.data))

            request_info = result.data.get("request") or {}
            try:
                total_pages = int(request_info.get("pages") or 1)
            except (TypeError, ValueError):
                total_pages = 1

            if page >= total_pages:
                break
            page += 1

        logger.info(f"Checkfront: {len(bookings)} bookings between {start} and {end}")
        return bookings

    def get_booking(self, booking_id) -> Optional[Dict[str, Any]]:
        """Full booking detail, or None when it cannot be fetched."""
        result = self._make_request(f"booking/{booking_id}")
        if not result.success:
            logger.warning(f"Checkfront booking {booking_id} detail unavailable: {result.error}")
            return None

        booking = result.data.get("booking")
        return booking if isinstance(booking, dict) else None

    def find_booking_by_code(self, code: str, today: Optional[date] = None) -> Optional[Dict[str, Any]]:
        """Search +/- 6 months for `code`; full detail when available, else the index record."""
        today = today or date.today()
        window = timedelta(days=LOOKUP_WINDOW_DAYS)

        for entry in self.list_bookings(today - window, today + window):
            if entry.get("code") != code:
                continue
            detail = self.get_booking(entry["booking_id"]) if entry.get("booking_id") else None
            return detail or entry

        logger.info(f"[{code}] Not found in Checkfront")
        return None

    def close(self):
        self.client.close()
