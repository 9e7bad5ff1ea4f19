"""
Airtable booking store.

Talks to the "Bookings Dashboard" table through the Airtable REST API:

    GET    /v0/{base}/{table}?filterByFormula=...&offset=...
    POST   /v0/{base}/{table}              {"fields": {...}}
    PATCH  /v0/{base}/{table}/{record_id}  {"fields": {...}}
    DELETE /v0/{base}/{table}/{record_id}

Linked-record fields (Onboarding / Deloading Employee) are lists of record ids.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..utils.http_retry import build_client, request_with_retry
from .booking_fields import BOOKING_CODE
from .booking_store import BookingStore, StoredRow

logger = logging.getLogger(__name__)

SERVICE = "airtable"


def escape_formula_string(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


def _parse_created_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_row(record: Dict) -> StoredRow:
    return StoredRow(
        row_id=record["id"],
        fields=record.get("fields") or {},
        created_at=_parse_created_time(record.get("createdTime"))
    )


class AirtableBookingStore(BookingStore):
    name = "airtable"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_id: Optional[str] = None,
        table_id: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.api_key = api_key or settings.airtable_api_key
        self.base_id = base_id or settings.airtable_base_id
        self.table_id = table_id or settings.airtable_bookings_table_id
        self.table_url = f"{settings.airtable_base_url}/{self.base_id}/{self.table_id}"
        self.client = client or build_client()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        return request_with_retry(
            self.client, method, url, SERVICE, headers=self._headers(), **kwargs
        )

    def _select(self, formula: str) -> List[StoredRow]:
        """Run a filterByFormula query, following offset pagination."""
        rows = []
        params: Dict[str, Any] = {"filterByFormula": formula, "pageSize": 100}

        while True:
            data = self._request("GET", self.table_url, params=params).json()
            rows.extend(_to_row(r) for r in data.get("records", []))

            offset = data.get("offset")
            if not offset:
                break
            params = {**params, "offset": offset}

        return rows

    def find(self, code: str) -> List[StoredRow]:
        return self._select(f'{{{BOOKING_CODE}}} = "{escape_formula_string(code)}"')

    def create(self, fields: Dict[str, Any]) -> StoredRow:
        data = self._request("POST", self.table_url, json={"fields": fields}).json()
        row = _to_row(data)
        logger.info(f"[{fields.get(BOOKING_CODE)}] Created Airtable record {row.row_id}")
        return row

    def update(self, row_id: str, fields: Dict[str, Any]) -> StoredRow:
        data = self._request("PATCH", f"{self.table_url}/{row_id}", json={"fields": fields}).json()
        return _to_row(data)

    def delete(self, row_id: str) -> None:
        self._request("DELETE", f"{self.table_url}/{row_id}")
        logger.info(f"Deleted Airtable record {row_id}")

    def list_between(self, start: date, end: date) -> List[StoredRow]:
        formula = (
            f"AND("
            f"NOT(IS_BEFORE({{Booking Date}}, '{start.isoformat()}')), "
            f"NOT(IS_AFTER({{Booking Date}}, '{end.isoformat()}'))"
            f")"
        )
        return self._select(formula)
