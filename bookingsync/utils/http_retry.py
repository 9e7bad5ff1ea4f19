"""
Outbound HTTP with bounded retry.

Shared by every collaborator client (Checkfront, Airtable, Twilio):
- Per-request timeout comes from the httpx client
- 429, 5xx and transport errors are retried with exponential backoff
- Other 4xx are returned to the caller as a non-retryable UpstreamError
- Exhaustion raises UpstreamError(retryable=True)
"""

import logging
import time
from typing import Callable, Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """A collaborator call failed after all retries."""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int = 0,
        retryable: bool = True
    ):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message
        self.status_code = status_code
        self.retryable = retryable


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("type") or error)
        if error:
            return str(error)
        if data.get("message"):
            return str(data["message"])
    return f"HTTP {response.status_code}"


def request_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    service: str,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    sleep: Optional[Callable[[float], None]] = None,
    **kwargs
) -> httpx.Response:
    """
    Make one logical request, retrying transient failures.

    Returns the response on 2xx. Raises UpstreamError otherwise.
    """
    max_retries = max(1, max_retries if max_retries is not None else settings.http_max_retries)
    base_delay = settings.http_retry_base_delay if base_delay is None else base_delay
    max_delay = settings.http_retry_max_delay if max_delay is None else max_delay
    sleep = sleep or time.sleep

    last_error = None
    last_status = 0

    for attempt in range(max_retries):
        try:
            response = client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            last_error = str(e) or type(e).__name__
            last_status = 0
        else:
            last_status = response.status_code

            if 200 <= response.status_code < 300:
                return response

            if response.status_code != 429 and response.status_code < 500:
                raise UpstreamError(
                    service,
                    _error_message(response),
                    status_code=response.status_code,
                    retryable=False
                )

            last_error = _error_message(response)

        if attempt < max_retries - 1:
            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(
                f"{service} {method} failed ({last_status or 'transport'}: {last_error}), "
                f"retrying in {delay}s"
            )
            sleep(delay)

    logger.error(f"{service} {method} {url}: all {max_retries} attempts failed: {last_error}")
    raise UpstreamError(
        service,
        f"All retries failed: {last_error}",
        status_code=last_status,
        retryable=True
    )


def build_client(
    transport: Optional[httpx.BaseTransport] = None,
    **kwargs
) -> httpx.Client:
    """httpx client with the configured timeout."""
    return httpx.Client(
        timeout=settings.http_timeout_seconds,
        transport=transport,
        **kwargs
    )
