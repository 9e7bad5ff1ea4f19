"""
Inbound booking webhooks.

- POST /api/webhooks/checkfront  Checkfront booking webhook (nested JSON)
- POST /api/webhooks/airtable    Airtable automation (flat input config)

Delivery is at-least-once and unordered. Responses:
- 200 processed, or skipped because the payload can never be processed
- 503 a collaborator failed after retries; the sender should redeliver
"""

import json
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from ..schemas.booking import PayloadShape
from ..services.booking_pipeline import BookingPipeline, PipelineResult
from ..utils.dependencies import get_pipeline
from ..utils.logging_config import set_request_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


async def _read_json(request: Request):
    body = await request.body()
    try:
        return json.loads(body or b"null")
    except (ValueError, UnicodeDecodeError):
        return None


def _respond(result: PipelineResult) -> dict:
    if not result.success and result.retryable:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=result.error or "Upstream unavailable, retry later"
        )
    return asdict(result)


async def _handle(request: Request, pipeline: BookingPipeline, shape: PayloadShape) -> dict:
    payload = await _read_json(request)
    if isinstance(payload, dict):
        booking = payload.get("booking") if isinstance(payload.get("booking"), dict) else payload
        code = booking.get("code") or booking.get("bookingCode")
        if code:
            set_request_context(getattr(request.state, "request_id", ""), str(code))

    result = await run_in_threadpool(pipeline.process, payload, shape)
    return _respond(result)


@router.post("/checkfront")
async def checkfront_webhook(request: Request, pipeline: BookingPipeline = Depends(get_pipeline)):
    return await _handle(request, pipeline, PayloadShape.WEBHOOK)


@router.post("/airtable")
async def airtable_webhook(request: Request, pipeline: BookingPipeline = Depends(get_pipeline)):
    return await _handle(request, pipeline, PayloadShape.FLAT)
