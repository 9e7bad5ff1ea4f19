"""
Reconciliation endpoints

- POST /api/reconciliation/bookings/{code}   Re-sync one booking from Checkfront
- POST /api/reconciliation/run               Run a full pass now
- GET  /api/reconciliation/status            Scheduler state + last report
- GET  /api/reconciliation/alerts            Operator alerts
- POST /api/reconciliation/alerts/{id}/acknowledge
"""

import logging
from dataclasses import asdict
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict

from ..schemas.booking import PayloadShape
from ..services.booking_pipeline import BookingPipeline
from ..services.checkfront_client import CheckfrontClient
from ..services.operator_alerts import OperatorAlerter
from ..services.sync_scheduler import LookbackWindow, ReconciliationInProgress, SyncScheduler
from ..utils.dependencies import get_alerter, get_checkfront, get_pipeline, get_sync_scheduler
from ..utils.http_retry import UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reconciliation", tags=["Reconciliation"])


class RunRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    alert_type: str
    severity: Optional[str] = None
    message: Optional[str] = None
    payload_raw: Optional[dict] = None
    sms_sent: Optional[bool] = None
    status: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@router.post("/bookings/{code}")
async def reconcile_booking(
    code: str,
    checkfront: CheckfrontClient = Depends(get_checkfront),
    pipeline: BookingPipeline = Depends(get_pipeline)
):
    """Fetch one booking from Checkfront and reconcile it (customer notifications included)."""
    try:
        record = await run_in_threadpool(checkfront.find_booking_by_code, code)
    except UpstreamError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Booking {code} not found in Checkfront")

    result = await run_in_threadpool(pipeline.process, record, PayloadShape.POLLED)
    if not result.success:
        http_status = status.HTTP_503_SERVICE_UNAVAILABLE if result.retryable else status.HTTP_422_UNPROCESSABLE_ENTITY
        raise HTTPException(status_code=http_status, detail=result.error)
    return asdict(result)


@router.post("/run")
async def run_reconciliation(
    body: Optional[RunRequest] = None,
    scheduler: SyncScheduler = Depends(get_sync_scheduler)
):
    window = None
    if body and (body.start_date or body.end_date):
        default = scheduler.default_window()
        window = LookbackWindow(
            start=body.start_date or default.start,
            end=body.end_date or default.end
        )
        if window.start > window.end:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_date is after end_date")

    try:
        report = await run_in_threadpool(scheduler.run_reconciliation, window)
    except ReconciliationInProgress as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return report.to_dict()


@router.get("/status")
async def reconciliation_status(scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    return scheduler.status()


@router.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    alert_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    alerter: OperatorAlerter = Depends(get_alerter)
):
    return await run_in_threadpool(alerter.list_alerts, alert_status, limit)


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(alert_id: str, alerter: OperatorAlerter = Depends(get_alerter)):
    alert = await run_in_threadpool(alerter.acknowledge, alert_id)
    if alert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    return alert
