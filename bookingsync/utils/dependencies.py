from fastapi import HTTPException, Request, status

from ..services.booking_pipeline import BookingPipeline
from ..services.checkfront_client import CheckfrontClient
from ..services.operator_alerts import OperatorAlerter
from ..services.sync_scheduler import SyncScheduler


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not configured"
        )
    return service


def get_pipeline(request: Request) -> BookingPipeline:
    return _service(request, "pipeline")


def get_sync_scheduler(request: Request) -> SyncScheduler:
    return _service(request, "sync_scheduler")


def get_checkfront(request: Request) -> CheckfrontClient:
    return _service(request, "checkfront")


def get_alerter(request: Request) -> OperatorAlerter:
    return _service(request, "alerter")
