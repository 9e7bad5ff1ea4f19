from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
import logging
import uuid

from .config import settings
from .database import create_tables
from .utils.logging_config import setup_logging, set_request_context, clear_request_context

from .routers import health, reconciliation, webhooks
from .services.airtable_store import AirtableBookingStore
from .services.booking_pipeline import BookingPipeline
from .services.checkfront_client import CheckfrontClient
from .services.notifications import NotificationDispatcher, TwilioSmsClient
from .services.operator_alerts import OperatorAlerter
from .services.sql_store import SqlBookingStore
from .services.sync_scheduler import SyncScheduler

logger = logging.getLogger(__name__)


def build_store():
    if settings.effective_storage_backend == "airtable":
        return AirtableBookingStore()
    return SqlBookingStore()


def build_services() -> dict:
    """Service graph shared by the app and run_sync.py"""
    store = build_store()
    sms = TwilioSmsClient() if settings.has_twilio_config else None

    pipeline = BookingPipeline(
        store=store,
        dispatcher=NotificationDispatcher(sms) if sms else None
    )
    alerter = OperatorAlerter(sms=sms)
    checkfront = CheckfrontClient() if settings.has_checkfront_config else None

    sync_scheduler = None
    if checkfront:
        sync_scheduler = SyncScheduler(
            checkfront=checkfront,
            store=store,
            pipeline=pipeline,
            alerter=alerter
        )

    return {
        "store": store,
        "pipeline": pipeline,
        "alerter": alerter,
        "checkfront": checkfront,
        "sync_scheduler": sync_scheduler,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)
    logger.info(f"Starting bookingsync ({settings.environment})")

    create_tables()
    for name, service in build_services().items():
        setattr(app.state, name, service)
    logger.info(f"Booking store: {app.state.store.name}")

    scheduler = app.state.sync_scheduler
    if scheduler and settings.reconciliation_enabled:
        scheduler.start()
    elif not scheduler:
        logger.warning("Checkfront not configured, reconciliation scheduler not started")

    yield

    logger.info("Shutting down bookingsync...")
    if scheduler:
        scheduler.stop()
    if app.state.checkfront:
        app.state.checkfront.close()


app = FastAPI(
    title="Booking Sync",
    description="Checkfront / Airtable booking reconciliation",
    version="1.0.0",
    lifespan=lifespan
)


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(RequestIdMiddleware)

app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(reconciliation.router)


@app.get("/")
async def root():
    return {
        "service": "bookingsync",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running"
    }
