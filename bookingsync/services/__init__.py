# Services package
from .item_classifier import ItemClassifier, Classification, classify, get_item_classifier
from .booking_normalizer import BookingNormalizer, MalformedPayloadError, normalize, detect_shape
from .status_transitions import NotificationTemplate, is_significant, select_template
from .reconciliation import ReconcileResult, ApplyOutcome, status_rank, select_canonical, reconcile, apply
from .booking_store import BookingStore, StoredRow
from .sql_store import SqlBookingStore
from .airtable_store import AirtableBookingStore
from .checkfront_client import CheckfrontClient, CheckfrontResponse
from .notifications import TwilioSmsClient, NotificationDispatcher
from .operator_alerts import OperatorAlerter
from .booking_pipeline import BookingPipeline, PipelineResult
from .sync_scheduler import SyncScheduler, SyncReport, SyncGap, LookbackWindow, ReconciliationInProgress

__all__ = [
    "ItemClassifier", "Classification", "classify", "get_item_classifier",
    "BookingNormalizer", "MalformedPayloadError", "normalize", "detect_shape",
    "NotificationTemplate", "is_significant", "select_template",
    "ReconcileResult", "ApplyOutcome", "status_rank", "select_canonical", "reconcile", "apply",
    "BookingStore", "StoredRow", "SqlBookingStore", "AirtableBookingStore",
    "CheckfrontClient", "CheckfrontResponse",
    "TwilioSmsClient", "NotificationDispatcher",
    "OperatorAlerter",
    "BookingPipeline", "PipelineResult",
    "SyncScheduler", "SyncReport", "SyncGap", "LookbackWindow", "ReconciliationInProgress",
]
