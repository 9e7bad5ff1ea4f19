# Models package
from .booking_record import BookingRecord
from .integration_alert import IntegrationAlert, AlertType, AlertSeverity, AlertStatus

__all__ = [
    "BookingRecord",
    "IntegrationAlert", "AlertType", "AlertSeverity", "AlertStatus",
]
