"""
Operator alerts.

Every alert is stored as an IntegrationAlert row (listed by the
reconciliation endpoints) and, when Twilio and an admin number are
configured, also texted to the admin.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..database import SessionLocal
from ..models.integration_alert import AlertSeverity, AlertStatus, AlertType, IntegrationAlert
from .notifications import TwilioSmsClient

logger = logging.getLogger(__name__)


class OperatorAlerter:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        sms: Optional[TwilioSmsClient] = None,
        admin_recipient: Optional[str] = None
    ):
        self.session_factory = session_factory or SessionLocal
        self.sms = sms
        self.admin_recipient = admin_recipient if admin_recipient is not None else settings.admin_sms_recipient

    def alert(
        self,
        message: str,
        alert_type: AlertType = AlertType.SYNC_GAP,
        severity: AlertSeverity = AlertSeverity.MEDIUM,
        payload: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Record and deliver one alert. True if it reached at least one channel."""
        sms_sent = False
        if self.sms and self.admin_recipient:
            sms_sent = self.sms.send(self.admin_recipient, message)

        stored = self._store(message, alert_type, severity, payload, sms_sent)
        logger.warning(f"Operator alert ({alert_type.value}): {message}")
        return stored or sms_sent

    def _store(self, message, alert_type, severity, payload, sms_sent) -> bool:
        db = self.session_factory()
        try:
            db.add(IntegrationAlert(
                alert_type=alert_type.value,
                severity=severity.value,
                message=message,
                payload_raw=payload,
                sms_sent=sms_sent
            ))
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to store operator alert: {e}")
            return False
        finally:
            db.close()

    def list_alerts(self, status: Optional[str] = None, limit: int = 50) -> List[IntegrationAlert]:
        db = self.session_factory()
        try:
            query = db.query(IntegrationAlert)
            if status:
                query = query.filter(IntegrationAlert.status == status)
            return query.order_by(IntegrationAlert.created_at.desc()).limit(limit).all()
        finally:
            db.close()

    def acknowledge(self, alert_id: str) -> Optional[IntegrationAlert]:
        db = self.session_factory()
        try:
            alert = db.query(IntegrationAlert).filter(IntegrationAlert.id == alert_id).first()
            if not alert:
                return None
            if alert.status == AlertStatus.OPEN.value:
                alert.status = AlertStatus.ACKNOWLEDGED.value
                alert.acknowledged_at = datetime.utcnow()
                db.commit()
                db.refresh(alert)
            return alert
        finally:
            db.close()
