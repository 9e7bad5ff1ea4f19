"""
Integration Alert Model

Stores operator alerts raised by the reconciliation scheduler.
Visible through the reconciliation status endpoints.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, Index, JSON, Boolean
from ..database import Base
import enum


class AlertType(str, enum.Enum):
    """Types of integration alerts"""
    SYNC_GAP = "sync_gap"
    SYNC_ERROR = "sync_error"


class AlertSeverity(str, enum.Enum):
    """Alert severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, enum.Enum):
    """Alert lifecycle status"""
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class IntegrationAlert(Base):
    __tablename__ = "integration_alerts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    provider = Column(String(50), default="checkfront", nullable=False)

    alert_type = Column(String(50), nullable=False)  # AlertType enum value
    severity = Column(String(20), default=AlertSeverity.MEDIUM.value)
    message = Column(Text, nullable=True)

    # Gap report / error details for debugging
    payload_raw = Column(JSON, nullable=True)

    # Delivery of the admin SMS copy
    sms_sent = Column(Boolean, default=False)

    # Lifecycle
    status = Column(String(20), default=AlertStatus.OPEN.value)
    acknowledged_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('ix_alert_status', 'status', 'created_at'),
        Index('ix_alert_type', 'alert_type', 'severity'),
    )

    def __repr__(self):
        return f"<IntegrationAlert {self.alert_type} {self.severity} {self.status}>"
