"""
Alert notification log model

Append-only audit trail: one row per dispatch attempt, success or failure.
"""
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON, ForeignKey, CheckConstraint, Index
)
from sqlalchemy.sql import func

from kor_inventory.core.database import Base


class NotificationType(str, enum.Enum):
    LOW_STOCK = "low_stock"
    DIGEST = "digest"
    TEST = "test"


class NotificationStatus(str, enum.Enum):
    SENT = "sent"
    ERROR = "error"


class AlertNotification(Base):
    __tablename__ = "alert_notifications"

    id = Column(Integer, primary_key=True, index=True)

    # NULL for consolidated alerts and digests
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    type = Column(String(20), nullable=False, index=True)
    recipients = Column(JSON, nullable=False, default=list)
    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    status = Column(String(10), nullable=False)
    error = Column(Text, nullable=True)

    sent_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "type IN ('low_stock', 'digest', 'test')",
            name="chk_alert_notification_type",
        ),
        CheckConstraint(
            "status IN ('sent', 'error')",
            name="chk_alert_notification_status",
        ),
        Index("ix_alert_notifications_sent_at", "sent_at"),
    )

    def __repr__(self):
        return f"<AlertNotification {self.id}: {self.type} {self.status}>"
