"""
Alert configuration model

Single-row table: the engine always reads and writes the row with
id = ALERT_CONFIG_ID. The row is created with defaults on first read.
"""
import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, CheckConstraint
from sqlalchemy.sql import func

from kor_inventory.core.database import Base

ALERT_CONFIG_ID = 1


class SummaryFrequency(str, enum.Enum):
    """Digest cadence"""
    DAILY = "daily"
    WEEKLY = "weekly"


class AlertConfig(Base):
    __tablename__ = "alert_configs"

    id = Column(Integer, primary_key=True, default=ALERT_CONFIG_ID)

    default_threshold = Column(Integer, nullable=False, default=10)
    summary_frequency = Column(String(10), nullable=False, default=SummaryFrequency.DAILY.value)
    recipients = Column(JSON, nullable=False, default=list)
    is_enabled = Column(Boolean, nullable=False, default=True)
    from_email = Column(String(255), nullable=False)

    # Period guards for digests
    last_daily_digest_at = Column(DateTime(timezone=True), nullable=True)
    last_weekly_digest_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("default_threshold >= 1", name="chk_alert_default_threshold"),
        CheckConstraint(
            "summary_frequency IN ('daily', 'weekly')",
            name="chk_alert_summary_frequency",
        ),
    )

    def __repr__(self):
        return (
            f"<AlertConfig enabled={self.is_enabled} threshold={self.default_threshold} "
            f"frequency={self.summary_frequency}>"
        )
