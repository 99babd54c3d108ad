from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from kor_inventory.models import SummaryFrequency
from kor_inventory.services.alert_config_store import normalize_recipients


# ============================================================================
# ALERT CONFIGURATION SCHEMAS
# ============================================================================
class AlertConfigResponse(BaseModel):
    default_threshold: int
    summary_frequency: SummaryFrequency
    recipients: List[str]
    is_enabled: bool
    from_email: str
    last_daily_digest_at: Optional[datetime] = None
    last_weekly_digest_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AlertConfigUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    default_threshold: Optional[int] = Field(default=None, ge=1)
    summary_frequency: Optional[SummaryFrequency] = None
    recipients: Optional[List[EmailStr]] = None
    is_enabled: Optional[bool] = None
    from_email: Optional[EmailStr] = None

    @field_validator("recipients")
    @classmethod
    def dedupe_recipients(cls, v):
        if v is None:
            return v
        return normalize_recipients(v)

    def changes(self) -> dict:
        data = self.model_dump(exclude_unset=True, exclude_none=True)
        if "summary_frequency" in data:
            data["summary_frequency"] = SummaryFrequency(data["summary_frequency"]).value
        return data


# ============================================================================
# MANUAL TRIGGER SCHEMAS
# ============================================================================
class StockCheckRequest(BaseModel):
    force: bool = False


class DigestRequest(BaseModel):
    frequency: SummaryFrequency


class TestAlertRequest(BaseModel):
    type: Literal["low_stock", "digest"] = "low_stock"
    email: EmailStr


class DispatchResponse(BaseModel):
    outcome: str
    message: str
    notified_skus: List[str] = []
    notification_id: Optional[int] = None


class EngineStatusResponse(BaseModel):
    state: str
    scheduled_tasks: List[str]


# ============================================================================
# NOTIFICATION LOG SCHEMAS
# ============================================================================
class AlertNotificationResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    type: str
    recipients: List[str]
    subject: str
    body: str
    status: str
    error: Optional[str] = None
    sent_at: datetime

    class Config:
        from_attributes = True
