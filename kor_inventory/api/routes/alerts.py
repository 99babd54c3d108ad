"""
Inventory Alerts API

Thin adapters over the alert engine:
- GET/PUT /alerts/config - singleton alert configuration (admin)
- GET /alerts/notifications - dispatch history (any authenticated user)
- GET /alerts/status - engine state and scheduled jobs (admin)
- POST /alerts/check-stock, /alerts/send-digest, /alerts/test - manual triggers (admin)
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Request

from kor_inventory.api.deps import get_alert_engine, get_current_admin, get_current_user
from kor_inventory.core.config import settings
from kor_inventory.core.rate_limit import limiter
from kor_inventory.models import User
from kor_inventory.schemas.alerts import (
    AlertConfigResponse,
    AlertConfigUpdate,
    AlertNotificationResponse,
    DigestRequest,
    DispatchResponse,
    EngineStatusResponse,
    StockCheckRequest,
    TestAlertRequest,
)
from kor_inventory.services.alert_engine import AlertEngine, DispatchOutcome, DispatchResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["Alerts"])

OUTCOME_MESSAGES = {
    DispatchOutcome.SENT: "Notification sent",
    DispatchOutcome.FAILED: "Notification could not be delivered",
    DispatchOutcome.DISABLED: "Alerts are disabled",
    DispatchOutcome.NO_RECIPIENTS: "No alert recipients configured",
    DispatchOutcome.NO_LOW_STOCK: "No products with low stock",
    DispatchOutcome.ALL_RECENTLY_NOTIFIED: "All low-stock products were notified recently",
    DispatchOutcome.ALREADY_SENT: "Summary already sent for this period",
    DispatchOutcome.IN_PROGRESS: "A run is already in progress",
    DispatchOutcome.ERROR: "Alert run failed, see server logs",
}


def to_response(result: DispatchResult) -> DispatchResponse:
    return DispatchResponse(
        outcome=result.outcome.value,
        message=OUTCOME_MESSAGES[result.outcome],
        notified_skus=result.notified_skus,
        notification_id=result.notification_id,
    )


@router.get("/config", response_model=AlertConfigResponse)
async def get_alert_config(
    engine: AlertEngine = Depends(get_alert_engine),
    current_user: User = Depends(get_current_admin),
):
    return await engine.config_store.get_config()


@router.put("/config", response_model=AlertConfigResponse)
async def update_alert_config(
    update: AlertConfigUpdate,
    engine: AlertEngine = Depends(get_alert_engine),
    current_user: User = Depends(get_current_admin),
):
    """Persist the changes, then rebuild the engine's schedule from them."""
    config = await engine.config_store.update_config(**update.changes())
    logger.info(f"[ALERTS] Configuration changed by {current_user.username}")
    await engine.reconfigure()
    return config


@router.get("/notifications", response_model=List[AlertNotificationResponse])
async def list_notifications(
    limit: int = Query(50, ge=1, le=500),
    engine: AlertEngine = Depends(get_alert_engine),
    current_user: User = Depends(get_current_user),
):
    return await engine.notification_log.list(limit)


@router.get("/status", response_model=EngineStatusResponse)
async def get_engine_status(
    engine: AlertEngine = Depends(get_alert_engine),
    current_user: User = Depends(get_current_admin),
):
    return EngineStatusResponse(state=engine.state.value, scheduled_tasks=engine.scheduled_tasks)


@router.post("/check-stock", response_model=DispatchResponse)
@limiter.limit(settings.RATE_LIMIT_ALERT_TRIGGERS)
async def check_stock(
    request: Request,
    body: StockCheckRequest,
    engine: AlertEngine = Depends(get_alert_engine),
    current_user: User = Depends(get_current_admin),
):
    logger.info(f"[ALERTS] Manual stock check by {current_user.username} (force={body.force})")
    return to_response(await engine.check_low_stock(body.force))


@router.post("/send-digest", response_model=DispatchResponse)
@limiter.limit(settings.RATE_LIMIT_ALERT_TRIGGERS)
async def send_digest(
    request: Request,
    body: DigestRequest,
    engine: AlertEngine = Depends(get_alert_engine),
    current_user: User = Depends(get_current_admin),
):
    logger.info(f"[ALERTS] Manual {body.frequency.value} digest by {current_user.username}")
    return to_response(await engine.send_digest(body.frequency))


@router.post("/test", response_model=DispatchResponse)
@limiter.limit(settings.RATE_LIMIT_ALERT_TRIGGERS)
async def send_test_alert(
    request: Request,
    body: TestAlertRequest,
    engine: AlertEngine = Depends(get_alert_engine),
    current_user: User = Depends(get_current_admin),
):
    return to_response(await engine.send_test_email(body.email, body.type))
