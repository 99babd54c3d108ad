"""
Inventory Alert Engine

Automated low-stock notifications and periodic inventory digests.

Lifecycle:
    uninitialized --initialize()--> running (config enabled)
    uninitialized --initialize()--> idle (config disabled or unreadable)
    running --stop()--> idle (after in-flight runs finish)
    any --reconfigure()--> stop() + initialize()

Scheduled jobs (owned by this instance's TaskRegistry):
1. stock_check - every ALERT_STOCK_CHECK_INTERVAL_MINUTES, check_low_stock()
2. daily_digest - every day at ALERT_DIGEST_HOUR:00, send_digest("daily")
   or weekly_digest - every ALERT_WEEKLY_DIGEST_WEEKDAY at the same hour

Deduplication:
- Low-stock alerts: per product, a product is re-alerted only once
  ALERT_DEDUP_WINDOW_HOURS have passed since its last delivered alert
  (unless forced).
- Digests: one per calendar day (daily, in ALERT_TIMEZONE) or per rolling
  7 days (weekly). Only a delivered digest advances the guard.

Nothing raised inside a check or digest escapes to the scheduler; every
dispatch attempt, delivered or not, is appended to the notification log.
A check or digest that is already in flight is not started a second time,
and stop() waits for it to finish before cancelling the job loops.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, List, Optional, Sequence, Tuple, Union
from zoneinfo import ZoneInfo

from kor_inventory.core.config import settings
from kor_inventory.core.error_handler import sanitize_error_message
from kor_inventory.core.exceptions import AlertError
from kor_inventory.core.utils import ensure_aware, utcnow
from kor_inventory.jobs.alert_scheduler import (
    TaskRegistry,
    next_daily_run,
    next_weekly_run,
    run_calendar_job,
    run_interval_job,
)
from kor_inventory.models import (
    AlertConfig,
    AlertNotification,
    NotificationStatus,
    NotificationType,
    SummaryFrequency,
)
from kor_inventory.services.alert_config_store import AlertConfigStore
from kor_inventory.services.alert_templates import (
    DigestStats,
    LowStockLine,
    RenderedEmail,
    render_digest_email,
    render_low_stock_email,
)
from kor_inventory.services.email_provider import EmailMessage, MailTransport, SendGridMailTransport
from kor_inventory.services.inventory_repository import InventoryRepository
from kor_inventory.services.notification_log import NotificationLog

logger = logging.getLogger(__name__)

WEEKLY_DIGEST_PERIOD = timedelta(days=7)
DELIVERY_FAILED = "Email delivery failed"


class EngineState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    RUNNING = "running"


class DispatchOutcome(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    DISABLED = "disabled"
    NO_RECIPIENTS = "no_recipients"
    NO_LOW_STOCK = "no_low_stock"
    ALL_RECENTLY_NOTIFIED = "all_recently_notified"
    ALREADY_SENT = "already_sent"
    IN_PROGRESS = "in_progress"
    ERROR = "error"


@dataclass
class DispatchResult:
    outcome: DispatchOutcome
    notified_skus: List[str] = field(default_factory=list)
    notification_id: Optional[int] = None
    detail: Optional[str] = None

    @property
    def dispatched(self) -> bool:
        return self.outcome == DispatchOutcome.SENT


class AlertEngine:
    """Schedules and runs inventory alerts against injected collaborators."""

    STOCK_CHECK_JOB = "stock_check"
    DAILY_DIGEST_JOB = "daily_digest"
    WEEKLY_DIGEST_JOB = "weekly_digest"

    # In-flight keys for the re-entrancy guard
    _CHECK_KEY = "stock_check"
    _DIGEST_KEY = "digest"

    def __init__(
        self,
        config_store: Optional[AlertConfigStore] = None,
        inventory: Optional[InventoryRepository] = None,
        notification_log: Optional[NotificationLog] = None,
        mail_transport: Optional[MailTransport] = None,
        clock: Callable[[], datetime] = utcnow,
        timezone: Optional[str] = None,
    ):
        self.config_store = config_store or AlertConfigStore()
        self.inventory = inventory or InventoryRepository()
        self.notification_log = notification_log or NotificationLog()
        self.mail_transport = mail_transport or SendGridMailTransport()
        self._clock = clock
        self._tz = ZoneInfo(timezone or settings.ALERT_TIMEZONE)
        self._registry = TaskRegistry()
        self._state = EngineState.UNINITIALIZED
        self._lifecycle_lock = asyncio.Lock()
        self._in_flight = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == EngineState.RUNNING

    @property
    def scheduled_tasks(self) -> List[str]:
        return self._registry.names

    async def initialize(self) -> EngineState:
        """Load the configuration and schedule jobs. No-op while running."""
        async with self._lifecycle_lock:
            await self._initialize()
        return self._state

    async def stop(self) -> None:
        """Cancel every scheduled job. Safe from any state."""
        async with self._lifecycle_lock:
            await self._stop()

    async def reconfigure(self) -> EngineState:
        """Tear down and recreate the schedule from the stored configuration."""
        logger.info("[ALERTS] Reconfiguring alert engine...")
        async with self._lifecycle_lock:
            await self._stop()
            await self._initialize()
        return self._state

    async def close(self) -> None:
        await self.stop()
        close = getattr(self.mail_transport, "close", None)
        if close is not None:
            await close()

    async def _initialize(self) -> None:
        if self._state == EngineState.RUNNING:
            return

        logger.info("[ALERTS] Initializing alert engine...")

        if not settings.ALERTS_ENABLED:
            logger.info("[ALERTS] Alert engine disabled via ALERTS_ENABLED")
            self._state = EngineState.IDLE
            return

        try:
            config = await self.config_store.get_config()
        except Exception as e:
            logger.exception(f"[ALERTS] Could not load alert configuration: {e}")
            self._state = EngineState.IDLE
            return

        if not config.is_enabled:
            logger.info("[ALERTS] Alerts disabled in configuration")
            self._state = EngineState.IDLE
            return

        self._schedule_stock_check()
        if SummaryFrequency(config.summary_frequency) == SummaryFrequency.WEEKLY:
            self._schedule_weekly_digest()
        else:
            self._schedule_daily_digest()

        self._state = EngineState.RUNNING
        logger.info(f"[ALERTS] Alert engine running with jobs: {', '.join(self.scheduled_tasks)}")

    async def _stop(self) -> None:
        # A run is never cancelled mid-flight; loops are only cancelled while they sleep
        while self._in_flight:
            logger.info(
                f"[ALERTS] Waiting for in-flight runs to finish: {', '.join(sorted(self._in_flight))}"
            )
            await self._idle.wait()
        await self._registry.cancel_all()
        self._state = EngineState.IDLE

    def _begin(self, key: str) -> None:
        self._in_flight.add(key)
        self._idle.clear()

    def _end(self, key: str) -> None:
        self._in_flight.discard(key)
        if not self._in_flight:
            self._idle.set()

    def _schedule_stock_check(self) -> None:
        interval = settings.ALERT_STOCK_CHECK_INTERVAL_MINUTES
        self._registry.register(
            self.STOCK_CHECK_JOB,
            run_interval_job(
                self.STOCK_CHECK_JOB,
                self.check_low_stock,
                interval_seconds=interval * 60,
                initial_delay_seconds=settings.ALERT_STOCK_CHECK_INITIAL_DELAY_SECONDS,
            ),
        )
        logger.info(f"[ALERTS] Stock check scheduled: every {interval} minutes")

    def _schedule_daily_digest(self) -> None:
        hour = settings.ALERT_DIGEST_HOUR
        self._registry.register(
            self.DAILY_DIGEST_JOB,
            run_calendar_job(
                self.DAILY_DIGEST_JOB,
                partial(self.send_digest, SummaryFrequency.DAILY),
                next_run=lambda now: next_daily_run(now, hour, self._tz),
                clock=self._clock,
            ),
        )
        logger.info(f"[ALERTS] Daily digest scheduled: {hour:02d}:00 {self._tz.key}")

    def _schedule_weekly_digest(self) -> None:
        hour = settings.ALERT_DIGEST_HOUR
        weekday = settings.ALERT_WEEKLY_DIGEST_WEEKDAY
        self._registry.register(
            self.WEEKLY_DIGEST_JOB,
            run_calendar_job(
                self.WEEKLY_DIGEST_JOB,
                partial(self.send_digest, SummaryFrequency.WEEKLY),
                next_run=lambda now: next_weekly_run(now, weekday, hour, self._tz),
                clock=self._clock,
            ),
        )
        logger.info(f"[ALERTS] Weekly digest scheduled: weekday {weekday} at {hour:02d}:00 {self._tz.key}")

    # ------------------------------------------------------------------
    # Low-stock check
    # ------------------------------------------------------------------

    def is_due_for_notification(self, product, now: datetime) -> bool:
        """True when the product was never alerted or its window has elapsed."""
        notified_at = ensure_aware(product.low_stock_notified_at)
        if notified_at is None:
            return True
        return now - notified_at >= timedelta(hours=settings.ALERT_DEDUP_WINDOW_HOURS)

    async def check_low_stock(self, force_notification: bool = False) -> DispatchResult:
        """Send one consolidated alert for every low-stock product due a notification."""
        if self._CHECK_KEY in self._in_flight:
            logger.info("[ALERTS] Stock check already in progress, skipping")
            return DispatchResult(DispatchOutcome.IN_PROGRESS)

        self._begin(self._CHECK_KEY)
        try:
            return await self._check_low_stock(force_notification)
        except Exception as e:
            logger.exception(f"[ALERTS] Error in stock check: {e}")
            return DispatchResult(DispatchOutcome.ERROR, detail=sanitize_error_message(e))
        finally:
            self._end(self._CHECK_KEY)

    async def _check_low_stock(self, force_notification: bool) -> DispatchResult:
        config = await self.config_store.get_config()

        skipped = self._skip_reason(config)
        if skipped:
            return DispatchResult(skipped)

        products = await self.inventory.get_low_stock_products(config.default_threshold)
        if not products:
            logger.info("[ALERTS] No products with low stock")
            return DispatchResult(DispatchOutcome.NO_LOW_STOCK)

        now = self._clock()
        eligible = [
            p for p in products
            if force_notification or self.is_due_for_notification(p, now)
        ]
        if not eligible:
            logger.info("[ALERTS] All low-stock products were notified recently")
            return DispatchResult(DispatchOutcome.ALL_RECENTLY_NOTIFIED)

        logger.info(f"[ALERTS] Found {len(eligible)} low-stock products to notify")

        lines = [LowStockLine.from_product(p, config.default_threshold) for p in eligible]
        email = render_low_stock_email(lines, now)
        recipients = list(config.recipients)
        skus = [p.sku for p in eligible]

        delivered, error = await self._deliver(email, recipients, config.from_email)

        if not delivered:
            logger.error(f"[ALERTS] Low-stock alert delivery failed: {error}")
            entry = await self._record(
                NotificationType.LOW_STOCK, recipients, email, now, error=error
            )
            return DispatchResult(
                DispatchOutcome.FAILED, notification_id=entry.id, detail=error
            )

        logger.info("[ALERTS] Low-stock alert sent")
        for product in eligible:
            try:
                await self.inventory.mark_notified(product.id, now)
            except Exception as e:
                logger.error(f"[ALERTS] Could not mark product {product.sku} as notified: {e}")

        entry = await self._record(NotificationType.LOW_STOCK, recipients, email, now)
        return DispatchResult(DispatchOutcome.SENT, notified_skus=skus, notification_id=entry.id)

    # ------------------------------------------------------------------
    # Digests
    # ------------------------------------------------------------------

    def digest_already_sent(
        self,
        config: AlertConfig,
        frequency: SummaryFrequency,
        now: datetime,
    ) -> bool:
        """Period guard: same local calendar date (daily) or under 7 days (weekly)."""
        if frequency == SummaryFrequency.DAILY:
            last_sent = ensure_aware(config.last_daily_digest_at)
            if last_sent is None:
                return False
            return last_sent.astimezone(self._tz).date() == now.astimezone(self._tz).date()

        last_sent = ensure_aware(config.last_weekly_digest_at)
        if last_sent is None:
            return False
        return now - last_sent < WEEKLY_DIGEST_PERIOD

    async def send_digest(self, frequency: Union[SummaryFrequency, str]) -> DispatchResult:
        """Send the daily or weekly summary, at most once per period."""
        try:
            frequency = SummaryFrequency(frequency)
        except ValueError:
            raise AlertError(
                f"Invalid digest frequency: {frequency}",
                code="INVALID_FREQUENCY",
                details={"allowed": [f.value for f in SummaryFrequency]},
            )

        if self._DIGEST_KEY in self._in_flight:
            logger.info("[ALERTS] Digest already in progress, skipping")
            return DispatchResult(DispatchOutcome.IN_PROGRESS)

        self._begin(self._DIGEST_KEY)
        try:
            return await self._send_digest(frequency)
        except Exception as e:
            logger.exception(f"[ALERTS] Error sending {frequency.value} digest: {e}")
            return DispatchResult(DispatchOutcome.ERROR, detail=sanitize_error_message(e))
        finally:
            self._end(self._DIGEST_KEY)

    async def _send_digest(self, frequency: SummaryFrequency) -> DispatchResult:
        config = await self.config_store.get_config()

        skipped = self._skip_reason(config)
        if skipped:
            return DispatchResult(skipped)

        now = self._clock()
        if self.digest_already_sent(config, frequency, now):
            logger.info(f"[ALERTS] {frequency.value.capitalize()} digest already sent this period")
            return DispatchResult(DispatchOutcome.ALREADY_SENT)

        stats = await self.inventory.get_product_stats()
        products = await self.inventory.get_low_stock_products(config.default_threshold)

        lines = [LowStockLine.from_product(p, config.default_threshold) for p in products]
        digest_stats = DigestStats(
            total_count=stats.total_count,
            out_of_stock_count=stats.out_of_stock_count,
            low_stock_count=len(lines),
        )
        email = render_digest_email(lines, frequency, digest_stats, now)
        recipients = list(config.recipients)

        delivered, error = await self._deliver(email, recipients, config.from_email)

        if not delivered:
            logger.error(f"[ALERTS] {frequency.value.capitalize()} digest delivery failed: {error}")
            entry = await self._record(NotificationType.DIGEST, recipients, email, now, error=error)
            return DispatchResult(DispatchOutcome.FAILED, notification_id=entry.id, detail=error)

        logger.info(f"[ALERTS] {frequency.value.capitalize()} digest sent")
        guard_field = (
            "last_daily_digest_at" if frequency == SummaryFrequency.DAILY else "last_weekly_digest_at"
        )
        try:
            await self.config_store.update_config(**{guard_field: now})
        except Exception as e:
            logger.error(f"[ALERTS] Could not record {guard_field}: {e}")

        entry = await self._record(NotificationType.DIGEST, recipients, email, now)
        return DispatchResult(
            DispatchOutcome.SENT,
            notified_skus=[line.sku for line in lines],
            notification_id=entry.id,
        )

    # ------------------------------------------------------------------
    # Test email
    # ------------------------------------------------------------------

    async def send_test_email(
        self,
        email_address: str,
        notification_type: Union[NotificationType, str] = NotificationType.LOW_STOCK,
    ) -> DispatchResult:
        """Send a sample alert to one address. Bypasses every guard."""
        notification_type = NotificationType(notification_type)
        config = await self.config_store.get_config()
        products = await self.inventory.get_low_stock_products(config.default_threshold)
        lines = [LowStockLine.from_product(p, config.default_threshold) for p in products]
        now = self._clock()

        if notification_type == NotificationType.DIGEST:
            stats = await self.inventory.get_product_stats()
            email = render_digest_email(
                lines,
                SummaryFrequency(config.summary_frequency),
                DigestStats(stats.total_count, stats.out_of_stock_count, len(lines)),
                now,
            )
        else:
            email = render_low_stock_email(lines, now)

        email = RenderedEmail(
            subject=f"[TEST] {email.subject}",
            html=email.html,
            summary=f"Test {notification_type.value} email",
        )
        delivered, error = await self._deliver(email, [email_address], config.from_email)
        entry = await self._record(
            NotificationType.TEST, [email_address], email, now, error=None if delivered else error
        )
        outcome = DispatchOutcome.SENT if delivered else DispatchOutcome.FAILED
        return DispatchResult(outcome, notification_id=entry.id, detail=error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _skip_reason(config: AlertConfig) -> Optional[DispatchOutcome]:
        if not config.is_enabled:
            logger.info("[ALERTS] Alerts disabled in configuration")
            return DispatchOutcome.DISABLED
        if not config.recipients:
            logger.info("[ALERTS] No alert recipients configured")
            return DispatchOutcome.NO_RECIPIENTS
        return None

    async def _deliver(
        self,
        email: RenderedEmail,
        recipients: Sequence[str],
        from_email: Optional[str],
    ) -> Tuple[bool, Optional[str]]:
        message = EmailMessage(
            to=list(recipients),
            from_email=from_email or settings.ALERT_FROM_EMAIL,
            subject=email.subject,
            html=email.html,
            text=email.summary,
            categories=["inventory-alerts"],
        )
        try:
            if await self.mail_transport.send(message):
                return True, None
            return False, DELIVERY_FAILED
        except Exception as e:
            logger.exception(f"[ALERTS] Mail transport raised: {e}")
            return False, sanitize_error_message(e)

    async def _record(
        self,
        notification_type: NotificationType,
        recipients: Sequence[str],
        email: RenderedEmail,
        now: datetime,
        error: Optional[str] = None,
    ) -> AlertNotification:
        entry = AlertNotification(
            product_id=None,
            type=notification_type.value,
            recipients=list(recipients),
            subject=email.subject,
            body=email.summary,
            status=(NotificationStatus.ERROR if error else NotificationStatus.SENT).value,
            error=error,
            sent_at=now,
        )
        return await self.notification_log.append(entry)


# Global engine instance
alert_engine = AlertEngine()


async def manual_stock_check(force_notification: bool = False) -> DispatchResult:
    """Operator-triggered stock check; `force` bypasses the per-product window."""
    return await alert_engine.check_low_stock(force_notification)


async def manual_digest(frequency: Union[SummaryFrequency, str]) -> DispatchResult:
    """Operator-triggered digest; still subject to the period guard."""
    return await alert_engine.send_digest(frequency)
