"""
Tests for the inventory alert engine.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from kor_inventory.core.config import settings
from kor_inventory.core.exceptions import AlertError
from kor_inventory.models import (
    NotificationStatus,
    NotificationType,
    StockStatus,
    SummaryFrequency,
)
from kor_inventory.services import alert_engine as alert_engine_module
from kor_inventory.services.alert_engine import (
    AlertEngine,
    DispatchOutcome,
    EngineState,
    manual_digest,
    manual_stock_check,
)


def sent_entries(log, notification_type):
    return [
        e for e in log.entries
        if e.type == notification_type.value and e.status == NotificationStatus.SENT.value
    ]


class TestLowStockCheck:
    """Consolidated low-stock alert with per-product deduplication."""

    @pytest.mark.asyncio
    async def test_sends_alert_and_marks_product(
        self, engine, inventory, notification_log, mail_transport, alert_config, make_product, clock
    ):
        """Product under its own threshold is alerted, marked and logged."""
        alert_config.default_threshold = 5
        alert_config.recipients = ["a@x.com"]
        product = make_product("SKU-1", stock_quantity=3, low_stock_threshold=10)
        inventory.products = [product]

        result = await engine.check_low_stock(False)

        assert result.outcome == DispatchOutcome.SENT
        assert result.notified_skus == ["SKU-1"]
        assert len(mail_transport.sent) == 1
        message = mail_transport.sent[0]
        assert message.to == ["a@x.com"]
        assert message.from_email == "noreply@inventario.com"
        assert message.subject == "Alert: 1 product with low stock"
        assert "SKU-1" in message.html
        assert product.low_stock_notified_at == clock.now
        assert len(notification_log.entries) == 1
        entry = notification_log.entries[0]
        assert entry.type == NotificationType.LOW_STOCK.value
        assert entry.status == NotificationStatus.SENT.value
        assert entry.recipients == ["a@x.com"]
        assert entry.sent_at == clock.now
        assert result.notification_id == entry.id

    @pytest.mark.asyncio
    async def test_rerun_within_window_is_noop(
        self, engine, inventory, notification_log, mail_transport, make_product, clock
    ):
        """A second run an hour later sends nothing and logs nothing."""
        inventory.products = [make_product("SKU-1", stock_quantity=3, low_stock_threshold=10)]
        await engine.check_low_stock(False)

        clock.advance(hours=1)
        result = await engine.check_low_stock(False)

        assert result.outcome == DispatchOutcome.ALL_RECENTLY_NOTIFIED
        assert len(mail_transport.sent) == 1
        assert len(notification_log.entries) == 1

    @pytest.mark.asyncio
    async def test_forced_check_bypasses_window(
        self, engine, inventory, notification_log, mail_transport, make_product, clock
    ):
        """Manual forced check re-sends inside the window."""
        product = make_product("SKU-1", stock_quantity=3, low_stock_threshold=10)
        inventory.products = [product]
        await engine.check_low_stock(False)

        clock.advance(hours=1)
        result = await engine.check_low_stock(force_notification=True)

        assert result.outcome == DispatchOutcome.SENT
        assert len(mail_transport.sent) == 2
        assert len(sent_entries(notification_log, NotificationType.LOW_STOCK)) == 2
        assert product.low_stock_notified_at == clock.now

    @pytest.mark.asyncio
    async def test_window_boundary(self, engine, inventory, make_product, clock):
        """23h59m after the last alert is excluded, exactly 24h is included."""
        notified_at = clock.now
        product = make_product("SKU-1", stock_quantity=0, low_stock_notified_at=notified_at)
        inventory.products = [product]

        clock.now = notified_at + timedelta(hours=23, minutes=59)
        result = await engine.check_low_stock()
        assert result.outcome == DispatchOutcome.ALL_RECENTLY_NOTIFIED

        clock.now = notified_at + timedelta(hours=24)
        result = await engine.check_low_stock()
        assert result.outcome == DispatchOutcome.SENT
        assert result.notified_skus == ["SKU-1"]

    @pytest.mark.asyncio
    async def test_only_eligible_products_are_listed(
        self, engine, inventory, mail_transport, make_product, clock
    ):
        """Recently notified products are left out of a mixed alert."""
        recent = make_product("SKU-OLD", stock_quantity=1, low_stock_notified_at=clock.now - timedelta(hours=2))
        fresh = make_product("SKU-NEW", stock_quantity=2)
        inventory.products = [recent, fresh]

        result = await engine.check_low_stock()

        assert result.notified_skus == ["SKU-NEW"]
        assert "SKU-OLD" not in mail_transport.sent[0].html
        assert recent.low_stock_notified_at == clock.now - timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_naive_notified_timestamp_treated_as_utc(self, engine, inventory, make_product, clock):
        naive = (clock.now - timedelta(hours=1)).replace(tzinfo=None)
        inventory.products = [make_product("SKU-1", stock_quantity=1, low_stock_notified_at=naive)]

        result = await engine.check_low_stock()

        assert result.outcome == DispatchOutcome.ALL_RECENTLY_NOTIFIED

    @pytest.mark.asyncio
    async def test_unavailable_status_counts_as_low_stock(self, engine, inventory, make_product):
        """A well-stocked product marked 'inquire' is still alerted."""
        inventory.products = [
            make_product("SKU-INQ", stock_quantity=50, stock_status=StockStatus.INQUIRE.value),
            make_product("SKU-OK", stock_quantity=50),
        ]

        result = await engine.check_low_stock()

        assert result.notified_skus == ["SKU-INQ"]

    @pytest.mark.asyncio
    async def test_no_low_stock(self, engine, inventory, notification_log, mail_transport, make_product):
        inventory.products = [make_product("SKU-1", stock_quantity=100)]

        result = await engine.check_low_stock()

        assert result.outcome == DispatchOutcome.NO_LOW_STOCK
        assert mail_transport.sent == []
        assert notification_log.entries == []

    @pytest.mark.asyncio
    async def test_no_recipients_is_noop(
        self, engine, inventory, notification_log, mail_transport, alert_config, make_product
    ):
        """Empty recipient list: no email, no log entry, no timestamps."""
        alert_config.recipients = []
        product = make_product("SKU-1", stock_quantity=0)
        inventory.products = [product]

        result = await engine.check_low_stock()

        assert result.outcome == DispatchOutcome.NO_RECIPIENTS
        assert mail_transport.sent == []
        assert notification_log.entries == []
        assert product.low_stock_notified_at is None

    @pytest.mark.asyncio
    async def test_disabled_config_is_noop(
        self, engine, inventory, notification_log, alert_config, make_product
    ):
        alert_config.is_enabled = False
        inventory.products = [make_product("SKU-1", stock_quantity=0)]

        result = await engine.check_low_stock()

        assert result.outcome == DispatchOutcome.DISABLED
        assert notification_log.entries == []

    @pytest.mark.asyncio
    async def test_delivery_failure_leaves_timestamps(
        self, engine, inventory, notification_log, mail_transport, make_product
    ):
        """Failed send logs one error entry and marks nothing."""
        mail_transport.result = False
        product = make_product("SKU-1", stock_quantity=0)
        inventory.products = [product]

        result = await engine.check_low_stock()

        assert result.outcome == DispatchOutcome.FAILED
        assert product.low_stock_notified_at is None
        assert len(notification_log.entries) == 1
        entry = notification_log.entries[0]
        assert entry.status == NotificationStatus.ERROR.value
        assert entry.error == "Email delivery failed"

    @pytest.mark.asyncio
    async def test_transport_exception_is_recorded(
        self, engine, inventory, notification_log, mail_transport, make_product
    ):
        mail_transport.raises = ConnectionError("connection reset by peer")
        inventory.products = [make_product("SKU-1", stock_quantity=0)]

        result = await engine.check_low_stock()

        assert result.outcome == DispatchOutcome.FAILED
        assert notification_log.entries[0].status == NotificationStatus.ERROR.value
        assert "connection reset" in notification_log.entries[0].error

    @pytest.mark.asyncio
    async def test_mark_failure_does_not_stop_other_products(
        self, engine, inventory, notification_log, make_product, clock
    ):
        first = make_product("SKU-1", stock_quantity=0)
        second = make_product("SKU-2", stock_quantity=1)
        inventory.products = [first, second]
        inventory.failing_ids = {first.id}

        result = await engine.check_low_stock()

        assert result.outcome == DispatchOutcome.SENT
        assert inventory.marked == [second.id]
        assert second.low_stock_notified_at == clock.now
        assert len(notification_log.entries) == 1

    @pytest.mark.asyncio
    async def test_persistence_error_does_not_escape(self, engine, config_store, notification_log):
        """Unreachable persistence is reported as an error outcome."""
        config_store.fail_reads = True

        result = await engine.check_low_stock()

        assert result.outcome == DispatchOutcome.ERROR
        assert notification_log.entries == []


class TestDigest:
    """Daily and weekly summaries with period guards."""

    @pytest.mark.asyncio
    async def test_daily_digest_sent_once_per_day(
        self, engine, inventory, notification_log, mail_transport, alert_config, make_product, clock
    ):
        inventory.products = [make_product("SKU-1", stock_quantity=2)]

        first = await engine.send_digest("daily")
        clock.advance(hours=5)
        second = await engine.send_digest("daily")

        assert first.outcome == DispatchOutcome.SENT
        assert second.outcome == DispatchOutcome.ALREADY_SENT
        assert len(sent_entries(notification_log, NotificationType.DIGEST)) == 1
        assert len(mail_transport.sent) == 1
        assert alert_config.last_daily_digest_at == clock.now - timedelta(hours=5)

    @pytest.mark.asyncio
    async def test_daily_digest_next_calendar_day(self, engine, inventory, alert_config, clock):
        alert_config.last_daily_digest_at = datetime(2024, 6, 9, 23, 30, tzinfo=timezone.utc)

        result = await engine.send_digest(SummaryFrequency.DAILY)

        assert result.outcome == DispatchOutcome.SENT
        assert alert_config.last_daily_digest_at == clock.now

    @pytest.mark.asyncio
    async def test_daily_guard_uses_configured_timezone(
        self, config_store, inventory, notification_log, mail_transport, alert_config, clock
    ):
        """Same UTC date but different Mexico City dates counts as a new day."""
        engine = AlertEngine(
            config_store=config_store,
            inventory=inventory,
            notification_log=notification_log,
            mail_transport=mail_transport,
            clock=clock,
            timezone="America/Mexico_City",
        )
        # 02:00 UTC on the 10th is the evening of the 9th in Mexico City
        alert_config.last_daily_digest_at = datetime(2024, 6, 10, 2, 0, tzinfo=timezone.utc)

        result = await engine.send_digest("daily")

        assert result.outcome == DispatchOutcome.SENT

    @pytest.mark.asyncio
    async def test_weekly_window(self, engine, alert_config, notification_log, clock):
        last = clock.now
        alert_config.last_weekly_digest_at = last

        clock.now = last + timedelta(days=6, hours=23)
        result = await engine.send_digest("weekly")
        assert result.outcome == DispatchOutcome.ALREADY_SENT
        assert notification_log.entries == []

        clock.now = last + timedelta(days=7, hours=1)
        result = await engine.send_digest("weekly")
        assert result.outcome == DispatchOutcome.SENT
        assert alert_config.last_weekly_digest_at == clock.now

    @pytest.mark.asyncio
    async def test_digest_content(self, engine, inventory, mail_transport, make_product):
        inventory.products = [
            make_product("SKU-1", stock_quantity=0, stock_status=StockStatus.OUT_OF_STOCK.value),
            make_product("SKU-2", stock_quantity=4),
            make_product("SKU-3", stock_quantity=40),
        ]

        result = await engine.send_digest("daily")

        assert result.notified_skus == ["SKU-1", "SKU-2"]
        message = mail_transport.sent[0]
        assert message.subject == "Inventory Daily Summary - KOR Inventory"
        assert "SKU-2" in message.html
        assert "SKU-3" not in message.html
        assert message.text == "Summary with 2 products with low stock"

    @pytest.mark.asyncio
    async def test_no_recipients_is_noop(self, engine, alert_config, notification_log, mail_transport):
        alert_config.recipients = []

        result = await engine.send_digest("daily")

        assert result.outcome == DispatchOutcome.NO_RECIPIENTS
        assert notification_log.entries == []
        assert mail_transport.sent == []
        assert alert_config.last_daily_digest_at is None

    @pytest.mark.asyncio
    async def test_failure_does_not_advance_guard(
        self, engine, alert_config, notification_log, mail_transport
    ):
        mail_transport.result = False

        result = await engine.send_digest("daily")

        assert result.outcome == DispatchOutcome.FAILED
        assert alert_config.last_daily_digest_at is None
        assert len(notification_log.entries) == 1
        assert notification_log.entries[0].status == NotificationStatus.ERROR.value

        # The next attempt retries
        mail_transport.result = True
        result = await engine.send_digest("daily")
        assert result.outcome == DispatchOutcome.SENT

    @pytest.mark.asyncio
    async def test_invalid_frequency_raises(self, engine):
        with pytest.raises(AlertError) as exc_info:
            await engine.send_digest("monthly")

        assert exc_info.value.code == "INVALID_FREQUENCY"


class TestReentrancyGuard:
    """An in-flight run is not started twice."""

    @pytest.mark.asyncio
    async def test_overlapping_stock_checks(
        self, engine, inventory, mail_transport, notification_log, make_product
    ):
        inventory.products = [make_product("SKU-1", stock_quantity=0)]
        mail_transport.gate = asyncio.Event()

        first = asyncio.create_task(engine.check_low_stock())
        await asyncio.sleep(0)
        second = await engine.check_low_stock(force_notification=True)

        mail_transport.gate.set()
        first_result = await first

        assert second.outcome == DispatchOutcome.IN_PROGRESS
        assert first_result.outcome == DispatchOutcome.SENT
        assert len(mail_transport.sent) == 1
        assert len(notification_log.entries) == 1

    @pytest.mark.asyncio
    async def test_overlapping_digests(self, engine, mail_transport):
        mail_transport.gate = asyncio.Event()

        first = asyncio.create_task(engine.send_digest("daily"))
        await asyncio.sleep(0)
        second = await engine.send_digest("weekly")

        mail_transport.gate.set()
        await first

        assert second.outcome == DispatchOutcome.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_guard_released_after_error(self, engine, config_store):
        config_store.fail_reads = True
        assert (await engine.check_low_stock()).outcome == DispatchOutcome.ERROR

        config_store.fail_reads = False
        assert (await engine.check_low_stock()).outcome == DispatchOutcome.NO_LOW_STOCK


class TestTestEmail:

    @pytest.mark.asyncio
    async def test_sends_to_single_address(self, engine, inventory, notification_log, mail_transport, make_product):
        inventory.products = [make_product("SKU-1", stock_quantity=0)]

        result = await engine.send_test_email("qa@example.com", "low_stock")

        assert result.outcome == DispatchOutcome.SENT
        message = mail_transport.sent[0]
        assert message.to == ["qa@example.com"]
        assert message.subject.startswith("[TEST] ")
        entry = notification_log.entries[0]
        assert entry.type == NotificationType.TEST.value
        assert entry.status == NotificationStatus.SENT.value
        # Test emails never mark products
        assert inventory.marked == []

    @pytest.mark.asyncio
    async def test_digest_sample_ignores_period_guard(self, engine, alert_config, mail_transport, clock):
        alert_config.last_daily_digest_at = clock.now

        result = await engine.send_test_email("qa@example.com", NotificationType.DIGEST)

        assert result.outcome == DispatchOutcome.SENT
        assert "Summary" in mail_transport.sent[0].subject
        assert alert_config.last_daily_digest_at == clock.now

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, engine, notification_log, mail_transport):
        mail_transport.result = False

        result = await engine.send_test_email("qa@example.com")

        assert result.outcome == DispatchOutcome.FAILED
        assert notification_log.entries[0].status == NotificationStatus.ERROR.value


class TestLifecycle:
    """initialize / stop / reconfigure."""

    @pytest.mark.asyncio
    async def test_initialize_schedules_daily_jobs(self, engine):
        assert engine.state == EngineState.UNINITIALIZED
        try:
            state = await engine.initialize()

            assert state == EngineState.RUNNING
            assert engine.is_running
            assert engine.scheduled_tasks == ["daily_digest", "stock_check"]
        finally:
            await engine.stop()

        assert engine.state == EngineState.IDLE
        assert engine.scheduled_tasks == []

    @pytest.mark.asyncio
    async def test_weekly_frequency_schedules_weekly_job(self, engine, alert_config):
        alert_config.summary_frequency = SummaryFrequency.WEEKLY.value
        try:
            await engine.initialize()
            assert engine.scheduled_tasks == ["stock_check", "weekly_digest"]
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_initialize_is_noop_when_running(self, engine):
        try:
            await engine.initialize()
            tasks_before = dict(engine._registry._tasks)
            await engine.initialize()
            assert engine._registry._tasks == tasks_before
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_disabled_config_goes_idle(self, engine, alert_config):
        alert_config.is_enabled = False

        state = await engine.initialize()

        assert state == EngineState.IDLE
        assert engine.scheduled_tasks == []

    @pytest.mark.asyncio
    async def test_config_load_failure_goes_idle(self, engine, config_store):
        config_store.fail_reads = True

        state = await engine.initialize()

        assert state == EngineState.IDLE
        assert engine.scheduled_tasks == []

    @pytest.mark.asyncio
    async def test_stop_is_safe_from_any_state(self, engine):
        await engine.stop()
        await engine.stop()
        assert engine.state == EngineState.IDLE

    @pytest.mark.asyncio
    async def test_reconfigure_switches_digest_job(self, engine, config_store):
        try:
            await engine.initialize()
            await config_store.update_config(summary_frequency="weekly")

            state = await engine.reconfigure()

            assert state == EngineState.RUNNING
            assert engine.scheduled_tasks == ["stock_check", "weekly_digest"]
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_reconfigure_to_disabled_cancels_jobs(self, engine, config_store):
        await engine.initialize()
        tasks = list(engine._registry._tasks.values())
        await config_store.update_config(is_enabled=False)

        state = await engine.reconfigure()

        assert state == EngineState.IDLE
        assert engine.scheduled_tasks == []
        assert all(task.cancelled() for task in tasks)

    @pytest.mark.asyncio
    async def test_close_closes_transport(self, engine, mail_transport):
        await engine.close()
        assert mail_transport.closed


async def wait_until(condition, attempts=50):
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class TestStopDuringRun:
    """stop() and reconfigure() let a scheduled run finish before cancelling."""

    @pytest.fixture(autouse=True)
    def immediate_stock_check(self, monkeypatch):
        monkeypatch.setattr(settings, "ALERT_STOCK_CHECK_INITIAL_DELAY_SECONDS", 0)

    @pytest.mark.asyncio
    async def test_reconfigure_waits_for_delivered_alert_to_be_recorded(
        self, engine, inventory, notification_log, mail_transport, make_product, clock
    ):
        """Email already sent when reconfigure starts: product still marked, entry still logged."""
        product = make_product("SKU-1", stock_quantity=0)
        inventory.products = [product]
        inventory.mark_gate = asyncio.Event()

        await engine.initialize()
        try:
            await wait_until(lambda: mail_transport.sent)

            reconfigure = asyncio.create_task(engine.reconfigure())
            for _ in range(5):
                await asyncio.sleep(0)
            assert not reconfigure.done()

            inventory.mark_gate.set()
            state = await reconfigure

            assert state == EngineState.RUNNING
            assert len(mail_transport.sent) == 1
            assert product.low_stock_notified_at == clock.now
            assert len(sent_entries(notification_log, NotificationType.LOW_STOCK)) == 1
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_check(
        self, engine, inventory, notification_log, mail_transport, make_product
    ):
        inventory.products = [make_product("SKU-1", stock_quantity=0)]
        inventory.mark_gate = asyncio.Event()

        await engine.initialize()
        await wait_until(lambda: mail_transport.sent)

        stop = asyncio.create_task(engine.stop())
        await asyncio.sleep(0)
        assert not stop.done()
        assert engine.scheduled_tasks == ["daily_digest", "stock_check"]

        inventory.mark_gate.set()
        await stop

        assert engine.state == EngineState.IDLE
        assert engine.scheduled_tasks == []
        assert len(notification_log.entries) == 1
        assert notification_log.entries[0].status == NotificationStatus.SENT.value

    @pytest.mark.asyncio
    async def test_stop_without_runs_returns_immediately(self, engine):
        await engine.initialize()

        await asyncio.wait_for(engine.stop(), timeout=1)

        assert engine.scheduled_tasks == []


class TestManualTriggers:

    @pytest.mark.asyncio
    async def test_manual_functions_use_global_engine(self, engine, inventory, make_product, monkeypatch):
        monkeypatch.setattr(alert_engine_module, "alert_engine", engine)
        inventory.products = [make_product("SKU-1", stock_quantity=0)]

        first = await manual_stock_check()
        forced = await manual_stock_check(force_notification=True)
        digest = await manual_digest("daily")
        again = await manual_digest("daily")

        assert first.outcome == DispatchOutcome.SENT
        assert forced.outcome == DispatchOutcome.SENT
        assert digest.outcome == DispatchOutcome.SENT
        assert again.outcome == DispatchOutcome.ALREADY_SENT
