"""
Alert Configuration Store

Reads and writes the single alert configuration row, creating it with
defaults the first time it is read.
"""
import logging
from typing import Any, Iterable, List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from kor_inventory.core.config import settings
from kor_inventory.core.database import get_db_session
from kor_inventory.core.exceptions import AlertConfigError
from kor_inventory.models import AlertConfig, SummaryFrequency, ALERT_CONFIG_ID

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "default_threshold",
    "summary_frequency",
    "recipients",
    "is_enabled",
    "from_email",
    "last_daily_digest_at",
    "last_weekly_digest_at",
}


def normalize_recipients(recipients: Iterable[str]) -> List[str]:
    """Lower-case, strip and de-duplicate while keeping first-seen order."""
    seen = []
    for address in recipients or []:
        cleaned = address.strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def default_config() -> AlertConfig:
    return AlertConfig(
        id=ALERT_CONFIG_ID,
        default_threshold=settings.ALERT_DEFAULT_THRESHOLD,
        summary_frequency=SummaryFrequency.DAILY.value,
        recipients=[],
        is_enabled=True,
        from_email=settings.ALERT_FROM_EMAIL,
    )


class AlertConfigStore:
    """Persistence for the alert configuration singleton."""

    def __init__(self, session_factory=get_db_session):
        self._session_factory = session_factory

    async def _load_or_create(self, db) -> AlertConfig:
        result = await db.execute(select(AlertConfig).where(AlertConfig.id == ALERT_CONFIG_ID))
        config = result.scalar_one_or_none()
        if config is not None:
            return config

        config = default_config()
        db.add(config)
        try:
            await db.flush()
            # Load server-side timestamps before the session closes
            await db.refresh(config)
            logger.info("[ALERTS] Created default alert configuration")
        except IntegrityError:
            # Another worker created the row first
            await db.rollback()
            result = await db.execute(select(AlertConfig).where(AlertConfig.id == ALERT_CONFIG_ID))
            config = result.scalar_one()
        return config

    async def get_config(self) -> AlertConfig:
        async with self._session_factory() as db:
            return await self._load_or_create(db)

    async def update_config(self, **changes: Any) -> AlertConfig:
        """Apply a partial update and return the stored configuration."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise AlertConfigError(
                f"Unknown alert configuration fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        if "default_threshold" in changes and changes["default_threshold"] < 1:
            raise AlertConfigError(
                "default_threshold must be at least 1",
                details={"default_threshold": changes["default_threshold"]},
            )
        if "summary_frequency" in changes:
            try:
                changes["summary_frequency"] = SummaryFrequency(changes["summary_frequency"]).value
            except ValueError:
                raise AlertConfigError(
                    f"Invalid summary frequency: {changes['summary_frequency']}",
                    details={"allowed": [f.value for f in SummaryFrequency]},
                )
        if "recipients" in changes:
            changes["recipients"] = normalize_recipients(changes["recipients"])

        async with self._session_factory() as db:
            config = await self._load_or_create(db)
            for field_name, value in changes.items():
                setattr(config, field_name, value)
            await db.flush()
            # onupdate expires updated_at; reload it while still attached
            await db.refresh(config)
            logger.info(f"[ALERTS] Alert configuration updated: {', '.join(sorted(changes))}")
            return config
