"""
Notification Log

Append-only record of every alert dispatch attempt.
"""
import logging
from typing import List

from sqlalchemy import select

from kor_inventory.core.database import get_db_session
from kor_inventory.models import AlertNotification

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500


class NotificationLog:

    def __init__(self, session_factory=get_db_session):
        self._session_factory = session_factory

    async def append(self, entry: AlertNotification) -> AlertNotification:
        async with self._session_factory() as db:
            db.add(entry)
            await db.flush()
            logger.debug(f"[ALERTS] Logged {entry.type} notification ({entry.status})")
            return entry

    async def list(self, limit: int = 50) -> List[AlertNotification]:
        """Most recent entries first."""
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        async with self._session_factory() as db:
            result = await db.execute(
                select(AlertNotification)
                .order_by(AlertNotification.sent_at.desc(), AlertNotification.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
