"""
Alert Job Scheduler

Recurring asyncio loops for the inventory alert engine.

Jobs are registered in a TaskRegistry owned by the engine instance; there is
no process-global scheduler. Two loop shapes exist:
1. Interval jobs - run, then sleep a fixed interval (hourly stock check)
2. Calendar jobs - sleep until the next wall-clock fire time, then run
   (daily digest at HH:00, weekly digest on a weekday at HH:00)

A failing job is logged and the loop keeps going. Cancellation is the only
way out of a loop.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from kor_inventory.core.utils import utcnow

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[object]]
Clock = Callable[[], datetime]


class TaskRegistry:
    """Mapping of job name to its running asyncio task."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def register(self, name: str, coro) -> asyncio.Task:
        """Start `coro` as a task under `name`, replacing any previous one."""
        existing = self._tasks.get(name)
        if existing and not existing.done():
            existing.cancel()
        task = asyncio.create_task(coro, name=f"alert-job:{name}")
        self._tasks[name] = task
        return task

    async def cancel_all(self) -> None:
        """Cancel every registered task and wait for them to finish."""
        tasks = list(self._tasks.items())
        # Cancel all before awaiting any, so no loop wakes up in between
        for _, task in tasks:
            task.cancel()
        for name, task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"[SCHEDULER] Task {name} ended with error during shutdown: {e}")
            logger.info(f"[SCHEDULER] Stopped task: {name}")
        self._tasks.clear()

    @property
    def names(self) -> List[str]:
        return sorted(self._tasks)

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


async def run_job_safely(name: str, job_func: JobFunc) -> None:
    """Run one job invocation; log and swallow anything except cancellation."""
    try:
        logger.info(f"[SCHEDULER] Running {name}...")
        await job_func()
        logger.info(f"[SCHEDULER] Job {name} completed")
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.exception(f"[SCHEDULER] Job {name} failed: {e}")


async def run_interval_job(
    name: str,
    job_func: JobFunc,
    interval_seconds: float,
    initial_delay_seconds: float = 5,
) -> None:
    """Run a job forever on a fixed interval."""
    await asyncio.sleep(initial_delay_seconds)

    while True:
        await run_job_safely(name, job_func)
        logger.debug(f"[SCHEDULER] Next {name} run in {interval_seconds / 60:.0f} minutes")
        await asyncio.sleep(interval_seconds)


async def run_calendar_job(
    name: str,
    job_func: JobFunc,
    next_run: Callable[[datetime], datetime],
    clock: Clock = utcnow,
) -> None:
    """Run a job forever at the wall-clock times produced by `next_run`."""
    while True:
        now = clock()
        fire_at = next_run(now)
        delay = max((fire_at - now).total_seconds(), 0)
        logger.info(f"[SCHEDULER] Next {name} run at {fire_at.isoformat()}")
        await asyncio.sleep(delay)
        await run_job_safely(name, job_func)


def next_daily_run(now: datetime, hour: int, tz: Optional[ZoneInfo] = None) -> datetime:
    """First HH:00 in `tz` strictly after `now`."""
    local_now = now.astimezone(tz) if tz else now
    candidate = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return candidate


def next_weekly_run(
    now: datetime,
    weekday: int,
    hour: int,
    tz: Optional[ZoneInfo] = None,
) -> datetime:
    """First `weekday` (0 = Monday) at HH:00 in `tz` strictly after `now`."""
    local_now = now.astimezone(tz) if tz else now
    days_ahead = (weekday - local_now.weekday()) % 7
    candidate = (local_now + timedelta(days=days_ahead)).replace(
        hour=hour, minute=0, second=0, microsecond=0
    )
    if candidate <= local_now:
        candidate += timedelta(days=7)
    return candidate
