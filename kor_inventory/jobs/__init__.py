"""Alert engine scheduled jobs."""
from kor_inventory.jobs.alert_scheduler import (
    TaskRegistry,
    next_daily_run,
    next_weekly_run,
    run_calendar_job,
    run_interval_job,
)
