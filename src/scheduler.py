"""Cron scheduling for keyword refreshes, built on APScheduler."""

import logging
from pathlib import Path
from typing import Any, Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from src.config import env_setting

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_MAIN_SCHEDULE = "0 0 * * *"
DEFAULT_FAILED_SCHEDULE = "0 */1 * * *"

REFRESH_JOB_ID = "keyword_refresh"
RETRY_JOB_ID = "failed_retry"


def normalize_cron(expression: str) -> str:
    """Return a 5-field cron expression.

    A 6-field expression has its leading seconds field dropped.

    Raises:
        ValueError: Any other number of fields.
    """
    parts = expression.strip().split()
    if len(parts) == 6:
        parts = parts[1:]
    if len(parts) != 5:
        raise ValueError(f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}")
    return " ".join(parts)


def cron_for_interval(interval: str, main_schedule: str, failed_schedule: str) -> Optional[str]:
    """Cron expression for a ``scrape_interval`` setting; ``None`` for ``never``.

    Unknown or empty intervals fall back to the main (daily) schedule.
    """
    interval = (interval or "daily").strip()
    if interval == "never":
        return None
    mapping = {
        "hourly": failed_schedule,
        "daily": main_schedule,
        "other_day": "0 0 2-30/2 * *",
        "weekly": "0 0 * * 1",
        "monthly": "0 0 1 * *",
    }
    return normalize_cron(mapping.get(interval, main_schedule))


def schedule_from_env(defaults: Optional[dict[str, Any]] = None) -> dict[str, str]:
    """Timezone and cron expressions, ``CRON_*`` environment variables first.

    ``defaults`` is the ``scheduler`` config section.
    """
    defaults = defaults or {}
    return {
        "timezone": env_setting("CRON_TIMEZONE", defaults.get("timezone") or DEFAULT_TIMEZONE),
        "main_schedule": normalize_cron(
            env_setting("CRON_MAIN_SCHEDULE", defaults.get("main_schedule") or DEFAULT_MAIN_SCHEDULE)
        ),
        "failed_schedule": normalize_cron(
            env_setting("CRON_FAILED_SCHEDULE", defaults.get("failed_schedule") or DEFAULT_FAILED_SCHEDULE)
        ),
    }


class SerpScheduler:
    """Wrapper around APScheduler for the refresh and failed-retry jobs.

    Usage::

        sched = SerpScheduler()
        sched.add_job(job_id="keyword_refresh", func=run_refresh, cron="0 0 * * *")
        sched.start()
        sched.list_jobs()
        sched.stop()
    """

    def __init__(
        self,
        job_store_url: Optional[str] = "sqlite:///data/scheduler_jobs.db",
        timezone: str = DEFAULT_TIMEZONE,
        max_workers: int = 1,
    ):
        if job_store_url:
            if job_store_url.startswith("sqlite:///"):
                db_path = job_store_url.replace("sqlite:///", "")
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            jobstore: Any = SQLAlchemyJobStore(url=job_store_url)
        else:
            jobstore = MemoryJobStore()

        job_defaults = {
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 3600,
        }
        self._scheduler = BackgroundScheduler(
            jobstores={"default": jobstore},
            executors={"default": ThreadPoolExecutor(max_workers=max_workers)},
            job_defaults=job_defaults,
            timezone=timezone,
        )
        self._timezone = timezone
        self._running = False
        logger.info(
            "SerpScheduler initialized (store=%s, tz=%s, workers=%d)",
            job_store_url or "memory", timezone, max_workers,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler is already running.")
            return
        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started.")

    def stop(self, wait: bool = True) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=wait)
        self._running = False
        logger.info("Scheduler stopped.")

    def add_job(
        self,
        job_id: str,
        func: Callable,
        cron: str,
        args: Optional[tuple] = None,
        kwargs: Optional[dict[str, Any]] = None,
        replace_existing: bool = True,
    ) -> None:
        """Add or replace a cron-triggered job.

        Args:
            job_id: Unique identifier for the job.
            func: Module-level callable (persistent job stores keep a reference).
            cron: Cron expression, 5 fields or 6 with leading seconds.
            args: Positional arguments for func.
            kwargs: Keyword arguments for func.
            replace_existing: Overwrite if job_id already exists.
        """
        minute, hour, day, month, day_of_week = normalize_cron(cron).split()
        trigger = CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=self._timezone,
        )
        self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            args=args or (),
            kwargs=kwargs or {},
            replace_existing=replace_existing,
        )
        logger.info("Job added: %s [%s]", job_id, cron)

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job; ``False`` if it did not exist."""
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.warning("Job not found: %s", job_id)
            return False
        logger.info("Job removed: %s", job_id)
        return True

    def list_jobs(self) -> list[dict[str, Any]]:
        result = []
        for job in self._scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            result.append({
                "id": job.id,
                "name": job.name,
                "trigger": str(job.trigger),
                "next_run_time": next_run.isoformat() if next_run else None,
            })
        return result

    def get_job(self, job_id: str) -> Optional[dict[str, Any]]:
        return next((job for job in self.list_jobs() if job["id"] == job_id), None)
