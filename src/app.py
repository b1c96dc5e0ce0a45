"""Application wiring for the SERP refresh engine."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Optional

from src.config import load_config
from src.integrations.serp_scraper import SERPScraper
from src.modules.rank_tracker import KeywordStore, RankTracker
from src.scheduler import (
    REFRESH_JOB_ID,
    RETRY_JOB_ID,
    SerpScheduler,
    cron_for_interval,
    schedule_from_env,
)
from src.utils.errors import ScraperConfigError
from src.utils.token_cache import AccessTokenCache

logger = logging.getLogger(__name__)


class SerpRefreshApp:
    """Central application class that wires config, storage, tracker and scheduler.

    Usage::

        app = SerpRefreshApp()
        app.initialize()
        asyncio.run(app.tracker.refresh_all())
        status = app.get_status()
    """

    def __init__(
        self,
        config_path: str = "config/settings.yaml",
        env_path: str = ".env",
    ):
        self._config_path = config_path
        self._env_path = env_path
        self.config: dict[str, Any] = {}
        self._initialized = False
        self._tracker: Optional[RankTracker] = None
        self._scheduler: Optional[SerpScheduler] = None
        self._refresh_scheduled = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load configuration and environment, initialise the DB and the tracker."""
        if self._initialized:
            return

        self.config = load_config(self._config_path, self._env_path)

        data_dir = Path(self.config["app"].get("data_dir") or "data")
        data_dir.mkdir(parents=True, exist_ok=True)

        from src.database import init_db
        db_conf = self.config.get("database", {})
        init_db(database_url=db_conf.get("url"), echo=db_conf.get("echo", False))

        scraper_conf = self.config.get("scraper", {})
        scraper = SERPScraper(
            token_cache=AccessTokenCache(),
            max_retries=scraper_conf.get("max_retries", 3),
            base_backoff=scraper_conf.get("base_backoff_seconds", 1.0),
            max_backoff=scraper_conf.get("max_backoff_seconds", 30.0),
        )
        secret = os.getenv("SECRET") or None
        if not secret:
            logger.warning("SECRET is not set; encrypted API keys will be ignored")
        self._tracker = RankTracker(
            store=KeywordStore(),
            scraper=scraper,
            secret=secret,
            data_dir=data_dir,
            result_limit=scraper_conf.get("result_limit", 100),
            parallel_scrapers=scraper_conf.get("parallel_scrapers"),
        )

        self._initialized = True
        logger.info("SERP refresh engine initialised (data_dir=%s)", data_dir)

    @property
    def tracker(self) -> RankTracker:
        self._ensure_initialized()
        assert self._tracker is not None
        return self._tracker

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def build_scheduler(self) -> SerpScheduler:
        """Create the scheduler and register the refresh and retry jobs.

        The refresh job follows the stored ``scrape_interval`` (none for
        ``never``); the failed-queue retry job always runs on its own cron.
        """
        self._ensure_initialized()
        sched_conf = self.config.get("scheduler", {})
        cron = schedule_from_env(sched_conf)
        scheduler = SerpScheduler(
            job_store_url=sched_conf.get("job_store") or None,
            timezone=cron["timezone"],
        )

        settings = self.tracker.load_settings()
        interval = settings.scrape_interval or "daily"
        logger.info("Scraper interval: %s, scraper type: %s", interval, settings.scraper_type or "none")
        job_args = (self._config_path, self._env_path)

        refresh_cron = cron_for_interval(interval, cron["main_schedule"], cron["failed_schedule"])
        if refresh_cron:
            scheduler.add_job(REFRESH_JOB_ID, run_refresh_job, refresh_cron, args=job_args)
        else:
            logger.info("Scrape interval is 'never'; keyword refresh job not scheduled")
        scheduler.add_job(RETRY_JOB_ID, run_retry_job, cron["failed_schedule"], args=job_args)

        self._scheduler = scheduler
        self._refresh_scheduled = refresh_cron is not None
        return scheduler

    def start_scheduler(self) -> SerpScheduler:
        """Build and start the scheduler, dropping a refresh job left in the store."""
        scheduler = self.build_scheduler()
        scheduler.start()
        if not self._refresh_scheduled and scheduler.get_job(REFRESH_JOB_ID):
            scheduler.remove_job(REFRESH_JOB_ID)
        return scheduler

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Return health status of the major components."""
        self._ensure_initialized()
        status: dict[str, dict[str, Any]] = {}

        try:
            from sqlalchemy import text
            from src.database import get_session
            with get_session() as session:
                tables = session.execute(
                    text("SELECT count(*) FROM sqlite_master WHERE type='table'")
                ).scalar()
            status["database"] = {"status": "ok", "details": f"{tables} tables"}
        except Exception as exc:
            status["database"] = {"status": "error", "details": str(exc)}

        settings = self.tracker.load_settings()
        configured = bool(settings.scraper_type and settings.scraper_type != "none")
        status["scraper"] = {
            "status": "ok" if configured else "warning",
            "details": (
                f"{settings.scraper_type}, interval {settings.scrape_interval or 'daily'}"
                if configured else "not set up"
            ),
        }

        queued = len(self.tracker.retry_queue)
        status["retry_queue"] = {
            "status": "ok" if queued == 0 else "warning",
            "details": f"{queued} keyword(s) queued" + ("" if settings.scrape_retry else " (retry disabled)"),
        }

        jobs = self._scheduler.list_jobs() if self._scheduler else []
        running = self._scheduler.is_running if self._scheduler else False
        status["scheduler"] = {
            "status": "ok" if self._scheduler else "warning",
            "details": f"{'running' if running else 'stopped'}, {len(jobs)} jobs",
        }

        status["config"] = {
            "status": "ok" if self.config else "warning",
            "details": f"{len(self.config)} sections loaded" if self.config else "no config",
        }
        return status

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("Call initialize() before using the application.")


# ----------------------------------------------------------------------
# Scheduled jobs (module-level so persistent job stores can reference them)
# ----------------------------------------------------------------------

def run_refresh_job(config_path: str = "config/settings.yaml", env_path: str = ".env") -> int:
    """Refresh every tracked keyword; returns the number of keywords processed."""
    logger.info("Running keyword position job")
    app = SerpRefreshApp(config_path, env_path)
    app.initialize()
    try:
        refreshed = asyncio.run(app.tracker.refresh_all())
    except ScraperConfigError as exc:
        logger.warning("Keyword refresh skipped: %s", exc)
        return 0
    logger.info("Keyword position job finished: %d keyword(s)", len(refreshed))
    return len(refreshed)


def run_retry_job(config_path: str = "config/settings.yaml", env_path: str = ".env") -> int:
    """Retry the keywords in the failed queue; returns the number retried."""
    logger.info("Retrying failed scrapes")
    app = SerpRefreshApp(config_path, env_path)
    app.initialize()
    try:
        retried = asyncio.run(app.tracker.retry_failed())
    except ScraperConfigError as exc:
        logger.warning("Failed-scrape retry skipped: %s", exc)
        return 0
    return len(retried)
