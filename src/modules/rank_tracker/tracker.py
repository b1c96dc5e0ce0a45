"""Rank Tracker: refresh tracked keywords' Google positions and record the outcome."""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from src.config import Settings, load_settings
from src.integrations.scrapers import PARALLEL_SCRAPERS
from src.integrations.serp_scraper import SERPScraper
from src.modules.rank_tracker.domain_settings import log_scraper_selection, resolve_domain_settings
from src.modules.rank_tracker.domain_stats import update_domain_stats
from src.modules.rank_tracker.retry_queue import RetryQueue
from src.modules.rank_tracker.serp_analyzer import get_serp
from src.modules.rank_tracker.store import KeywordStore
from src.utils.errors import ScraperConfigError, serialize_error
from src.utils.helpers import record_history

logger = logging.getLogger(__name__)

MAX_SCRAPE_DELAY_MS = 30_000
DEFAULT_RESULT_LIMIT = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RankTracker:
    """Refresh keyword positions through the configured scraping backends.

    A batch is scraped in parallel only when every keyword's effective
    backend tolerates it; otherwise keywords run one at a time with the
    configured delay between them.  Per-keyword failures are recorded on
    the keyword (and queued for retry when enabled) and never abort the
    batch.

    Usage::

        tracker = RankTracker(secret=os.environ["SECRET"])
        refreshed = await tracker.refresh_domains(["example.com"])
        retried = await tracker.retry_failed()
    """

    def __init__(
        self,
        store: Optional[KeywordStore] = None,
        scraper: Optional[SERPScraper] = None,
        retry_queue: Optional[RetryQueue] = None,
        secret: Optional[str] = None,
        data_dir: Union[str, Path] = "data",
        result_limit: int = DEFAULT_RESULT_LIMIT,
        parallel_scrapers: Optional[Iterable[str]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._data_dir = Path(data_dir)
        self._store = store if store is not None else KeywordStore()
        self._scraper = scraper if scraper is not None else SERPScraper()
        self._queue = retry_queue if retry_queue is not None else RetryQueue(self._data_dir / "failed_queue.json")
        self._secret = secret
        self._result_limit = result_limit
        self._parallel = frozenset(parallel_scrapers) if parallel_scrapers is not None else PARALLEL_SCRAPERS
        self._sleep = sleep
        self._clock = clock

    @property
    def retry_queue(self) -> RetryQueue:
        return self._queue

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load_settings(self) -> Settings:
        return load_settings(self._data_dir / "settings.json", self._secret)

    async def refresh(self, keywords: list[dict[str, Any]], settings: Settings) -> list[dict[str, Any]]:
        """Scrape and persist a batch of keywords.

        Returns one entry per input keyword: the stored record after the
        attempt, or the input record with ``updating`` cleared when its domain has
        scraping disabled.
        """
        if not keywords:
            return []

        domains = list(dict.fromkeys(k["domain"] for k in keywords if k.get("domain")))
        selection = resolve_domain_settings(self._store, domains, settings, self._secret)
        log_scraper_selection(settings, selection, domains)

        skipped = [k for k in keywords if not selection.is_enabled(k.get("domain", ""))]
        eligible = [k for k in keywords if selection.is_enabled(k.get("domain", ""))]
        if skipped:
            self._release_skipped([k["id"] for k in skipped])

        outcomes: dict[int, dict[str, Any]] = {}
        if eligible:
            effective = {k["id"]: selection.effective(k.get("domain", ""), settings) for k in eligible}
            start = time.monotonic()

            if all(s.scraper_type in self._parallel for s in effective.values()):
                logger.info("Refreshing %d keyword(s) in parallel", len(eligible))
                results = await asyncio.gather(
                    *(self._scrape_keyword(k, effective[k["id"]]) for k in eligible)
                )
                for keyword, result in zip(eligible, results):
                    outcomes[keyword["id"]] = self._save_result(keyword, result, effective[keyword["id"]])
            else:
                logger.info("Refreshing %d keyword(s) sequentially", len(eligible))
                delay_ms = min(settings.delay_ms, MAX_SCRAPE_DELAY_MS)
                for keyword in eligible:
                    result = await self._scrape_keyword(keyword, effective[keyword["id"]])
                    outcomes[keyword["id"]] = self._save_result(keyword, result, effective[keyword["id"]])
                    if delay_ms > 0:
                        await self._sleep(delay_ms / 1000)

            logger.info("Refreshed %d keyword(s) in %.1fs", len(eligible), time.monotonic() - start)
            for domain in dict.fromkeys(k.get("domain") for k in eligible):
                if domain:
                    update_domain_stats(self._store, domain)

        return [outcomes.get(k["id"]) or {**k, "updating": False} for k in keywords]

    async def refresh_keywords(self, ids: Iterable[int], settings: Optional[Settings] = None) -> list[dict[str, Any]]:
        return await self._run_batch(self._store.find_keywords_by_ids(ids), settings)

    async def refresh_domains(self, domains: Iterable[str], settings: Optional[Settings] = None) -> list[dict[str, Any]]:
        return await self._run_batch(self._store.find_keywords_by_domain(domains), settings)

    async def refresh_all(self, settings: Optional[Settings] = None) -> list[dict[str, Any]]:
        return await self._run_batch(self._store.find_all_keywords(), settings)

    async def retry_failed(self, settings: Optional[Settings] = None) -> list[dict[str, Any]]:
        """Refresh every keyword currently in the retry queue.

        Ids whose keyword no longer exists are dropped from the queue.
        """
        queued = self._queue.read()
        if not queued:
            logger.info("No failed scrapes to retry")
            return []
        logger.info("Found %d failed scrape(s) to retry", len(queued))
        keywords = self._store.find_keywords_by_ids(queued)
        stale = set(queued) - {k["id"] for k in keywords}
        if stale:
            self._queue.remove_many(stale)
        return await self._run_batch(keywords, settings)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_batch(self, keywords: list[dict[str, Any]], settings: Optional[Settings]) -> list[dict[str, Any]]:
        if not keywords:
            return []
        settings = settings or self.load_settings()
        if not settings.scraper_type or settings.scraper_type == "none":
            raise ScraperConfigError("Scraper has not been set up yet.")
        ids = [k["id"] for k in keywords]
        self._store.batch_set_updating_flag(ids, True)
        try:
            return await self.refresh([{**k, "updating": True} for k in keywords], settings)
        except Exception:
            self._save_updating_flag(ids)
            raise

    async def _scrape_keyword(self, keyword: dict[str, Any], settings: Settings) -> dict[str, Any]:
        """Scrape one keyword into a refresh result; errors are captured, not raised."""
        try:
            extraction = await self._scraper.scrape(keyword, settings)
        except Exception as exc:
            logger.error("Scraper failed for keyword %r: %s", keyword.get("keyword"), exc)
            return {
                "id": keyword["id"],
                "keyword": keyword.get("keyword"),
                "position": keyword.get("position") or 0,
                "url": keyword.get("url") or "",
                "result": keyword.get("last_result") or [],
                "map_pack_top3": keyword.get("map_pack_top3") is True,
                "error": serialize_error(exc),
            }

        serp = get_serp(keyword.get("domain") or "", extraction["organic"])
        return {
            "id": keyword["id"],
            "keyword": keyword.get("keyword"),
            "position": serp["position"],
            "url": serp["url"],
            "result": extraction["organic"],
            "map_pack_top3": extraction["map_pack_top3"],
            "error": False,
        }

    def _save_result(
        self,
        keyword: dict[str, Any],
        result: dict[str, Any],
        settings: Settings,
    ) -> dict[str, Any]:
        """Persist a refresh result; ``updating`` is cleared whatever happens."""
        now = self._clock()
        error = result.get("error") or False
        position = int(result.get("position") or 0)

        fields: dict[str, Any] = {
            "position": position,
            "url": result.get("url") or None,
            "history": record_history(keyword.get("history") or {}, position, now),
            "last_result": list(result.get("result") or [])[: self._result_limit],
            "map_pack_top3": result.get("map_pack_top3") is True,
            "updating": False,
        }
        if error:
            fields["last_update_error"] = json.dumps(
                {"date": now.isoformat(), "error": error, "scraper": settings.scraper_type}
            )
        else:
            fields["last_updated"] = now
            fields["last_update_error"] = "false"

        self._update_retry_queue(keyword["id"], bool(error), settings)

        try:
            updated = self._store.update_keyword_fields(keyword["id"], fields)
        except (SQLAlchemyError, ValueError) as exc:
            logger.error("Failed to save refresh result for %r: %s", keyword.get("keyword"), exc)
            self._save_updating_flag([keyword["id"]])
            return {**keyword, "updating": False}

        if error:
            logger.warning("Keyword %r refresh failed: %s", keyword.get("keyword"), error)
        else:
            logger.info(
                "Keyword %r updated: position=%d url=%s%s",
                keyword.get("keyword"), position, fields["url"] or "-",
                " (map pack)" if fields["map_pack_top3"] else "",
            )
        return updated if updated is not None else {**keyword, "updating": False}

    def _update_retry_queue(self, keyword_id: int, failed: bool, settings: Settings) -> None:
        try:
            if failed and settings.scrape_retry:
                self._queue.add(keyword_id)
            else:
                self._queue.remove(keyword_id)
        except (OSError, ValueError) as exc:
            logger.error("Failed to update retry queue for keyword %s: %s", keyword_id, exc)

    def _release_skipped(self, ids: list[int]) -> None:
        logger.info("Skipping %d keyword(s) on domains with scraping disabled", len(ids))
        self._save_updating_flag(ids)
        try:
            self._queue.remove_many(ids)
        except (OSError, ValueError) as exc:
            logger.error("Failed to drop skipped keywords from retry queue: %s", exc)

    def _save_updating_flag(self, ids: list[int]) -> None:
        try:
            self._store.batch_set_updating_flag(ids, False)
        except SQLAlchemyError as exc:
            logger.error("Failed to clear updating flag for %s: %s", ids, exc)
