"""SERP request executor: one keyword, one backend, retries with backoff."""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

import httpx

from src.config import Settings
from src.integrations.scrapers import ScraperDriver, ScraperRegistry
from src.integrations.scrapers.base import MOBILE_USER_AGENT
from src.integrations.serp_parser import extract_serp_html
from src.utils.errors import (
    ScraperResponseError,
    SerpParseError,
    SerpScrapeError,
    TransportError,
    serialize_error,
)
from src.utils.token_cache import AccessTokenCache

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0",
]

BASE_TIMEOUT = 15.0
TIMEOUT_STEP = 5.0
MAX_TIMEOUT = 30.0
MAX_REDIRECTS = 3

_FALLBACK_PAYLOAD_KEYS = ("data", "html", "results", "body")


def request_timeout(attempt: int, driver_timeout: Optional[float] = None) -> float:
    """Seconds allowed for one attempt: 15s growing by 5s per retry, capped at 30s."""
    if driver_timeout:
        return float(driver_timeout)
    return min(MAX_TIMEOUT, BASE_TIMEOUT + attempt * TIMEOUT_STEP)


def get_retry_delay(
    attempt: int,
    base: float = 1.0,
    cap: float = 30.0,
    rng: Callable[[], float] = random.random,
) -> float:
    """Exponential backoff with up to 10% jitter, capped at ``cap`` seconds.

    Examples:
        >>> get_retry_delay(0, rng=lambda: 0.0), get_retry_delay(3, rng=lambda: 0.0)
        (1.0, 8.0)
        >>> get_retry_delay(10)
        30.0
    """
    exponential = base * (2 ** attempt)
    jitter = exponential * 0.1 * rng()
    return min(exponential + jitter, cap)


def _decode_body(response: httpx.Response) -> Any:
    text = response.text
    content_type = response.headers.get("content-type", "")
    if "json" in content_type or text.lstrip()[:1] in ("{", "["):
        try:
            return response.json()
        except ValueError:
            return text
    return text


def _is_status_failure(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and not 200 <= value < 300


def classify_response(status_code: int, payload: Any, reason: str = "") -> None:
    """Raise :class:`ScraperResponseError` when a response reports failure.

    A response fails on an HTTP status outside 2xx, a body ``status`` outside
    2xx, ``ok == false`` or ``request_info.success == false``.
    """
    body = payload if isinstance(payload, dict) else {}
    info = body.get("request_info") if isinstance(body.get("request_info"), dict) else {}

    failed = (
        _is_status_failure(status_code)
        or _is_status_failure(body.get("status"))
        or body.get("ok") is False
        or info.get("success") is False
    )
    if not failed:
        return

    if _is_status_failure(status_code):
        status: Any = status_code
    else:
        status = body.get("status") or info.get("status_code") or status_code

    if body:
        detail = (
            info.get("error")
            or body.get("error_message")
            or body.get("detail")
            or body.get("error")
            or info.get("message")
            or body.get("body")
            or body.get("message")
            or ""
        )
        if not isinstance(detail, str):
            detail = serialize_error(detail)
    else:
        detail = reason
    raise ScraperResponseError(status, detail, payload)


def result_payload(driver: ScraperDriver, payload: Any) -> Any:
    """The part of a response holding results: the driver's key, then common fallbacks."""
    if not isinstance(payload, dict):
        return payload
    if driver.result_key and payload.get(driver.result_key) is not None:
        return payload[driver.result_key]
    for key in _FALLBACK_PAYLOAD_KEYS:
        if payload.get(key) is not None:
            return payload[key]
    return None


class SERPScraper:
    """Fetch and extract one keyword's SERP through a registered backend.

    Each attempt opens a short-lived ``httpx.AsyncClient`` with that
    attempt's timeout (and proxy, for the ``proxy`` backend).  Failed
    attempts are retried after an exponential backoff; configuration errors
    are not retried.

    Usage::

        scraper = SERPScraper()
        extraction = await scraper.scrape(keyword, settings)
        # {"organic": [{"title", "url", "position"}, ...], "map_pack_top3": False}
    """

    def __init__(
        self,
        registry: Optional[ScraperRegistry] = None,
        token_cache: Optional[AccessTokenCache] = None,
        max_retries: int = 3,
        base_backoff: float = 1.0,
        max_backoff: float = 30.0,
        client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        user_agents: Optional[list[str]] = None,
    ):
        self._registry = registry if registry is not None else ScraperRegistry()
        self._token_cache = token_cache if token_cache is not None else AccessTokenCache()
        self._max_retries = max(0, max_retries)
        self._base_backoff = base_backoff
        self._max_backoff = max_backoff
        self._client_factory = client_factory
        self._sleep = sleep
        self._user_agents = user_agents or DEFAULT_USER_AGENTS

    @property
    def registry(self) -> ScraperRegistry:
        return self._registry

    async def scrape(self, keyword: dict[str, Any], settings: Settings) -> dict[str, Any]:
        """Scrape ``keyword`` with the backend named by ``settings.scraper_type``.

        Returns:
            ``{"organic": [...], "map_pack_top3": bool}``

        Raises:
            ScraperConfigError: Unknown backend (not retried).
            SerpScrapeError: The final attempt's transport, backend or parse error.
        """
        driver = self._registry.get(settings.scraper_type)
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            try:
                extraction = await self._attempt(driver, keyword, settings, attempt)
            except SerpScrapeError as exc:
                if not exc.retryable or attempt == self._max_retries:
                    logger.error(
                        "Scrape failed for %r via %s after %d attempt(s): %s",
                        keyword.get("keyword"), driver.id, attempt + 1, exc,
                    )
                    raise
                delay = get_retry_delay(attempt, self._base_backoff, self._max_backoff)
                logger.warning(
                    "Scrape attempt %d/%d failed for %r: %s (retrying in %.1fs)",
                    attempt + 1, attempts, keyword.get("keyword"), exc, delay,
                )
                await self._sleep(delay)
                continue

            logger.info(
                "Scraped %r via %s on attempt %d: %d results%s",
                keyword.get("keyword"), driver.id, attempt + 1,
                len(extraction["organic"]), " (map pack)" if extraction["map_pack_top3"] else "",
            )
            return extraction
        raise SerpScrapeError("No scrape attempts were made")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _headers(self, driver: ScraperDriver, keyword: dict[str, Any], settings: Settings) -> dict[str, str]:
        if keyword.get("device") == "mobile":
            headers = {"User-Agent": MOBILE_USER_AGENT}
        else:
            headers = {"User-Agent": random.choice(self._user_agents)}
        headers.update({k: v for k, v in driver.headers(keyword, settings).items() if v is not None})
        return headers

    @staticmethod
    def _pick_proxy(driver: ScraperDriver, settings: Settings) -> Optional[str]:
        if driver.id != "proxy":
            return None
        proxies = settings.proxies
        return random.choice(proxies) if proxies else None

    def _token_key(self, driver: ScraperDriver, settings: Settings) -> str:
        return AccessTokenCache.make_key(driver.id, settings.scraping_api)

    async def _attempt(
        self,
        driver: ScraperDriver,
        keyword: dict[str, Any],
        settings: Settings,
        attempt: int,
    ) -> dict[str, Any]:
        timeout = request_timeout(attempt, driver.timeout)
        headers = self._headers(driver, keyword, settings)
        url = driver.scrape_url(keyword, settings)
        client_kwargs: dict[str, Any] = {
            "timeout": timeout,
            "follow_redirects": True,
            "max_redirects": MAX_REDIRECTS,
        }
        proxy = self._pick_proxy(driver, settings)
        if proxy:
            client_kwargs["proxy"] = proxy

        try:
            async with self._client_factory(**client_kwargs) as client:
                if driver.requires_access_token:
                    token = await self._token_cache.get_or_fetch(
                        self._token_key(driver, settings),
                        lambda: driver.fetch_access_token(client, settings),
                    )
                    headers.update(driver.auth_headers(token))
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timed out after {timeout:.0f}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc

        if response.status_code == 401 and driver.requires_access_token:
            self._token_cache.invalidate(self._token_key(driver, settings))

        payload = _decode_body(response)
        classify_response(response.status_code, payload, response.reason_phrase)
        return self._extract(driver, keyword, payload)

    @staticmethod
    def _extract(driver: ScraperDriver, keyword: dict[str, Any], payload: Any) -> dict[str, Any]:
        result = result_payload(driver, payload)
        if driver.parses_json:
            try:
                extraction = driver.extract(result, payload, keyword)
            except (KeyError, TypeError, ValueError) as exc:
                raise SerpParseError(f"Could not read {driver.name} results: {exc}") from exc
        else:
            html = result if isinstance(result, str) else ""
            if not html and isinstance(payload, dict) and isinstance(payload.get("data"), str):
                html = payload["data"]
            if not html:
                raise SerpParseError("Scraper payload did not include HTML content to parse.")
            extraction = extract_serp_html(html, keyword.get("device") or "desktop", keyword.get("domain"))

        if not isinstance(extraction, dict) or not isinstance(extraction.get("organic"), list):
            raise SerpParseError("No valid scrape result returned")
        return {
            "organic": extraction["organic"],
            "map_pack_top3": bool(extraction.get("map_pack_top3")),
        }
