"""Tests for the SERP request executor: timeouts, backoff, response
classification, retries and access tokens."""

import httpx
import pytest

from src.config import Settings
from src.integrations.scrapers import JsonApiDriver, ScraperRegistry
from src.integrations.scrapers.base import MOBILE_USER_AGENT
from src.integrations.serp_scraper import (
    SERPScraper,
    classify_response,
    get_retry_delay,
    request_timeout,
    result_payload,
)
from src.utils.errors import (
    ScraperConfigError,
    ScraperResponseError,
    SerpParseError,
    TransportError,
)
from src.utils.token_cache import AccessTokenCache

KEYWORD = {
    "id": 1,
    "keyword": "plumber austin",
    "domain": "example.com",
    "device": "desktop",
    "country": "US",
    "location": "",
}


def _scraper(factory, sleep, **kwargs):
    return SERPScraper(client_factory=factory, sleep=sleep, **kwargs)


# ===========================================================================
# 1. Timeouts and backoff
# ===========================================================================
class TestTimingHelpers:

    @pytest.mark.parametrize("attempt,expected", [(0, 15.0), (1, 20.0), (2, 25.0), (3, 30.0), (9, 30.0)])
    def test_request_timeout_grows_and_caps(self, attempt, expected):
        assert request_timeout(attempt) == expected

    def test_driver_timeout_wins(self):
        assert request_timeout(0, 35.0) == 35.0

    def test_retry_delay_exponential(self):
        assert [get_retry_delay(n, rng=lambda: 0.0) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_retry_delay_jitter_and_cap(self):
        assert get_retry_delay(0, rng=lambda: 1.0) == pytest.approx(1.1)
        assert get_retry_delay(6, rng=lambda: 0.5) == 30.0


# ===========================================================================
# 2. Response classification
# ===========================================================================
class TestClassifyResponse:

    def test_success(self):
        assert classify_response(200, {"organic_results": []}) is None

    def test_http_failure(self):
        with pytest.raises(ScraperResponseError) as info:
            classify_response(500, {"error": "Internal error"})
        assert info.value.status == 500
        assert info.value.detail == "Internal error"

    def test_body_status_failure(self):
        with pytest.raises(ScraperResponseError) as info:
            classify_response(200, {"status": 403, "error": "Forbidden"})
        assert info.value.status == 403

    def test_ok_false(self):
        with pytest.raises(ScraperResponseError, match="quota exceeded"):
            classify_response(200, {"ok": False, "message": "quota exceeded"})

    def test_request_info_failure(self):
        with pytest.raises(ScraperResponseError) as info:
            classify_response(200, {"request_info": {"success": False, "status_code": 402, "message": "No credits"}})
        assert info.value.status == 402
        assert info.value.detail == "No credits"

    def test_non_dict_body_uses_reason(self):
        with pytest.raises(ScraperResponseError, match=r"\[502\] Bad Gateway"):
            classify_response(502, "<html>oops</html>", "Bad Gateway")

    def test_result_payload(self):
        registry = ScraperRegistry()
        assert result_payload(registry.get("serpapi"), {"organic_results": [1]}) == [1]
        assert result_payload(registry.get("scrapingant"), {"html": "<p/>"}) == "<p/>"
        assert result_payload(registry.get("proxy"), "<p/>") == "<p/>"
        assert result_payload(registry.get("serpapi"), {"other": 1}) is None


# ===========================================================================
# 3. Scraping through the mock transport
# ===========================================================================
class TestSerpScraper:

    @pytest.mark.asyncio
    async def test_proxy_html_through_configured_proxy(self, mock_client_factory, fake_sleep, serp_html):
        factory = mock_client_factory(lambda request: httpx.Response(200, text=serp_html, headers={"content-type": "text/html"}))
        settings = Settings(scraper_type="proxy", proxy="http://p1:8080\nhttp://p2:8080")
        extraction = await _scraper(factory, fake_sleep).scrape(KEYWORD, settings)

        assert [r["position"] for r in extraction["organic"]] == [1, 2, 3]
        assert extraction["organic"][1]["url"] == "https://example.com/services"
        assert factory.calls[0]["proxy"] in ("http://p1:8080", "http://p2:8080")
        assert factory.calls[0]["max_redirects"] == 3
        assert factory.calls[0]["timeout"] == 15.0

    @pytest.mark.asyncio
    async def test_html_inside_json_result_key(self, mock_client_factory, fake_sleep, serp_html):
        factory = mock_client_factory(lambda request: httpx.Response(200, json={"result": serp_html}))
        extraction = await _scraper(factory, fake_sleep).scrape(KEYWORD, Settings(scraper_type="scrapingant"))
        assert len(extraction["organic"]) == 3
        assert "proxy" not in factory.calls[0]

    @pytest.mark.asyncio
    async def test_json_backend_with_map_pack(self, mock_client_factory, fake_sleep):
        body = {
            "organic_results": [{"title": "E", "link": "https://example.com/", "position": 1}],
            "local_results": [{"title": "E", "website": "https://example.com/", "position": 1}],
        }
        factory = mock_client_factory(lambda request: httpx.Response(200, json=body))
        extraction = await _scraper(factory, fake_sleep).scrape(KEYWORD, Settings(scraper_type="serpapi"))
        assert extraction == {
            "organic": [{"title": "E", "url": "https://example.com/", "position": 1}],
            "map_pack_top3": True,
        }

    @pytest.mark.asyncio
    async def test_mobile_user_agent(self, mock_client_factory, fake_sleep):
        seen = []

        def handler(request):
            seen.append(request.headers["user-agent"])
            return httpx.Response(200, json={"organic_results": []})

        factory = mock_client_factory(handler)
        await _scraper(factory, fake_sleep).scrape({**KEYWORD, "device": "mobile"}, Settings(scraper_type="serpapi"))
        assert seen == [MOBILE_USER_AGENT]

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, mock_client_factory, fake_sleep, sleeps):
        responses = iter([
            httpx.Response(500, json={"error": "busy"}),
            httpx.Response(200, json={"organic_results": []}),
        ])
        factory = mock_client_factory(lambda request: next(responses))
        extraction = await _scraper(factory, fake_sleep).scrape(KEYWORD, Settings(scraper_type="serpapi"))

        assert extraction["organic"] == []
        assert [call["timeout"] for call in factory.calls] == [15.0, 20.0]
        assert len(sleeps) == 1
        assert 1.0 <= sleeps[0] <= 1.1

    @pytest.mark.asyncio
    async def test_raises_after_last_attempt(self, mock_client_factory, fake_sleep, sleeps):
        factory = mock_client_factory(lambda request: httpx.Response(429, json={"message": "slow down"}))
        with pytest.raises(ScraperResponseError, match="slow down"):
            await _scraper(factory, fake_sleep, max_retries=2).scrape(KEYWORD, Settings(scraper_type="serpapi"))
        assert len(factory.calls) == 3
        assert len(sleeps) == 2

    @pytest.mark.asyncio
    async def test_transport_errors(self, mock_client_factory, fake_sleep):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        factory = mock_client_factory(handler)
        with pytest.raises(TransportError, match="connection refused"):
            await _scraper(factory, fake_sleep, max_retries=0).scrape(KEYWORD, Settings(scraper_type="serpapi"))

    @pytest.mark.asyncio
    async def test_timeouts(self, mock_client_factory, fake_sleep):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        factory = mock_client_factory(handler)
        with pytest.raises(TransportError, match="timed out after 15s"):
            await _scraper(factory, fake_sleep, max_retries=0).scrape(KEYWORD, Settings(scraper_type="serpapi"))

    @pytest.mark.asyncio
    async def test_unknown_backend_is_not_retried(self, mock_client_factory, fake_sleep, sleeps):
        factory = mock_client_factory(lambda request: httpx.Response(200))
        with pytest.raises(ScraperConfigError):
            await _scraper(factory, fake_sleep).scrape(KEYWORD, Settings(scraper_type="nope"))
        assert factory.calls == []
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_missing_html(self, mock_client_factory, fake_sleep):
        factory = mock_client_factory(lambda request: httpx.Response(200, json={"result": None}))
        with pytest.raises(SerpParseError, match="did not include HTML"):
            await _scraper(factory, fake_sleep, max_retries=0).scrape(KEYWORD, Settings(scraper_type="scrapingant"))

    @pytest.mark.asyncio
    async def test_unparseable_html(self, mock_client_factory, fake_sleep):
        factory = mock_client_factory(lambda request: httpx.Response(200, json={"result": "<p>captcha</p>"}))
        with pytest.raises(SerpParseError, match="Unable to parse results"):
            await _scraper(factory, fake_sleep, max_retries=0).scrape(KEYWORD, Settings(scraper_type="scrapingant"))


# ===========================================================================
# 4. Backends that authenticate with access tokens
# ===========================================================================
class TokenDriver(JsonApiDriver):
    id = "tokenapi"
    name = "Token API"
    result_key = "organic_results"
    requires_access_token = True

    def __init__(self):
        self.fetches = 0

    def scrape_url(self, keyword, settings, countries=None):
        return "https://api.token.test/search"

    async def fetch_access_token(self, client, settings):
        self.fetches += 1
        return f"tok{self.fetches}", 3600.0


class TestAccessTokens:

    @pytest.mark.asyncio
    async def test_token_reused_across_scrapes(self, mock_client_factory, fake_sleep):
        seen = []

        def handler(request):
            seen.append(request.headers["authorization"])
            return httpx.Response(200, json={"organic_results": []})

        registry = ScraperRegistry(drivers=[TokenDriver])
        scraper = _scraper(mock_client_factory(handler), fake_sleep, registry=registry, token_cache=AccessTokenCache())
        settings = Settings(scraper_type="tokenapi", scraping_api="client:secret")
        await scraper.scrape(KEYWORD, settings)
        await scraper.scrape(KEYWORD, settings)

        assert seen == ["Bearer tok1", "Bearer tok1"]
        assert registry.get("tokenapi").fetches == 1

    @pytest.mark.asyncio
    async def test_shared_token_cache_across_scrapers(self, mock_client_factory, fake_sleep):
        def handler(request):
            return httpx.Response(200, json={"organic_results": []})

        cache = AccessTokenCache()
        registry = ScraperRegistry(drivers=[TokenDriver])
        settings = Settings(scraper_type="tokenapi", scraping_api="client:secret")
        for _ in range(2):
            scraper = _scraper(mock_client_factory(handler), fake_sleep, registry=registry, token_cache=cache)
            await scraper.scrape(KEYWORD, settings)

        assert registry.get("tokenapi").fetches == 1

    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_token(self, mock_client_factory, fake_sleep):
        seen = []

        def handler(request):
            seen.append(request.headers["authorization"])
            if len(seen) == 1:
                return httpx.Response(401, json={"message": "expired"})
            return httpx.Response(200, json={"organic_results": []})

        registry = ScraperRegistry(drivers=[TokenDriver])
        scraper = _scraper(mock_client_factory(handler), fake_sleep, registry=registry, max_retries=1)
        await scraper.scrape(KEYWORD, Settings(scraper_type="tokenapi", scraping_api="client:secret"))

        assert seen == ["Bearer tok1", "Bearer tok2"]
