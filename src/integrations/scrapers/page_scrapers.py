"""Drivers that return the raw Google result page as HTML."""

from typing import Any
from urllib.parse import quote, urlencode

from src.integrations.scrapers.base import MOBILE_USER_AGENT, ScraperDriver
from src.utils.location import COUNTRIES


class ProxyDriver(ScraperDriver):
    """Fetch google.com directly, optionally through a configured proxy."""

    id = "proxy"
    name = "Proxy"
    result_key = "data"

    def headers(self, keyword, settings):
        return {"Accept": "gzip,deflate,compress;"}

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        return f"https://www.google.com/search?num=100&q={quote(keyword.get('keyword', ''))}"


class ScrapingAntDriver(ScraperDriver):
    id = "scrapingant"
    name = "ScrapingAnt"
    result_key = "result"
    countries = (
        "AE", "BR", "CN", "DE", "ES", "FR", "GB", "HK", "PL",
        "IN", "IT", "IL", "JP", "NL", "RU", "SA", "US", "CZ",
    )

    def headers(self, keyword, settings):
        if keyword.get("device") == "mobile":
            return {"Ant-User-Agent": MOBILE_USER_AGENT}
        return {}

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        country = self.country(keyword)
        lang = self.language(country, countries)
        google_url = (
            f"https://www.google.com/search?num=100&hl={lang}&q={quote(keyword.get('keyword', ''))}"
        )
        params = urlencode({
            "url": google_url,
            "x-api-key": settings.scraping_api or "",
            "proxy_country": country,
            "browser": "false",
        })
        return f"https://api.scrapingant.com/v2/extended?{params}"


class ScrapingRobotDriver(ScraperDriver):
    id = "scrapingrobot"
    name = "Scraping Robot"
    result_key = "result"

    def scrape_url(self, keyword: dict[str, Any], settings: Any, countries=COUNTRIES) -> str:
        country = self.country(keyword)
        lang = self.language(country, countries)
        google_url = "https://www.google.com/search?" + urlencode({
            "num": "100",
            "hl": lang,
            "gl": country,
            "q": keyword.get("keyword", ""),
        })
        device = "&mobile=true" if keyword.get("device") == "mobile" else ""
        return (
            f"https://api.scrapingrobot.com/?token={settings.scraping_api or ''}"
            f"&proxyCountry={country}&render=false{device}&url={quote(google_url, safe='')}"
        )
