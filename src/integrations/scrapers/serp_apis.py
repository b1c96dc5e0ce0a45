"""Drivers for hosted SERP APIs that answer with structured JSON."""

from typing import Any
from urllib.parse import urlencode

from src.integrations.scrapers.base import JsonApiDriver
from src.utils.location import (
    COUNTRIES,
    decode_if_encoded,
    google_domain,
)


def _plus_encode(value: str) -> str:
    return value.replace(" ", "+")


def _keyword_text(keyword: dict[str, Any]) -> str:
    return decode_if_encoded(keyword.get("keyword") or "")


class SerpApiDriver(JsonApiDriver):
    id = "serpapi"
    name = "SerpApi.com"
    result_key = "organic_results"

    def headers(self, keyword, settings):
        return {"Content-Type": "application/json", "X-API-Key": settings.scraping_api or ""}

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        country = self.country(keyword)
        params: list[tuple[str, str]] = [("engine", "google"), ("q", _keyword_text(keyword))]
        location = self.location(keyword, country)
        if location:
            params.append(("location", ",".join(location)))
        params += [
            ("google_domain", google_domain(country)),
            ("gl", country),
            ("hl", self.language(country, countries)),
            ("api_key", settings.scraping_api or ""),
        ]
        return f"https://serpapi.com/search.json?{urlencode(params)}"


class SearchApiDriver(JsonApiDriver):
    id = "searchapi"
    name = "SearchApi.io"
    result_key = "organic_results"

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        country = self.country(keyword)
        params: list[tuple[str, str]] = [
            ("api_key", settings.scraping_api or ""),
            ("engine", "google"),
            ("q", _plus_encode(_keyword_text(keyword))),
        ]
        location = self.location(keyword, country)
        if location:
            params.append(("location", ",".join(_plus_encode(part) for part in location)))
        if keyword.get("device") == "mobile":
            params.append(("device", "mobile"))
        params += [
            ("gl", country.lower()),
            ("hl", self.language(country, countries)),
            ("google_domain", google_domain(country)),
        ]
        return f"https://www.searchapi.io/api/v1/search?{urlencode(params)}"


class SerperDriver(JsonApiDriver):
    id = "serper"
    name = "Serper.dev"
    result_key = "organic"
    supports_map_pack = False

    def headers(self, keyword, settings):
        return {}

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        country = self.country(keyword)
        params: list[tuple[str, str]] = [("q", _keyword_text(keyword))]
        location = self.location(keyword, country)
        if location:
            params.append(("location", ",".join(location)))
        params += [
            ("gl", country),
            ("hl", self.language(country, countries)),
            ("apiKey", settings.scraping_api or ""),
        ]
        return f"https://google.serper.dev/search?{urlencode(params)}"


class SerplyDriver(JsonApiDriver):
    id = "serply"
    name = "Serply"
    result_key = "result"
    allows_city = False
    position_field = "realPosition"
    countries = ("US", "CA", "IE", "GB", "FR", "DE", "SE", "IN", "JP", "KR", "SG", "AU", "BR")

    def headers(self, keyword, settings):
        return {
            "Content-Type": "application/json",
            "X-User-Agent": "mobile" if keyword.get("device") == "mobile" else "desktop",
            "X-Api-Key": settings.scraping_api or "",
            "X-Proxy-Location": self.country(keyword),
        }

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        params = urlencode({
            "q": keyword.get("keyword") or "",
            "num": "100",
            "hl": self.country(keyword),
        })
        return f"https://api.serply.io/v1/search?{params}"


class SpaceSerpDriver(JsonApiDriver):
    id = "spaceSerp"
    name = "Space Serp"
    result_key = "organic_results"

    def headers(self, keyword, settings):
        return {}

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        country = self.country(keyword)
        params: list[tuple[str, str]] = [
            ("apiKey", settings.scraping_api or ""),
            ("q", keyword.get("keyword") or ""),
            ("pageSize", "100"),
            ("gl", country),
            ("hl", self.language(country, countries)),
        ]
        location = self.location(keyword, country)
        if location:
            params.append(("location", ",".join(location)))
        if keyword.get("device") == "mobile":
            params.append(("device", "mobile"))
        params.append(("resultBlocks", ""))
        return f"https://api.spaceserp.com/google/search?{urlencode(params)}"


class ValueSerpDriver(JsonApiDriver):
    id = "valueserp"
    name = "Value Serp"
    result_key = "organic_results"
    timeout = 35.0

    def headers(self, keyword, settings):
        return {}

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        country = self.country(keyword)
        params: list[tuple[str, str]] = [
            ("api_key", settings.scraping_api or ""),
            ("q", _keyword_text(keyword)),
            ("output", "json"),
            ("include_answer_box", "false"),
            ("include_advertiser_info", "false"),
        ]
        location = self.location(keyword, country)
        if location:
            params.append(("location", ",".join(location)))
        if keyword.get("device") == "mobile":
            params.append(("device", "mobile"))
        params += [
            ("gl", country.lower()),
            ("hl", self.language(country, countries)),
            ("google_domain", google_domain(country)),
        ]
        return f"https://api.valueserp.com/search?{urlencode(params)}"


class HasDataDriver(JsonApiDriver):
    id = "hasdata"
    name = "HasData"
    result_key = "organicResults"

    def headers(self, keyword, settings):
        return {"Content-Type": "application/json", "x-api-key": settings.scraping_api or ""}

    def scrape_url(self, keyword, settings, countries=COUNTRIES):
        country = self.country(keyword)
        params: list[tuple[str, str]] = [
            ("q", _keyword_text(keyword)),
            ("gl", country.lower()),
            ("hl", self.language(country, countries)),
            ("deviceType", keyword.get("device") or "desktop"),
            ("domain", google_domain(country)),
        ]
        location = self.location(keyword, country)
        if location:
            params.append(("location", ",".join(location)))
        return f"https://api.hasdata.com/scrape/google/serp?{urlencode(params)}"
