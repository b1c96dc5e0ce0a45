"""Base classes for scraping backend drivers."""

import json
from typing import Any, Optional

import httpx

from src.integrations.serp_parser import compute_map_pack_top3
from src.utils.errors import ScraperConfigError, SerpParseError
from src.utils.location import COUNTRIES, location_parts, resolve_country_code

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 10; SM-G996U Build/QP1A.190711.020; wv) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Version/4.0 Mobile Safari/537.36"
)


class ScraperDriver:
    """One scraping backend: how to address it and how to read its answer.

    Subclasses set the class attributes and override ``scrape_url`` (and
    ``headers`` when the backend wants more than the defaults).  Drivers are
    stateless; one instance is shared by every keyword in a batch.

    Attributes:
        id: Registry key stored in settings as ``scraper_type``.
        result_key: JSON key holding the result payload in a response.
        timeout: Per-attempt timeout in seconds; ``None`` uses the
            executor's growing default.
        supports_map_pack: Whether the backend exposes local results.
        allows_city: Whether a keyword's city/state is sent to the backend.
        parses_json: ``True`` when ``extract`` reads structured results;
            otherwise the payload is parsed as Google HTML.
        countries: Allow-list of country codes the backend accepts, or
            ``None`` for any supported country.
        requires_access_token: Whether requests need an OAuth bearer token
            obtained through ``fetch_access_token``.
    """

    id: str = ""
    name: str = ""
    result_key: Optional[str] = None
    timeout: Optional[float] = None
    supports_map_pack: bool = False
    allows_city: bool = False
    parses_json: bool = False
    countries: Optional[tuple[str, ...]] = None
    requires_access_token: bool = False

    def country(self, keyword: dict[str, Any]) -> str:
        return resolve_country_code(keyword.get("country"), self.countries)

    @staticmethod
    def language(country: str, countries: dict[str, tuple[str, str]] = COUNTRIES) -> str:
        info = countries.get(country) or countries.get("US") or next(iter(countries.values()), None)
        return info[1] if info else "en"

    def location(self, keyword: dict[str, Any], country: str) -> list[str]:
        """Location parts to send, empty unless the backend accepts a city."""
        if not self.allows_city:
            return []
        return location_parts(keyword.get("location"), country)

    def headers(self, keyword: dict[str, Any], settings: Any) -> dict[str, str]:
        return {}

    def scrape_url(
        self,
        keyword: dict[str, Any],
        settings: Any,
        countries: dict[str, tuple[str, str]] = COUNTRIES,
    ) -> str:
        raise NotImplementedError

    def extract(self, result: Any, response: Any, keyword: dict[str, Any]) -> dict[str, Any]:
        """Return ``{"organic": [...], "map_pack_top3": bool}`` from a JSON payload."""
        raise NotImplementedError

    async def fetch_access_token(self, client: httpx.AsyncClient, settings: Any) -> tuple[str, float]:
        """Exchange credentials for ``(token, expires_in_seconds)``."""
        raise ScraperConfigError(f"Scraper '{self.id}' does not support access tokens")

    def auth_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"


class JsonApiDriver(ScraperDriver):
    """Hosted SERP API that returns organic results as a JSON list.

    Each item carries ``title`` and ``link``; the rank is read from
    ``position_field``.
    """

    parses_json = True
    allows_city = True
    supports_map_pack = True
    position_field = "position"

    def headers(self, keyword: dict[str, Any], settings: Any) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _result_items(self, result: Any, response: Any) -> list:
        if isinstance(result, str):
            try:
                decoded = json.loads(result)
            except ValueError as exc:
                raise SerpParseError(f"Invalid JSON response for {self.name}: {exc}") from exc
            return decoded if isinstance(decoded, list) else []
        if isinstance(result, list):
            return result
        if isinstance(response, dict) and isinstance(response.get(self.result_key), list):
            return response[self.result_key]
        return []

    def extract(self, result: Any, response: Any, keyword: dict[str, Any]) -> dict[str, Any]:
        organic = []
        for index, item in enumerate(self._result_items(result, response)):
            if not isinstance(item, dict) or not item.get("title") or not item.get("link"):
                continue
            position = item.get(self.position_field)
            if isinstance(position, bool) or not isinstance(position, (int, float)):
                position = index + 1
            organic.append({"title": item["title"], "url": item["link"], "position": int(position)})

        map_pack = False
        if self.supports_map_pack:
            map_pack = compute_map_pack_top3(keyword.get("domain") or "", response)
        return {"organic": organic, "map_pack_top3": map_pack}
