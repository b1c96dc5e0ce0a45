"""Scraper driver registry keyed by ``scraper_type``."""

from collections.abc import Iterable
from typing import Optional

from src.integrations.scrapers.base import ScraperDriver
from src.integrations.scrapers.page_scrapers import (
    ProxyDriver,
    ScrapingAntDriver,
    ScrapingRobotDriver,
)
from src.integrations.scrapers.serp_apis import (
    HasDataDriver,
    SearchApiDriver,
    SerpApiDriver,
    SerperDriver,
    SerplyDriver,
    SpaceSerpDriver,
    ValueSerpDriver,
)
from src.utils.errors import ScraperConfigError

BUILTIN_DRIVERS: tuple[type[ScraperDriver], ...] = (
    ProxyDriver,
    ScrapingAntDriver,
    ScrapingRobotDriver,
    SerpApiDriver,
    SearchApiDriver,
    SerperDriver,
    SerplyDriver,
    SpaceSerpDriver,
    ValueSerpDriver,
    HasDataDriver,
)

# Backends that tolerate a whole batch being requested at once
PARALLEL_SCRAPERS = frozenset({"scrapingant", "serpapi", "searchapi"})


class ScraperRegistry:
    """Driver instances by id, with the built-in backends preloaded.

    Usage::

        registry = ScraperRegistry()
        registry.register(MyDriver)
        driver = registry.get("serpapi")
    """

    def __init__(self, drivers: Optional[Iterable[type[ScraperDriver]]] = None) -> None:
        self._drivers: dict[str, ScraperDriver] = {}
        for driver_class in BUILTIN_DRIVERS if drivers is None else drivers:
            self.register(driver_class)

    def register(self, driver_class: type[ScraperDriver]) -> None:
        if not driver_class.id:
            raise ValueError(f"{driver_class.__name__} has no id")
        self._drivers[driver_class.id] = driver_class()

    def get(self, scraper_type: Optional[str]) -> ScraperDriver:
        driver = self._drivers.get(scraper_type or "")
        if driver is None:
            raise ScraperConfigError(f"Scraper type '{scraper_type or ''}' not found")
        return driver

    def ids(self) -> list[str]:
        return sorted(self._drivers)

    def __contains__(self, scraper_type: object) -> bool:
        return scraper_type in self._drivers
