"""Scraping backend drivers."""

from src.integrations.scrapers.base import JsonApiDriver, ScraperDriver
from src.integrations.scrapers.registry import (
    BUILTIN_DRIVERS,
    PARALLEL_SCRAPERS,
    ScraperRegistry,
)

__all__ = [
    "BUILTIN_DRIVERS",
    "PARALLEL_SCRAPERS",
    "JsonApiDriver",
    "ScraperDriver",
    "ScraperRegistry",
]
