"""Application configuration and scraper settings.

Two layers:

* ``config/settings.yaml`` (plus ``.env``) describes the deployment: data
  directory, database URL, retry limits, scheduler options.
* ``<data_dir>/settings.json`` holds the user-editable scraper settings,
  with the scraping API key stored encrypted.
"""

import copy
import json
import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from dotenv import load_dotenv

from src.utils.crypto import SecretDecryptionError, decrypt
from src.utils.helpers import normalize_bool

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "app": {"name": "SERP Refresh Engine", "data_dir": "data"},
    "database": {"url": "sqlite:///data/serp_tracker.db", "echo": False},
    "scraper": {
        "max_retries": 3,
        "base_backoff_seconds": 1.0,
        "max_backoff_seconds": 30.0,
        "parallel_scrapers": ["scrapingant", "serpapi", "searchapi"],
        "result_limit": 100,
    },
    "scheduler": {
        "job_store": "sqlite:///data/scheduler_jobs.db",
        "timezone": "America/New_York",
        "main_schedule": "0 0 * * *",
        "failed_schedule": "0 */1 * * *",
    },
}

SCRAPE_INTERVALS = ("never", "hourly", "daily", "other_day", "weekly", "monthly")


@dataclass
class Settings:
    """Scraper settings as seen by the refresh engine (API key decrypted)."""

    scraper_type: str = "none"
    scraping_api: str = ""
    proxy: str = ""
    scrape_interval: str = ""
    scrape_delay: str = ""
    scrape_retry: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        known = {"scraper_type", "scraping_api", "proxy", "scrape_interval", "scrape_delay", "scrape_retry"}
        return cls(
            scraper_type=str(data.get("scraper_type") or "none"),
            scraping_api=str(data.get("scraping_api") or ""),
            proxy=str(data.get("proxy") or ""),
            scrape_interval=str(data.get("scrape_interval") or ""),
            scrape_delay=str(data.get("scrape_delay") if data.get("scrape_delay") is not None else ""),
            scrape_retry=normalize_bool(data.get("scrape_retry", False)),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        extra = data.pop("extra")
        return {**extra, **data}

    @property
    def delay_ms(self) -> int:
        """Pause between sequential scrapes in milliseconds (0 when unset or invalid)."""
        try:
            return max(int(str(self.scrape_delay).strip() or 0), 0)
        except ValueError:
            return 0

    @property
    def proxies(self) -> list[str]:
        return [line.strip() for line in self.proxy.splitlines() if line.strip()]

    def with_scraper(self, scraper_type: str, scraping_api: Optional[str] = None) -> "Settings":
        """Copy with a different backend, keeping the API key unless one is given."""
        changes: dict[str, Any] = {"scraper_type": scraper_type}
        if scraping_api is not None:
            changes["scraping_api"] = scraping_api
        return replace(self, **changes)


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def load_settings(path: Union[str, Path], secret: Optional[str] = None) -> Settings:
    """Read scraper settings, decrypting the API key with ``secret``.

    A missing or unreadable file is replaced with the defaults.  A key that
    cannot be decrypted is dropped with a warning.
    """
    settings_path = Path(path)
    try:
        raw = json.loads(settings_path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            raise ValueError("settings file does not hold an object")
    except (OSError, ValueError) as exc:
        logger.warning("Settings unavailable at %s (%s); writing defaults", settings_path, exc)
        defaults = Settings()
        try:
            _write_json(settings_path, defaults.to_dict())
        except OSError as write_exc:
            logger.error("Could not write default settings to %s: %s", settings_path, write_exc)
        return defaults

    settings = Settings.from_dict(raw)
    if settings.scraping_api:
        if not secret:
            logger.warning("SECRET is not set; scraping API key cannot be decrypted")
            settings.scraping_api = ""
        else:
            try:
                settings.scraping_api = decrypt(secret, settings.scraping_api)
            except SecretDecryptionError as exc:
                logger.warning("Error decrypting scraping API key: %s", exc)
                settings.scraping_api = ""
    return settings


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = "config/settings.yaml", env_path: str = ".env") -> dict[str, Any]:
    """Load ``.env`` and the YAML config merged over the built-in defaults.

    ``DATABASE_URL`` in the environment overrides ``database.url``.
    """
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)
        logger.info("Loaded environment from %s", env_path)

    config_file = Path(config_path)
    loaded: dict[str, Any] = {}
    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        logger.info("Configuration loaded from %s", config_path)
    else:
        logger.warning("Config file not found: %s, using defaults.", config_path)

    config = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), loaded)
    if os.getenv("DATABASE_URL"):
        config["database"]["url"] = os.environ["DATABASE_URL"]
    return config


def env_setting(name: str, default: str) -> str:
    """Environment value with surrounding quotes stripped; blank means default."""
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip().strip("'\"").strip()
    return value or default
