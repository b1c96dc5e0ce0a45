"""Per-domain scraper overrides and scrape permissions."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from src.config import Settings
from src.modules.rank_tracker.store import KeywordStore
from src.utils.crypto import SecretDecryptionError, decrypt

logger = logging.getLogger(__name__)


def _non_empty(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def parse_domain_scraper_settings(raw: Any) -> Optional[dict[str, Optional[str]]]:
    """Read a stored override (JSON text or dict).

    Returns ``{"scraper_type", "scraping_api"}`` or ``None`` when there is no
    usable ``scraper_type``.
    """
    if not raw:
        return None
    payload = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(payload, dict) or not _non_empty(payload.get("scraper_type")):
        return None
    return {
        "scraper_type": payload["scraper_type"].strip(),
        "scraping_api": payload["scraping_api"] if _non_empty(payload.get("scraping_api")) else None,
    }


def decrypt_domain_scraper_settings(
    override: Optional[dict[str, Optional[str]]],
    secret: str,
) -> Optional[dict[str, Optional[str]]]:
    """Decrypt an override's API key; a key that fails to decrypt becomes ``None``."""
    if not override or not _non_empty(override.get("scraper_type")):
        return None
    key: Optional[str] = None
    if _non_empty(override.get("scraping_api")):
        try:
            key = decrypt(secret, override["scraping_api"])
        except SecretDecryptionError as exc:
            logger.warning("Failed to decrypt domain scraper API key override: %s", exc)
    return {"scraper_type": override["scraper_type"], "scraping_api": key}


@dataclass
class DomainSelection:
    """Which domains may be scraped and with which effective settings."""

    enabled: dict[str, bool] = field(default_factory=dict)
    overrides: dict[str, Settings] = field(default_factory=dict)

    def is_enabled(self, domain: str) -> bool:
        return self.enabled.get(domain, True)

    def effective(self, domain: str, settings: Settings) -> Settings:
        return self.overrides.get(domain, settings)


def resolve_domain_settings(
    store: KeywordStore,
    domains: Iterable[str],
    settings: Settings,
    secret: Optional[str],
) -> DomainSelection:
    """Load scrape permissions and overrides for ``domains`` in one query.

    Without a ``secret`` no override applies, since stored keys cannot be
    read.  An override replaces ``scraper_type`` and, when its key decrypts,
    ``scraping_api``.
    """
    names = [d for d in dict.fromkeys(domains) if d]
    selection = DomainSelection()
    if not names:
        return selection

    for row in store.find_domains_by_name(names):
        name = row["domain"]
        selection.enabled[name] = row.get("scrape_enabled") is not False
        if not secret:
            continue
        override = decrypt_domain_scraper_settings(
            parse_domain_scraper_settings(row.get("scraper_settings")), secret
        )
        if override:
            key = override["scraping_api"] if isinstance(override["scraping_api"], str) else None
            selection.overrides[name] = settings.with_scraper(override["scraper_type"], key)
    return selection


def log_scraper_selection(settings: Settings, selection: DomainSelection, domains: list[str]) -> None:
    fallback = settings.scraper_type or "none"
    logger.info("Global scraper fallback: %s", fallback)

    if not selection.overrides:
        if domains:
            logger.info("No domain-specific scraper overrides configured.")
        else:
            logger.info("No domains requested for refresh.")
    for name, override in selection.overrides.items():
        api_state = "scraping API configured" if override.scraping_api else "scraping API not configured"
        logger.info("Override for %s: %s (%s)", name, override.scraper_type or "none", api_state)

    fallback_domains = [d for d in domains if d not in selection.overrides]
    for name in fallback_domains:
        logger.info("Domain %s using global scraper fallback: %s", name, fallback)
    if not fallback_domains and domains and selection.overrides:
        logger.info("All requested domains use scraper overrides.")
