"""General-purpose helper utilities for the SERP refresh engine."""

import json
import logging
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_FALSE_STRINGS = {"", "0", "false", "no", "off"}
_TRUE_STRINGS = {"1", "true", "yes", "on"}


def normalize_bool(value: Any) -> bool:
    """Coerce a persisted flag into a real boolean.

    Stored flags arrive as bools, integers or strings depending on how the
    row was written.  Unrecognised strings are treated as ``False``.

    Examples:
        >>> normalize_bool("0"), normalize_bool("false"), normalize_bool(0)
        (False, False, False)
        >>> normalize_bool("Yes"), normalize_bool(1), normalize_bool(True)
        (True, True, True)
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        trimmed = value.strip().lower()
        if trimmed in _FALSE_STRINGS:
            return False
        if trimmed in _TRUE_STRINGS:
            return True
        return False
    return bool(value)


def normalize_history(raw: Any) -> dict[str, int]:
    """Return a clean ``{date_key: position}`` mapping.

    Accepts a dict or its JSON encoding; drops entries whose value is not
    numeric.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    if not isinstance(raw, dict):
        return {}

    history: dict[str, int] = {}
    for key, value in raw.items():
        if not key:
            continue
        try:
            history[str(key)] = int(float(value))
        except (TypeError, ValueError):
            continue
    return history


def history_date_key(moment: Optional[datetime] = None) -> str:
    """Day key used by keyword history, e.g. ``2025-3-7`` (no zero padding)."""
    moment = moment or datetime.now()
    return f"{moment.year}-{moment.month}-{moment.day}"


def record_history(history: dict[str, int], position: int, moment: Optional[datetime] = None) -> dict[str, int]:
    """Write today's position into a history mapping.

    The same day written twice keeps only the latest value.
    """
    updated = dict(history)
    updated[history_date_key(moment)] = position
    return updated


def parse_json_list(raw: Any) -> list:
    """Decode a JSON list, returning ``[]`` for anything else."""
    if isinstance(raw, list):
        return raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return []
        return decoded if isinstance(decoded, list) else []
    return []


def extract_domain(url: str) -> str:
    """Extract the hostname from a URL or bare host.

    Args:
        url: Full URL string or bare host (``example.com/path``).

    Returns:
        Lowercase hostname without protocol or path.
    """
    try:
        parsed = urlparse(url if "://" in url else f"https://{url}")
        return (parsed.hostname or "").lower()
    except ValueError:
        return ""


def normalize_domain_host(domain: str) -> Optional[str]:
    """Host of a tracked domain with any ``www.`` prefix removed."""
    if not domain or not isinstance(domain, str):
        return None
    value = domain.strip()
    if not value:
        return None
    host = extract_domain(value)
    if not host:
        return None
    return host.removeprefix("www.")


def url_matches_domain_host(domain_host: str, value: str) -> bool:
    """Whether ``value`` points at ``domain_host`` (scheme and ``www.`` ignored).

    Google-owned hosts never match since they are map or redirect links.
    """
    candidate = normalize_domain_host(value) if isinstance(value, str) else None
    if not candidate or not domain_host:
        return False
    if "google." in candidate:
        return False
    return candidate == domain_host.lower().removeprefix("www.")
