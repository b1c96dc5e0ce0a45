"""SERP Analyzer: locate a tracked domain inside an extracted result list."""

import logging
import re
from typing import Any, Optional
from urllib.parse import SplitResult, urljoin, urlsplit

from src.integrations.serp_parser import GOOGLE_BASE_URL

logger = logging.getLogger(__name__)

NOT_FOUND: dict[str, Any] = {"position": 0, "url": ""}

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


def _resolve_result_url(value: str) -> Optional[SplitResult]:
    try:
        if _SCHEME_RE.match(value):
            return urlsplit(value)
        return urlsplit(urljoin(GOOGLE_BASE_URL, value))
    except ValueError:
        logger.debug("Unable to resolve SERP result URL %r", value)
        return None


def _strip_trailing_slash(path: str) -> str:
    return path[:-1] if path.endswith("/") else path


def get_serp(domain: str, results: list[dict[str, Any]]) -> dict[str, Any]:
    """Find the tracked domain's position in ``results``.

    ``domain`` may carry a path (``example.com/blog``); only results on that
    exact path (trailing slash ignored) then count.  Relative result URLs
    resolve against Google and never match.

    Examples:
        >>> get_serp("example.com", [{"url": "https://example.com/page", "position": 3}])
        {'position': 3, 'url': 'https://example.com/page'}
        >>> get_serp("example.com/page2", [{"url": "https://example.com/page", "position": 3}])
        {'position': 0, 'url': ''}
    """
    if not results or not domain:
        return dict(NOT_FOUND)

    try:
        target = urlsplit(domain if "://" in domain else f"https://{domain}")
        target_host = target.hostname
    except ValueError:
        logger.warning("Invalid domain URL provided to get_serp: %r", domain)
        return dict(NOT_FOUND)
    if not target_host:
        return dict(NOT_FOUND)
    target_path = _strip_trailing_slash(target.path)

    for item in results:
        raw = (item.get("url") or "").strip() if isinstance(item.get("url"), str) else ""
        if not raw:
            continue
        parsed = _resolve_result_url(raw)
        if parsed is None:
            continue
        origin = f"{parsed.scheme}://{parsed.netloc}"
        if raw.startswith(("/", "?", "#")) and origin == GOOGLE_BASE_URL:
            continue
        try:
            host = parsed.hostname
        except ValueError:
            continue
        if host != target_host:
            continue
        if target_path and _strip_trailing_slash(parsed.path) != target_path:
            continue
        return {"position": item.get("position") or 0, "url": item.get("url") or ""}

    return dict(NOT_FOUND)
