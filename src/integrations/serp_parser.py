"""Parse Google result pages and scraper payloads into ranked organic results.

Covers three concerns shared by every scraping backend:

* organic result extraction from raw Google HTML (desktop layout first,
  mobile layout as a fallback),
* unwrapping Google redirect links (``/url?q=...``) into destination URLs,
* deciding whether the tracked domain sits in the local map pack, either
  from the HTML or from a structured JSON payload.
"""

import logging
import math
import re
from typing import Any, Optional
from urllib.parse import parse_qs, urljoin, urlsplit

from bs4 import BeautifulSoup

from src.utils.errors import SerpParseError
from src.utils.helpers import normalize_domain_host, url_matches_domain_host

logger = logging.getLogger(__name__)

GOOGLE_BASE_URL = "https://www.google.com"

REDIRECT_PATHS = ("/url", "/interstitial", "/imgres", "/aclk", "/link")
REDIRECT_PARAMS = ("url", "q", "imgurl", "target", "dest", "u", "adurl")

LOCAL_BLOCK_SELECTOR = "div.VkpGBb, div[data-latlng], div[data-cid]"
MAX_MAP_CANDIDATES = 6

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_WEBSITE_RE = re.compile(r'"website":"(.*?)"')

# Structured payload keys
URL_KEYS = (
    "website",
    "link",
    "url",
    "result_link",
    "data_website",
    "share_link",
    "maps_website",
    "place_link",
    "business_website",
)
POSITION_KEYS = ("position", "rank", "index", "block_position")
KEY_HINTS = ("local", "map", "place")


# ----------------------------------------------------------------------
# URL normalisation
# ----------------------------------------------------------------------

def ensure_absolute_url(value: Optional[str], base: str = GOOGLE_BASE_URL) -> Optional[str]:
    """Turn protocol-relative, path-relative or host-only values into absolute URLs."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None

    try:
        if trimmed.startswith("//"):
            candidate = f"https:{trimmed}"
        elif _SCHEME_RE.match(trimmed):
            candidate = trimmed
        elif trimmed.startswith("/"):
            candidate = urljoin(base, trimmed)
        else:
            candidate = f"https://{trimmed}"
        parts = urlsplit(candidate)
    except ValueError:
        logger.debug("Unable to normalise URL %r", trimmed)
        return None
    if not parts.scheme or (parts.scheme in ("http", "https") and not parts.netloc):
        return None
    return candidate


def normalize_google_href(href: Optional[str]) -> Optional[str]:
    """Resolve a result anchor's ``href`` to the page it points at.

    Google wraps many result links in redirect paths; the destination is
    read from the first populated query parameter in ``REDIRECT_PARAMS``.

    Examples:
        >>> normalize_google_href("/url?q=https://example.com/a&sa=U")
        'https://example.com/a'
        >>> normalize_google_href("/interstitial?url=https://example.com/landing")
        'https://example.com/landing'
    """
    if not href or not href.strip():
        return None
    try:
        resolved = urljoin(GOOGLE_BASE_URL, href.strip())
        parts = urlsplit(resolved)
    except ValueError:
        return ensure_absolute_url(href)

    if parts.path.startswith(REDIRECT_PATHS):
        params = parse_qs(parts.query)
        origin = f"{parts.scheme}://{parts.netloc}"
        for name in REDIRECT_PARAMS:
            values = params.get(name)
            candidate = ensure_absolute_url(values[0] if values else None, origin)
            if candidate:
                return candidate
    return resolved


# ----------------------------------------------------------------------
# HTML extraction
# ----------------------------------------------------------------------

def _collect_candidate_website_links(soup: BeautifulSoup) -> list[str]:
    candidates: list[str] = []

    def push(value: Any) -> None:
        if isinstance(value, str) and value.strip():
            candidates.append(value.strip())

    for block in soup.select(LOCAL_BLOCK_SELECTOR)[:3]:
        data_anchor = block.select_one("a[data-url]")
        if data_anchor is not None:
            push(data_anchor.get("data-url"))
        push(block.get("data-url"))
        for anchor in block.select("a[href]"):
            text = anchor.get_text().lower()
            if "website" in text or "menu" in text:
                push(anchor.get("href"))
                break

    if not candidates:
        for anchor in soup.select("a[data-url]")[:MAX_MAP_CANDIDATES]:
            push(anchor.get("data-url"))

    if not candidates:
        for anchor in soup.select('a[href*="maps/place"]')[:MAX_MAP_CANDIDATES]:
            push(anchor.get("href"))

    return candidates


def detect_map_pack_from_html(soup: BeautifulSoup, raw_html: str, domain: Optional[str]) -> bool:
    """Whether one of the first local-pack entries links to ``domain``."""
    domain_host = normalize_domain_host(domain or "")
    if not domain_host:
        return False

    candidates = _collect_candidate_website_links(soup)
    if not candidates and raw_html:
        for match in _WEBSITE_RE.finditer(raw_html):
            if len(candidates) >= MAX_MAP_CANDIDATES:
                break
            value = match.group(1).replace("\\u002F", "/").replace("\\u003A", ":")
            if value:
                candidates.append(value)

    return any(url_matches_domain_host(domain_host, c) for c in candidates)


def extract_serp_html(content: str, device: str = "desktop", domain: Optional[str] = None) -> dict[str, Any]:
    """Extract ranked organic results and map-pack membership from Google HTML.

    Args:
        content: Raw result page HTML.
        device: ``desktop`` or ``mobile``; only mobile pages get the mobile
            layout fallback.
        domain: Tracked domain, used for map-pack detection.

    Returns:
        ``{"organic": [{"title", "url", "position"}, ...], "map_pack_top3": bool}``

    Raises:
        SerpParseError: The page has neither ``#search`` nor ``#rso``.
    """
    soup = BeautifulSoup(content, "html.parser")
    if soup.select_one("#search, #rso") is None:
        raise SerpParseError(
            "Scraped search results do not adhere to expected format. Unable to parse results"
        )

    organic: list[dict[str, Any]] = []
    position = 0

    titles = soup.select("#search > div > div h3")
    logger.debug("Scraped page contains %d desktop results", len(titles))
    for heading in titles:
        title = heading.get_text(" ", strip=True)
        anchor = heading.find_parent("a")
        url = normalize_google_href(anchor.get("href")) if anchor is not None else None
        if title and url:
            position += 1
            organic.append({"title": title, "url": url, "position": position})

    if not organic and device == "mobile":
        items = soup.select("#rso > div")
        logger.debug("Scraped page contains %d mobile results", len(items))
        for item in items:
            link = item.select_one('a[role="presentation"]')
            if link is None:
                continue
            title_node = link.select_one('[role="link"]')
            title = title_node.get_text(" ", strip=True) if title_node is not None else ""
            url = normalize_google_href(link.get("href"))
            if title and url:
                position += 1
                organic.append({"title": title, "url": url, "position": position})

    return {
        "organic": organic,
        "map_pack_top3": detect_map_pack_from_html(soup, content, domain),
    }


# ----------------------------------------------------------------------
# Structured (JSON) map pack
# ----------------------------------------------------------------------

def _is_local_entry(entry: Any) -> bool:
    return isinstance(entry, dict) and any(k in entry for k in ("title", "link", "website", "data_id"))


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _collect_local_arrays(source: Any, depth: int = 0) -> list[list[dict]]:
    if not isinstance(source, dict) or depth > 3:
        return []

    found: list[list[dict]] = []
    for key, value in source.items():
        if not value:
            continue
        has_hint = any(hint in str(key).lower() for hint in KEY_HINTS)
        if isinstance(value, list) and (has_hint or any(_is_local_entry(v) for v in value)):
            entries = [v for v in value if _is_local_entry(v)]
            if entries:
                found.append(entries)
                continue
        if isinstance(value, dict) and has_hint:
            found.extend(_collect_local_arrays(value, depth + 1))
    return found


def extract_local_results(payload: Any) -> list[dict]:
    """Find the local (map pack) result list inside a backend payload."""
    if not isinstance(payload, dict):
        return []

    def nested(container: Any, key: str) -> Any:
        return container.get(key) if isinstance(container, dict) else None

    local_results = payload.get("local_results")
    known = (
        local_results,
        payload.get("localResults"),
        nested(local_results, "results"),
        nested(local_results, "local_results"),
        nested(local_results, "places"),
        nested(payload.get("local_pack"), "results"),
        payload.get("maps_results"),
        payload.get("map_results"),
        payload.get("places_results"),
        payload.get("place_results"),
        nested(payload.get("results"), "local_results"),
    )
    for candidate in known:
        if isinstance(candidate, list):
            entries = [v for v in candidate if _is_local_entry(v)]
            if entries:
                return entries

    discovered = _collect_local_arrays(payload)
    return discovered[0] if discovered else []


def _candidate_urls(entry: dict) -> list[str]:
    urls: list[str] = []
    for key in URL_KEYS + ("domain",):
        value = entry.get(key)
        if isinstance(value, str) and value.strip() and value.strip() not in urls:
            urls.append(value.strip())
    return urls


def compute_map_pack_top3(domain: str, payload: Any) -> bool:
    """Whether ``domain`` owns one of the top three local results.

    ``payload`` is either a list of local entries or a whole backend
    response, in which case the local list is located first.  Entries are
    ranked by ``position``/``rank``/``index``/``block_position`` (list order
    when none is numeric).
    """
    domain_host = normalize_domain_host(domain)
    if not domain_host:
        return False

    if isinstance(payload, list):
        entries = [v for v in payload if _is_local_entry(v)]
    else:
        entries = extract_local_results(payload)
    if not entries:
        return False

    ranked = []
    for index, entry in enumerate(entries):
        rank = next(
            (n for n in (_to_number(entry.get(k)) for k in POSITION_KEYS if k in entry) if n is not None),
            float(index + 1),
        )
        ranked.append((rank, index, entry))
    ranked.sort(key=lambda item: (item[0], item[1]))

    for _, _, entry in ranked[:3]:
        if any(url_matches_domain_host(domain_host, url) for url in _candidate_urls(entry)):
            return True
    return False
