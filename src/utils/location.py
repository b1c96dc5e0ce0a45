"""Country tables and location parsing for SERP requests."""

import re
from typing import Iterable, Optional
from urllib.parse import unquote

# ISO-2 code -> (country name, Google interface language)
COUNTRIES: dict[str, tuple[str, str]] = {
    "AE": ("United Arab Emirates", "ar"),
    "AR": ("Argentina", "es"),
    "AT": ("Austria", "de"),
    "AU": ("Australia", "en"),
    "BE": ("Belgium", "nl"),
    "BR": ("Brazil", "pt"),
    "CA": ("Canada", "en"),
    "CH": ("Switzerland", "de"),
    "CL": ("Chile", "es"),
    "CN": ("China", "zh-CN"),
    "CO": ("Colombia", "es"),
    "CZ": ("Czechia", "cs"),
    "DE": ("Germany", "de"),
    "DK": ("Denmark", "da"),
    "EG": ("Egypt", "ar"),
    "ES": ("Spain", "es"),
    "FI": ("Finland", "fi"),
    "FR": ("France", "fr"),
    "GB": ("United Kingdom", "en"),
    "GR": ("Greece", "el"),
    "HK": ("Hong Kong", "zh-TW"),
    "HU": ("Hungary", "hu"),
    "ID": ("Indonesia", "id"),
    "IE": ("Ireland", "en"),
    "IL": ("Israel", "iw"),
    "IN": ("India", "en"),
    "IT": ("Italy", "it"),
    "JP": ("Japan", "ja"),
    "KR": ("South Korea", "ko"),
    "MX": ("Mexico", "es"),
    "MY": ("Malaysia", "en"),
    "NG": ("Nigeria", "en"),
    "NL": ("Netherlands", "nl"),
    "NO": ("Norway", "no"),
    "NZ": ("New Zealand", "en"),
    "PE": ("Peru", "es"),
    "PH": ("Philippines", "en"),
    "PK": ("Pakistan", "en"),
    "PL": ("Poland", "pl"),
    "PT": ("Portugal", "pt-PT"),
    "RO": ("Romania", "ro"),
    "RU": ("Russia", "ru"),
    "SA": ("Saudi Arabia", "ar"),
    "SE": ("Sweden", "sv"),
    "SG": ("Singapore", "en"),
    "TH": ("Thailand", "th"),
    "TR": ("Turkey", "tr"),
    "TW": ("Taiwan", "zh-TW"),
    "UA": ("Ukraine", "uk"),
    "US": ("United States", "en"),
    "VN": ("Vietnam", "vi"),
    "ZA": ("South Africa", "en"),
}

GOOGLE_DOMAINS: dict[str, str] = {
    "AE": "google.ae", "AR": "google.com.ar", "AT": "google.at", "AU": "google.com.au",
    "BE": "google.be", "BR": "google.com.br", "CA": "google.ca", "CH": "google.ch",
    "CL": "google.cl", "CO": "google.com.co", "CZ": "google.cz", "DE": "google.de",
    "DK": "google.dk", "EG": "google.com.eg", "ES": "google.es", "FI": "google.fi",
    "FR": "google.fr", "GB": "google.co.uk", "GR": "google.gr", "HK": "google.com.hk",
    "HU": "google.hu", "ID": "google.co.id", "IE": "google.ie", "IL": "google.co.il",
    "IN": "google.co.in", "IT": "google.it", "JP": "google.co.jp", "KR": "google.co.kr",
    "MX": "google.com.mx", "MY": "google.com.my", "NG": "google.com.ng", "NL": "google.nl",
    "NO": "google.no", "NZ": "google.co.nz", "PE": "google.com.pe", "PH": "google.com.ph",
    "PK": "google.com.pk", "PL": "google.pl", "PT": "google.pt", "RO": "google.ro",
    "RU": "google.ru", "SA": "google.com.sa", "SE": "google.se", "SG": "google.com.sg",
    "TH": "google.co.th", "TR": "google.com.tr", "TW": "google.com.tw", "UA": "google.com.ua",
    "VN": "google.com.vn", "ZA": "google.co.za",
}


def is_supported_country(code: str) -> bool:
    return bool(code) and code.upper() in COUNTRIES


def resolve_country_code(
    country: Optional[str] = "",
    allowed: Optional[Iterable[str]] = None,
    fallback: str = "US",
) -> str:
    """Pick the country code to send to a backend.

    Returns the keyword's country when it is known (and allowed, if an
    allow-list is given); otherwise the fallback, or the first supported
    code from the allow-list.

    Examples:
        >>> resolve_country_code("ca")
        'CA'
        >>> resolve_country_code("FR", ["US", "CA"])
        'US'
    """
    safe_fallback = (fallback or "US").upper()
    if not is_supported_country(safe_fallback):
        safe_fallback = "US"

    allowed_set = [c.upper() for c in allowed] if allowed else []
    normalized = (country or "").upper()

    if is_supported_country(normalized) and (not allowed_set or normalized in allowed_set):
        return normalized
    if safe_fallback in allowed_set:
        return safe_fallback
    for code in allowed_set:
        if is_supported_country(code):
            return code
    return safe_fallback


def country_name(code: str) -> str:
    return COUNTRIES.get(code.upper(), COUNTRIES["US"])[0]


def google_domain(code: str) -> str:
    return GOOGLE_DOMAINS.get(code.upper(), "google.com")


def decode_if_encoded(value: str) -> str:
    """Percent-decode a value that may have been stored URL-encoded."""
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


def parse_location(location: Optional[str], fallback_country: Optional[str] = None) -> dict[str, str]:
    """Split a ``city,state,country`` string into its parts.

    The trailing part is taken as the country when there are more than two
    parts, no fallback country is known, or it equals the fallback.  A lone
    2-3 letter uppercase part is read as a state code.

    Examples:
        >>> parse_location("Austin,TX,US", "US")
        {'city': 'Austin', 'state': 'TX', 'country': 'US'}
    """
    parts = [p.strip() for p in location.split(",") if p.strip()] if isinstance(location, str) else []
    fallback = (fallback_country or "").strip()

    if not parts:
        return {"country": fallback} if fallback else {}

    working = list(parts)
    country = fallback
    candidate = working[-1]
    if len(working) > 2 or not country or candidate.upper() == country.upper():
        country = candidate
        working = working[:-1]

    city = ""
    state = ""
    if len(working) > 1:
        state = working[-1]
        city = ",".join(working[:-1])
    elif len(working) == 1:
        value = working[0]
        if re.fullmatch(r"[A-Z]{2,3}", value):
            state = value
        else:
            city = value

    result: dict[str, str] = {}
    if city:
        result["city"] = city
    if state:
        result["state"] = state
    if country:
        result["country"] = country
    return result


def location_parts(location: Optional[str], country: str) -> list[str]:
    """``[city, state, country-name]`` for backends that accept a location.

    Empty when the keyword has neither a city nor a state.
    """
    decoded = decode_if_encoded(location) if isinstance(location, str) else location
    parsed = parse_location(decoded, country)
    parts = [decode_if_encoded(parsed[k]) for k in ("city", "state") if parsed.get(k)]
    if parts:
        parts.append(country_name(resolve_country_code(country)))
    return parts
