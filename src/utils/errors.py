"""Scrape error taxonomy and human-readable error serialisation."""

import json
from typing import Any, Optional


class SerpScrapeError(Exception):
    """Base class for failures while refreshing a keyword's SERP position."""

    retryable = True


class TransportError(SerpScrapeError):
    """Network failure or timeout talking to the scraping backend."""


class ScraperResponseError(SerpScrapeError):
    """Backend answered with a non-2xx status or an explicit failure flag.

    Attributes:
        status: HTTP status (or backend status code) when known.
        detail: Error text reported by the backend.
        payload: Decoded response body, kept for logging.
    """

    def __init__(self, status: Any, detail: str = "", payload: Any = None):
        self.status = status
        self.detail = detail
        self.payload = payload
        super().__init__(f"[{status}] {detail or 'Request failed'}")


class SerpParseError(SerpScrapeError):
    """Response arrived but lacked the expected HTML or JSON shape."""


class ScraperConfigError(SerpScrapeError):
    """Unknown scraper id or a driver that cannot build a request."""

    retryable = False


_PRIORITIZED_KEYS = (
    "message",
    "error",
    "detail",
    "error_message",
    "description",
    "statusText",
    "body",
    "reason",
    "request_info",
    "cause",
    "response",
)


def _collect_messages(value: Any, seen: Optional[set[int]] = None) -> list[str]:
    seen = seen if seen is not None else set()
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (bool, int, float)):
        return [str(value)]
    if isinstance(value, BaseException):
        if id(value) in seen:
            return []
        seen.add(id(value))
        message = str(value) or type(value).__name__
        return [message] + _collect_messages(value.__cause__, seen)
    if isinstance(value, (list, tuple)):
        if id(value) in seen:
            return []
        seen.add(id(value))
        parts: list[str] = []
        for item in value:
            parts.extend(_collect_messages(item, seen))
        return parts
    if isinstance(value, dict):
        if id(value) in seen:
            return []
        seen.add(id(value))
        parts = []
        for key in _PRIORITIZED_KEYS:
            if key in value:
                parts.extend(_collect_messages(value[key], seen))
        for key, item in value.items():
            if key == "status" or key in _PRIORITIZED_KEYS:
                continue
            if isinstance(item, (dict, list, tuple)) and item:
                parts.extend(_collect_messages(item, seen))
        return parts
    return [str(value)]


def _clean(messages: list[str]) -> list[str]:
    cleaned: list[str] = []
    for part in messages:
        part = part.strip()
        if part and part not in ("null", "None", "undefined") and part not in cleaned:
            cleaned.append(part)
    return cleaned


def serialize_error(error: Any) -> str:
    """Flatten an exception, backend error payload or message into one string.

    Dict payloads get a ``[status]`` prefix when they carry a status, followed
    by every readable message found in well-known keys and nested objects.

    Examples:
        >>> serialize_error({"status": 429, "error": "Too many requests"})
        '[429] Too many requests'
        >>> serialize_error(None)
        'Unknown error'
    """
    if error is None or error is False or error == "":
        return "Unknown error"
    if isinstance(error, str):
        return error

    if isinstance(error, BaseException):
        cleaned = _clean(_collect_messages(error))
        return " ".join(cleaned) if cleaned else "Unknown error"

    if isinstance(error, dict):
        status = error.get("status")
        prefix = ""
        if (isinstance(status, (int, float)) and not isinstance(status, bool)) or (
            isinstance(status, str) and status
        ):
            prefix = f"[{status}]"
        body = " ".join(_clean(_collect_messages(error)))
        if prefix or body:
            return " ".join(part for part in (prefix, body) if part)
        try:
            serialized = json.dumps(error)
        except (TypeError, ValueError):
            return "Unserializable error object"
        return serialized if serialized != "{}" else "Unserializable error object"

    if isinstance(error, (list, tuple)):
        cleaned = _clean(_collect_messages(error))
        return " ".join(cleaned) if cleaned else "Unknown error"

    return str(error)
