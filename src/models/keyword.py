"""Tracked keyword SQLAlchemy model."""

import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Integer, String, DateTime, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from src.database import Base
from src.utils.helpers import normalize_bool, normalize_history, parse_json_list


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlexibleBoolean(TypeDecorator):
    """Boolean column that tolerates legacy ``"0"``/``"false"``/``1`` values.

    Values are stored as 0/1 integers and always read back through
    :func:`normalize_bool`.
    """

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return 1 if normalize_bool(value) else 0

    def process_result_value(self, value, dialect):
        if value is None:
            return False
        return normalize_bool(value)


class Keyword(Base):
    """Keyword tracked for a domain on a given device and country."""

    __tablename__ = "keyword"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    keyword: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    device: Mapped[str] = mapped_column(String(20), default="desktop", nullable=False)
    country: Mapped[str] = mapped_column(String(8), default="US", nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    domain: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    history: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    last_result: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_update_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    added: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updating: Mapped[bool] = mapped_column(FlexibleBoolean, default=False, nullable=False)
    sticky: Mapped[bool] = mapped_column(FlexibleBoolean, default=False, nullable=False)
    map_pack_top3: Mapped[bool] = mapped_column(FlexibleBoolean, default=False, nullable=False)
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        """Plain representation consumed by the refresh engine."""
        return {
            "id": self.id,
            "keyword": self.keyword,
            "device": self.device or "desktop",
            "country": self.country or "US",
            "location": self.location or "",
            "domain": self.domain,
            "position": self.position or 0,
            "url": self.url or "",
            "history": normalize_history(self.history),
            "last_result": parse_json_list(self.last_result),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "last_update_error": parse_update_error(self.last_update_error),
            "updating": normalize_bool(self.updating),
            "sticky": normalize_bool(self.sticky),
            "map_pack_top3": normalize_bool(self.map_pack_top3),
            "tags": parse_json_list(self.tags),
        }

    def __repr__(self) -> str:
        return (
            f"<Keyword id={self.id} kw={self.keyword!r} "
            f"domain={self.domain!r} pos={self.position}>"
        )


def parse_update_error(raw: Optional[str]) -> Optional[dict[str, Any]]:
    """Decode a stored ``last_update_error`` value; ``None`` when absent."""
    if not raw or raw == "false" or "{" not in raw:
        return None
    try:
        decoded = json.loads(raw)
    except ValueError:
        return {}
    return decoded if isinstance(decoded, dict) else None
