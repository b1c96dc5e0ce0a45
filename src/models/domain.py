"""Tracked domain SQLAlchemy model."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Integer, String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base
from src.models.keyword import FlexibleBoolean
from src.utils.helpers import normalize_bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Domain(Base):
    """Website whose keywords are tracked, with derived ranking aggregates."""

    __tablename__ = "domain"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(500), nullable=False, unique=True, index=True)
    slug: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    scrape_enabled: Mapped[bool] = mapped_column(FlexibleBoolean, default=True, nullable=False)
    # JSON ``{"scraper_type": ..., "scraping_api": <encrypted>}`` or NULL
    scraper_settings: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avg_position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    map_pack_keywords: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    added: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "slug": self.slug,
            "scrape_enabled": normalize_bool(self.scrape_enabled),
            "scraper_settings": self.scraper_settings,
            "avg_position": self.avg_position or 0,
            "map_pack_keywords": self.map_pack_keywords or 0,
        }

    def __repr__(self) -> str:
        return (
            f"<Domain id={self.id} domain={self.domain!r} "
            f"enabled={self.scrape_enabled} avg={self.avg_position}>"
        )
