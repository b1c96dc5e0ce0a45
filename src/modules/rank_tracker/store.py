"""Keyword and domain persistence used by the refresh engine."""

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import select, update

from src.database import get_session
from src.models.domain import Domain
from src.models.keyword import Keyword

logger = logging.getLogger(__name__)

_KEYWORD_FIELDS = {
    "position",
    "url",
    "history",
    "last_result",
    "last_updated",
    "last_update_error",
    "updating",
    "map_pack_top3",
}


class KeywordStore:
    """Thin repository over the ``keyword`` and ``domain`` tables.

    Every method opens its own short transaction so a failure while saving
    one keyword never rolls back another.
    """

    def find_keywords_by_domain(self, domains: Iterable[str]) -> list[dict[str, Any]]:
        names = [d for d in dict.fromkeys(domains) if d]
        if not names:
            return []
        with get_session() as session:
            rows = session.scalars(
                select(Keyword).where(Keyword.domain.in_(names)).order_by(Keyword.id)
            ).all()
            return [row.to_dict() for row in rows]

    def find_keywords_by_ids(self, ids: Iterable[int]) -> list[dict[str, Any]]:
        wanted = [i for i in dict.fromkeys(ids) if isinstance(i, int) and i > 0]
        if not wanted:
            return []
        with get_session() as session:
            rows = session.scalars(
                select(Keyword).where(Keyword.id.in_(wanted)).order_by(Keyword.id)
            ).all()
            return [row.to_dict() for row in rows]

    def find_all_keywords(self) -> list[dict[str, Any]]:
        with get_session() as session:
            rows = session.scalars(select(Keyword).order_by(Keyword.id)).all()
            return [row.to_dict() for row in rows]

    def find_domains_by_name(self, domains: Iterable[str]) -> list[dict[str, Any]]:
        names = [d for d in dict.fromkeys(domains) if d]
        if not names:
            return []
        with get_session() as session:
            rows = session.scalars(select(Domain).where(Domain.domain.in_(names))).all()
            return [row.to_dict() for row in rows]

    def update_keyword_fields(
        self,
        keyword_id: int,
        fields: dict[str, Any],
    ) -> Optional[dict[str, Any]]:
        """Apply ``fields`` to one keyword and return its fresh state."""
        unknown = set(fields) - _KEYWORD_FIELDS
        if unknown:
            raise ValueError(f"Unsupported keyword fields: {sorted(unknown)}")
        with get_session() as session:
            row = session.get(Keyword, keyword_id)
            if row is None:
                logger.warning("Keyword %s no longer exists; update skipped", keyword_id)
                return None
            for name, value in fields.items():
                setattr(row, name, value)
            session.flush()
            return row.to_dict()

    def batch_set_updating_flag(self, ids: Iterable[int], flag: bool) -> int:
        wanted = [i for i in dict.fromkeys(ids) if i]
        if not wanted:
            return 0
        with get_session() as session:
            result = session.execute(
                update(Keyword).where(Keyword.id.in_(wanted)).values(updating=flag)
            )
            return result.rowcount or 0

    def update_domain_stats(self, domain: str, avg_position: int, map_pack_keywords: int) -> None:
        with get_session() as session:
            session.execute(
                update(Domain)
                .where(Domain.domain == domain)
                .values(avg_position=avg_position, map_pack_keywords=map_pack_keywords)
            )
