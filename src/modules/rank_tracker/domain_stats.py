"""Recompute per-domain ranking aggregates after a refresh."""

import logging
import math
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from src.modules.rank_tracker.store import KeywordStore

logger = logging.getLogger(__name__)


def compute_domain_stats(keywords: list[dict[str, Any]]) -> dict[str, int]:
    """Average ranked position (half-up rounding, 0 if none ranks) and map-pack count.

    Examples:
        >>> compute_domain_stats([{"position": 1}, {"position": 2}, {"position": 0}])
        {'avg_position': 2, 'map_pack_keywords': 0}
    """
    positions = [
        k["position"] for k in keywords
        if isinstance(k.get("position"), (int, float))
        and not isinstance(k.get("position"), bool)
        and math.isfinite(k["position"])
        and k["position"] > 0
    ]
    avg = math.floor(sum(positions) / len(positions) + 0.5) if positions else 0
    map_pack = sum(1 for k in keywords if k.get("map_pack_top3") is True)
    return {"avg_position": int(avg), "map_pack_keywords": map_pack}


def update_domain_stats(store: KeywordStore, domain: str) -> Optional[dict[str, int]]:
    """Persist fresh stats for ``domain``; database errors are logged, not raised."""
    try:
        stats = compute_domain_stats(store.find_keywords_by_domain([domain]))
        store.update_domain_stats(domain, stats["avg_position"], stats["map_pack_keywords"])
    except SQLAlchemyError as exc:
        logger.error("Failed to update domain stats for %s: %s", domain, exc)
        return None
    logger.info(
        "Updated domain stats for %s: avg_position=%d, map_pack=%d",
        domain, stats["avg_position"], stats["map_pack_keywords"],
    )
    return stats
