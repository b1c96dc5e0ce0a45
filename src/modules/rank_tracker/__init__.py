"""Rank Tracker module: keyword refresh, position resolution, retry queue and domain stats."""

from src.modules.rank_tracker.retry_queue import RetryQueue
from src.modules.rank_tracker.serp_analyzer import get_serp
from src.modules.rank_tracker.store import KeywordStore
from src.modules.rank_tracker.tracker import RankTracker

__all__ = ["KeywordStore", "RankTracker", "RetryQueue", "get_serp"]
