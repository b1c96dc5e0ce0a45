"""SQLAlchemy ORM models: import every model so Base.metadata is populated."""

from src.models.keyword import (
    FlexibleBoolean,
    Keyword,
)
from src.models.domain import (
    Domain,
)

__all__ = [
    "FlexibleBoolean",
    "Keyword",
    "Domain",
]
