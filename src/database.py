"""SQLite engine, sessions and schema setup for the keyword store."""

import os
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///data/serp_tracker.db"
MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


class Base(DeclarativeBase):
    """Declarative base shared by the Keyword and Domain models."""
    pass


_engine: Engine | None = None
_SessionFactory: sessionmaker | None = None


def _sqlite_pragmas(dbapi_conn, connection_record):
    """WAL journal plus a busy timeout so the cron worker and CLI can share the file."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


def get_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """Return the process-wide engine, creating it on first use.

    Args:
        database_url: SQLite URL.  ``None`` reads ``DATABASE_URL`` and then
                      falls back to ``data/serp_tracker.db``.
        echo: Log every SQL statement.
    """
    global _engine
    if _engine is not None:
        return _engine

    url = database_url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
    options: dict[str, Any] = {
        "echo": echo,
        "connect_args": {"check_same_thread": False},
        "pool_pre_ping": True,
    }
    if url in MEMORY_URLS:
        # one shared connection, otherwise each session gets an empty database
        options["poolclass"] = StaticPool
    elif url.startswith("sqlite:///"):
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    _engine = create_engine(url, **options)
    event.listen(_engine, "connect", _sqlite_pragmas)
    logger.info("Database engine created: %s", url)
    return _engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker:
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=engine or get_engine(), expire_on_commit=False)
    return _SessionFactory


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Transactional session: committed on exit, rolled back on error.

    Usage::

        with get_session() as session:
            session.add(keyword)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _default_sql(column) -> str:
    default = column.default
    if default is None or not getattr(default, "is_scalar", False):
        return ""
    value = default.arg
    if isinstance(value, bool):
        return f" DEFAULT {int(value)}"
    if isinstance(value, (int, float)):
        return f" DEFAULT {value}"
    if isinstance(value, str):
        return " DEFAULT '" + value.replace("'", "''") + "'"
    return ""


def upgrade_schema(engine: Engine) -> list[str]:
    """Add model columns missing from tables created by older releases.

    New columns are nullable and take the model's scalar default, so rows
    written before the upgrade stay readable.  Returns ``table.column`` names
    that were added.
    """
    inspector = inspect(engine)
    added: list[str] = []
    with engine.begin() as conn:
        for table in Base.metadata.sorted_tables:
            if not inspector.has_table(table.name):
                continue
            existing = {column["name"] for column in inspector.get_columns(table.name)}
            for column in table.columns:
                if column.name in existing or column.primary_key:
                    continue
                ddl_type = column.type.compile(dialect=engine.dialect)
                conn.exec_driver_sql(
                    f'ALTER TABLE "{table.name}" ADD COLUMN "{column.name}" {ddl_type}{_default_sql(column)}'
                )
                added.append(f"{table.name}.{column.name}")
    if added:
        logger.info("Upgraded schema, added columns: %s", ", ".join(added))
    return added


def init_db(database_url: str | None = None, echo: bool = False) -> None:
    """Create missing tables and add columns missing from existing ones."""
    engine = get_engine(database_url=database_url, echo=echo)
    import src.models  # noqa: F401  registers Keyword and Domain on Base.metadata
    Base.metadata.create_all(bind=engine)
    upgrade_schema(engine)
    logger.info("Keyword store ready.")


def reset_db(database_url: str | None = None) -> None:
    """Drop and recreate every table.  Destructive: tests only."""
    engine = get_engine(database_url=database_url)
    import src.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    logger.warning("Keyword store reset (all tables dropped and recreated).")


def reset_engine() -> None:
    """Dispose of the cached engine and session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
