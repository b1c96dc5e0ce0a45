"""Shared pytest fixtures for the SERP refresh engine tests."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

# Ensure project root is on sys.path so 'src' is importable.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

FIXED_NOW = datetime(2025, 3, 7, 12, 30, tzinfo=timezone.utc)

SERP_HTML = """
<html><body>
<div id="search"><div><div>
  <div class="g"><a href="/url?q=https://competitor.com/&amp;sa=U"><h3>Competitor</h3></a></div>
  <div class="g"><a href="https://example.com/services"><h3>Example Services</h3></a></div>
  <div class="g"><a href="https://other.org/page"><h3>Other Page</h3></a></div>
</div></div></div>
</body></html>
"""


@pytest.fixture(autouse=True)
def _reset_db_engine():
    """Autouse fixture: reset the global DB engine before and after every test.

    This prevents cross-test pollution when tests create their own in-memory
    databases.
    """
    from src.database import reset_engine
    reset_engine()
    yield
    reset_engine()


@pytest.fixture()
def test_db():
    """Provide an in-memory SQLite database with all tables created.

    Yields a database URL string. The engine is automatically torn down
    after the test by the autouse ``_reset_db_engine`` fixture.
    """
    from src.database import reset_engine, init_db
    reset_engine()
    db_url = "sqlite:///:memory:"
    init_db(database_url=db_url, echo=False)
    yield db_url


@pytest.fixture()
def add_keyword(test_db):
    """Insert a keyword row and return its id."""
    from src.database import get_session
    from src.models import Keyword

    def _add(keyword="plumber austin", domain="example.com", **fields):
        with get_session() as session:
            row = Keyword(keyword=keyword, domain=domain, **fields)
            session.add(row)
            session.flush()
            return row.id

    return _add


@pytest.fixture()
def add_domain(test_db):
    """Insert a domain row."""
    from src.database import get_session
    from src.models import Domain

    def _add(domain="example.com", **fields):
        with get_session() as session:
            row = Domain(domain=domain, **fields)
            session.add(row)
            session.flush()
            return row.id

    return _add


@pytest.fixture()
def queue_path(tmp_path):
    return tmp_path / "data" / "failed_queue.json"


@pytest.fixture()
def sleeps():
    """Recorded delays of a fake ``asyncio.sleep``."""
    return []


@pytest.fixture()
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return _sleep


@pytest.fixture()
def mock_client_factory():
    """Build an ``httpx.AsyncClient`` factory served by a request handler.

    Client keyword arguments of every attempt are recorded on the returned
    factory's ``calls`` list.
    """
    def _make(handler):
        calls = []

        def factory(**kwargs):
            calls.append(dict(kwargs))
            kwargs.pop("proxy", None)
            return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

        factory.calls = calls
        return factory

    return _make


class FakeScraper:
    """Stand-in for ``SERPScraper`` returning canned results per keyword."""

    def __init__(self, results=None, errors=None):
        self.results = results or {}
        self.errors = errors or {}
        self.calls = []
        self.settings = []

    async def scrape(self, keyword, settings):
        self.calls.append((keyword["keyword"], settings.scraper_type))
        self.settings.append(settings)
        if keyword["keyword"] in self.errors:
            raise self.errors[keyword["keyword"]]
        return self.results.get(keyword["keyword"], {"organic": [], "map_pack_top3": False})


@pytest.fixture()
def fake_scraper():
    return FakeScraper


@pytest.fixture()
def serp_html():
    return SERP_HTML


@pytest.fixture()
def fixed_now():
    return FIXED_NOW
