"""Pytest-wide fixtures and hooks for the extraction pipeline tests."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Pin settings BEFORE worknuggets.config is imported anywhere: a developer
# .env must never point tests at a real database or quota service.
if "DATABASE_URL" not in os.environ:
    test_db_path = os.path.join(tempfile.gettempdir(), "test_worknuggets.db")
    os.environ["DATABASE_URL"] = f"sqlite:///{test_db_path}"
os.environ["QUOTA_SERVICE_URL"] = ""
os.environ["ARTICLE_STORE"] = "sql"
os.environ["EXTRACTION_RETRY_FAILED"] = "false"
os.environ.setdefault("LOG_FORMAT", "console")

from worknuggets.models import Article  # noqa: E402
from worknuggets.models.database import DatabaseManager  # noqa: E402
from worknuggets.services.browser_quota import (  # noqa: E402
    configure_quota_store,
    shutdown_quota_actors,
)


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_database():
    """Remove the shared SQLite file after the session."""
    yield
    test_db_path = os.path.join(tempfile.gettempdir(), "test_worknuggets.db")
    if os.path.exists(test_db_path):
        try:
            os.remove(test_db_path)
        except OSError:
            pass


@pytest.fixture(autouse=True)
def reset_quota_registry():
    """Every test starts with an empty governor registry."""
    yield
    shutdown_quota_actors()
    configure_quota_store(None)


@pytest.fixture
def db_manager(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'pipeline.db'}")
    yield manager
    manager.close()


@pytest.fixture
def make_article(db_manager):
    """Insert an article row and return its id."""
    counter = {"n": 0}

    def _make(
        link: str = "https://example.com/story",
        status: str = "pending",
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        **fields,
    ) -> str:
        counter["n"] += 1
        created = created_at or datetime(2026, 1, 1) + timedelta(minutes=counter["n"])
        article = Article(
            link=link,
            content_status=status,
            created_at=created,
            updated_at=updated_at or created,
            **fields,
        )
        with db_manager.get_session() as session:
            session.add(article)
            session.flush()
            return article.id

    return _make


@pytest.fixture
def load_article(db_manager):
    def _load(article_id: str) -> Article:
        with db_manager.get_session() as session:
            return session.get(Article, article_id)

    return _load


class FakeClock:
    """Mutable UTC clock for quota day-rollover tests."""

    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> None:
        self.moment = self.moment + timedelta(**kwargs)


@pytest.fixture
def fake_clock():
    return FakeClock(datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc))


LONG_PARAGRAPH = (
    "The council met on Tuesday and voted to approve the new budget that was "
    "drafted over the summer, and members said the plan has broad support from "
    "residents who were consulted this year."
)


def article_html(paragraph_count: int = 8, structured: bool = True) -> str:
    """Build an article page with ``paragraph_count`` long paragraphs."""
    body = "".join(f"<p>{LONG_PARAGRAPH} ({i})</p>" for i in range(paragraph_count))
    wrapper = f"<article>{body}</article>" if structured else f"<div>{body}</div>"
    return (
        "<html><head><title>Story</title>"
        "<script>var t = '<p>tracking markup that is long enough to pass the filter</p>';</script>"
        "<style>p { color: red; }</style></head>"
        f"<body><!-- <p>commented out paragraph that is long enough to count</p> -->{wrapper}</body></html>"
    )


@pytest.fixture
def html_factory():
    return article_html
