"""SQLAlchemy database models for the WorkNuggets extraction pipeline."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base: Any = declarative_base()


class Article(Base):
    """Article row as seen by the extraction pipeline.

    Feed ingestion and summarization own the remaining columns of the
    production table; only the fields below are read or patched here.
    """

    __tablename__ = "articles"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    link: Mapped[str] = mapped_column(String, nullable=False, index=True)
    content_status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending", index=True
    )
    full_content: Mapped[str | None] = mapped_column(Text)
    last_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, index=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "link": self.link,
            "content_status": self.content_status,
            "full_content": self.full_content,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class BrowserQuotaState(Base):
    """Persisted counters for one named browser quota governor."""

    __tablename__ = "browser_quota"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    running: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    day_key: Mapped[str] = mapped_column(String(10), nullable=False)
    # Bumped on every write; guards compare-and-swap updates
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


# Database utilities


def create_database_engine(database_url: str = "sqlite:///data/worknuggets.db"):
    """Create SQLAlchemy engine with proper configuration."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )
    else:
        engine = create_engine(
            database_url,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_pre_ping=True,
            echo=False,
        )

    return engine


def create_tables(engine):
    """Create all pipeline tables."""
    Base.metadata.create_all(engine)

