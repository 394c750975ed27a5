"""Article store access for the extraction pipeline.

Two backends implement the same narrow interface:

* ``SqlArticleStore`` - the ``articles`` table through ``DatabaseManager``.
* ``SupabaseArticleStore`` - the hosted table through PostgREST.

Every backend failure surfaces as :class:`ArticleStoreError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Protocol, Sequence

import requests
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from worknuggets import config
from worknuggets.crawler.errors import ArticleStoreError
from worknuggets.models import Article

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = frozenset({"content_status", "full_content", "last_error"})


@dataclass(frozen=True)
class ArticleRef:
    id: str
    link: str
    content_status: str


class ArticleStore(Protocol):
    def select_next(self, statuses: Sequence[str]) -> Optional[ArticleRef]: ...

    def patch(self, article_id: str, fields: Mapping[str, Any]) -> None: ...

    def requeue_stale_extracting(
        self, older_than: timedelta, dry_run: bool = False
    ) -> list[str]: ...


def _validate_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported article fields: {sorted(unknown)}")
    return dict(fields)


class SqlArticleStore:
    """Article store backed by the SQLAlchemy ``articles`` table."""

    def __init__(self, db_manager):
        self.db = db_manager

    def select_next(self, statuses: Sequence[str]) -> Optional[ArticleRef]:
        stmt = (
            select(Article.id, Article.link, Article.content_status)
            .where(Article.content_status.in_(list(statuses)))
            .order_by(Article.created_at.asc())
            .limit(1)
        )
        try:
            with self.db.get_session() as session:
                row = session.execute(stmt).first()
        except SQLAlchemyError as exc:
            raise ArticleStoreError(f"Failed to select next article: {exc}") from exc

        if row is None:
            return None
        return ArticleRef(id=row.id, link=row.link, content_status=row.content_status)

    def patch(self, article_id: str, fields: Mapping[str, Any]) -> None:
        values = _validate_fields(fields)
        values["updated_at"] = datetime.utcnow()
        try:
            with self.db.get_session() as session:
                session.execute(
                    update(Article).where(Article.id == article_id).values(**values)
                )
        except SQLAlchemyError as exc:
            raise ArticleStoreError(f"Failed to patch article {article_id}: {exc}") from exc

    def requeue_stale_extracting(
        self, older_than: timedelta, dry_run: bool = False
    ) -> list[str]:
        """Move rows stuck in ``extracting`` since before ``now - older_than`` back to pending."""
        cutoff = datetime.utcnow() - older_than
        stale = (Article.content_status == "extracting") & (Article.updated_at < cutoff)
        try:
            with self.db.get_session() as session:
                ids = [row.id for row in session.execute(select(Article.id).where(stale))]
                if ids and not dry_run:
                    session.execute(
                        update(Article)
                        .where(Article.id.in_(ids))
                        .values(content_status="pending", updated_at=datetime.utcnow())
                    )
        except SQLAlchemyError as exc:
            raise ArticleStoreError(f"Failed to requeue stale articles: {exc}") from exc
        return ids


class SupabaseArticleStore:
    """Article store backed by Supabase PostgREST."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        session: requests.Session | None = None,
        timeout: float = 15.0,
    ):
        if not base_url or not service_key:
            raise ArticleStoreError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        self.rest_url = f"{base_url.rstrip('/')}/rest/v1/articles"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            }
        )

    @staticmethod
    def _status_filter(statuses: Sequence[str]) -> str:
        if len(statuses) == 1:
            return f"eq.{statuses[0]}"
        return f"in.({','.join(statuses)})"

    def _request(self, method: str, params: Mapping[str, str], **kwargs) -> requests.Response:
        try:
            response = self.session.request(
                method, self.rest_url, params=params, timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ArticleStoreError(f"Supabase {method} failed: {exc}") from exc
        return response

    def select_next(self, statuses: Sequence[str]) -> Optional[ArticleRef]:
        response = self._request(
            "GET",
            {
                "select": "id,link,content_status",
                "content_status": self._status_filter(statuses),
                "order": "created_at.asc",
                "limit": "1",
            },
        )
        rows = response.json() or []
        if not rows:
            return None
        row = rows[0]
        return ArticleRef(
            id=str(row["id"]), link=row["link"], content_status=row.get("content_status", "")
        )

    def patch(self, article_id: str, fields: Mapping[str, Any]) -> None:
        self._request(
            "PATCH",
            {"id": f"eq.{article_id}"},
            json=_validate_fields(fields),
            headers={"Prefer": "return=minimal"},
        )

    def requeue_stale_extracting(
        self, older_than: timedelta, dry_run: bool = False
    ) -> list[str]:
        cutoff = (datetime.utcnow() - older_than).isoformat()
        params = {
            "content_status": "eq.extracting",
            "updated_at": f"lt.{cutoff}",
            "select": "id",
        }
        if dry_run:
            rows = self._request("GET", params).json() or []
        else:
            rows = (
                self._request(
                    "PATCH",
                    params,
                    json={"content_status": "pending"},
                    headers={"Prefer": "return=representation"},
                ).json()
                or []
            )
        return [str(row["id"]) for row in rows]

    def close(self) -> None:
        self.session.close()


def get_article_store(db_manager=None) -> ArticleStore:
    """Build the store selected by ``ARTICLE_STORE``."""
    if config.ARTICLE_STORE == "supabase":
        return SupabaseArticleStore(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
    if config.ARTICLE_STORE != "sql":
        raise ArticleStoreError(f"Unknown ARTICLE_STORE: {config.ARTICLE_STORE}")

    if db_manager is None:
        from worknuggets.models.database import DatabaseManager

        try:
            db_manager = DatabaseManager(config.DATABASE_URL)
        except SQLAlchemyError as exc:
            raise ArticleStoreError(f"Database unavailable: {exc}") from exc
    return SqlArticleStore(db_manager)
