"""FastAPI lifecycle management for shared resources.

This module centralizes startup and shutdown handling for:
- DatabaseManager (engine / connection pool)
- The browser quota governor registry and its persistent state store
- The browser extractor used by the diagnostic endpoints
- The extraction pipeline used by ``POST /run-once``

Anything already present on ``app.state`` is left alone, which is how tests
inject fakes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from worknuggets import config
from worknuggets.services.browser_quota import (
    BrowserQuotaActor,
    InMemoryQuotaStateStore,
    SqlQuotaStateStore,
    configure_quota_store,
    get_quota_actor,
    shutdown_quota_actors,
)

logger = logging.getLogger(__name__)


def _state_missing(app: FastAPI, name: str) -> bool:
    return getattr(app.state, name, None) is None


async def startup_resources(app: FastAPI) -> None:
    """Initialize shared resources for the FastAPI app.

    Args:
        app: The FastAPI application instance
    """
    logger.info("Starting resource initialization...")

    # 1. DatabaseManager
    try:
        if _state_missing(app, "db_manager"):
            from worknuggets.models.database import DatabaseManager

            app.state.db_manager = DatabaseManager(config.DATABASE_URL)
            logger.info(
                "DatabaseManager initialized: %s", config.DATABASE_URL.split("@")[-1][:50]
            )
        else:
            logger.info("DatabaseManager already provided on app.state; skipping init")
    except Exception as exc:
        logger.exception("Failed to initialize DatabaseManager", exc_info=exc)
        app.state.db_manager = None

    # 2. Quota governor; state survives restarts when the database is up
    try:
        if _state_missing(app, "quota_actor"):
            if app.state.db_manager is not None:
                configure_quota_store(SqlQuotaStateStore(app.state.db_manager))
            else:
                logger.warning("Quota state will not persist: database unavailable")
                configure_quota_store(InMemoryQuotaStateStore())
            app.state.quota_actor = get_quota_actor(config.QUOTA_INSTANCE_NAME)
            logger.info("Quota governor %s started", config.QUOTA_INSTANCE_NAME)
    except Exception as exc:
        logger.exception("Failed to start quota governor", exc_info=exc)
        app.state.quota_actor = None

    # 3. Browser extractor for the diagnostic endpoints (no session is opened)
    if _state_missing(app, "browser_extractor"):
        from worknuggets.crawler.browser_extractor import BrowserArticleExtractor

        app.state.browser_extractor = BrowserArticleExtractor()

    # 4. Extraction pipeline for /run-once
    try:
        if _state_missing(app, "pipeline") and app.state.quota_actor is not None:
            from worknuggets.config import PipelineSettings
            from worknuggets.pipeline.orchestrator import ExtractionPipeline
            from worknuggets.services.article_store import get_article_store
            from worknuggets.services.quota_client import LocalQuotaClient

            app.state.pipeline = ExtractionPipeline(
                store=get_article_store(app.state.db_manager),
                quota_client=LocalQuotaClient(app.state.quota_actor),
                browser_extractor=app.state.browser_extractor,
                settings=PipelineSettings.from_env(),
            )
            logger.info("Extraction pipeline initialized (store=%s)", config.ARTICLE_STORE)
    except Exception as exc:
        logger.exception("Failed to initialize extraction pipeline", exc_info=exc)
        app.state.pipeline = None

    app.state.ready = True
    logger.info("All resources initialized, app is ready")


async def shutdown_resources(app: FastAPI) -> None:
    """Clean up shared resources gracefully.

    Args:
        app: The FastAPI application instance
    """
    logger.info("Starting resource cleanup...")

    # 1. Stop the governor worker threads (pending commands finish first)
    try:
        shutdown_quota_actors()
        logger.info("Quota governor stopped")
    except Exception as exc:
        logger.exception("Error stopping quota governor", exc_info=exc)

    # 2. Close the pipeline's HTTP session
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is not None:
        try:
            pipeline.close()
        except Exception as exc:
            logger.exception("Error closing extraction pipeline", exc_info=exc)

    # 3. Dispose DatabaseManager engine/connection pool
    if getattr(app.state, "db_manager", None):
        try:
            logger.info("Disposing DatabaseManager engine...")
            app.state.db_manager.engine.dispose()
            logger.info("DatabaseManager engine disposed")
        except Exception as exc:
            logger.exception("Error disposing DatabaseManager", exc_info=exc)

    app.state.ready = False
    logger.info("Resource cleanup complete")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI app lifecycle."""
    await startup_resources(app)
    yield
    await shutdown_resources(app)


# Dependency injection functions for route handlers


def get_db_manager(request: Request) -> Any | None:
    """Dependency that provides the shared DatabaseManager (or None)."""
    return getattr(request.app.state, "db_manager", None)


def get_app_quota_actor(request: Request) -> Optional[BrowserQuotaActor]:
    """Dependency that provides the quota actor hosted by this process."""
    return getattr(request.app.state, "quota_actor", None)


def is_ready(request: Request) -> bool:
    """True once startup completed."""
    return getattr(request.app.state, "ready", False)


def check_db_health(db_manager: Any | None) -> tuple[bool, str]:
    """Perform a lightweight database health check.

    Args:
        db_manager: The DatabaseManager instance to check, or None

    Returns:
        Tuple of (is_healthy, message)
    """
    if db_manager is None:
        return False, "DatabaseManager not initialized"

    try:
        with db_manager.get_session() as session:
            session.execute(text("SELECT 1"))
        return True, "Database connection OK"
    except OperationalError as exc:
        return False, f"Database connection failed: {exc}"
    except Exception as exc:
        return False, f"Database health check error: {exc}"
