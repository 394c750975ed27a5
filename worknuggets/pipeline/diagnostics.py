"""Single-URL browser runs for operators; never touch the article store."""

from __future__ import annotations

import logging
from typing import Any

from worknuggets.config import PipelineSettings
from worknuggets.crawler.browser_extractor import BrowserArticleExtractor
from worknuggets.services.quota_client import QuotaClient, browser_slot

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


def run_guarded_extraction(
    url: str,
    quota_client: QuotaClient,
    browser_extractor: BrowserArticleExtractor,
    settings: PipelineSettings | None = None,
) -> dict[str, Any]:
    """Acquire a slot, render ``url``, report usage and release.

    Raises ``AcquisitionDeniedError`` when the governor refuses; any other
    failure propagates after the slot is released.
    """
    settings = settings or PipelineSettings()
    with browser_slot(
        quota_client,
        settings.reserve_seconds,
        settings.max_concurrent,
        settings.max_daily_seconds,
    ):
        extraction = browser_extractor.render_and_extract(url)
        quota_client.add_seconds(extraction.duration_seconds)

    logger.info("Diagnostic extraction of %s took %ss", url, extraction.duration_seconds)
    return {
        "ok": True,
        "metrics": extraction.metrics.as_dict() if extraction.metrics else None,
        "length": len(extraction.text),
        "durationSeconds": extraction.duration_seconds,
    }


def run_direct_extraction(
    url: str, browser_extractor: BrowserArticleExtractor
) -> dict[str, Any]:
    """Render ``url`` without asking the governor."""
    extraction = browser_extractor.render_and_extract(url)
    return {
        "ok": True,
        "length": len(extraction.text),
        "htmlLength": len(extraction.html),
        "paragraphCount": len(extraction.paragraphs),
        "preview": extraction.text[:PREVIEW_CHARS],
    }
