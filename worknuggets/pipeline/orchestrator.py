"""One-article-per-pass extraction orchestrator.

Each pass claims the oldest selectable article, decides between plain HTTP
and the headless browser, and records the outcome on the article row:

    pending -> extracting -> ready | failed

Routing, quota and extraction failures mark the article ``failed`` with the
error message. Infrastructure failures (article store, renderer) abort the
pass and leave the row for housekeeping to re-queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from worknuggets.config import PipelineSettings
from worknuggets.crawler.browser_extractor import BrowserArticleExtractor, BrowserExtraction
from worknuggets.crawler.domain_rules import DomainCategory, DomainRuleTable, get_domain_rules
from worknuggets.crawler.errors import (
    INFRA_ERRORS,
    ArticleStoreError,
    ContentTooShortError,
    DomainBlockedError,
    GovernorError,
    LowQualityContentError,
    PipelineError,
)
from worknuggets.crawler.http_extractor import HttpArticleExtractor
from worknuggets.crawler.utils import normalize_host
from worknuggets.services.article_store import ArticleRef, ArticleStore
from worknuggets.services.quota_client import QuotaClient, browser_slot
from worknuggets.utils.quality_scorer import score

logger = logging.getLogger(__name__)

METHOD_HTML = "html"
METHOD_BROWSER = "browser"


@dataclass
class PipelineRunResult:
    extracted: bool
    article_id: Optional[str] = None
    method: Optional[str] = None
    category: Optional[str] = None
    quality_score: Optional[float] = None
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"extracted": self.extracted}
        for key in ("article_id", "method", "category", "quality_score", "error"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class ExtractionPipeline:
    """Claim one article and drive it to ``ready`` or ``failed``."""

    def __init__(
        self,
        store: ArticleStore,
        quota_client: QuotaClient,
        http_extractor: HttpArticleExtractor | None = None,
        browser_extractor: BrowserArticleExtractor | None = None,
        rules: DomainRuleTable | None = None,
        settings: PipelineSettings | None = None,
    ):
        self.store = store
        self.quota_client = quota_client
        self.http_extractor = http_extractor or HttpArticleExtractor()
        self.browser_extractor = browser_extractor or BrowserArticleExtractor()
        self.rules = rules or get_domain_rules()
        self.settings = settings or PipelineSettings()

    def run_once(self) -> PipelineRunResult:
        """Process at most one article."""
        try:
            article = self.store.select_next(self.settings.statuses())
            if article is None:
                logger.info("No articles waiting for extraction")
                return PipelineRunResult(extracted=False)

            # Claim; a concurrent pass may still pick the same row
            self.store.patch(article.id, {"content_status": "extracting", "last_error": None})
        except ArticleStoreError as exc:
            logger.error("Article store unavailable: %s", exc)
            return PipelineRunResult(extracted=False, error=str(exc))

        return self.process_article(article)

    def process_article(self, article: ArticleRef) -> PipelineRunResult:
        """Extract a claimed article and persist its final status."""
        category = self.rules.classify(article.link)
        result = PipelineRunResult(
            extracted=False, article_id=article.id, category=category.value
        )
        logger.info(
            "Extracting article %s (%s, category=%s)", article.id, article.link, category.value
        )

        try:
            text = self._extract(article.link, category, result)
        except INFRA_ERRORS as exc:
            logger.error("Extraction aborted for article %s: %s", article.id, exc)
            result.error = str(exc)
            return result
        except PipelineError as exc:
            logger.warning("Extraction failed for article %s: %s", article.id, exc)
            result.error = str(exc)
            self._persist(article.id, {"content_status": "failed", "last_error": str(exc)}, result)
            return result
        except Exception as exc:
            logger.exception("Unexpected error extracting article %s", article.id)
            result.error = f"Unexpected extraction error: {exc}"
            self._persist(
                article.id, {"content_status": "failed", "last_error": result.error}, result
            )
            return result

        if self._persist(
            article.id,
            {"content_status": "ready", "full_content": text, "last_error": None},
            result,
        ):
            result.extracted = True
            logger.info(
                "Article %s ready via %s (%d chars)", article.id, result.method, len(text)
            )
        return result

    def _persist(self, article_id: str, fields: dict[str, Any], result: PipelineRunResult) -> bool:
        try:
            self.store.patch(article_id, fields)
            return True
        except ArticleStoreError as exc:
            logger.error("Failed to record outcome for article %s: %s", article_id, exc)
            result.error = str(exc)
            return False

    def _extract(self, link: str, category: DomainCategory, result: PipelineRunResult) -> str:
        host = normalize_host(link)
        if category is DomainCategory.BLOCKED:
            raise DomainBlockedError(host)

        if not category.forces_browser:
            html_result = self.http_extractor.fetch_and_extract(link)
            metrics = score(html_result.text, html_result.paragraphs, html_result.html)
            result.quality_score = metrics.quality_score
            logger.info(
                "HTML quality for %s: %.2f (%d chars, %d paragraphs, structure=%d)",
                link,
                metrics.quality_score,
                metrics.char_count,
                metrics.paragraph_count,
                metrics.structure_score,
            )

            if metrics.quality_score >= self.settings.quality_threshold:
                result.method = METHOD_HTML
                return html_result.text

            if not category.allows_browser:
                raise LowQualityContentError(
                    metrics.quality_score, self.settings.quality_threshold, host
                )

        extraction = self._extract_with_browser(link)
        result.method = METHOD_BROWSER
        if result.quality_score is None and extraction.metrics is not None:
            result.quality_score = extraction.metrics.quality_score
        return extraction.text

    def _extract_with_browser(self, link: str) -> BrowserExtraction:
        settings = self.settings
        with browser_slot(
            self.quota_client,
            settings.reserve_seconds,
            settings.max_concurrent,
            settings.max_daily_seconds,
        ):
            extraction = self.browser_extractor.render_and_extract(link)
            if len(extraction.text) < settings.min_browser_length:
                raise ContentTooShortError(len(extraction.text), settings.min_browser_length)

            try:
                self.quota_client.add_seconds(extraction.duration_seconds)
            except GovernorError as exc:
                # The reservation already counted against today's budget
                logger.error("Failed to report %ss of browser usage: %s", extraction.duration_seconds, exc)

        return extraction

    def close(self) -> None:
        self.http_extractor.close()


def build_pipeline(settings: PipelineSettings | None = None) -> ExtractionPipeline:
    """Wire a pipeline from environment configuration."""
    from worknuggets.services.article_store import get_article_store
    from worknuggets.services.quota_client import get_quota_client

    return ExtractionPipeline(
        store=get_article_store(),
        quota_client=get_quota_client(),
        settings=settings or PipelineSettings.from_env(),
    )
