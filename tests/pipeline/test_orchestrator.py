"""End-to-end orchestrator passes against a real SQLite store and governor."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from worknuggets.config import PipelineSettings
from worknuggets.crawler.browser_extractor import BrowserExtraction
from worknuggets.crawler.domain_rules import DomainRuleTable
from worknuggets.crawler.errors import (
    ArticleStoreError,
    BotDetectedError,
    GovernorError,
    RendererUnavailableError,
)
from worknuggets.crawler.http_extractor import HttpExtraction
from worknuggets.pipeline.orchestrator import ExtractionPipeline, PipelineRunResult
from worknuggets.services.article_store import SqlArticleStore
from worknuggets.services.browser_quota import (
    BrowserQuotaActor,
    InMemoryQuotaStateStore,
    QuotaState,
)
from worknuggets.services.quota_client import LocalQuotaClient
from worknuggets.utils.quality_scorer import QualityMetrics

pytestmark = pytest.mark.integration

BROWSER_TEXT = "Rendered article body with plenty of words in it. " * 10
HTML_TEXT = "Plain article body fetched without a browser session. " * 10

RULES = DomainRuleTable.from_mapping(
    {
        "blocked": ["blocked.com"],
        "never_browser": ["light.com"],
        "paywalled": ["paid.com"],
        "always_use_browser": ["spa.com"],
    }
)

SETTINGS = PipelineSettings(
    quality_threshold=0.60,
    reserve_seconds=30,
    max_concurrent=3,
    max_daily_seconds=600,
    min_browser_length=150,
    retry_failed=False,
)


def _metrics(value: float) -> QualityMetrics:
    return QualityMetrics(
        char_count=len(HTML_TEXT),
        paragraph_count=4,
        structure_score=1,
        stopword_coverage=0.5,
        quality_score=value,
    )


@pytest.fixture
def actor(fake_clock):
    actor = BrowserQuotaActor("TEST", store=InMemoryQuotaStateStore(), clock=fake_clock)
    yield actor
    actor.shutdown()


@pytest.fixture
def http_extractor():
    extractor = MagicMock()
    extractor.fetch_and_extract.return_value = HttpExtraction(
        text=HTML_TEXT, paragraphs=[HTML_TEXT], html="<article>", status_code=200
    )
    return extractor


@pytest.fixture
def browser_extractor():
    extractor = MagicMock()
    extractor.render_and_extract.return_value = BrowserExtraction(
        text=BROWSER_TEXT,
        paragraphs=[BROWSER_TEXT],
        html="<article>",
        duration_seconds=7,
        metrics=_metrics(0.9),
    )
    return extractor


@pytest.fixture
def html_score(mocker):
    def _set(value: float):
        return mocker.patch(
            "worknuggets.pipeline.orchestrator.score", return_value=_metrics(value)
        )

    return _set


@pytest.fixture
def pipeline(db_manager, actor, http_extractor, browser_extractor):
    return ExtractionPipeline(
        store=SqlArticleStore(db_manager),
        quota_client=LocalQuotaClient(actor=actor),
        http_extractor=http_extractor,
        browser_extractor=browser_extractor,
        rules=RULES,
        settings=SETTINGS,
    )


def test_good_html_marks_ready_without_browser(
    pipeline, make_article, load_article, html_score, browser_extractor, actor
):
    article_id = make_article(link="https://news.org/story")
    html_score(0.85)

    result = pipeline.run_once()

    assert result.extracted is True
    assert result.method == "html"
    assert result.quality_score == 0.85
    article = load_article(article_id)
    assert article.content_status == "ready"
    assert article.full_content == HTML_TEXT
    assert article.last_error is None
    browser_extractor.render_and_extract.assert_not_called()
    assert actor.status() == {"running": 0, "dailySeconds": 0, "dayKey": "2026-03-14"}


def test_low_quality_html_falls_back_to_browser(
    pipeline, make_article, load_article, html_score, actor
):
    article_id = make_article(link="https://news.org/spa-story")
    html_score(0.30)

    result = pipeline.run_once()

    assert result.extracted is True
    assert result.method == "browser"
    assert result.quality_score == 0.30
    article = load_article(article_id)
    assert article.content_status == "ready"
    assert article.full_content == BROWSER_TEXT
    # reservation plus the measured duration, slot released
    assert actor.status()["dailySeconds"] == 37
    assert actor.status()["running"] == 0


@pytest.mark.parametrize("link", ["https://www.paid.com/x", "https://spa.com/x"])
def test_forced_browser_skips_http(
    pipeline, make_article, load_article, http_extractor, link
):
    article_id = make_article(link=link)

    result = pipeline.run_once()

    assert result.method == "browser"
    assert result.quality_score == 0.9
    http_extractor.fetch_and_extract.assert_not_called()
    assert load_article(article_id).content_status == "ready"


def test_acquisition_denied_marks_failed(
    pipeline, make_article, load_article, actor, browser_extractor
):
    actor.store.save("TEST", QuotaState(running=3, daily_seconds=0, day_key="2026-03-14"))
    article_id = make_article(link="https://paid.com/story")

    result = pipeline.run_once()

    assert result.extracted is False
    article = load_article(article_id)
    assert article.content_status == "failed"
    assert article.last_error == "Browser acquire failed: concurrency_limit"
    browser_extractor.render_and_extract.assert_not_called()
    assert actor.status()["running"] == 3


def test_daily_budget_denial_marks_failed(pipeline, make_article, load_article, actor):
    actor.store.save("TEST", QuotaState(running=0, daily_seconds=590, day_key="2026-03-14"))
    article_id = make_article(link="https://paid.com/story")

    pipeline.run_once()

    assert load_article(article_id).last_error == "Browser acquire failed: daily_budget_exhausted"


def test_low_quality_then_denied_marks_failed(
    pipeline, make_article, load_article, actor, html_score, browser_extractor
):
    actor.store.save("TEST", QuotaState(running=3, daily_seconds=0, day_key="2026-03-14"))
    article_id = make_article(link="https://news.org/story")
    html_score(0.40)

    result = pipeline.run_once()

    assert result.quality_score == 0.40
    article = load_article(article_id)
    assert article.content_status == "failed"
    assert "concurrency_limit" in article.last_error
    assert article.full_content is None
    browser_extractor.render_and_extract.assert_not_called()


def test_blocked_domain_fails_without_fetching(
    pipeline, make_article, load_article, http_extractor, browser_extractor
):
    article_id = make_article(link="https://www.blocked.com/story")

    result = pipeline.run_once()

    assert result.category == "blocked"
    article = load_article(article_id)
    assert article.content_status == "failed"
    assert article.last_error == "Domain blocked from extraction: blocked.com"
    http_extractor.fetch_and_extract.assert_not_called()
    browser_extractor.render_and_extract.assert_not_called()


def test_never_browser_low_quality_fails(
    pipeline, make_article, load_article, html_score, browser_extractor
):
    article_id = make_article(link="https://light.com/story")
    html_score(0.20)

    pipeline.run_once()

    article = load_article(article_id)
    assert article.content_status == "failed"
    assert "browser disabled for domain light.com" in article.last_error
    browser_extractor.render_and_extract.assert_not_called()


def test_never_browser_good_quality_is_ready(pipeline, make_article, load_article, html_score):
    article_id = make_article(link="https://light.com/story")
    html_score(0.75)

    assert pipeline.run_once().method == "html"
    assert load_article(article_id).content_status == "ready"


def test_short_browser_text_fails_and_releases(
    pipeline, make_article, load_article, browser_extractor, actor
):
    browser_extractor.render_and_extract.return_value = BrowserExtraction(
        text="x" * 80, paragraphs=["x" * 80], html="", duration_seconds=4
    )
    article_id = make_article(link="https://spa.com/story")

    pipeline.run_once()

    article = load_article(article_id)
    assert article.content_status == "failed"
    assert article.last_error == "Browser extracted content too short (80 < 150 chars)"
    assert actor.status()["running"] == 0
    # no usage reported beyond the reservation
    assert actor.status()["dailySeconds"] == 30


def test_bot_detection_fails_article(
    pipeline, make_article, load_article, browser_extractor, actor
):
    browser_extractor.render_and_extract.side_effect = BotDetectedError(
        "https://spa.com/story", "captcha"
    )
    article_id = make_article(link="https://spa.com/story")

    pipeline.run_once()

    assert load_article(article_id).last_error == "Bot detection / CAPTCHA detected (captcha)"
    assert actor.status()["running"] == 0


def test_renderer_unavailable_leaves_article_extracting(
    pipeline, make_article, load_article, browser_extractor, actor
):
    browser_extractor.render_and_extract.side_effect = RendererUnavailableError("no chrome")
    article_id = make_article(link="https://spa.com/story")

    result = pipeline.run_once()

    assert result.extracted is False
    assert result.error == "no chrome"
    article = load_article(article_id)
    assert article.content_status == "extracting"
    assert article.last_error is None
    assert actor.status()["running"] == 0


def test_unexpected_renderer_error_marks_failed(
    pipeline, make_article, load_article, browser_extractor, actor
):
    browser_extractor.render_and_extract.side_effect = ConnectionResetError("chromedriver died")
    article_id = make_article(link="https://spa.com/story")

    result = pipeline.run_once()

    assert result.extracted is False
    assert "chromedriver died" in result.error
    article = load_article(article_id)
    assert article.content_status == "failed"
    assert "chromedriver died" in article.last_error
    assert actor.status()["running"] == 0


def test_usage_report_failure_keeps_text(
    db_manager, make_article, load_article, browser_extractor, http_extractor
):
    quota = MagicMock()
    quota.acquire.return_value = MagicMock(ok=True, running=1, daily_seconds=30)
    quota.add_seconds.side_effect = GovernorError("governor down")
    pipeline = ExtractionPipeline(
        store=SqlArticleStore(db_manager),
        quota_client=quota,
        http_extractor=http_extractor,
        browser_extractor=browser_extractor,
        rules=RULES,
        settings=SETTINGS,
    )
    article_id = make_article(link="https://spa.com/story")

    assert pipeline.run_once().extracted is True
    assert load_article(article_id).content_status == "ready"
    quota.release.assert_called_once_with()


def test_governor_unreachable_on_acquire_marks_failed(
    db_manager, make_article, load_article, browser_extractor, http_extractor
):
    quota = MagicMock()
    quota.acquire.side_effect = GovernorError("Quota governor unreachable (acquire): refused")
    pipeline = ExtractionPipeline(
        store=SqlArticleStore(db_manager),
        quota_client=quota,
        http_extractor=http_extractor,
        browser_extractor=browser_extractor,
        rules=RULES,
        settings=SETTINGS,
    )
    article_id = make_article(link="https://spa.com/story")

    pipeline.run_once()

    article = load_article(article_id)
    assert article.content_status == "failed"
    assert "unreachable" in article.last_error
    quota.release.assert_not_called()


def test_empty_queue_is_a_no_op(pipeline, make_article):
    make_article(status="ready")
    make_article(status="failed")

    assert pipeline.run_once() == PipelineRunResult(extracted=False)


def test_retry_failed_selects_failed_rows(
    db_manager, actor, http_extractor, browser_extractor, make_article, load_article, html_score
):
    from dataclasses import replace

    article_id = make_article(link="https://news.org/again", status="failed", last_error="old")
    html_score(0.9)
    pipeline = ExtractionPipeline(
        store=SqlArticleStore(db_manager),
        quota_client=LocalQuotaClient(actor=actor),
        http_extractor=http_extractor,
        browser_extractor=browser_extractor,
        rules=RULES,
        settings=replace(SETTINGS, retry_failed=True),
    )

    assert pipeline.run_once().article_id == article_id
    article = load_article(article_id)
    assert article.content_status == "ready"
    assert article.last_error is None


def test_oldest_article_is_processed_first(pipeline, make_article, load_article, html_score):
    html_score(0.9)
    first = make_article(link="https://news.org/1")
    second = make_article(link="https://news.org/2")

    assert pipeline.run_once().article_id == first
    assert load_article(second).content_status == "pending"
    assert pipeline.run_once().article_id == second


def test_store_failure_on_select_returns_error(actor, http_extractor, browser_extractor):
    store = MagicMock()
    store.select_next.side_effect = ArticleStoreError("db locked")
    pipeline = ExtractionPipeline(
        store=store,
        quota_client=LocalQuotaClient(actor=actor),
        http_extractor=http_extractor,
        browser_extractor=browser_extractor,
        rules=RULES,
        settings=SETTINGS,
    )

    result = pipeline.run_once()

    assert result == PipelineRunResult(extracted=False, error="db locked")
    http_extractor.fetch_and_extract.assert_not_called()


def test_store_failure_on_final_patch_reports_error(actor, http_extractor, browser_extractor, html_score):
    from worknuggets.services.article_store import ArticleRef

    store = MagicMock()
    store.select_next.return_value = ArticleRef("a1", "https://news.org/x", "pending")
    store.patch.side_effect = [None, ArticleStoreError("write failed")]
    html_score(0.9)
    pipeline = ExtractionPipeline(
        store=store,
        quota_client=LocalQuotaClient(actor=actor),
        http_extractor=http_extractor,
        browser_extractor=browser_extractor,
        rules=RULES,
        settings=SETTINGS,
    )

    result = pipeline.run_once()

    assert result.extracted is False
    assert result.error == "write failed"
    claim = store.patch.call_args_list[0]
    assert claim.args == ("a1", {"content_status": "extracting", "last_error": None})


def test_run_result_as_dict_drops_empty_fields():
    assert PipelineRunResult(extracted=False).as_dict() == {"extracted": False}
    assert PipelineRunResult(True, "a1", "html", "unranked", 0.8).as_dict() == {
        "extracted": True,
        "article_id": "a1",
        "method": "html",
        "category": "unranked",
        "quality_score": 0.8,
    }
