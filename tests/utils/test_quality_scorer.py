"""Tests for the HTML extraction quality score."""

import pytest

from worknuggets.utils.quality_scorer import (
    STOPWORDS,
    has_article_structure,
    score,
    stopword_coverage,
)

pytestmark = pytest.mark.unit


def _all_stopwords_text(min_chars: int = 2000) -> str:
    sentence = "Reporters" + "".join(STOPWORDS) + "editors agree. "
    return sentence * (min_chars // len(sentence) + 1)


def test_perfect_article_scores_one():
    text = _all_stopwords_text()
    paragraphs = ["paragraph body"] * 8

    metrics = score(text, paragraphs, "<html><article>body</article></html>")

    assert metrics.char_count >= 2000
    assert metrics.structure_score == 1
    assert metrics.stopword_coverage == 1.0
    assert metrics.quality_score == pytest.approx(1.0)


def test_empty_text_only_structure_contributes():
    metrics = score("", [], "<article>")

    assert metrics.char_count == 0
    assert metrics.paragraph_count == 0
    assert metrics.stopword_coverage == 0.0
    assert metrics.structure_score == 1
    assert metrics.quality_score == pytest.approx(0.25)


def test_empty_everything_scores_zero():
    metrics = score(None, None, None)

    assert metrics.quality_score == 0.0
    assert metrics.structure_score == 0


def test_length_and_density_are_capped():
    text = "x" * 50_000
    metrics = score(text, ["p"] * 100, "")

    # 0.40 * 1 + 0.25 * 1, no structure, no stopwords
    assert metrics.quality_score == pytest.approx(0.65)


def test_partial_scores_follow_weights():
    text = "a" * 1000  # half the length cap
    metrics = score(text, ["p"] * 4, "<div></div>")

    assert metrics.quality_score == pytest.approx(0.40 * 0.5 + 0.25 * 0.5)


@pytest.mark.parametrize(
    "text,paragraphs,html",
    [
        ("", [], ""),
        ("the " * 10_000, ["x"] * 500, "<article><article>"),
        (" the and but ", ["a"], '<link rel="canonical" href="/">'),
        ("éè" * 3000, [], "<ARTICLE>"),
        ("short", ["one", "two"], None),
    ],
)
def test_score_always_within_unit_interval(text, paragraphs, html):
    value = score(text, paragraphs, html).quality_score
    assert 0.0 <= value <= 1.0


@pytest.mark.parametrize(
    "html",
    [
        "<ARTICLE class='story'>",
        "<article>",
        '<meta property="article:published_time" content="2026-01-01">',
        "<meta property='article:published_time' content='2026-01-01'>",
        '<link rel="canonical" href="https://example.com/a">',
        "<LINK REL='CANONICAL' href='/a'>",
    ],
)
def test_structure_markers_detected(html):
    assert has_article_structure(html) is True


@pytest.mark.parametrize("html", ["<articles>", "<div class='article'>", "", None])
def test_structure_markers_not_detected(html):
    assert has_article_structure(html) is False


def test_stopwords_must_be_whitespace_bounded():
    # "other" and "others" contain "the" but not " the "
    assert stopword_coverage("other others bathe") == 0.0
    assert stopword_coverage("one of the others") == pytest.approx(1 / len(STOPWORDS))


def test_stopword_match_is_case_insensitive():
    assert stopword_coverage("WE HAVE THE PLAN") == pytest.approx(2 / len(STOPWORDS))


def test_score_is_deterministic():
    args = ("some text with the words", ["some text"], "<article>")
    assert score(*args) == score(*args)


def test_metrics_as_dict_has_all_fields():
    data = score("text", ["text"], "").as_dict()
    assert set(data) == {
        "char_count",
        "paragraph_count",
        "structure_score",
        "stopword_coverage",
        "quality_score",
    }
