"""Heuristic quality score for text pulled out of raw HTML.

The score estimates whether plain-HTTP extraction captured a real article
body rather than a paywall stub, cookie banner or empty shell. It is the
routing signal for the browser fallback, so the weights and caps here are
part of the pipeline's contract: changing them changes which articles spend
browser quota.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Sequence

LENGTH_CAP_CHARS = 2000
PARAGRAPH_CAP = 8

WEIGHT_LENGTH = 0.40
WEIGHT_PARAGRAPHS = 0.25
WEIGHT_STRUCTURE = 0.25
WEIGHT_STOPWORDS = 0.10

# Whitespace-bounded so "the" inside "other" does not count
STOPWORDS: tuple[str, ...] = (
    " the ",
    " and ",
    " but ",
    " with ",
    " this ",
    " that ",
    " from ",
    " for ",
    " was ",
    " were ",
    " are ",
    " have ",
    " has ",
)

_ARTICLE_TAG_RE = re.compile(r"<article[\s>]", re.IGNORECASE)
_PUBLISHED_TIME_RE = re.compile(
    r"property=[\"']article:published_time[\"']", re.IGNORECASE
)
_CANONICAL_RE = re.compile(r"rel=[\"']canonical[\"']", re.IGNORECASE)


@dataclass(frozen=True)
class QualityMetrics:
    char_count: int
    paragraph_count: int
    structure_score: int
    stopword_coverage: float
    quality_score: float

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def has_article_structure(html: str | None) -> bool:
    """True when the HTML carries an ``<article>`` tag, publish time or canonical link."""
    if not html:
        return False
    return bool(
        _ARTICLE_TAG_RE.search(html)
        or _PUBLISHED_TIME_RE.search(html)
        or _CANONICAL_RE.search(html)
    )


def stopword_coverage(text: str | None) -> float:
    """Fraction of :data:`STOPWORDS` present in the lowercased text."""
    if not text:
        return 0.0
    lower = text.lower()
    matches = sum(1 for word in STOPWORDS if word in lower)
    return matches / len(STOPWORDS)


def score(
    text: str | None,
    paragraphs: Sequence[str] | None,
    html: str | None,
) -> QualityMetrics:
    """Score extracted text against the raw HTML it came from.

    Args:
        text: Joined paragraph text (already truncated to the content cap).
        paragraphs: Paragraphs that survived the noise filter.
        html: Raw HTML of the page.

    Returns:
        QualityMetrics with ``quality_score`` in [0, 1].
    """
    text = text or ""
    char_count = len(text)
    paragraph_count = len(paragraphs or ())
    structure = 1 if has_article_structure(html) else 0
    coverage = stopword_coverage(text)

    s_length = min(1.0, char_count / LENGTH_CAP_CHARS)
    s_paragraphs = min(1.0, paragraph_count / PARAGRAPH_CAP)

    quality = (
        WEIGHT_LENGTH * s_length
        + WEIGHT_PARAGRAPHS * s_paragraphs
        + WEIGHT_STRUCTURE * structure
        + WEIGHT_STOPWORDS * coverage
    )
    quality = max(0.0, min(1.0, quality))

    return QualityMetrics(
        char_count=char_count,
        paragraph_count=paragraph_count,
        structure_score=structure,
        stopword_coverage=coverage,
        quality_score=quality,
    )
