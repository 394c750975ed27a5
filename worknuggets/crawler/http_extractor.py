"""Cheap article extraction over plain HTTP.

No JavaScript is executed: the page is fetched once with ``requests`` and
``<p>`` elements are pulled out of the parsed document. Failures never raise;
an empty result tells the orchestrator to consider the browser fallback.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

import requests
from bs4 import BeautifulSoup, Comment

from worknuggets import config

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class HttpExtraction:
    """Result of a plain HTTP fetch; empty fields mean the fetch failed."""

    text: str = ""
    paragraphs: list[str] = field(default_factory=list)
    html: str = ""
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.text)


def _parse(html: str) -> BeautifulSoup:
    """Parse ``html`` and drop script, style and comment nodes."""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()
    return soup


def filter_paragraphs(
    candidates: Iterable[str], min_chars: int = config.MIN_PARAGRAPH_CHARS
) -> list[str]:
    """Collapse whitespace and keep paragraphs longer than ``min_chars``."""
    paragraphs = []
    for candidate in candidates:
        if not candidate:
            continue
        cleaned = _WHITESPACE_RE.sub(" ", candidate).strip()
        if len(cleaned) > min_chars:
            paragraphs.append(cleaned)
    return paragraphs


def extract_paragraphs(html: str | None) -> list[str]:
    """Return the noise-filtered text of every ``<p>`` element in ``html``."""
    if not html:
        return []
    soup = _parse(html)
    return filter_paragraphs(p.get_text(" ") for p in soup.find_all("p"))


def join_paragraphs(
    paragraphs: Iterable[str], max_chars: int = config.MAX_CONTENT_CHARS
) -> str:
    """Join paragraphs with blank lines and apply the content cap."""
    return "\n\n".join(paragraphs)[:max_chars]


class HttpArticleExtractor:
    """Fetch a page with a bot-identifying user agent and pull out paragraphs."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        user_agent: str = config.HTTP_USER_AGENT,
        max_chars: int = config.MAX_CONTENT_CHARS,
    ):
        self.timeout = timeout
        self.max_chars = max_chars
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "User-Agent": user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            }
        )

    def fetch_and_extract(self, url: str) -> HttpExtraction:
        """Fetch ``url`` and extract paragraph text.

        Returns an empty :class:`HttpExtraction` on any network or HTTP error.
        """
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.RequestException as exc:
            status = getattr(getattr(exc, "response", None), "status_code", None)
            logger.warning("HTTP extractor failed for %s: %s", url, exc)
            return HttpExtraction(status_code=status, error=str(exc))

        html = response.text or ""
        paragraphs = extract_paragraphs(html)
        text = join_paragraphs(paragraphs, self.max_chars)
        logger.debug(
            "HTTP extractor got %d paragraphs (%d chars) from %s",
            len(paragraphs),
            len(text),
            url,
        )
        return HttpExtraction(
            text=text,
            paragraphs=paragraphs,
            html=html,
            status_code=response.status_code,
        )

    def close(self) -> None:
        self.session.close()
