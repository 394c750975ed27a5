"""Exception taxonomy for the extraction pipeline.

Routing, acquisition and extraction errors are converted by the orchestrator
into a ``failed`` article status. Infrastructure errors abort the run without
touching the article.
"""


class PipelineError(Exception):
    """Base class for every error raised by the extraction pipeline."""


class DomainBlockedError(PipelineError):
    """Raised when the article's host is on the blocked list."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"Domain blocked from extraction: {host}")


class AcquisitionDeniedError(PipelineError):
    """Raised when the browser quota governor refuses a slot.

    ``reason`` is ``concurrency_limit`` or ``daily_budget_exhausted``.
    """

    def __init__(self, reason: str, running: int | None = None, daily_seconds: int | None = None):
        self.reason = reason
        self.running = running
        self.daily_seconds = daily_seconds
        super().__init__(f"Browser acquire failed: {reason}")


class ExtractionError(PipelineError):
    """Raised when a page could not be turned into usable article text."""


class BotDetectedError(ExtractionError):
    """Raised when the rendered page is a captcha or bot-block page."""

    def __init__(self, url: str, indicator: str):
        self.url = url
        self.indicator = indicator
        super().__init__(f"Bot detection / CAPTCHA detected ({indicator})")


class ContentTooShortError(ExtractionError):
    """Raised when browser text is below the minimum acceptable length."""

    def __init__(self, length: int, minimum: int):
        self.length = length
        self.minimum = minimum
        super().__init__(
            f"Browser extracted content too short ({length} < {minimum} chars)"
        )


class LowQualityContentError(ExtractionError):
    """Raised when HTML text is below threshold and the browser is not allowed."""

    def __init__(self, score: float, threshold: float, host: str):
        self.score = score
        self.threshold = threshold
        self.host = host
        super().__init__(
            f"HTML quality {score:.2f} below {threshold:.2f}; "
            f"browser disabled for domain {host}"
        )


class GovernorError(PipelineError):
    """Raised when the quota governor cannot be reached or answers with an error."""


class RendererUnavailableError(PipelineError):
    """Raised when no browser session can be started at all."""


class ArticleStoreError(PipelineError):
    """Raised when the article store cannot be read or written."""


INFRA_ERRORS = (RendererUnavailableError, ArticleStoreError)
