"""Centralized runtime configuration for the extraction pipeline.

Values are read once from the environment at import time. A local ``.env``
file is honoured for development runs. Code that needs to override values
(tests, one-off CLI runs) should build a :class:`PipelineSettings` instead of
mutating these module constants.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


# Database / article store
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/worknuggets.db")
ARTICLE_STORE = os.getenv("ARTICLE_STORE", "sql").lower()
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# Browser quota governor
QUOTA_SERVICE_URL = os.getenv("QUOTA_SERVICE_URL", "").rstrip("/")
QUOTA_INSTANCE_NAME = os.getenv("QUOTA_INSTANCE_NAME", "GLOBAL")
# Names served by the HTTP governor route
QUOTA_ALLOWED_NAMES = tuple(
    name.strip()
    for name in os.getenv("QUOTA_ALLOWED_NAMES", QUOTA_INSTANCE_NAME).split(",")
    if name.strip()
)
QUOTA_REQUEST_TIMEOUT_SECONDS = _env_float("QUOTA_REQUEST_TIMEOUT_SECONDS", 10.0)
MAX_CONCURRENT_BROWSER = _env_int("MAX_CONCURRENT_BROWSER", 3)
MAX_BROWSER_SECONDS_PER_DAY = _env_int("MAX_BROWSER_SECONDS_PER_DAY", 600)
BROWSER_RESERVATION_SECONDS = _env_int("BROWSER_RESERVATION_SECONDS", 30)

# Extraction thresholds
MIN_BROWSER_SUCCESS_LENGTH = _env_int("MIN_BROWSER_SUCCESS_LENGTH", 150)
HTML_QUALITY_THRESHOLD = _env_float("HTML_QUALITY_THRESHOLD", 0.60)
MAX_CONTENT_CHARS = _env_int("MAX_CONTENT_CHARS", 12000)
MIN_PARAGRAPH_CHARS = 40
EXTRACTION_RETRY_FAILED = _env_bool("EXTRACTION_RETRY_FAILED")
DOMAIN_RULES_PATH = os.getenv("DOMAIN_RULES_PATH") or None

# Lightweight (plain HTTP) extractor
HTTP_TIMEOUT_SECONDS = _env_float("HTTP_TIMEOUT_SECONDS", 15.0)
HTTP_USER_AGENT = os.getenv(
    "HTTP_USER_AGENT", "WorkNuggetsBot/1.0 (+https://worknuggets.com)"
)

# Heavy (headless browser) extractor
BROWSER_NAV_TIMEOUT_SECONDS = _env_int("BROWSER_NAV_TIMEOUT_SECONDS", 60)
BROWSER_GRACE_SECONDS = _env_float("BROWSER_GRACE_SECONDS", 3.0)
CHROME_BIN = os.getenv("CHROME_BIN") or os.getenv("GOOGLE_CHROME_BIN") or None
CHROMEDRIVER_PATH = os.getenv("CHROMEDRIVER_PATH") or None
SELENIUM_PROXY = os.getenv("SELENIUM_PROXY") or None

# Scheduler
EXTRACTION_TICK_SECONDS = _env_int("EXTRACTION_TICK_SECONDS", 60)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()


@dataclass(frozen=True)
class PipelineSettings:
    """Snapshot of the knobs the orchestrator reads for a single pass."""

    quality_threshold: float = HTML_QUALITY_THRESHOLD
    reserve_seconds: int = BROWSER_RESERVATION_SECONDS
    max_concurrent: int = MAX_CONCURRENT_BROWSER
    max_daily_seconds: int = MAX_BROWSER_SECONDS_PER_DAY
    min_browser_length: int = MIN_BROWSER_SUCCESS_LENGTH
    retry_failed: bool = EXTRACTION_RETRY_FAILED
    selectable_statuses: tuple[str, ...] = field(default=())

    def statuses(self) -> tuple[str, ...]:
        """Statuses eligible for selection by the orchestrator."""
        if self.selectable_statuses:
            return self.selectable_statuses
        if self.retry_failed:
            return ("pending", "failed")
        return ("pending",)

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            quality_threshold=_env_float("HTML_QUALITY_THRESHOLD", 0.60),
            reserve_seconds=_env_int("BROWSER_RESERVATION_SECONDS", 30),
            max_concurrent=_env_int("MAX_CONCURRENT_BROWSER", 3),
            max_daily_seconds=_env_int("MAX_BROWSER_SECONDS_PER_DAY", 600),
            min_browser_length=_env_int("MIN_BROWSER_SUCCESS_LENGTH", 150),
            retry_failed=_env_bool("EXTRACTION_RETRY_FAILED"),
        )
