"""Headless Chrome extraction for pages that need JavaScript.

Each call starts a fresh Selenium session, loads the page with the ``eager``
page-load strategy (DOM constructed, no wait for ads and trackers), gives
client-side rendering a short grace period and reads paragraph text from the
live DOM. The session is torn down on every exit path.

Callers are expected to hold a browser quota slot (see
``worknuggets.services.browser_quota``) around :meth:`render_and_extract`.
"""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from worknuggets import config
from worknuggets.utils.quality_scorer import QualityMetrics, score

from .errors import BotDetectedError, ExtractionError, RendererUnavailableError
from .http_extractor import filter_paragraphs, join_paragraphs
from .utils import mask_secret_url

try:
    import selenium
    from selenium import webdriver
    from selenium.common.exceptions import TimeoutException, WebDriverException
    from selenium.webdriver.chrome.options import Options as ChromeOptions
    from selenium.webdriver.chrome.service import Service as ChromeService

    SELENIUM_AVAILABLE = True
except ImportError:
    SELENIUM_AVAILABLE = False
    logging.warning("Selenium not available, browser extraction disabled")

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
BROWSER_EXTRA_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
}

PARAGRAPH_SELECTOR = "article p, main p, div[role='main'] p, section p, p"

_PARAGRAPH_SCRIPT = f"""
return Array.from(document.querySelectorAll("{PARAGRAPH_SELECTOR}"))
    .map(function (p) {{ return (p.innerText || "").trim(); }});
"""

# Phrases matched against the lowercased rendered text
BOT_BLOCK_TEXT_PHRASES = ("not a robot", "please verify", "access denied")
# Substrings matched against the raw rendered HTML
BOT_BLOCK_HTML_MARKERS = ("captcha",)


@dataclass
class BrowserExtraction:
    text: str
    paragraphs: list[str] = field(default_factory=list)
    html: str = ""
    duration_seconds: int = 0
    metrics: Optional[QualityMetrics] = None


def detect_bot_block(text: str | None, html: str | None) -> Optional[str]:
    """Return the matched indicator when the page looks like a bot challenge."""
    lower_text = (text or "").lower()
    for phrase in BOT_BLOCK_TEXT_PHRASES:
        if phrase in lower_text:
            return phrase
    raw_html = html or ""
    for marker in BOT_BLOCK_HTML_MARKERS:
        if marker in raw_html:
            return marker
    return None


def create_chrome_driver():
    """Start a headless Chrome session configured for article rendering."""
    if not SELENIUM_AVAILABLE:
        raise RendererUnavailableError("Selenium is not installed")

    chrome_options = ChromeOptions()

    # 'eager' returns from get() once the DOM is built
    chrome_options.page_load_strategy = "eager"

    chrome_options.add_argument("--headless=new")
    chrome_options.add_argument("--no-sandbox")
    chrome_options.add_argument("--disable-dev-shm-usage")
    chrome_options.add_argument("--disable-gpu")
    chrome_options.add_argument("--disable-blink-features=AutomationControlled")
    chrome_options.add_argument("--disable-extensions")
    chrome_options.add_argument("--lang=en-US")

    width = random.randint(1366, 1920)
    height = random.randint(768, 1080)
    chrome_options.add_argument(f"--window-size={width},{height}")
    chrome_options.add_argument(f"--user-agent={BROWSER_USER_AGENT}")

    if config.SELENIUM_PROXY:
        chrome_options.add_argument(f"--proxy-server={config.SELENIUM_PROXY}")
        logger.info("Browser proxy enabled: %s", mask_secret_url(config.SELENIUM_PROXY))

    chrome_options.add_experimental_option("excludeSwitches", ["enable-automation"])
    chrome_options.add_experimental_option("useAutomationExtension", False)

    if config.CHROME_BIN:
        chrome_options.binary_location = str(config.CHROME_BIN)

    if config.CHROMEDRIVER_PATH:
        service = ChromeService(executable_path=str(config.CHROMEDRIVER_PATH))
        driver = webdriver.Chrome(service=service, options=chrome_options)
    else:
        driver = webdriver.Chrome(options=chrome_options)

    driver.execute_cdp_cmd("Network.enable", {})
    driver.execute_cdp_cmd(
        "Network.setExtraHTTPHeaders", {"headers": dict(BROWSER_EXTRA_HEADERS)}
    )
    driver.execute_script(
        "Object.defineProperty(navigator, 'webdriver', {get: () => undefined})"
    )
    driver.set_page_load_timeout(config.BROWSER_NAV_TIMEOUT_SECONDS)
    return driver


class BrowserArticleExtractor:
    """Render a page in a throwaway browser session and extract paragraphs."""

    def __init__(
        self,
        driver_factory: Callable[[], Any] | None = None,
        nav_timeout: int = config.BROWSER_NAV_TIMEOUT_SECONDS,
        grace_seconds: float = config.BROWSER_GRACE_SECONDS,
        max_chars: int = config.MAX_CONTENT_CHARS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.driver_factory = driver_factory or create_chrome_driver
        self.nav_timeout = nav_timeout
        self.grace_seconds = grace_seconds
        self.max_chars = max_chars
        self._sleep = sleep
        self._clock = clock

    def render_and_extract(self, url: str) -> BrowserExtraction:
        """Load ``url`` in a new browser session and return its paragraph text.

        Raises:
            RendererUnavailableError: no session could be started.
            BotDetectedError: the rendered page is a captcha or block page.
            ExtractionError: navigation timed out or the session failed.
        """
        driver = self._start_session()
        try:
            return self._extract(driver, url)
        except ExtractionError:
            raise
        except Exception as exc:
            if SELENIUM_AVAILABLE and isinstance(exc, TimeoutException):
                raise ExtractionError(
                    f"Browser navigation timed out after {self.nav_timeout}s"
                ) from exc
            if SELENIUM_AVAILABLE and isinstance(exc, WebDriverException):
                raise ExtractionError(f"Browser session error: {exc.msg or exc}") from exc
            raise ExtractionError(f"Browser session error: {exc}") from exc
        finally:
            self._teardown(driver)

    def _start_session(self):
        try:
            logger.info("Launching browser session")
            driver = self.driver_factory()
        except RendererUnavailableError:
            raise
        except Exception as exc:
            raise RendererUnavailableError(f"Failed to start browser session: {exc}") from exc

        try:
            driver.set_page_load_timeout(self.nav_timeout)
        except Exception as exc:
            self._teardown(driver)
            raise RendererUnavailableError(f"Browser session unusable: {exc}") from exc
        return driver

    def _extract(self, driver, url: str) -> BrowserExtraction:
        start = self._clock()

        logger.info("Navigating to %s", url)
        driver.get(url)
        self._sleep(self.grace_seconds)

        html = driver.page_source or ""
        raw_paragraphs = driver.execute_script(_PARAGRAPH_SCRIPT) or []
        duration_seconds = int(round(self._clock() - start))

        paragraphs = filter_paragraphs(str(p) for p in raw_paragraphs)
        text = join_paragraphs(paragraphs, self.max_chars)
        logger.info(
            "Browser rendered %s in %ss (%d html bytes, %d paragraphs)",
            url,
            duration_seconds,
            len(html),
            len(paragraphs),
        )

        indicator = detect_bot_block(text, html)
        if indicator:
            logger.warning("Bot block page detected for %s (%s)", url, indicator)
            raise BotDetectedError(url, indicator)

        return BrowserExtraction(
            text=text,
            paragraphs=paragraphs,
            html=html,
            duration_seconds=duration_seconds,
            metrics=score(text, paragraphs, html),
        )

    @staticmethod
    def _teardown(driver) -> None:
        try:
            driver.quit()
            logger.info("Browser closed")
        except Exception as exc:
            logger.warning("Failed to close browser: %s", exc)


def check_renderer_health() -> dict[str, Any]:
    """Describe the renderer binding without starting a session."""
    chrome_bin = config.CHROME_BIN
    driver_path = config.CHROMEDRIVER_PATH
    return {
        "hasBrowser": SELENIUM_AVAILABLE,
        "seleniumVersion": getattr(selenium, "__version__", None) if SELENIUM_AVAILABLE else None,
        "chromeBin": chrome_bin,
        "chromeBinExists": bool(chrome_bin and os.path.exists(chrome_bin)),
        "chromedriverPath": driver_path,
        "chromedriverExists": bool(driver_path and os.path.exists(driver_path)),
        "pageLoadStrategy": "eager",
        "navTimeoutSeconds": config.BROWSER_NAV_TIMEOUT_SECONDS,
        "graceSeconds": config.BROWSER_GRACE_SECONDS,
        "proxy": mask_secret_url(config.SELENIUM_PROXY),
    }
