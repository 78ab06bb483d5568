"""Headless-browser page loading for pages that build their content with scripts."""

import logging

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from competitor_prices.errors import NotFoundError, TransientFetchError
from competitor_prices.models import PageContent

logger = logging.getLogger(__name__)

# Variant rows on script-driven product pages
DEFAULT_WAIT_SELECTOR = ".product .summary form .quantity"


class PlaywrightRenderer:
    """
    Firefox via Playwright, launched on first use and reused until ``close``.

    Firefox is less likely to be blocked by bot protection than Chromium.
    """

    def __init__(self, user_agent: str, wait_selector: str = DEFAULT_WAIT_SELECTOR):
        self.user_agent = user_agent
        self.wait_selector = wait_selector
        self._playwright = None
        self._browser = None
        self._context = None

    def _ensure_browser(self) -> None:
        if self._context is not None:
            return
        logger.info("Launching headless Firefox for rendered pages")
        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.firefox.launch(headless=True)
            self._context = self._browser.new_context(user_agent=self.user_agent)
        except PlaywrightError:
            self.close()
            raise

    def render(self, url: str, timeout: float) -> PageContent:
        """Return the page HTML after scripts have run; raises fetch errors."""
        timeout_ms = int(timeout * 1000)
        try:
            self._ensure_browser()
            page = self._context.new_page()
        except PlaywrightError as e:
            raise TransientFetchError(url, f"browser unavailable: {e}") from e

        try:
            response = page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            status = response.status if response else 200
            if status == 404:
                raise NotFoundError(url, "HTTP 404", status)
            if status == 429 or status >= 500:
                raise TransientFetchError(url, f"HTTP {status}", status)
            try:
                page.wait_for_selector(self.wait_selector, timeout=10000)
            except PlaywrightTimeoutError:
                logger.debug("No %s on %s after render", self.wait_selector, url)
            return PageContent(url=page.url or url, text=page.content(), status_code=status, rendered=True)
        except PlaywrightTimeoutError as e:
            raise TransientFetchError(url, f"render timeout: {e}") from e
        except PlaywrightError as e:
            raise TransientFetchError(url, f"render failed: {e}") from e
        finally:
            page.close()

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
        if self._playwright is not None:
            self._playwright.stop()
        self._playwright = self._browser = self._context = None
