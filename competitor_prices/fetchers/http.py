"""Rate-limited, retried page fetching over requests (with a browser fallback)."""

import logging
import threading
import time
from typing import Callable

import requests

from competitor_prices.cancel import CancelToken
from competitor_prices.config import Settings
from competitor_prices.errors import FetchError, NotFoundError, TransientFetchError
from competitor_prices.fetchers.browser import PlaywrightRenderer
from competitor_prices.models import FetchFailure, PageContent
from competitor_prices.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Global "earliest next request" gate shared by every fetcher in the process.

    Each caller reserves the next free slot under the lock and then sleeps
    outside it, so concurrent callers queue up ``min_interval`` apart.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_allowed = 0.0

    def wait(self) -> float:
        """Block until this caller's slot; returns the seconds waited."""
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_allowed)
            self._next_allowed = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return delay


class Fetcher:
    """
    Fetch pages with a browser-like header profile.

    ``fetch`` and ``render`` never raise fetch errors: they return either
    ``PageContent`` or ``FetchFailure``. Only ``RunCancelled`` escapes.
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter,
        cancel: CancelToken | None = None,
        session: requests.Session | None = None,
        renderer: PlaywrightRenderer | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._cancel = cancel or CancelToken()
        self._session = session or requests.Session()
        self._renderer = renderer
        self._sleep = sleep
        self.headers = {
            "User-Agent": settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Connection": "keep-alive",
        }

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._session.close()
        if self._renderer is not None:
            self._renderer.close()

    def fetch(self, url: str, timeout: float | None = None) -> PageContent | FetchFailure:
        """GET ``url`` as static HTML."""
        return self._with_retries(url, lambda: self._get_once(url, timeout), "GET")

    def render(self, url: str, timeout: float | None = None) -> PageContent | FetchFailure:
        """Load ``url`` in a headless browser so page scripts run first."""
        if self._renderer is None:
            self._renderer = PlaywrightRenderer(user_agent=self._settings.user_agent)
        renderer = self._renderer
        timeout = timeout or self._settings.request_timeout
        return self._with_retries(url, lambda: renderer.render(url, timeout), "RENDER")

    def _with_retries(
        self, url: str, once: Callable[[], PageContent], verb: str
    ) -> PageContent | FetchFailure:
        attempts = 0

        def before_attempt(n: int) -> None:
            nonlocal attempts
            attempts = n
            self._cancel.check(f"{verb} {url}")
            self._rate_limiter.wait()

        try:
            return retry_with_backoff(
                once,
                attempts=self._settings.max_retries,
                delay=self._settings.retry_delay,
                retry_on=TransientFetchError,
                label=f"{verb} {url}",
                sleep=self._sleep,
                on_attempt=before_attempt,
            )
        except NotFoundError as e:
            logger.info("%s %s: not found", verb, url)
            return FetchFailure(url=url, attempts=attempts, error=e)
        except FetchError as e:
            logger.error("%s %s failed after %d attempt(s): %s", verb, url, attempts, e)
            return FetchFailure(url=url, attempts=attempts, error=e)

    def _get_once(self, url: str, timeout: float | None) -> PageContent:
        try:
            resp = self._session.get(
                url,
                headers=self.headers,
                timeout=timeout or self._settings.request_timeout,
            )
        except requests.Timeout as e:
            raise TransientFetchError(url, f"timeout: {e}") from e
        except requests.ConnectionError as e:
            raise TransientFetchError(url, f"connection error: {e}") from e
        except requests.RequestException as e:
            raise FetchError(url, f"request failed: {e}") from e

        status = resp.status_code
        if status == 404:
            raise NotFoundError(url, "HTTP 404", status)
        if status == 429 or status >= 500:
            raise TransientFetchError(url, f"HTTP {status}", status)
        if status >= 400:
            raise FetchError(url, f"HTTP {status}", status)
        return PageContent(url=resp.url or url, text=resp.text, status_code=status)
