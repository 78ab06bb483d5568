"""Page fetchers: static HTTP and headless-browser rendering."""

from competitor_prices.fetchers.browser import PlaywrightRenderer
from competitor_prices.fetchers.http import Fetcher, RateLimiter

__all__ = ["Fetcher", "PlaywrightRenderer", "RateLimiter"]
