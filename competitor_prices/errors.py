"""Error taxonomy for the crawl pipeline."""


class PriceCrawlerError(Exception):
    """Base class for all crawler errors."""


class FetchError(PriceCrawlerError):
    """A page could not be fetched and retrying will not help."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Timeout, connection reset, 5xx or 429: worth another attempt."""


class NotFoundError(FetchError):
    """The page does not exist (404). Never retried."""


class ParseError(PriceCrawlerError):
    """A page was fetched but held no usable product data."""


class PersistenceError(PriceCrawlerError):
    """The transaction for one product failed."""


class RunFatalError(PriceCrawlerError):
    """An error outside the per-item loop that aborts the whole run."""


class RunCancelled(PriceCrawlerError):
    """The run deadline passed or a stop was requested."""
