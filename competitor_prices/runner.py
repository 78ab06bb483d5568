"""One crawl run end-to-end: plan, fetch, extract, persist, monitor."""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import requests

from competitor_prices.cancel import CancelToken
from competitor_prices.config import Settings
from competitor_prices.errors import (
    FetchError,
    NotFoundError,
    ParseError,
    PersistenceError,
    RunCancelled,
    RunFatalError,
)
from competitor_prices.extractors import (
    RenderedStrategy,
    StructuralStrategy,
    VariantExtractor,
    clean_price,
)
from competitor_prices.fetchers.browser import PlaywrightRenderer
from competitor_prices.fetchers.http import Fetcher, RateLimiter
from competitor_prices.models import FetchFailure, ProductRecord, ProductStub, ScrapeStatus
from competitor_prices.monitor import AlertSink, FailureMonitor
from competitor_prices.notifiers import alert_sender
from competitor_prices.parser import PageParser
from competitor_prices.planner import CrawlPlanner
from competitor_prices.storage import PriceStore

logger = logging.getLogger(__name__)


class ItemOutcome(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RunSummary:
    """Counters for one crawl run."""

    stubs_seen: int = 0
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    observations: int = 0
    alerts_sent: int = 0
    status: ScrapeStatus = ScrapeStatus.IN_PROGRESS
    error: str | None = None

    def count(self, outcome: ItemOutcome) -> None:
        if outcome is ItemOutcome.SAVED:
            self.saved += 1
        elif outcome is ItemOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def build_extractor(settings: Settings, fetcher: Fetcher) -> VariantExtractor:
    """Static rows first; rendered rows only for allow-listed URLs."""
    return VariantExtractor(
        [
            StructuralStrategy(),
            RenderedStrategy(fetcher.render, settings.needs_rendering),
        ]
    )


class CrawlRunner:
    """Drives one crawl over already-open resources."""

    def __init__(
        self,
        settings: Settings,
        store: PriceStore,
        fetcher: Fetcher,
        monitor: FailureMonitor,
        cancel: CancelToken,
        planner: CrawlPlanner | None = None,
        extractor: VariantExtractor | None = None,
        parser: PageParser | None = None,
    ):
        self.settings = settings
        self.store = store
        self.fetcher = fetcher
        self.monitor = monitor
        self.cancel = cancel
        self.parser = parser or PageParser()
        self.planner = planner or CrawlPlanner(settings, fetcher, self.parser)
        self.extractor = extractor or build_extractor(settings, fetcher)

    def run(self) -> RunSummary:
        summary = RunSummary()
        competitor_id = self.store.ensure_competitor(
            self.settings.competitor_name, self.settings.competitor_url
        )
        self.store.mark_scrape_started(competitor_id)
        logger.info("Crawl started: %s (%s)", self.settings.competitor_name, self.settings.competitor_url)

        try:
            for stub in self.planner.stubs():
                summary.stubs_seen += 1
                summary.count(self.process_stub(stub, competitor_id, summary))
        except RunCancelled as e:
            logger.warning("Crawl cancelled: %s", e)
            summary.status = ScrapeStatus.ERROR
            summary.error = f"cancelled: {e}"
            self._finish(competitor_id, summary)
            return summary
        except Exception as e:
            logger.exception("Crawl aborted: %s", e)
            summary.status = ScrapeStatus.ERROR
            summary.error = str(e)
            self._finish(competitor_id, summary)
            self.monitor.run_failed(e)
            summary.alerts_sent = self.monitor.alerts_sent
            if isinstance(e, RunFatalError):
                raise
            raise RunFatalError(str(e)) from e

        summary.status = ScrapeStatus.COMPLETED
        self._finish(competitor_id, summary)
        return summary

    def process_stub(self, stub: ProductStub, competitor_id: int, summary: RunSummary | None = None) -> ItemOutcome:
        """Fetch, extract and save one product; per-item errors never escape."""
        stage = "fetch"
        try:
            record = self.build_record(stub)
            stage = "save"
            product_id, written = self.store.save_product(
                record, competitor_id, self.settings.source_tag
            )
        except NotFoundError:
            logger.info("Skipping %s: product page not found", stub.url)
            return ItemOutcome.SKIPPED
        except (FetchError, ParseError, PersistenceError) as e:
            logger.error("Skipping %s at %s stage: %s", stub.url or stub.name, stage, e)
            self.monitor.record_failure(f"{stub.url or stub.name} ({stage}): {e}")
            return ItemOutcome.FAILED

        if summary is not None:
            summary.observations += written
        logger.info(
            "Saved %s (id %d): price %s, %d variant(s)",
            stub.name, product_id, record.price, len(record.variants),
        )
        self.monitor.record_success()
        return ItemOutcome.SAVED

    def build_record(self, stub: ProductStub) -> ProductRecord:
        """Everything to persist for ``stub``; raises fetch or parse errors."""
        price = clean_price(stub.raw_price)
        if price is None and stub.raw_price:
            logger.warning("Unparseable listing price %r for %s", stub.raw_price, stub.url or stub.name)

        variants = []
        if stub.url:
            page = self.fetcher.fetch(stub.url)
            if isinstance(page, FetchFailure):
                raise page.error
            detail = self.parser.product_detail(page.text)
            variants = self.extractor.extract(page)
            if price is None and detail.raw_price:
                price = clean_price(detail.raw_price)
                if price is None:
                    logger.warning("Unparseable product price %r on %s", detail.raw_price, stub.url)
            if stub.sku is None and detail.sku:
                stub.sku = detail.sku

        if price is None and not variants:
            raise ParseError(
                f"no usable price or variants (raw price {stub.raw_price!r})"
            )
        return ProductRecord(stub=stub, price=price, variants=variants)

    def _finish(self, competitor_id: int, summary: RunSummary) -> None:
        summary.alerts_sent = self.monitor.alerts_sent
        try:
            self.store.mark_scrape_finished(competitor_id, summary.status, summary.error)
        except sqlite3.Error as e:
            logger.error("Could not record crawl status: %s", e)
        logger.info(
            "Crawl %s: %d product(s) seen, %d saved, %d skipped, %d failed, "
            "%d observation(s) written, %d alert(s)",
            summary.status.value, summary.stubs_seen, summary.saved, summary.skipped,
            summary.failed, summary.observations, summary.alerts_sent,
        )


def run_crawl(
    settings: Settings,
    rate_limiter: RateLimiter,
    alert: AlertSink | None = None,
    stop_event: threading.Event | None = None,
    session: requests.Session | None = None,
    renderer: PlaywrightRenderer | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunSummary:
    """
    Open the store and fetcher, crawl once, close everything.

    Raises ``RunFatalError`` (after a run-level alert) when the run could not
    complete; item-level problems only show up in the summary.
    """
    alert = alert or alert_sender(settings.alert_email)
    monitor = FailureMonitor(settings.alert_threshold, alert, run_label=settings.competitor_name)
    cancel = CancelToken(timeout=settings.run_timeout_minutes * 60, stop_event=stop_event)

    try:
        with PriceStore(
            settings.db_path,
            retry_attempts=settings.max_retries,
            retry_delay=settings.retry_delay,
            cancel=cancel,
            sleep=sleep,
        ) as store, Fetcher(
            settings, rate_limiter, cancel=cancel, session=session, renderer=renderer, sleep=sleep
        ) as fetcher:
            store.init_db()
            runner = CrawlRunner(settings, store, fetcher, monitor, cancel)
            return runner.run()
    except RunFatalError:
        raise
    except Exception as e:
        logger.exception("Crawl could not start: %s", e)
        monitor.run_failed(e)
        raise RunFatalError(str(e)) from e
