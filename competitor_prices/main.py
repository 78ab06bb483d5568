"""Entry point and scheduler for the competitor price crawler."""

import argparse
import logging
import logging.handlers
import random
import signal
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from competitor_prices.config import Settings
from competitor_prices.errors import RunFatalError
from competitor_prices.fetchers.http import RateLimiter
from competitor_prices.models import ScrapeStatus
from competitor_prices.runner import RunSummary, run_crawl

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def configure_logging(settings: Settings) -> None:
    """Console logging plus a size-rotated file in LOG_DIR."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    file_error = None
    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                settings.log_dir / "scraper.log",
                maxBytes=settings.max_log_size,
                backupCount=settings.max_log_files,
                encoding="utf-8",
            )
        )
    except OSError as e:
        file_error = e

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    if file_error is not None:
        logger.warning("File logging disabled (%s): %s", settings.log_dir, file_error)


def run_once(
    settings: Settings, rate_limiter: RateLimiter, stop_event: threading.Event
) -> RunSummary | None:
    """One crawl; None if it was aborted."""
    try:
        return run_crawl(settings, rate_limiter, stop_event=stop_event)
    except RunFatalError as e:
        logger.error("Crawl run aborted: %s", e)
        return None


def run_once_with_jitter(
    settings: Settings, rate_limiter: RateLimiter, stop_event: threading.Event
) -> RunSummary | None:
    """
    Optional randomized delay before each scheduled crawl.

    Jitter avoids the perfectly regular request pattern that bot detection
    flags as automation. Off unless JITTER_MAX_SECONDS is set.
    """
    if settings.jitter_max_seconds > 0:
        delay = random.uniform(0, settings.jitter_max_seconds)
        logger.debug("Jitter: sleeping %.1f s before crawl", delay)
        if stop_event.wait(delay):
            return None
    return run_once(settings, rate_limiter, stop_event)


def _install_signal_handlers(stop_event: threading.Event, scheduler: BlockingScheduler | None = None) -> None:
    def handle(signum, frame):
        logger.info("Received signal %d, stopping", signum)
        stop_event.set()
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def main(argv: list[str] | None = None) -> int:
    """Run once immediately, then on the configured interval (or just once with --once)."""
    parser = argparse.ArgumentParser(description="Crawl a competitor storefront and record prices.")
    parser.add_argument("--once", action="store_true", help="run a single crawl now and exit")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings)
    logger.info("🚀 Competitor price crawler started: %s", settings.competitor_url)

    # One limiter for the whole process so scheduled runs share the gate
    rate_limiter = RateLimiter(settings.rate_limit_delay)
    stop_event = threading.Event()

    if args.once:
        _install_signal_handlers(stop_event)
        summary = run_once(settings, rate_limiter, stop_event)
        return 0 if summary is not None and summary.status is ScrapeStatus.COMPLETED else 1

    scheduler = BlockingScheduler()
    _install_signal_handlers(stop_event, scheduler)
    logger.info(
        "Scheduler: every %d h ± %d s jitter",
        settings.scrape_interval_hours, settings.jitter_max_seconds,
    )

    # Run once immediately on startup (no jitter so output shows up fast)
    run_once(settings, rate_limiter, stop_event)
    if stop_event.is_set():
        return 0

    scheduler.add_job(
        run_once_with_jitter,
        trigger=IntervalTrigger(hours=settings.scrape_interval_hours),
        args=[settings, rate_limiter, stop_event],
        id="price_crawl",
        max_instances=1,          # Prevent overlapping runs
        misfire_grace_time=300,   # 5 min grace if a run is missed
    )
    scheduler.start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
