"""Runtime settings read from the environment."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, default).strip() or default


def _env_int(name: str, default: int) -> int:
    val = os.environ.get(name)
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, val, default)
        return default


def _env_float(name: str, default: float) -> float:
    val = os.environ.get(name)
    if val is None or not val.strip():
        return default
    try:
        return float(val)
    except ValueError:
        logger.warning("%s=%r is not a number, using %s", name, val, default)
        return default


def _env_list(name: str, default: str) -> tuple[str, ...]:
    val = os.environ.get(name, default)
    return tuple(p.strip() for p in val.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    """Crawl configuration. Build with ``Settings.from_env()``."""

    competitor_name: str = "Toque Snuff"
    competitor_url: str = "https://www.toquesnuff.com"
    source_tag: str = "toquesnuff"
    db_path: Path = Path("data/prices.db")

    scrape_interval_hours: int = 24
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 5.0
    rate_limit_delay: float = 1.0
    max_products_per_listing: int = 50
    run_timeout_minutes: float = 0.0
    jitter_max_seconds: int = 0

    alert_threshold: int = 3
    alert_email: str = "admin@example.com"

    category_menu_label: str = "NASAL SNUFF"
    category_path_marker: str = "/product-category/"
    category_exclude: tuple[str, ...] = ("/product-category/toque/",)
    render_url_patterns: tuple[str, ...] = ("mcchrystals", "wilsons")
    user_agent: str = DEFAULT_USER_AGENT

    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    max_log_size: int = 10 * 1024 * 1024
    max_log_files: int = 5

    render_patterns: tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        compiled = []
        for pattern in self.render_url_patterns:
            try:
                compiled.append(re.compile(pattern, re.IGNORECASE))
            except re.error as e:
                logger.warning("Ignoring invalid RENDER_URL_PATTERNS entry %r: %s", pattern, e)
        object.__setattr__(self, "render_patterns", tuple(compiled))

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from environment variables (``.env`` already loaded)."""
        return cls(
            competitor_name=_env_str("COMPETITOR_NAME", cls.competitor_name),
            competitor_url=_env_str("COMPETITOR_URL", cls.competitor_url),
            source_tag=_env_str("SOURCE_TAG", cls.source_tag),
            db_path=Path(_env_str("DB_PATH", str(cls.db_path))),
            scrape_interval_hours=_env_int("SCRAPE_INTERVAL_HOURS", cls.scrape_interval_hours),
            request_timeout=_env_float("REQUEST_TIMEOUT", cls.request_timeout),
            max_retries=max(1, _env_int("MAX_RETRIES", cls.max_retries)),
            retry_delay=_env_float("RETRY_DELAY", cls.retry_delay),
            rate_limit_delay=_env_float("RATE_LIMIT_DELAY", cls.rate_limit_delay),
            max_products_per_listing=max(
                1, _env_int("MAX_PRODUCTS_PER_LISTING", cls.max_products_per_listing)
            ),
            run_timeout_minutes=_env_float("RUN_TIMEOUT_MINUTES", cls.run_timeout_minutes),
            jitter_max_seconds=_env_int("JITTER_MAX_SECONDS", cls.jitter_max_seconds),
            alert_threshold=max(1, _env_int("ALERT_THRESHOLD", cls.alert_threshold)),
            alert_email=_env_str("ALERT_EMAIL", cls.alert_email),
            category_menu_label=_env_str("CATEGORY_MENU_LABEL", cls.category_menu_label),
            category_path_marker=_env_str("CATEGORY_PATH_MARKER", cls.category_path_marker),
            category_exclude=_env_list("CATEGORY_EXCLUDE", ",".join(cls.category_exclude)),
            render_url_patterns=_env_list(
                "RENDER_URL_PATTERNS", ",".join(cls.render_url_patterns)
            ),
            user_agent=_env_str("USER_AGENT", cls.user_agent),
            log_level=_env_str("LOG_LEVEL", cls.log_level).upper(),
            log_dir=Path(_env_str("LOG_DIR", str(cls.log_dir))),
            max_log_size=_env_int("MAX_LOG_SIZE", cls.max_log_size),
            max_log_files=_env_int("MAX_LOG_FILES", cls.max_log_files),
        )

    def needs_rendering(self, url: str) -> bool:
        """True if variant rows on ``url`` only appear after scripts run."""
        return any(p.search(url) for p in self.render_patterns)
