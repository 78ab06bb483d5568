"""Data models for crawling and price tracking."""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import NamedTuple
from urllib.parse import urlsplit, urlunsplit

from competitor_prices.errors import FetchError, NotFoundError

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_key(text: str) -> str:
    """Case- and whitespace-normalized identity key."""
    return _WHITESPACE_RE.sub(" ", text or "").strip().casefold()


def canonical_url(url: str | None) -> str | None:
    """
    Normalize a product URL for identity comparison.

    Lower-cases scheme and host, drops query string and fragment, and strips
    the trailing slash so ``/product/x`` and ``/product/x/`` match.
    """
    if not url or not url.strip():
        return None
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/") or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


class ScrapeStatus(str, Enum):
    """Competitor crawl status."""

    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class PageContent:
    """Raw page returned by a fetcher."""

    url: str
    text: str
    status_code: int = 200
    rendered: bool = False


@dataclass
class FetchFailure:
    """Typed fetch failure: callers branch on it instead of catching."""

    url: str
    attempts: int
    error: FetchError

    @property
    def not_found(self) -> bool:
        return isinstance(self.error, NotFoundError)

    def __str__(self) -> str:
        return f"{self.url} failed after {self.attempts} attempt(s): {self.error}"


@dataclass(frozen=True)
class MenuLink:
    """A link found in the storefront's navigation menu."""

    text: str
    url: str
    menu_label: str = ""


@dataclass
class ProductStub:
    """Product reference discovered on a listing page."""

    name: str
    url: str | None
    raw_price: str = ""
    sku: str | None = None
    category: str = ""


@dataclass
class Variant:
    """A purchasable sub-unit of a product, e.g. one package size."""

    title: str
    price: Decimal
    weight_grams: Decimal | None = None


@dataclass
class ProductDetail:
    """Fields read from a product detail page."""

    name: str | None = None
    raw_price: str = ""
    sku: str | None = None


@dataclass
class ProductRecord:
    """Everything persisted for one product in one transaction."""

    stub: ProductStub
    price: Decimal | None = None
    variants: list[Variant] = field(default_factory=list)


class TargetKind(str, Enum):
    """What a price observation is about."""

    PRODUCT = "product"
    VARIANT = "variant"


class PriceTarget(NamedTuple):
    kind: TargetKind
    id: int

    @classmethod
    def product(cls, product_id: int) -> "PriceTarget":
        return cls(TargetKind.PRODUCT, product_id)

    @classmethod
    def variant(cls, variant_id: int) -> "PriceTarget":
        return cls(TargetKind.VARIANT, variant_id)
