"""Price cleanup and variant extraction strategies."""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, Protocol

from bs4 import BeautifulSoup

from competitor_prices.errors import RunCancelled
from competitor_prices.models import FetchFailure, PageContent, Variant

logger = logging.getLogger(__name__)

STATIC_ROW_SELECTOR = '.variations input[type="number"]'
RENDERED_ROW_SELECTOR = ".product .summary form .quantity"

_CURRENCY_RE = re.compile(r"[$£€¥]")
_FROM_RE = re.compile(r"\bfrom\b", re.IGNORECASE)
_PLAIN_DECIMAL_RE = re.compile(r"^\d+(?:\.\d+)?$")
_THOUSANDS_RE = re.compile(r"(?<=\d),(?=\d{3}\b)")

# "McChrystal's Original 10g Tin": leading words, a weight token, trailing words
_LABEL_RE = re.compile(
    r"([A-Za-z][\w\s'’&.\-]*?\d+(?:\.\d+)?\s*(?:g|gr|grams?)\b[\w\s'’\-]*)", re.IGNORECASE
)
_WEIGHT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:g|gr|grams?)\b", re.IGNORECASE)
_PRICE_RE = re.compile(r"[$£€]\s*(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_price(text: str | None) -> Decimal | None:
    """
    Parse a raw price like ``"$12.34"`` or ``"From $12.34"``.

    Returns ``None`` (absent, not zero) when the text is not a plain decimal
    once currency symbols and "From" are stripped.
    """
    if not text:
        return None
    cleaned = _CURRENCY_RE.sub("", _FROM_RE.sub("", text))
    cleaned = _THOUSANDS_RE.sub("", cleaned).strip()
    if not _PLAIN_DECIMAL_RE.match(cleaned):
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def flatten_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def parse_variant_row(text: str) -> Variant | None:
    """
    Turn one variant row's text into a ``Variant``.

    The row needs a label and a currency-prefixed price; the weight in grams
    is optional. Returns ``None`` when either required part is missing.
    """
    row = flatten_text(text)
    if not row:
        return None

    price_match = _PRICE_RE.search(row)
    if not price_match:
        return None
    price = clean_price(price_match.group(1))
    if price is None:
        return None

    label_match = _LABEL_RE.search(row)
    if label_match:
        label = label_match.group(1).strip()
    else:
        # No weight token: whatever precedes the price is the label
        label = row[: price_match.start()].strip(" -:|")
    if not label or not re.search(r"[A-Za-z0-9]", label):
        return None

    weight = None
    weight_match = _WEIGHT_RE.search(label) or _WEIGHT_RE.search(row)
    if weight_match:
        weight = Decimal(weight_match.group(1))

    return Variant(title=label, price=price, weight_grams=weight)


def variant_rows(html: str, selector: str) -> list[str]:
    """Flattened text of the row enclosing each element matching ``selector``."""
    soup = BeautifulSoup(html, "lxml")
    rows: list[str] = []
    seen: set[int] = set()
    for el in soup.select(selector):
        row = el.find_parent("tr") or el.parent or el
        if id(row) in seen:
            continue
        seen.add(id(row))
        rows.append(flatten_text(row.get_text(" ")))
    return rows


def variants_from_rows(rows: Iterable[str]) -> list[Variant]:
    """Parse rows, dropping rejects and duplicate titles (first one wins)."""
    variants: list[Variant] = []
    titles: set[str] = set()
    for row in rows:
        variant = parse_variant_row(row)
        if variant is None:
            logger.debug("Rejected variant row: %r", row)
            continue
        key = variant.title.casefold()
        if key in titles:
            continue
        titles.add(key)
        variants.append(variant)
    return variants


class ExtractionStrategy(Protocol):
    """One way of pulling variants out of a product page."""

    name: str

    def applies_to(self, url: str) -> bool: ...

    def extract(self, page: PageContent) -> list[Variant]: ...


class StructuralStrategy:
    """Variant rows present in the static HTML."""

    name = "structural"

    def __init__(self, selector: str = STATIC_ROW_SELECTOR):
        self.selector = selector

    def applies_to(self, url: str) -> bool:
        return True

    def extract(self, page: PageContent) -> list[Variant]:
        return variants_from_rows(variant_rows(page.text, self.selector))


class RenderedStrategy:
    """
    Variant rows that only exist after page scripts run.

    Costs a browser page load, so it is limited to URLs the ``predicate``
    accepts (configured with RENDER_URL_PATTERNS).
    """

    name = "rendered"

    def __init__(
        self,
        render: Callable[[str], PageContent | FetchFailure],
        predicate: Callable[[str], bool],
        selector: str = RENDERED_ROW_SELECTOR,
    ):
        self._render = render
        self._predicate = predicate
        self.selector = selector

    def applies_to(self, url: str) -> bool:
        return self._predicate(url)

    def extract(self, page: PageContent) -> list[Variant]:
        rendered = self._render(page.url)
        if isinstance(rendered, FetchFailure):
            logger.warning("Rendered extraction skipped for %s: %s", page.url, rendered)
            return []
        return variants_from_rows(variant_rows(rendered.text, self.selector))


class VariantExtractor:
    """Ordered fallback chain: the first strategy that finds variants wins."""

    def __init__(self, strategies: Iterable[ExtractionStrategy]):
        self.strategies = list(strategies)

    def extract(self, page: PageContent) -> list[Variant]:
        for strategy in self.strategies:
            if not strategy.applies_to(page.url):
                continue
            try:
                variants = strategy.extract(page)
            except RunCancelled:
                raise
            except Exception as e:
                logger.error(
                    "Variant strategy %s failed on %s: %s",
                    strategy.name, page.url, e, exc_info=True,
                )
                continue
            if variants:
                logger.info(
                    "Extracted %d variant(s) from %s via %s",
                    len(variants), page.url, strategy.name,
                )
                return variants
        return []
