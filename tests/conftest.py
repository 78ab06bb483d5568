"""
Shared fixtures: a fake storefront behind a fake requests session, settings
with zero delays, a temporary SQLite store and a recording alert sink.
"""

import html as html_lib

import pytest

from competitor_prices.config import Settings
from competitor_prices.errors import TransientFetchError
from competitor_prices.models import PageContent
from competitor_prices.storage import PriceStore

SHOP = "https://shop.test"


# ── HTML builders ──────────────────────────────────────────────────────────


def home_html(menu: dict[str, list[tuple[str, str]]]) -> str:
    """``menu`` maps a top-level entry label to its (text, href) links."""
    entries = []
    for label, links in menu.items():
        items = "".join(f'<li class="menu-item"><a href="{href}">{text}</a></li>' for text, href in links)
        entries.append(
            f'<li class="menu-item menu-item-has-children"><a href="#">{label}</a>'
            f'<ul class="sub-menu">{items}</ul></li>'
        )
    return f'<html><body class="home"><nav><ul class="menu">{"".join(entries)}</ul></nav></body></html>'


def category_html(subcategories: list[tuple[str, str]]) -> str:
    tiles = "".join(
        f'<li class="product-category product"><a href="{href}">'
        f'<h2 class="woocommerce-loop-category__title">{name} <mark class="count">(3)</mark></h2>'
        f"</a></li>"
        for name, href in subcategories
    )
    return f'<html><body class="archive"><ul class="products columns-4">{tiles}</ul></body></html>'


def listing_html(products: list[dict], total_pages: int = 1, body_class: str = "archive") -> str:
    items = []
    for p in products:
        sku = p.get("sku", "")
        items.append(
            f'<li class="product type-product">'
            f'<a href="{p["url"]}" class="woocommerce-LoopProduct-link woocommerce-loop-product__link">'
            f'<h2 class="woocommerce-loop-product__title">{html_lib.escape(p["name"])}</h2>'
            f'<span class="price">{p.get("price", "")}</span></a>'
            f'<a href="?add-to-cart=1" data-product_sku="{sku}" class="button add_to_cart_button">Add</a>'
            f"</li>"
        )
    pagination = ""
    if total_pages > 1:
        numbers = '<li><span aria-current="page" class="page-numbers current">1</span></li>'
        numbers += "".join(
            f'<li><a class="page-numbers" href="page/{n}/">{n}</a></li>' for n in range(2, total_pages + 1)
        )
        numbers += '<li><a class="next page-numbers" href="page/2/">→</a></li>'
        pagination = f'<nav class="woocommerce-pagination"><ul class="page-numbers">{numbers}</ul></nav>'
    return (
        f'<html><body class="{body_class}"><ul class="products columns-4">{"".join(items)}</ul>'
        f"{pagination}</body></html>"
    )


def product_html(name: str, price: str = "", rows: list[tuple[str, str]] = (), sku: str = "") -> str:
    """Product page; ``rows`` are (label, price) variant rows with quantity inputs."""
    row_html = "".join(
        f'<tr><td class="label">{html_lib.escape(label)}</td>'
        f'<td><span class="amount">{row_price}</span></td>'
        f'<td><div class="quantity"><input type="number" class="qty" value="0"></div></td></tr>'
        for label, row_price in rows
    )
    table = f'<table class="variations"><tbody>{row_html}</tbody></table>' if rows else ""
    return (
        f'<html><body class="product-template-default single-product"><div class="product">'
        f'<div class="summary"><h1 class="product_title">{html_lib.escape(name)}</h1>'
        f'<p class="price">{price}</p><form class="variations_form cart">{table}</form>'
        f'<div class="product_meta"><span class="sku">{sku}</span></div></div></div></body></html>'
    )


def not_found_html() -> str:
    return '<html><body class="error404"><h1>Page not found</h1></body></html>'


# ── Fake HTTP ──────────────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, url: str, status_code: int = 200, text: str = ""):
        self.url = url
        self.status_code = status_code
        self.text = text


class FakeSession:
    """
    Serves ``pages`` (url → html, (status, html), an exception, or a list of
    those consumed one per request). Unknown URLs are 404s.
    """

    def __init__(self, pages: dict | None = None):
        self.pages = dict(pages or {})
        self.calls: list[str] = []
        self.closed = False

    def get(self, url, headers=None, timeout=None):
        self.calls.append(url)
        entry = self.pages.get(url)
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if entry is None:
            return FakeResponse(url, 404, not_found_html())
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, tuple):
            status, text = entry
            return FakeResponse(url, status, text)
        return FakeResponse(url, 200, entry)

    def close(self):
        self.closed = True


class FakeRenderer:
    """Stands in for the headless browser: serves pre-rendered HTML."""

    def __init__(self, pages: dict | None = None):
        self.pages = dict(pages or {})
        self.calls: list[str] = []

    def render(self, url, timeout):
        self.calls.append(url)
        if url not in self.pages:
            raise TransientFetchError(url, "no rendered page")
        return PageContent(url=url, text=self.pages[url], rendered=True)

    def close(self):
        pass


class RecordingAlert:
    def __init__(self, delivered: bool = True):
        self.messages: list[str] = []
        self.delivered = delivered

    def __call__(self, message: str) -> bool:
        self.messages.append(message)
        return self.delivered


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture
def settings(tmp_path):
    return Settings(
        competitor_name="Test Shop",
        competitor_url=SHOP,
        source_tag="testshop",
        db_path=tmp_path / "prices.db",
        max_retries=2,
        retry_delay=0,
        rate_limit_delay=0,
        render_url_patterns=(),
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def store(settings):
    with PriceStore(settings.db_path, retry_attempts=2, retry_delay=0, sleep=lambda s: None) as s:
        s.init_db()
        yield s


@pytest.fixture
def alerts():
    return RecordingAlert()


@pytest.fixture
def no_sleep():
    return lambda seconds: None
