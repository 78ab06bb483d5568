"""HTML parsing for storefront menus, listings and product pages."""

import logging
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from competitor_prices.models import MenuLink, ProductDetail, ProductStub

logger = logging.getLogger(__name__)

# Body classes the storefront uses for "page does not exist"
NOT_FOUND_BODY_CLASSES = ("error404", "page-template-default")

_WHITESPACE_RE = re.compile(r"\s+")
_INT_RE = re.compile(r"^\d+$")


def _text(el: Tag | None) -> str:
    if el is None:
        return ""
    return _WHITESPACE_RE.sub(" ", el.get_text(" ")).strip()


def _price_text(price_el: Tag | None) -> str:
    """Sale price (``<ins>``) when the storefront shows one, else the whole block."""
    if price_el is None:
        return ""
    sale = price_el.select_one("ins")
    return _text(sale) if sale is not None else _text(price_el)


class PageParser:
    """Reads WooCommerce-style storefront markup."""

    def __init__(self, not_found_classes: tuple[str, ...] = NOT_FOUND_BODY_CLASSES):
        self.not_found_classes = not_found_classes

    @staticmethod
    def _soup(html: str) -> BeautifulSoup:
        return BeautifulSoup(html or "", "lxml")

    def menu_links(self, html: str, base_url: str) -> list[MenuLink]:
        """
        Links inside drop-down menus, tagged with the label of their menu entry.

        A menu entry is an ``<li>`` whose direct ``<a>`` is the label and whose
        nested list holds the links.
        """
        soup = self._soup(html)
        links: list[MenuLink] = []
        seen: set[tuple[str, str]] = set()
        for item in soup.find_all("li"):
            head = item.find("a", recursive=False)
            submenu = item.find(["ul", "div"], recursive=False)
            if head is None or submenu is None:
                continue
            label = _text(head)
            for a in submenu.find_all("a", href=True):
                url = urljoin(base_url, a["href"])
                if (label, url) in seen:
                    continue
                seen.add((label, url))
                links.append(MenuLink(text=_text(a), url=url, menu_label=label))
        return links

    def subcategories(self, html: str, base_url: str) -> list[MenuLink]:
        """Subcategory tiles on a category page (empty when it lists products)."""
        soup = self._soup(html)
        found: list[MenuLink] = []
        for tile in soup.select(".products .product-category"):
            link = tile.find("a", href=True)
            if link is None:
                continue
            title_el = tile.select_one(".woocommerce-loop-category__title")
            if title_el is not None:
                for count in title_el.select(".count"):
                    count.extract()
            name = _text(title_el) or _text(link)
            found.append(MenuLink(text=name, url=urljoin(base_url, link["href"])))
        return found

    def page_count(self, html: str) -> int:
        """Highest page number in the pagination block; 1 if there is none."""
        soup = self._soup(html)
        numbers = [
            int(t) for t in (_text(el) for el in soup.select(".page-numbers"))
            if _INT_RE.match(t)
        ]
        return max(numbers, default=1) or 1

    def is_not_found(self, html: str) -> bool:
        soup = self._soup(html)
        body = soup.find("body")
        if body is None:
            return False
        classes = body.get("class") or []
        return any(c in classes for c in self.not_found_classes)

    def listing_stubs(self, html: str, base_url: str, category: str = "") -> list[ProductStub]:
        """Product stubs on one listing page, in page order."""
        soup = self._soup(html)
        stubs: list[ProductStub] = []
        for item in soup.select(".products li.product"):
            if "product-category" in (item.get("class") or []):
                continue
            name = _text(item.select_one(".woocommerce-loop-product__title"))
            if not name:
                logger.debug("Listing item without a title on %s", base_url)
                continue
            link = item.select_one("a.woocommerce-LoopProduct-link") or item.find("a", href=True)
            url = urljoin(base_url, link["href"]) if link is not None and link.get("href") else None
            sku = _text(item.select_one(".sku"))
            if not sku:
                button = item.select_one("[data-product_sku]")
                sku = button.get("data-product_sku", "").strip() if button is not None else ""
            stubs.append(
                ProductStub(
                    name=name,
                    url=url,
                    raw_price=_price_text(item.select_one(".price")),
                    sku=sku or None,
                    category=category,
                )
            )
        return stubs

    def product_detail(self, html: str) -> ProductDetail:
        soup = self._soup(html)
        name = _text(soup.select_one("h1.product_title") or soup.find("h1"))
        price_el = soup.select_one(".summary .price") or soup.select_one("p.price")
        sku = _text(soup.select_one(".product_meta .sku") or soup.select_one(".sku"))
        return ProductDetail(name=name or None, raw_price=_price_text(price_el), sku=sku or None)
