"""Site traversal: root menu → category → subcategory → paginated listing."""

import logging
from enum import Enum
from typing import Callable, Iterator
from urllib.parse import urljoin

from competitor_prices.config import Settings
from competitor_prices.errors import RunFatalError
from competitor_prices.fetchers.http import Fetcher
from competitor_prices.models import (
    FetchFailure,
    MenuLink,
    PageContent,
    ProductStub,
    canonical_url,
)
from competitor_prices.parser import PageParser

logger = logging.getLogger(__name__)

CategoryPredicate = Callable[[MenuLink], bool]


class PlannerState(str, Enum):
    AT_ROOT = "at_root"
    AT_CATEGORY = "at_category"
    AT_SUBCATEGORY = "at_subcategory"
    AT_LISTING_PAGE = "at_listing_page"
    DONE = "done"


def menu_category_predicate(settings: Settings) -> CategoryPredicate:
    """
    Default category filter: links under the tracked menu entry that point at
    category pages and are not excluded.
    """
    label = settings.category_menu_label.upper()
    marker = settings.category_path_marker
    excluded = settings.category_exclude

    def accept(link: MenuLink) -> bool:
        if label not in link.menu_label.upper():
            return False
        if marker and marker not in link.url:
            return False
        return not any(fragment in link.url for fragment in excluded)

    return accept


def listing_page_url(root_url: str, page: int) -> str:
    """URL of page ``page`` of a listing; page 1 is the root itself."""
    if page <= 1:
        return root_url
    base = root_url.split("?", 1)[0].split("#", 1)[0]
    if not base.endswith("/"):
        base += "/"
    return urljoin(base, f"page/{page}/")


class CrawlPlanner:
    """
    Walks the storefront and lazily yields product stubs.

    A planner is single-use: ``stubs()`` may be called once. ``state`` and
    ``page_number`` show where the walk currently is.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: Fetcher,
        parser: PageParser | None = None,
        category_predicate: CategoryPredicate | None = None,
    ):
        self.settings = settings
        self.fetcher = fetcher
        self.parser = parser or PageParser()
        self.category_predicate = category_predicate or menu_category_predicate(settings)
        self.state = PlannerState.AT_ROOT
        self.page_number = 0
        self.listing_roots = 0
        self.pages_visited = 0
        self._seen_urls: set[str] = set()
        self._consumed = False

    def stubs(self) -> Iterator[ProductStub]:
        if self._consumed:
            raise RuntimeError("crawl plan already consumed; create a new CrawlPlanner")
        self._consumed = True
        return self._walk()

    def discover_categories(self, root: PageContent) -> list[MenuLink]:
        categories: list[MenuLink] = []
        seen: set[str] = set()
        for link in self.parser.menu_links(root.text, root.url):
            if not self.category_predicate(link):
                continue
            key = canonical_url(link.url)
            if key in seen:
                continue
            seen.add(key)
            categories.append(link)
        return categories

    def _walk(self) -> Iterator[ProductStub]:
        try:
            self.state = PlannerState.AT_ROOT
            root = self.fetcher.fetch(self.settings.competitor_url)
            if isinstance(root, FetchFailure):
                raise RunFatalError(f"could not fetch storefront root: {root}")

            categories = self.discover_categories(root)
            if not categories:
                logger.warning(
                    "No categories under menu entry %r on %s",
                    self.settings.category_menu_label, root.url,
                )
            else:
                logger.info("Found %d categories to crawl", len(categories))

            for category in categories:
                yield from self._walk_category(category)
        finally:
            self.state = PlannerState.DONE

    def _walk_category(self, category: MenuLink) -> Iterator[ProductStub]:
        self.state = PlannerState.AT_CATEGORY
        logger.info("Category: %s (%s)", category.text, category.url)
        page = self.fetcher.fetch(category.url)
        if isinstance(page, FetchFailure):
            logger.error("Skipping category %s: %s", category.text, page)
            return

        subcategories = self.parser.subcategories(page.text, page.url)
        if not subcategories:
            yield from self._walk_listing(category.url, category.text, first_page=page)
            return

        logger.info("Category %s has %d subcategories", category.text, len(subcategories))
        for sub in subcategories:
            self.state = PlannerState.AT_SUBCATEGORY
            logger.info("Subcategory: %s (%s)", sub.text, sub.url)
            yield from self._walk_listing(sub.url, sub.text)

    def _walk_listing(
        self, root_url: str, category: str, first_page: PageContent | None = None
    ) -> Iterator[ProductStub]:
        self.listing_roots += 1
        if first_page is None:
            fetched = self.fetcher.fetch(root_url)
            if isinstance(fetched, FetchFailure):
                logger.error("Skipping listing %s: %s", category, fetched)
                return
            first_page = fetched

        total_pages = self.parser.page_count(first_page.text)
        cap = max(1, self.settings.max_products_per_listing)
        yielded = 0
        logger.info("Listing %s: %d page(s)", category, total_pages)

        for number in range(1, total_pages + 1):
            self.state = PlannerState.AT_LISTING_PAGE
            self.page_number = number
            if number == 1:
                page = first_page
            else:
                url = listing_page_url(root_url, number)
                fetched = self.fetcher.fetch(url)
                if isinstance(fetched, FetchFailure):
                    if fetched.not_found:
                        logger.info("Page %d of %s not found, stopping pagination", number, category)
                        break
                    logger.error("Page %d of %s failed, moving on: %s", number, category, fetched)
                    continue
                page = fetched
                if self.parser.is_not_found(page.text):
                    logger.info("Page %d of %s is an error page, stopping pagination", number, category)
                    break

            self.pages_visited += 1
            stubs = self.parser.listing_stubs(page.text, page.url, category)
            if not stubs:
                logger.info("Page %d of %s has no products, stopping pagination", number, category)
                break
            logger.debug("Page %d of %s: %d product(s)", number, category, len(stubs))

            for stub in stubs:
                key = canonical_url(stub.url)
                if key is not None:
                    if key in self._seen_urls:
                        continue
                    self._seen_urls.add(key)
                yield stub
                yielded += 1
                if yielded >= cap:
                    logger.info("Reached %d products in %s, moving on", cap, category)
                    return
