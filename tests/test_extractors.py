"""Tests for price cleanup and the variant extraction chain."""

from decimal import Decimal

import pytest

from competitor_prices.cancel import CancelToken
from competitor_prices.errors import RunCancelled, TransientFetchError
from competitor_prices.extractors import (
    RenderedStrategy,
    StructuralStrategy,
    VariantExtractor,
    clean_price,
    parse_variant_row,
    variant_rows,
)
from competitor_prices.fetchers.http import Fetcher, RateLimiter
from competitor_prices.models import FetchFailure, PageContent, Variant

from conftest import FakeRenderer, FakeSession, product_html

PRODUCT_URL = "https://shop.test/product/mcchrystals-olde-english/"


class TestCleanPrice:
    @pytest.mark.parametrize("text", ["$12.34", "From $12.34", "12.34", "  From$12.34 ", "from $12.34"])
    def test_valid_prices(self, text):
        assert clean_price(text) == Decimal("12.34")

    @pytest.mark.parametrize("text", ["N/A", "", None, "$2.79 – $5.00", "NaN", "free", "-1.00"])
    def test_invalid_prices_are_absent(self, text):
        assert clean_price(text) is None

    def test_thousands_separator(self):
        assert clean_price("$1,299.99") == Decimal("1299.99")

    def test_whole_number(self):
        assert clean_price("£7") == Decimal("7")


class TestParseVariantRow:
    def test_label_weight_and_price(self):
        variant = parse_variant_row("McChrystal's 10g $2.79")
        assert variant is not None
        assert "10g" in variant.title
        assert variant.weight_grams == Decimal("10")
        assert variant.price == Decimal("2.79")

    def test_row_without_price_is_rejected(self):
        assert parse_variant_row("McChrystal's 10g") is None

    def test_price_needs_currency_symbol(self):
        # "10" in the weight must not be read as the price
        assert parse_variant_row("McChrystal's 10g 2.79") is None

    def test_trailing_words_stay_in_label(self):
        variant = parse_variant_row("  Wilsons Best   20g Tin   $3.50  - 1 + ")
        assert variant.title == "Wilsons Best 20g Tin"
        assert variant.weight_grams == Decimal("20")
        assert variant.price == Decimal("3.50")

    def test_decimal_weight(self):
        variant = parse_variant_row("Sample 1.5g $0.99")
        assert variant.weight_grams == Decimal("1.5")
        assert variant.price == Decimal("0.99")

    def test_weight_is_optional(self):
        variant = parse_variant_row("Large Tub $12.00")
        assert variant == Variant(title="Large Tub", price=Decimal("12.00"), weight_grams=None)

    def test_empty_row(self):
        assert parse_variant_row("   ") is None


class TestStrategies:
    def test_structural_reads_variation_rows(self):
        html = product_html(
            "McChrystal's Olde English",
            rows=[("McChrystal's 10g", "$2.79"), ("McChrystal's 25g", "$5.49"), ("Out of stock", "")],
        )
        variants = StructuralStrategy().extract(PageContent(url=PRODUCT_URL, text=html))
        assert [v.title for v in variants] == ["McChrystal's 10g", "McChrystal's 25g"]
        assert [v.price for v in variants] == [Decimal("2.79"), Decimal("5.49")]

    def test_structural_drops_duplicate_titles(self):
        html = product_html("X", rows=[("Snuff 10g", "$2.00"), ("snuff  10g", "$2.10")])
        variants = StructuralStrategy().extract(PageContent(url=PRODUCT_URL, text=html))
        assert len(variants) == 1
        assert variants[0].price == Decimal("2.00")

    def test_variant_rows_uses_enclosing_row(self):
        html = product_html("X", rows=[("Snuff 10g", "$2.00")])
        assert variant_rows(html, '.variations input[type="number"]') == ["Snuff 10g $2.00"]


class TestVariantExtractor:
    def _rendered(self, rendered_html, predicate=lambda url: True, calls=None):
        def render(url):
            if calls is not None:
                calls.append(url)
            if rendered_html is None:
                return FetchFailure(url=url, attempts=2, error=TransientFetchError(url, "timeout"))
            return PageContent(url=url, text=rendered_html, rendered=True)

        return RenderedStrategy(render, predicate)

    def test_structural_result_skips_rendering(self):
        calls = []
        static = product_html("X", rows=[("Snuff 10g", "$2.00")])
        extractor = VariantExtractor([StructuralStrategy(), self._rendered("", calls=calls)])
        variants = extractor.extract(PageContent(url=PRODUCT_URL, text=static))
        assert len(variants) == 1
        assert calls == []

    def test_falls_back_to_rendered_rows(self):
        static = product_html("X")
        rendered = product_html("X", rows=[("McChrystal's 10g", "$2.79")])
        extractor = VariantExtractor([StructuralStrategy(), self._rendered(rendered)])
        variants = extractor.extract(PageContent(url=PRODUCT_URL, text=static))
        assert [(v.title, v.price) for v in variants] == [("McChrystal's 10g", Decimal("2.79"))]

    def test_rendering_limited_to_allow_list(self):
        calls = []
        rendered = product_html("X", rows=[("McChrystal's 10g", "$2.79")])
        strategy = self._rendered(rendered, predicate=lambda url: "wilsons" in url, calls=calls)
        extractor = VariantExtractor([StructuralStrategy(), strategy])
        assert extractor.extract(PageContent(url=PRODUCT_URL, text=product_html("X"))) == []
        assert calls == []

    def test_render_failure_yields_nothing(self):
        extractor = VariantExtractor([StructuralStrategy(), self._rendered(None)])
        assert extractor.extract(PageContent(url=PRODUCT_URL, text=product_html("X"))) == []

    def test_broken_strategy_does_not_stop_chain(self):
        class Broken:
            name = "broken"

            def applies_to(self, url):
                return True

            def extract(self, page):
                raise ValueError("bad markup")

        static = product_html("X", rows=[("Snuff 10g", "$2.00")])
        extractor = VariantExtractor([Broken(), StructuralStrategy()])
        assert len(extractor.extract(PageContent(url=PRODUCT_URL, text=static))) == 1


def test_cancellation_during_render_stops_the_chain(settings):
    cancel = CancelToken()
    renderer = FakeRenderer({PRODUCT_URL: product_html("X", rows=[("Snuff 10g", "$2.00")])})
    fetcher = Fetcher(
        settings, RateLimiter(0), cancel=cancel, session=FakeSession(), renderer=renderer, sleep=lambda s: None
    )
    later = []

    class Fallback(StructuralStrategy):
        name = "fallback"

        def extract(self, page):
            later.append(page.url)
            return super().extract(page)

    extractor = VariantExtractor([RenderedStrategy(fetcher.render, lambda url: True), Fallback()])
    cancel.cancel()
    with pytest.raises(RunCancelled):
        extractor.extract(PageContent(url=PRODUCT_URL, text=product_html("X", rows=[("Snuff 10g", "$2.00")])))
    assert renderer.calls == []
    assert later == []
