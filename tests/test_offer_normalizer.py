# tests/test_offer_normalizer.py

"""Tests for batch normalization through a Unifier."""

import json
import tempfile
import unittest
from pathlib import Path
from typing import Any

from shelfprice.errors import OracleError
from shelfprice.models.catalog import Category
from shelfprice.models.offer import RawOffer
from shelfprice.services.offer_normalizer import (
    OfferNormalizer,
    canonicalize_discounts,
    parse_unified_products,
)
from shelfprice.services.unifier import Unifier
from shelfprice.storage.price_db import PriceDB


def _unified(name: str, category: str = "Млечни продукти", discount: int = 0) -> dict[str, Any]:
    """One oracle answer entry."""
    return {
        "name": name,
        "category": category,
        "unit": "1 l",
        "chainPrices": [
            {
                "chain": "Lidl",
                "priceBgn": 2.10,
                "priceEur": 1.07,
                "validFrom": "2026-03-01",
                "validTo": "2026-03-08",
                "discount": discount,
            },
        ],
    }


class EchoUnifier(Unifier):
    """Answers every offer with one product named after it."""

    name = "echo"

    def __init__(self) -> None:
        self.calls: list[int] = []
        self.seen_categories: list[str] = []

    async def unify(self, batch, categories, schema) -> str:
        self.calls.append(len(batch))
        self.seen_categories = [c.name for c in categories]
        return json.dumps([_unified(o.name, o.category, -15) for o in batch])


class FailingUnifier(Unifier):
    """Fails on the batch whose first offer is named 'bad'."""

    name = "failing"

    async def unify(self, batch, categories, schema) -> str:
        if batch[0].name == "bad":
            raise OracleError("quota exceeded")
        return json.dumps([_unified(o.name) for o in batch])


class GarbageUnifier(Unifier):
    """Answers with text that is not a product array."""

    name = "garbage"

    def __init__(self, text: str) -> None:
        self.text = text

    async def unify(self, batch, categories, schema) -> str:
        return self.text


class InfiniteDiscountUnifier(Unifier):
    """Answers the batch holding 'huge' with an overflowing discount."""

    name = "infinite"

    async def unify(self, batch, categories, schema) -> str:
        text = json.dumps([_unified(o.name) for o in batch])
        if batch[0].name == "huge":
            return text.replace('"discount": 0', '"discount": 1e999')
        return text


def _offers(*names: str, category: str = "Млечни продукти") -> list[RawOffer]:
    return [RawOffer(chain="Lidl", name=n, category=category) for n in names]


class TestHelpers(unittest.TestCase):
    """Parsing and discount canonicalization helpers."""

    def test_parse_rejects_non_array(self) -> None:
        """A JSON object is not a product list."""
        with self.assertRaises(TypeError):
            parse_unified_products('{"name": "Milk"}')

    def test_parse_rejects_invalid_json(self) -> None:
        """Malformed JSON raises ValueError."""
        with self.assertRaises(ValueError):
            parse_unified_products("[{")

    def test_discounts_made_absolute(self) -> None:
        """Negative discounts become their magnitude."""
        products = parse_unified_products(json.dumps([_unified("Milk", discount=-15)]))
        canonicalize_discounts(products)
        self.assertEqual(products[0].chain_prices[0].discount, 15)


class TestOfferNormalizer(unittest.IsolatedAsyncioTestCase):
    """OfferNormalizer.unify_and_filter behaviour."""

    def setUp(self) -> None:
        """Create a temp DB with the seeded vocabulary."""
        self.tmp_dir = tempfile.mkdtemp()
        self.db = PriceDB(db_path=Path(self.tmp_dir) / "test.db")

    def tearDown(self) -> None:
        """Close the database."""
        self.db.close()

    async def test_batches_of_twenty(self) -> None:
        """45 offers go to the oracle as 20, 20 and 5."""
        unifier = EchoUnifier()
        normalizer = OfferNormalizer(self.db, unifier)
        products = await normalizer.unify_and_filter(
            _offers(*(f"item {i}" for i in range(45)))
        )
        self.assertEqual(sorted(unifier.calls), [5, 20, 20])
        self.assertEqual(len(products), 45)

    async def test_vocabulary_passed_to_oracle(self) -> None:
        """The oracle sees the stored category names."""
        unifier = EchoUnifier()
        await OfferNormalizer(self.db, unifier).unify_and_filter(_offers("Milk"))
        expected = [c.name for c in self.db.list_categories()]
        self.assertEqual(unifier.seen_categories, expected)

    async def test_discounts_canonicalized(self) -> None:
        """Signed oracle discounts come out non-negative."""
        products = await OfferNormalizer(self.db, EchoUnifier()).unify_and_filter(
            _offers("Milk")
        )
        self.assertEqual(products[0].chain_prices[0].discount, 15)

    async def test_other_category_filtered(self) -> None:
        """Catch-all products never leave the normalizer."""
        normalizer = OfferNormalizer(self.db, EchoUnifier())
        offers = _offers("Milk") + _offers("Thing", category="Друго")
        products = await normalizer.unify_and_filter(offers)
        self.assertEqual([p.name for p in products], ["Milk"])
        self.assertEqual(normalizer.stats.unclassified_count, 1)

    async def test_failed_batch_contributes_nothing(self) -> None:
        """An oracle error drops only its own batch."""
        normalizer = OfferNormalizer(self.db, FailingUnifier(), batch_size=2)
        products = await normalizer.unify_and_filter(
            _offers("good 1", "good 2", "bad", "good 3")
        )
        self.assertEqual([p.name for p in products], ["good 1", "good 2"])
        self.assertEqual(normalizer.stats.failed_batches, 1)

    async def test_unparseable_answer_is_not_fatal(self) -> None:
        """Malformed or wrongly shaped answers yield no products."""
        for text in ("not json", '{"a": 1}', '[{"name": "x"}]'):
            normalizer = OfferNormalizer(self.db, GarbageUnifier(text))
            self.assertEqual(await normalizer.unify_and_filter(_offers("Milk")), [])
            self.assertEqual(normalizer.stats.failed_batches, 1)

    async def test_non_finite_discount_is_not_fatal(self) -> None:
        """A 1e999 discount decodes to inf and is treated as absent."""
        normalizer = OfferNormalizer(
            self.db, InfiniteDiscountUnifier(), batch_size=1,
        )
        products = await normalizer.unify_and_filter(_offers("huge", "Milk"))
        self.assertEqual([p.name for p in products], ["huge", "Milk"])
        self.assertEqual(products[0].chain_prices[0].discount, 0)
        self.assertEqual(normalizer.stats.failed_batches, 0)

    async def test_out_of_range_discount_fails_batch(self) -> None:
        """A discount above 100 percent is a malformed answer."""
        text = json.dumps([_unified("Milk", discount=150)])
        normalizer = OfferNormalizer(self.db, GarbageUnifier(text))
        self.assertEqual(await normalizer.unify_and_filter(_offers("Milk")), [])
        self.assertEqual(normalizer.stats.failed_batches, 1)

    def test_rejects_non_positive_limits(self) -> None:
        """Zero batch size or concurrency is an error, not the default."""
        with self.assertRaises(ValueError):
            OfferNormalizer(self.db, EchoUnifier(), batch_size=0)
        with self.assertRaises(ValueError):
            OfferNormalizer(self.db, EchoUnifier(), concurrency=0)
        with self.assertRaises(ValueError):
            OfferNormalizer(self.db, EchoUnifier(), batch_delay=-1)

    async def test_empty_input(self) -> None:
        """No offers means no oracle call."""
        unifier = EchoUnifier()
        self.assertEqual(
            await OfferNormalizer(self.db, unifier).unify_and_filter([]), [],
        )
        self.assertEqual(unifier.calls, [])


if __name__ == "__main__":
    unittest.main()
