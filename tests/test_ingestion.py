# tests/test_ingestion.py

"""Tests for the ingestion cycle, including the full Milk-at-Lidl path."""

import json
import tempfile
import unittest
from datetime import timedelta
from pathlib import Path

from shelfprice.errors import StorageError
from shelfprice.models.cart import Suggestion
from shelfprice.models.catalog import Product
from shelfprice.models.offer import RawOffer, UnifiedProduct
from shelfprice.services.catalog_resolver import CatalogResolver
from shelfprice.services.ingestion import IngestionPipeline
from shelfprice.services.offer_normalizer import OfferNormalizer
from shelfprice.services.price_ledger import PriceLedger
from shelfprice.services.suggestion_engine import SuggestionEngine
from shelfprice.services.unifier import RuleBasedUnifier, Unifier
from shelfprice.storage.price_db import PriceDB
from shelfprice.utils.parsing import utc_now

DAIRY = "Млечни продукти"


class BrokenResolver(CatalogResolver):
    """Fails to resolve products named 'Broken'."""

    async def resolve(self, unified: UnifiedProduct) -> Product:
        if unified.name == "Broken":
            raise StorageError("database is locked")
        return await super().resolve(unified)


class OverflowingUnifier(Unifier):
    """Answers 'Cheese' batches with a 1e999 discount."""

    name = "overflowing"

    async def unify(self, batch, categories, schema) -> str:
        discount = "1e999" if batch[0].name == "Cheese" else "0"
        text = json.dumps([
            {
                "name": o.name,
                "category": DAIRY,
                "unit": "1 kg",
                "chainPrices": [{
                    "chain": "Lidl",
                    "priceBgn": 9.90,
                    "priceEur": 5.06,
                    "validFrom": "2026-03-01",
                    "discount": "DISCOUNT",
                }],
            }
            for o in batch
        ])
        return text.replace('"DISCOUNT"', discount)


class TestIngestionPipeline(unittest.IsolatedAsyncioTestCase):
    """IngestionPipeline.run_cycle behaviour."""

    def setUp(self) -> None:
        """Create a temp DB and a rules-driven pipeline."""
        self.tmp_dir = tempfile.mkdtemp()
        self.db = PriceDB(db_path=Path(self.tmp_dir) / "test.db")
        self.normalizer = OfferNormalizer(self.db, RuleBasedUnifier())
        self.pipeline = IngestionPipeline(
            self.normalizer, CatalogResolver(self.db), PriceLedger(self.db),
        )

    def tearDown(self) -> None:
        """Close the database."""
        self.db.close()

    async def test_milk_at_lidl_end_to_end(self) -> None:
        """One promo offer yields one product with regular and promo records."""
        now = utc_now().replace(microsecond=0)
        offer = RawOffer(
            chain="Lidl",
            name="Milk",
            category=DAIRY,
            unit="1 l",
            price_bgn="2.10",
            old_price_bgn="2.50",
            discount="16",
            valid_from=now.isoformat(),
            valid_to=(now + timedelta(days=7)).isoformat(),
        )

        report = await self.pipeline.run_cycle([offer])

        self.assertEqual(report.unified_count, 1)
        self.assertEqual(report.products_resolved, 1)
        self.assertEqual(report.prices_written, 2)
        self.assertEqual(report.errors, [])
        self.assertEqual(self.db.count_products(), 1)

        category = self.db.get_category_by_name(DAIRY)
        assert category is not None
        product = self.db.get_product("Milk", None, category.id)
        assert product is not None
        history = self.db.get_prices_for_product(product.id)
        regular = [r for r in history if not r.is_promo]
        promo = [r for r in history if r.is_promo]
        self.assertEqual(len(history), 2)
        self.assertEqual(regular[0].price_bgn, 2.50)
        self.assertTrue(regular[0].is_open)
        self.assertEqual(promo[0].price_bgn, 2.10)
        self.assertEqual(promo[0].discount, 16)
        self.assertEqual(promo[0].valid_to, now + timedelta(days=7))

        # A cart holding the milk is cheapest at the promo price
        cart = self.db.create_cart("user-1")
        self.db.add_cart_item(cart.id, product.id)
        result = await SuggestionEngine(self.db).suggest_cheapest_store(
            "user-1", at=now + timedelta(days=1),
        )
        assert isinstance(result, Suggestion) and result.best is not None
        self.assertEqual(result.best.chain.name, "Lidl")
        self.assertEqual(result.best.total_bgn, 2.10)

    async def test_rerun_writes_nothing_new(self) -> None:
        """Running the same cycle twice is idempotent."""
        offers = [
            RawOffer(
                chain="Billa", name="Bread", category=DAIRY,
                price_bgn="1.50", price_eur="0.77",
                valid_from="2026-03-01",
            ),
        ]
        await self.pipeline.run_cycle(offers)
        second = await self.pipeline.run_cycle(offers)
        self.assertEqual(second.prices_written, 0)
        self.assertEqual(self.db.count_prices(), 1)

    async def test_unclassified_offers_counted_as_dropped(self) -> None:
        """Offers outside the vocabulary never reach the catalog."""
        report = await self.pipeline.run_cycle([
            RawOffer(chain="Lidl", name="Milk", category=DAIRY, price_bgn="2"),
            RawOffer(chain="Lidl", name="Drill", category="Tools", price_bgn="50"),
        ])
        self.assertEqual(report.raw_count, 2)
        self.assertEqual(report.unified_count, 1)
        self.assertEqual(report.dropped_count, 1)
        self.assertEqual(self.db.count_products(), 1)

    async def test_resolve_failure_recorded_and_run_continues(self) -> None:
        """A product that cannot be resolved is reported, others proceed."""
        pipeline = IngestionPipeline(
            self.normalizer, BrokenResolver(self.db), PriceLedger(self.db),
            batch_size=1, concurrency=1,
        )
        report = await pipeline.run_cycle([
            RawOffer(chain="Lidl", name="Broken", category=DAIRY, price_bgn="1"),
            RawOffer(chain="Lidl", name="Milk", category=DAIRY, price_bgn="2"),
        ])
        self.assertEqual(report.products_resolved, 1)
        self.assertEqual(len(report.errors), 1)
        self.assertIn("Broken", report.errors[0])

    async def test_duplicate_sightings_at_one_chain_are_stable(self) -> None:
        """Two Lidl offers for one product settle on one regular price."""
        offers = [
            RawOffer(
                chain="Lidl", name="Прясно мляко", category=DAIRY, unit="1 л",
                price_bgn=price, valid_from="2026-03-01",
            )
            for price in ("2.50", "2.70")
        ]
        first = await self.pipeline.run_cycle(offers)
        second = await self.pipeline.run_cycle(offers)

        self.assertEqual(first.prices_written, 1)
        self.assertEqual(second.prices_written, 0)
        self.assertEqual(self.db.count_prices(), 1)

    async def test_non_finite_discount_does_not_abort_cycle(self) -> None:
        """An overflowing oracle value leaves the other batches intact."""
        pipeline = IngestionPipeline(
            OfferNormalizer(self.db, OverflowingUnifier(), batch_size=1),
            CatalogResolver(self.db),
            PriceLedger(self.db),
        )
        report = await pipeline.run_cycle([
            RawOffer(chain="Lidl", name="Cheese", category=DAIRY),
            RawOffer(chain="Lidl", name="Butter", category=DAIRY),
        ])
        self.assertEqual(report.unified_count, 2)
        self.assertEqual(report.products_resolved, 2)
        self.assertEqual(report.errors, [])

    def test_rejects_non_positive_limits(self) -> None:
        """A zero batch size is an error, not the default."""
        with self.assertRaises(ValueError):
            IngestionPipeline(
                self.normalizer, CatalogResolver(self.db),
                PriceLedger(self.db), batch_size=0,
            )

    async def test_empty_cycle(self) -> None:
        """No offers produce an empty report."""
        report = await self.pipeline.run_cycle([])
        self.assertEqual(report.raw_count, 0)
        self.assertEqual(report.prices_written, 0)


if __name__ == "__main__":
    unittest.main()
