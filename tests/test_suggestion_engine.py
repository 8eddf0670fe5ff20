# tests/test_suggestion_engine.py

"""Tests for cheapest-store ranking and the suggestion engine."""

import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from shelfprice.models.cart import CartItem, NotFound, Suggestion
from shelfprice.models.catalog import Product, StoreChain
from shelfprice.models.price_record import PriceRecord
from shelfprice.services.suggestion_engine import (
    SuggestionEngine,
    rank_store_options,
)
from shelfprice.storage.price_db import PriceDB

RATE = 1.95583
T0 = datetime(2026, 3, 1)

LIDL = StoreChain(id=1, public_id="l", name="Lidl", base_url="")
BILLA = StoreChain(id=2, public_id="b", name="Billa", base_url="")
KAUFLAND = StoreChain(id=3, public_id="k", name="Kaufland", base_url="")
CHAINS = [BILLA, KAUFLAND, LIDL]

MILK = Product(id=1, public_id="p1", name="Milk", category_id=1)
BREAD = Product(id=2, public_id="p2", name="Bread", category_id=1)
CAVIAR = Product(id=3, public_id="p3", name="Caviar", category_id=1)


def _item(product: Product, quantity: int = 1) -> CartItem:
    return CartItem(id=product.id, public_id=f"i{product.id}", product=product, quantity=quantity)


def _price(
    product: Product,
    chain: StoreChain,
    bgn: float,
    eur: float,
    discount: int = 0,
) -> PriceRecord:
    return PriceRecord(
        id=0, product_id=product.id, chain_id=chain.id,
        price_bgn=bgn, price_eur=eur, valid_from=T0, discount=discount,
    )


class TestRankStoreOptions(unittest.TestCase):
    """rank_store_options() policy."""

    def test_promo_lowers_effective_price(self) -> None:
        """The cheaper of regular and promo record is used."""
        options = rank_store_options(
            [_item(MILK)],
            [_price(MILK, LIDL, 2.50, 1.28), _price(MILK, LIDL, 2.10, 1.07, 16)],
            [LIDL],
            RATE,
        )
        self.assertEqual(options[0].total_bgn, 2.10)
        self.assertEqual(options[0].items[0].discount, 16)

    def test_full_coverage_beats_cheaper_partial(self) -> None:
        """A chain with every item wins over a cheaper incomplete one."""
        options = rank_store_options(
            [_item(MILK), _item(BREAD)],
            [
                _price(MILK, LIDL, 2.50, 1.28),
                _price(BREAD, LIDL, 1.50, 0.77),
                _price(MILK, BILLA, 1.00, 0.51),
            ],
            CHAINS,
            RATE,
        )
        self.assertEqual([o.chain.name for o in options], ["Lidl", "Billa"])
        self.assertTrue(options[0].is_complete)
        self.assertEqual(options[0].total_bgn, 4.00)
        self.assertEqual(options[1].coverage, 0.5)

    def test_highest_coverage_then_cost(self) -> None:
        """Without full coverage, coverage ranks before cost."""
        options = rank_store_options(
            [_item(MILK), _item(BREAD), _item(CAVIAR)],
            [
                _price(MILK, LIDL, 2.50, 1.28),
                _price(BREAD, LIDL, 1.50, 0.77),
                _price(MILK, BILLA, 1.00, 0.51),
                _price(CAVIAR, KAUFLAND, 30.0, 15.34),
                _price(BREAD, KAUFLAND, 1.40, 0.72),
            ],
            CHAINS,
            RATE,
        )
        self.assertEqual(
            [o.chain.name for o in options], ["Lidl", "Kaufland", "Billa"],
        )
        self.assertFalse(options[0].is_complete)

    def test_unpriced_items_excluded(self) -> None:
        """Items priced nowhere do not count against coverage."""
        options = rank_store_options(
            [_item(MILK), _item(CAVIAR)],
            [_price(MILK, LIDL, 2.50, 1.28)],
            CHAINS,
            RATE,
        )
        self.assertEqual(len(options), 1)
        self.assertEqual(options[0].total_items, 1)
        self.assertTrue(options[0].is_complete)

    def test_quantity_multiplies(self) -> None:
        """Line totals scale with quantity."""
        options = rank_store_options(
            [_item(MILK, quantity=3)],
            [_price(MILK, LIDL, 2.10, 1.07)],
            [LIDL],
            RATE,
        )
        self.assertEqual(options[0].total_bgn, 6.30)
        self.assertEqual(options[0].total_eur, 3.21)

    def test_ties_broken_by_eur_then_name(self) -> None:
        """Equal BGN totals fall back to EUR and then chain name."""
        options = rank_store_options(
            [_item(MILK)],
            [
                _price(MILK, LIDL, 2.00, 1.02),
                _price(MILK, KAUFLAND, 2.00, 1.02),
                _price(MILK, BILLA, 2.00, 1.03),
            ],
            CHAINS,
            RATE,
        )
        self.assertEqual(
            [o.chain.name for o in options], ["Kaufland", "Lidl", "Billa"],
        )

    def test_missing_currency_derived(self) -> None:
        """A BGN-only record still totals in EUR."""
        options = rank_store_options(
            [_item(MILK)], [_price(MILK, LIDL, RATE, 0.0)], [LIDL], RATE,
        )
        self.assertEqual(options[0].total_eur, 1.0)

    def test_nothing_priced(self) -> None:
        """No valid prices means no options."""
        self.assertEqual(rank_store_options([_item(MILK)], [], CHAINS, RATE), [])

    def test_records_outside_window_ignored(self) -> None:
        """An expired promo no longer lowers the price at ``at``."""
        expired = PriceRecord(
            id=0, product_id=MILK.id, chain_id=LIDL.id,
            price_bgn=1.00, price_eur=0.51, valid_from=T0,
            valid_to=datetime(2026, 3, 5), discount=60,
        )
        options = rank_store_options(
            [_item(MILK)],
            [_price(MILK, LIDL, 2.50, 1.28), expired],
            [LIDL],
            RATE,
            at=datetime(2026, 3, 10),
        )
        self.assertEqual(options[0].total_bgn, 2.50)
        self.assertEqual(options[0].items[0].discount, 0)


class TestSuggestionEngine(unittest.IsolatedAsyncioTestCase):
    """SuggestionEngine against a real database."""

    def setUp(self) -> None:
        """Create a temp DB with two products and a cart."""
        self.tmp_dir = tempfile.mkdtemp()
        self.db = PriceDB(db_path=Path(self.tmp_dir) / "test.db")
        category = self.db.create_category("Dairy")
        self.milk = self.db.create_product("Milk", None, category.id)
        self.bread = self.db.create_product("Bread", None, category.id)
        lidl = self.db.get_store_chain("Lidl")
        billa = self.db.get_store_chain("Billa")
        assert lidl is not None and billa is not None
        self.lidl, self.billa = lidl, billa
        self.engine = SuggestionEngine(self.db, RATE)

    def tearDown(self) -> None:
        """Close the database."""
        self.db.close()

    async def test_missing_cart_is_not_found(self) -> None:
        """An unknown user gets NotFound, not an error."""
        result = await self.engine.suggest_cheapest_store("ghost")
        self.assertIsInstance(result, NotFound)
        assert isinstance(result, NotFound)
        self.assertEqual(result.reason, "cart")

    async def test_empty_cart_has_no_best(self) -> None:
        """An empty cart is a Suggestion without a best option."""
        cart = self.db.create_cart("user-1")
        result = await self.engine.suggest_cheapest_store("user-1")
        self.assertIsInstance(result, Suggestion)
        assert isinstance(result, Suggestion)
        self.assertEqual(result.cart_public_id, cart.public_id)
        self.assertIsNone(result.best)

    async def test_picks_cheapest_complete_store(self) -> None:
        """Both items at Lidl beat one cheap item at Billa."""
        cart = self.db.create_cart("user-1")
        self.db.add_cart_item(cart.id, self.milk.id, 2)
        self.db.add_cart_item(cart.id, self.bread.id)
        self.db.insert_price(self.milk.id, self.lidl.id, 2.50, 1.28, T0)
        self.db.insert_price(self.bread.id, self.lidl.id, 1.50, 0.77, T0)
        self.db.insert_price(self.milk.id, self.billa.id, 1.00, 0.51, T0)

        result = await self.engine.suggest_cheapest_store(
            "user-1", at=datetime(2026, 3, 5),
        )
        assert isinstance(result, Suggestion) and result.best is not None
        self.assertEqual(result.best.chain.name, "Lidl")
        self.assertEqual(result.best.total_bgn, 6.50)
        self.assertEqual([o.chain.name for o in result.alternatives], ["Billa"])
        self.assertEqual(result.unpriced_items, 0)

    async def test_expired_promo_ignored(self) -> None:
        """A promotion past its end date no longer lowers the price."""
        cart = self.db.create_cart("user-1")
        self.db.add_cart_item(cart.id, self.milk.id)
        self.db.insert_price(self.milk.id, self.lidl.id, 2.50, 1.28, T0)
        self.db.insert_price(
            self.milk.id, self.lidl.id, 2.10, 1.07,
            T0, datetime(2026, 3, 8), 16,
        )

        during = await self.engine.suggest_cheapest_store(
            "user-1", at=datetime(2026, 3, 8),
        )
        after = await self.engine.suggest_cheapest_store(
            "user-1", at=datetime(2026, 3, 9),
        )
        assert isinstance(during, Suggestion) and during.best is not None
        assert isinstance(after, Suggestion) and after.best is not None
        self.assertEqual(during.best.total_bgn, 2.10)
        self.assertEqual(after.best.total_bgn, 2.50)

    async def test_unpriced_cart_reports_items(self) -> None:
        """A cart whose items have no prices has no best option."""
        cart = self.db.create_cart("user-1")
        self.db.add_cart_item(cart.id, self.milk.id)
        result = await self.engine.suggest_cheapest_store("user-1")
        assert isinstance(result, Suggestion)
        self.assertIsNone(result.best)
        self.assertEqual(result.unpriced_items, 1)


if __name__ == "__main__":
    unittest.main()
