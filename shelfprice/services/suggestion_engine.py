# shelfprice/services/suggestion_engine.py

"""Cheapest-store suggestion for a user's cart."""

import asyncio
import logging
from datetime import datetime

from shelfprice.config.settings import Settings
from shelfprice.models.cart import (
    CartItem,
    ItemPrice,
    NotFound,
    StoreOption,
    Suggestion,
)
from shelfprice.models.catalog import StoreChain
from shelfprice.models.price_record import PriceRecord
from shelfprice.storage.price_db import PriceDB
from shelfprice.utils.parsing import complete_currencies, round_money, utc_now

logger = logging.getLogger("shelfprice.suggestion")

# (unit_price_bgn, unit_price_eur, discount)
UnitPrice = tuple[float, float, int]


def effective_unit_prices(
    prices: list[PriceRecord], rate: float,
) -> dict[tuple[int, int], UnitPrice]:
    """Cheapest valid record per (product_id, chain_id).

    Lowest BGN wins, ties go to the lower EUR price, so a promotion
    overlapping a regular price can only lower the effective price.
    """
    best: dict[tuple[int, int], UnitPrice] = {}
    for record in prices:
        amounts = complete_currencies(record.price_bgn, record.price_eur, rate)
        if amounts is None:
            continue
        key = (record.product_id, record.chain_id)
        candidate = (amounts[0], amounts[1], record.discount)
        current = best.get(key)
        if current is None or candidate[:2] < current[:2]:
            best[key] = candidate
    return best


def _rank_key(option: StoreOption) -> tuple[bool, float, float, float, str]:
    return (
        not option.is_complete,
        -option.coverage,
        option.total_bgn,
        option.total_eur,
        option.chain.name.casefold(),
    )


def rank_store_options(
    items: list[CartItem],
    prices: list[PriceRecord],
    chains: list[StoreChain],
    rate: float | None = None,
    at: datetime | None = None,
) -> list[StoreOption]:
    """Price ``items`` at every chain and rank the resulting options.

    Items without a valid price at any chain are left out of every
    option and of ``total_items``.  Chains that can price nothing are
    omitted.  Order: full coverage, higher coverage, lower BGN total,
    lower EUR total, then chain name.  With ``at`` given, records not
    valid at that moment are ignored.
    """
    rate = Settings.BGN_TO_EUR_RATE if rate is None else rate
    if at is not None:
        prices = [p for p in prices if p.is_valid_at(at)]
    unit_prices = effective_unit_prices(prices, rate)
    priced_products = {product_id for product_id, _ in unit_prices}
    priceable = [i for i in items if i.product.id in priced_products]

    options: list[StoreOption] = []
    for chain in chains:
        option = StoreOption(chain=chain, total_items=len(priceable))
        total_bgn = 0.0
        total_eur = 0.0
        for item in priceable:
            unit = unit_prices.get((item.product.id, chain.id))
            if unit is None:
                continue
            line = ItemPrice(
                product_public_id=item.product.public_id,
                product_name=item.product.name,
                quantity=item.quantity,
                unit_price_bgn=unit[0],
                unit_price_eur=unit[1],
                discount=unit[2],
            )
            option.items.append(line)
            option.covered_items += 1
            total_bgn += line.line_total_bgn
            total_eur += line.line_total_eur
        if option.covered_items == 0:
            continue
        option.total_bgn = round_money(total_bgn)
        option.total_eur = round_money(total_eur)
        options.append(option)

    options.sort(key=_rank_key)
    return options


class SuggestionEngine:
    """Reads the price ledger to find the cheapest chain for a cart."""

    def __init__(
        self, db: PriceDB, bgn_to_eur_rate: float | None = None,
    ) -> None:
        self._db = db
        self.rate = (
            Settings.BGN_TO_EUR_RATE
            if bgn_to_eur_rate is None
            else bgn_to_eur_rate
        )

    async def suggest_cheapest_store(
        self, user_public_id: str, at: datetime | None = None,
    ) -> Suggestion | NotFound:
        """Rank chains for the user's cart by what it costs there now.

        Returns ``NotFound`` when the user has no cart, and a
        ``Suggestion`` without ``best`` when nothing in the cart is priced.
        """
        cart = await asyncio.to_thread(self._db.get_cart_by_user, user_public_id)
        if cart is None:
            logger.info("No cart for user %s", user_public_id)
            return NotFound("cart")

        if not cart.items:
            return Suggestion(cart_public_id=cart.public_id)

        at = at or utc_now()
        product_ids = sorted({item.product.id for item in cart.items})
        prices = await asyncio.to_thread(
            self._db.get_current_prices, product_ids, at,
        )
        chains = await asyncio.to_thread(self._db.list_store_chains)

        options = rank_store_options(
            cart.items, prices, chains, self.rate, at,
        )
        priced = {pid for pid, _ in effective_unit_prices(prices, self.rate)}
        unpriced = sum(1 for i in cart.items if i.product.id not in priced)

        if not options:
            logger.info(
                "Nothing in cart %s is currently priced", cart.public_id,
            )
            return Suggestion(
                cart_public_id=cart.public_id, unpriced_items=unpriced,
            )

        best = options[0]
        logger.info(
            "Cheapest store for cart %s: %s (%.2f BGN, %d/%d items)",
            cart.public_id,
            best.chain.name,
            best.total_bgn,
            best.covered_items,
            best.total_items,
        )
        return Suggestion(
            cart_public_id=cart.public_id,
            best=best,
            alternatives=options[1:],
            unpriced_items=unpriced,
        )
