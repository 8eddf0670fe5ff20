# shelfprice/services/price_ledger.py

"""Temporal price versioning for scraped chain prices.

Regular prices form one open-ended timeline per (product, chain): a new
amount closes the open record at the new fact's ``valid_from`` and opens
a fresh one.  Promotions are append-only, bounded records; a promotion
already on file (same prices, end date and discount) is not inserted
again, so re-running a scrape is a no-op.
"""

import asyncio
import logging
from datetime import datetime

from shelfprice.config.settings import Settings
from shelfprice.errors import StorageError
from shelfprice.models.catalog import Product, StoreChain
from shelfprice.models.offer import ChainPrice
from shelfprice.models.price_record import PriceRecord
from shelfprice.storage.price_db import PriceDB
from shelfprice.utils.parsing import round_money

logger = logging.getLogger("shelfprice.ledger")


def derive_discount(old_price: float | None, price: float) -> int:
    """Percent off ``old_price``; 0 when there is no real reduction."""
    if not old_price or price <= 0 or price >= old_price:
        return 0
    return max(1, round((old_price - price) / old_price * 100))


def same_amount(record: PriceRecord, price_bgn: float, price_eur: float) -> bool:
    """Compare a stored record with a new amount at cent precision."""
    return (
        round_money(record.price_bgn) == round_money(price_bgn)
        and round_money(record.price_eur) == round_money(price_eur)
    )


def _preference(fact: ChainPrice) -> tuple[bool, float, float]:
    return (not fact.has_old_price, fact.price_bgn, fact.price_eur)


def one_fact_per_chain(chain_prices: list[ChainPrice]) -> list[ChainPrice]:
    """Keep a single fact per chain, in first-seen chain order.

    A fact carrying an old price wins, then the lowest current price.
    """
    chosen: dict[str, ChainPrice] = {}
    for fact in chain_prices:
        key = fact.chain.strip().casefold()
        kept = chosen.get(key)
        if kept is None:
            chosen[key] = fact
            continue
        if _preference(fact) < _preference(kept):
            chosen[key] = fact
            fact, kept = kept, fact
        logger.warning(
            "Duplicate %s fact (%.2f BGN) ignored in favour of %.2f BGN",
            fact.chain,
            fact.price_bgn,
            kept.price_bgn,
        )
    return list(chosen.values())


class PriceLedger:
    """Sole writer of price records."""

    def __init__(
        self, db: PriceDB, bgn_to_eur_rate: float | None = None,
    ) -> None:
        self._db = db
        self.rate = (
            Settings.BGN_TO_EUR_RATE
            if bgn_to_eur_rate is None
            else bgn_to_eur_rate
        )
        if self.rate <= 0:
            raise ValueError(
                f"bgn_to_eur_rate must be positive, got {self.rate}"
            )
        self._locks: dict[tuple[int, int], asyncio.Lock] = {}

    def _lock_for(self, product_id: int, chain_id: int) -> asyncio.Lock:
        """Serializes read-then-write decisions for one (product, chain)."""
        key = (product_id, chain_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _update_regular(
        self,
        product: Product,
        chain: StoreChain,
        price_bgn: float,
        price_eur: float,
        valid_from: datetime,
    ) -> int:
        """Move the regular-price timeline to a new amount if it changed."""
        try:
            current = await asyncio.to_thread(
                self._db.get_open_regular_price, product.id, chain.id,
            )
            if current is None:
                await asyncio.to_thread(
                    self._db.insert_price,
                    product.id,
                    chain.id,
                    price_bgn,
                    price_eur,
                    valid_from,
                    None,
                    0,
                )
                logger.debug(
                    "Opened regular price %.2f BGN for '%s' at %s",
                    price_bgn,
                    product.name,
                    chain.name,
                )
                return 1

            if same_amount(current, price_bgn, price_eur):
                return 0

            await asyncio.to_thread(
                self._db.replace_open_regular,
                current,
                valid_from,
                price_bgn,
                price_eur,
            )
            logger.info(
                "Regular price of '%s' at %s changed from %.2f to %.2f BGN",
                product.name,
                chain.name,
                current.price_bgn,
                price_bgn,
            )
            return 1
        except StorageError as exc:
            logger.error(
                "Failed to update regular price of '%s' at %s: %s",
                product.name,
                chain.name,
                exc,
                exc_info=True,
            )
            return 0

    async def _upsert_promo(
        self,
        product: Product,
        chain: StoreChain,
        fact: ChainPrice,
        discount: int,
    ) -> int:
        """Insert a promotional record unless the identical one exists."""
        try:
            existing = await asyncio.to_thread(
                self._db.find_promo_price,
                product.id,
                chain.id,
                fact.price_bgn,
                fact.price_eur,
                fact.valid_to,
                discount,
            )
            if existing is not None:
                return 0
            await asyncio.to_thread(
                self._db.insert_price,
                product.id,
                chain.id,
                fact.price_bgn,
                fact.price_eur,
                fact.valid_from,
                fact.valid_to,
                discount,
            )
            logger.debug(
                "Recorded promo %.2f BGN (-%d%%) for '%s' at %s",
                fact.price_bgn,
                discount,
                product.name,
                chain.name,
            )
            return 1
        except StorageError as exc:
            logger.error(
                "Failed to record promo price of '%s' at %s: %s",
                product.name,
                chain.name,
                exc,
                exc_info=True,
            )
            return 0

    async def _apply(
        self, product: Product, chain: StoreChain, fact: ChainPrice,
    ) -> int:
        # Old price present: it is the regular price, the current one a promo
        if fact.has_old_price:
            written = await self._update_regular(
                product,
                chain,
                fact.old_price_bgn or 0.0,
                fact.old_price_eur or 0.0,
                fact.valid_from,
            )
            discount = fact.discount or derive_discount(
                fact.old_price_bgn, fact.price_bgn,
            )
            if discount > 0 and fact.has_current_price:
                written += await self._upsert_promo(
                    product, chain, fact, discount,
                )
            return written

        if not fact.has_current_price:
            logger.debug(
                "Skipping %s fact for '%s' without prices",
                chain.name,
                product.name,
            )
            return 0

        if fact.discount > 0:
            return await self._upsert_promo(
                product, chain, fact, fact.discount,
            )
        return await self._update_regular(
            product,
            chain,
            fact.price_bgn,
            fact.price_eur,
            fact.valid_from,
        )

    async def ingest(
        self, product: Product, chain_prices: list[ChainPrice],
    ) -> int:
        """Record every chain's price fact for ``product``.

        A missing currency is derived before the fact is classified, and
        only one fact per chain is recorded.  Unknown chains are skipped
        and a failed write only loses that write.  Returns the number of
        records inserted.
        """
        facts = one_fact_per_chain(
            [fact.completed(self.rate) for fact in chain_prices]
        )
        chains: dict[str, StoreChain | None] = {}
        written = 0

        for fact in facts:
            key = fact.chain.strip().casefold()
            if key not in chains:
                try:
                    chains[key] = await asyncio.to_thread(
                        self._db.get_store_chain, fact.chain,
                    )
                except StorageError as exc:
                    logger.error(
                        "Chain lookup for '%s' failed: %s", fact.chain, exc,
                    )
                    continue
            chain = chains[key]
            if chain is None:
                logger.warning(
                    "Unknown chain '%s' for product '%s', skipping",
                    fact.chain,
                    product.name,
                )
                continue

            async with self._lock_for(product.id, chain.id):
                written += await self._apply(product, chain, fact)

        return written
