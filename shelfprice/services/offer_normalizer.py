# shelfprice/services/offer_normalizer.py

"""Batch normalization of scraped offers through a Unifier oracle."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, cast

from shelfprice.config.settings import Settings
from shelfprice.errors import OracleError
from shelfprice.filters.category_filter import CategoryFilter
from shelfprice.filters.offer_validator import OfferValidator
from shelfprice.models.catalog import Category
from shelfprice.models.offer import RawOffer, UnifiedProduct
from shelfprice.services.unifier import UNIFIED_PRODUCT_SCHEMA, Unifier
from shelfprice.storage.price_db import PriceDB
from shelfprice.utils.batching import process_in_batches

logger = logging.getLogger("shelfprice.normalizer")


@dataclass
class NormalizationStats:
    """Counters from the last ``unify_and_filter`` run."""

    failed_batches: int = 0
    invalid_count: int = 0
    unclassified_count: int = 0


def parse_unified_products(text: str) -> list[UnifiedProduct]:
    """Parse an oracle answer into unified products.

    Raises ``ValueError``/``TypeError`` when the text is not a JSON array
    of well-formed product objects, ``OverflowError`` on numbers no
    field can hold.
    """
    data = json.loads(text)
    if not isinstance(data, list):
        raise TypeError(
            f"expected a JSON array, got {type(data).__name__}"
        )
    items = cast(list[Any], data)
    return [UnifiedProduct.from_dict(item) for item in items]


def canonicalize_discounts(products: list[UnifiedProduct]) -> None:
    """Store every discount as a non-negative magnitude, in place."""
    for product in products:
        for cp in product.chain_prices:
            cp.discount = abs(cp.discount)


class OfferNormalizer:
    """Turns heterogeneous raw offers into canonical unified products."""

    def __init__(
        self,
        db: PriceDB,
        unifier: Unifier,
        batch_size: int | None = None,
        concurrency: int | None = None,
        batch_delay: float | None = None,
    ) -> None:
        self._db = db
        self._unifier = unifier
        self.batch_size = (
            Settings.UNIFY_BATCH_SIZE if batch_size is None else batch_size
        )
        self.concurrency = (
            Settings.UNIFY_CONCURRENCY if concurrency is None else concurrency
        )
        self.batch_delay = (
            Settings.UNIFY_BATCH_DELAY if batch_delay is None else batch_delay
        )
        if self.batch_size <= 0 or self.concurrency <= 0:
            raise ValueError(
                "batch_size and concurrency must be positive, got "
                f"{self.batch_size} and {self.concurrency}"
            )
        if self.batch_delay < 0:
            raise ValueError(
                f"batch_delay must not be negative, got {self.batch_delay}"
            )
        self.stats = NormalizationStats()

    async def _unify_batch(
        self,
        categories: list[Category],
        batch: list[RawOffer],
    ) -> list[UnifiedProduct]:
        """Ask the oracle about one batch; a bad answer yields no products."""
        try:
            text = await self._unifier.unify(
                batch, categories, UNIFIED_PRODUCT_SCHEMA,
            )
        except OracleError as exc:
            self.stats.failed_batches += 1
            logger.error(
                "Oracle %s failed for a batch of %d offers: %s",
                self._unifier.name,
                len(batch),
                exc,
            )
            return []

        try:
            products = parse_unified_products(text)
        except (ValueError, TypeError, OverflowError) as exc:
            self.stats.failed_batches += 1
            logger.error(
                "Failed to parse oracle response (%s): %.500s",
                exc,
                text,
            )
            return []

        canonicalize_discounts(products)
        products, invalid = OfferValidator.validate(products)
        products, unclassified = CategoryFilter.exclude_unclassified(
            products
        )
        self.stats.invalid_count += invalid
        self.stats.unclassified_count += unclassified
        return products

    async def unify_and_filter(
        self, raw_offers: list[RawOffer],
    ) -> list[UnifiedProduct]:
        """Normalize ``raw_offers`` in rate-limited batches.

        Products classified into the catch-all category are discarded.
        """
        self.stats = NormalizationStats()
        if not raw_offers:
            return []

        categories = await asyncio.to_thread(self._db.list_categories)
        logger.info(
            "Unifying %d offers with %s (batch=%d, concurrency=%d, "
            "vocabulary=%d categories)",
            len(raw_offers),
            self._unifier.name,
            self.batch_size,
            self.concurrency,
            len(categories),
        )

        products = await process_in_batches(
            raw_offers,
            self.batch_size,
            self.concurrency,
            self.batch_delay,
            lambda batch: self._unify_batch(categories, batch),
        )

        logger.info(
            "Unified %d products from %d offers "
            "(%d failed batches, %d invalid, %d unclassified)",
            len(products),
            len(raw_offers),
            self.stats.failed_batches,
            self.stats.invalid_count,
            self.stats.unclassified_count,
        )
        return products
