# shelfprice/filters/offer_validator.py

"""Unified product validation: drop records that cannot be priced."""

import logging

from shelfprice.models.offer import ChainPrice, UnifiedProduct

logger = logging.getLogger("shelfprice.filters")


class OfferValidator:
    """Validate unified products and drop those missing essential fields."""

    @staticmethod
    def _is_priced(price: ChainPrice) -> bool:
        """A fact is usable when either currency has a positive current price."""
        return price.price_bgn > 0 or price.price_eur > 0

    @staticmethod
    def validate(
        products: list[UnifiedProduct],
    ) -> tuple[list[UnifiedProduct], int]:
        """Drop blank-named products and products left with no usable price.

        Unusable chain prices are removed from the products that are kept.
        Returns the valid products and the count of dropped products.
        """
        valid: list[UnifiedProduct] = []
        dropped = 0

        for product in products:
            if not product.name.strip():
                logger.debug(
                    "Dropped product with empty name (category=%s)",
                    product.category,
                )
                dropped += 1
                continue

            priced = [
                cp for cp in product.chain_prices
                if OfferValidator._is_priced(cp)
            ]
            if not priced:
                logger.debug(
                    "Dropped product without prices (name=%s)",
                    product.name,
                )
                dropped += 1
                continue

            product.chain_prices = priced
            valid.append(product)

        if dropped:
            logger.info(
                "Validation dropped %d unified products", dropped,
            )

        return valid, dropped
