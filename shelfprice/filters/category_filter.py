# shelfprice/filters/category_filter.py

"""Drop unified products the oracle could not classify."""

import logging
from collections.abc import Iterable

from shelfprice.config.settings import Settings
from shelfprice.models.offer import UnifiedProduct

logger = logging.getLogger("shelfprice.filters")


class CategoryFilter:
    """Filter out products that landed in the catch-all category."""

    @staticmethod
    def exclude_unclassified(
        products: list[UnifiedProduct],
        other_categories: Iterable[str] | None = None,
    ) -> tuple[list[UnifiedProduct], int]:
        """Remove products whose category is blank or a catch-all name.

        Returns the kept products and the count of excluded products.
        """
        names = frozenset(
            c.casefold()
            for c in (
                Settings.OTHER_CATEGORIES
                if other_categories is None
                else other_categories
            )
        )

        kept: list[UnifiedProduct] = []
        excluded = 0
        for product in products:
            category = product.category.strip().casefold()
            if not category or category in names:
                excluded += 1
            else:
                kept.append(product)

        if excluded:
            logger.info(
                "Filtered out %d unclassified products", excluded,
            )

        return kept, excluded
