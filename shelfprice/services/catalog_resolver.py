# shelfprice/services/catalog_resolver.py

"""Get-or-create of catalog categories and products."""

import asyncio
import logging

from shelfprice.models.catalog import Category, Product
from shelfprice.models.offer import UnifiedProduct
from shelfprice.storage.price_db import PriceDB

logger = logging.getLogger("shelfprice.catalog")


class CatalogResolver:
    """Maps a unified product onto its catalog ``Product``.

    Identity is (name, brand-or-null, category) because scraped offers
    rarely carry a barcode.
    """

    def __init__(self, db: PriceDB) -> None:
        self._db = db

    async def resolve_category(self, name: str) -> Category:
        """Exact-name lookup, creating the category on first sighting."""
        category = await asyncio.to_thread(self._db.get_category_by_name, name)
        if category is None:
            category = await asyncio.to_thread(self._db.create_category, name)
            logger.info("Created category '%s'", name)
        return category

    async def resolve(self, unified: UnifiedProduct) -> Product:
        """Return the catalog product for ``unified``, creating it if absent."""
        category = await self.resolve_category(unified.category)
        brand = unified.brand or None

        product = await asyncio.to_thread(
            self._db.get_product, unified.name, brand, category.id,
        )
        if product is None:
            product = await asyncio.to_thread(
                self._db.create_product,
                unified.name,
                brand,
                category.id,
                unified.image_url,
                unified.unit or None,
            )
            logger.debug(
                "Created product '%s' (brand=%s, category=%s)",
                unified.name,
                brand,
                category.name,
            )
        return product
