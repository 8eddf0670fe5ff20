# shelfprice/services/deal_browser.py

"""Deal listings and product details over the prices currently in effect.

Sections: ``top`` lists the cheapest products, ``our-choice`` the
biggest discounts, and a chain name lists the biggest discounts at that
chain.  Each product appears at most once per listing.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime

from shelfprice.config.settings import Settings
from shelfprice.models.cart import NotFound
from shelfprice.models.deals import (
    DealPage,
    PriceEntry,
    ProductDetails,
    ProductOffer,
)
from shelfprice.storage.price_db import PriceDB
from shelfprice.utils.parsing import complete_currencies, utc_now

logger = logging.getLogger("shelfprice.deals")

TOP_SECTION = "top"
DISCOUNT_SECTION = "our-choice"


def _price_key(offer: ProductOffer) -> tuple[float, float]:
    return (offer.price_bgn, offer.price_eur)


def lowest_price_per_product(offers: list[ProductOffer]) -> list[ProductOffer]:
    """Cheapest offer of every product, cheapest first.

    Ties on BGN go to the lower EUR price, then to the product name.
    """
    best: dict[str, ProductOffer] = {}
    for offer in offers:
        kept = best.get(offer.product_public_id)
        if kept is None or _price_key(offer) < _price_key(kept):
            best[offer.product_public_id] = offer
    return sorted(
        best.values(),
        key=lambda o: (o.price_bgn, o.price_eur, o.name.casefold()),
    )


def biggest_discount_per_product(
    offers: list[ProductOffer],
) -> list[ProductOffer]:
    """Deepest promotion of every product, biggest discount first.

    Regular prices are ignored.  Equal discounts go to the lower price.
    """
    best: dict[str, ProductOffer] = {}
    for offer in offers:
        if offer.discount <= 0:
            continue
        kept = best.get(offer.product_public_id)
        if kept is None or (
            (-offer.discount, *_price_key(offer))
            < (-kept.discount, *_price_key(kept))
        ):
            best[offer.product_public_id] = offer
    return sorted(
        best.values(),
        key=lambda o: (-o.discount, o.price_bgn, o.name.casefold()),
    )


def paginate(
    section: str,
    title: str,
    offers: list[ProductOffer],
    offset: int = 0,
    limit: int | None = None,
) -> DealPage:
    """Cut one page out of ``offers``; ``has_more`` flags a next page."""
    limit = Settings.DEAL_PAGE_LIMIT if limit is None else limit
    if offset < 0 or limit <= 0:
        raise ValueError(
            f"offset must not be negative and limit must be positive, "
            f"got {offset} and {limit}"
        )
    return DealPage(
        section=section,
        title=title,
        offers=offers[offset:offset + limit],
        offset=offset,
        limit=limit,
        has_more=len(offers) > offset + limit,
    )


class DealBrowser:
    """Read-only views of the price ledger."""

    def __init__(
        self, db: PriceDB, bgn_to_eur_rate: float | None = None,
    ) -> None:
        self._db = db
        self.rate = (
            Settings.BGN_TO_EUR_RATE
            if bgn_to_eur_rate is None
            else bgn_to_eur_rate
        )

    async def _current_offers(
        self, at: datetime, chain_id: int | None = None,
    ) -> list[ProductOffer]:
        rows = await asyncio.to_thread(
            self._db.get_current_offers, at, chain_id,
        )
        offers: list[ProductOffer] = []
        for row in rows:
            amounts = complete_currencies(row.price_bgn, row.price_eur, self.rate)
            if amounts is None:
                continue
            offers.append(
                replace(row, price_bgn=amounts[0], price_eur=amounts[1])
            )
        return offers

    async def cheapest_products(
        self,
        offset: int = 0,
        limit: int | None = None,
        at: datetime | None = None,
    ) -> DealPage:
        """Products ordered by their lowest current price."""
        offers = await self._current_offers(at or utc_now())
        return paginate(
            TOP_SECTION,
            Settings.DEAL_SECTION_TITLES[TOP_SECTION],
            lowest_price_per_product(offers),
            offset,
            limit,
        )

    async def biggest_discounts(
        self,
        offset: int = 0,
        limit: int | None = None,
        at: datetime | None = None,
    ) -> DealPage:
        """Products ordered by their deepest current promotion."""
        offers = await self._current_offers(at or utc_now())
        return paginate(
            DISCOUNT_SECTION,
            Settings.DEAL_SECTION_TITLES[DISCOUNT_SECTION],
            biggest_discount_per_product(offers),
            offset,
            limit,
        )

    async def chain_offers(
        self,
        chain_name: str,
        offset: int = 0,
        limit: int | None = None,
        at: datetime | None = None,
    ) -> DealPage | NotFound:
        """Biggest current discounts at one chain."""
        chain = await asyncio.to_thread(self._db.get_store_chain, chain_name)
        if chain is None:
            logger.info("Unknown chain '%s'", chain_name)
            return NotFound("chain")
        offers = await self._current_offers(at or utc_now(), chain.id)
        return paginate(
            chain.name.casefold(),
            f"{chain.name} оферти",
            biggest_discount_per_product(offers),
            offset,
            limit,
        )

    async def browse(
        self,
        section: str,
        offset: int = 0,
        limit: int | None = None,
        at: datetime | None = None,
    ) -> DealPage | NotFound:
        """Dispatch a section name to its listing.

        Raises ``ValueError`` for a negative offset or non-positive limit.
        """
        name = section.strip().casefold()
        if name == TOP_SECTION:
            page = await self.cheapest_products(offset, limit, at)
        elif name == DISCOUNT_SECTION:
            page = await self.biggest_discounts(offset, limit, at)
        else:
            return await self.chain_offers(section, offset, limit, at)
        logger.debug(
            "Section %s: %d offers (offset %d)",
            page.section,
            len(page.offers),
            page.offset,
        )
        return page

    async def product_details(
        self, public_id: str, at: datetime | None = None,
    ) -> ProductDetails | NotFound:
        """A product with its category and every price record on file."""
        product = await asyncio.to_thread(
            self._db.get_product_by_public_id, public_id,
        )
        if product is None:
            logger.info("No product with public id %s", public_id)
            return NotFound("product")

        category = await asyncio.to_thread(
            self._db.get_category, product.category_id,
        )
        history = await asyncio.to_thread(
            self._db.get_prices_for_product, product.id,
        )
        chains = {
            c.id: c
            for c in await asyncio.to_thread(self._db.list_store_chains)
        }
        return ProductDetails(
            product=product,
            category=category,
            at=at or utc_now(),
            prices=[
                PriceEntry(chain=chains[r.chain_id], record=r)
                for r in history
                if r.chain_id in chains
            ],
        )
