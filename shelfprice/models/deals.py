# shelfprice/models/deals.py

"""Read models for deal listings and product details."""

from dataclasses import dataclass, field
from datetime import datetime

from shelfprice.models.catalog import Category, Product, StoreChain
from shelfprice.models.price_record import PriceRecord


@dataclass(frozen=True)
class ProductOffer:
    """A product together with one price record currently in effect."""

    product_public_id: str
    name: str
    category: str
    chain: str
    price_bgn: float
    price_eur: float
    discount: int = 0
    brand: str | None = None
    unit: str | None = None
    image_url: str | None = None
    valid_to: datetime | None = None


@dataclass
class DealPage:
    """One page of a deal listing."""

    section: str
    title: str
    offers: list[ProductOffer] = field(
        default_factory=lambda: list[ProductOffer]()
    )
    offset: int = 0
    limit: int = 0
    has_more: bool = False


@dataclass(frozen=True)
class PriceEntry:
    """A ledger record with the chain it belongs to."""

    chain: StoreChain
    record: PriceRecord


@dataclass
class ProductDetails:
    """A product, its category and its full price history.

    ``at`` is the moment ``current_prices`` is evaluated against.
    """

    product: Product
    category: Category | None
    at: datetime
    prices: list[PriceEntry] = field(
        default_factory=lambda: list[PriceEntry]()
    )

    def current_prices(self) -> list[PriceEntry]:
        """Entries whose validity window contains ``at``."""
        return [e for e in self.prices if e.record.is_valid_at(self.at)]
