# shelfprice/models/catalog.py

"""Catalog entities: store chains, categories and products."""

from dataclasses import dataclass


@dataclass(frozen=True)
class StoreChain:
    """A supermarket chain whose offers are scraped."""

    id: int
    public_id: str
    name: str
    base_url: str
    products_page: str = ""


@dataclass(frozen=True)
class Category:
    """A product category; the name is its natural key."""

    id: int
    public_id: str
    name: str


@dataclass(frozen=True)
class Product:
    """A canonical product, deduplicated by (name, brand, category)."""

    id: int
    public_id: str
    name: str
    category_id: int
    brand: str | None = None
    barcode: str | None = None
    image_url: str | None = None
    unit: str | None = None
