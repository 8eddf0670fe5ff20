# shelfprice/models/offer.py

"""Scraped offers and their normalized, chain-merged form."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from shelfprice.utils.parsing import (
    complete_currencies,
    parse_amount,
    parse_timestamp,
    utc_now,
)


@dataclass
class RawOffer:
    """One product sighting at one chain, exactly as a scraper emitted it."""

    chain: str
    name: str
    category: str = ""
    unit: str = ""
    price_bgn: str = ""
    price_eur: str = ""
    old_price_bgn: str = ""
    old_price_eur: str = ""
    valid_from: str = ""
    valid_to: str = ""
    discount: str = ""
    image_url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawOffer":
        """Build an offer from a scraper's camelCase JSON object."""

        def text(key: str) -> str:
            value = data.get(key)
            return "" if value is None else str(value).strip()

        return cls(
            chain=text("chain"),
            name=text("name"),
            category=text("category"),
            unit=text("unit"),
            price_bgn=text("priceBgn"),
            price_eur=text("priceEur"),
            old_price_bgn=text("oldPriceBgn"),
            old_price_eur=text("oldPriceEur"),
            valid_from=text("validFrom"),
            valid_to=text("validTo"),
            discount=text("discount"),
            image_url=text("imageUrl"),
        )

    def to_payload(self) -> dict[str, str]:
        """Serialise back to the camelCase shape the oracle expects."""
        return {
            "chain": self.chain,
            "category": self.category,
            "name": self.name,
            "unit": self.unit,
            "priceBgn": self.price_bgn,
            "priceEur": self.price_eur,
            "oldPriceBgn": self.old_price_bgn,
            "oldPriceEur": self.old_price_eur,
            "validFrom": self.valid_from,
            "validTo": self.valid_to,
            "discount": self.discount,
            "imageUrl": self.image_url,
        }


@dataclass
class ChainPrice:
    """One chain's price fact for a unified product (not yet persisted)."""

    chain: str
    price_bgn: float
    price_eur: float
    valid_from: datetime
    valid_to: datetime | None = None
    old_price_bgn: float | None = None
    old_price_eur: float | None = None
    discount: int = 0

    @property
    def has_old_price(self) -> bool:
        """True when the fact carries a previous regular price in both currencies."""
        return bool(self.old_price_bgn) and bool(self.old_price_eur)

    @property
    def has_current_price(self) -> bool:
        """True when the fact carries a current price in both currencies."""
        return bool(self.price_bgn) and bool(self.price_eur)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChainPrice":
        """Parse one ``chainPrices`` entry of an oracle response.

        Raises ``ValueError`` when the entry has no chain name or the
        discount is not a percentage.
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")
        chain = str(data.get("chain") or "").strip()
        if not chain:
            raise ValueError("chain price without a chain name")
        discount = parse_amount(data.get("discount")) or 0.0
        if abs(discount) > 100:
            raise ValueError(f"discount {discount} is not a percentage")
        return cls(
            chain=chain,
            price_bgn=parse_amount(data.get("priceBgn")) or 0.0,
            price_eur=parse_amount(data.get("priceEur")) or 0.0,
            old_price_bgn=parse_amount(data.get("oldPriceBgn")) or None,
            old_price_eur=parse_amount(data.get("oldPriceEur")) or None,
            valid_from=parse_timestamp(data.get("validFrom")) or utc_now(),
            valid_to=parse_timestamp(data.get("validTo")),
            discount=int(round(discount)),
        )

    def completed(self, rate: float) -> "ChainPrice":
        """Copy with a missing BGN or EUR amount derived at ``rate``."""
        current = complete_currencies(self.price_bgn, self.price_eur, rate)
        old = complete_currencies(
            self.old_price_bgn or 0.0, self.old_price_eur or 0.0, rate,
        )
        return replace(
            self,
            price_bgn=current[0] if current else self.price_bgn,
            price_eur=current[1] if current else self.price_eur,
            old_price_bgn=old[0] if old else None,
            old_price_eur=old[1] if old else None,
        )


@dataclass
class UnifiedProduct:
    """A canonical product with the price facts of every chain selling it."""

    name: str
    category: str
    unit: str = ""
    brand: str | None = None
    image_url: str | None = None
    chain_prices: list[ChainPrice] = field(
        default_factory=lambda: list[ChainPrice]()
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UnifiedProduct":
        """Parse one product of an oracle response.

        Raises ``ValueError``/``TypeError`` when the structure is wrong.
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")
        raw_prices = data.get("chainPrices")
        if not isinstance(raw_prices, list):
            raise ValueError("chainPrices must be a list")
        brand = str(data.get("brand") or "").strip() or None
        image_url = str(data.get("imageUrl") or "").strip() or None
        return cls(
            name=str(data.get("name") or "").strip(),
            category=str(data.get("category") or "").strip(),
            unit=str(data.get("unit") or "").strip(),
            brand=brand,
            image_url=image_url,
            chain_prices=[ChainPrice.from_dict(cp) for cp in raw_prices],
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialise to the oracle's camelCase response shape."""
        prices: list[dict[str, Any]] = [
            {
                "chain": cp.chain,
                "priceBgn": cp.price_bgn,
                "priceEur": cp.price_eur,
                "oldPriceBgn": cp.old_price_bgn or 0,
                "oldPriceEur": cp.old_price_eur or 0,
                "validFrom": cp.valid_from.isoformat(),
                "validTo": cp.valid_to.isoformat() if cp.valid_to else "",
                "discount": cp.discount,
            }
            for cp in self.chain_prices
        ]
        payload: dict[str, Any] = {
            "chainPrices": prices,
            "category": self.category,
            "name": self.name,
            "unit": self.unit,
        }
        if self.brand:
            payload["brand"] = self.brand
        if self.image_url:
            payload["imageUrl"] = self.image_url
        return payload
