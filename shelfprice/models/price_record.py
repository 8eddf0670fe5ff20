# shelfprice/models/price_record.py

"""Persisted price ledger entry."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class PriceRecord:
    """One validity interval of a product's price at one chain.

    ``valid_to`` of ``None`` marks an open record (currently in effect).
    ``discount`` of 0 marks a regular price, anything above it a promotion.
    """

    id: int
    product_id: int
    chain_id: int
    price_bgn: float
    price_eur: float
    valid_from: datetime
    valid_to: datetime | None = None
    discount: int = 0

    @property
    def is_promo(self) -> bool:
        """True for promotional records."""
        return self.discount > 0

    @property
    def is_open(self) -> bool:
        """True while the record has no validity end."""
        return self.valid_to is None

    def is_valid_at(self, moment: datetime) -> bool:
        """True when ``moment`` falls inside the inclusive validity window."""
        if self.valid_from > moment:
            return False
        return self.valid_to is None or self.valid_to >= moment
