# shelfprice/models/cart.py

"""Shopping cart read model and computed store suggestions."""

from dataclasses import dataclass, field
from datetime import datetime

from shelfprice.models.catalog import Product, StoreChain


@dataclass
class CartItem:
    """A product in a cart with the requested quantity."""

    id: int
    public_id: str
    product: Product
    quantity: int = 1


@dataclass
class Cart:
    """A user's shopping cart."""

    id: int
    public_id: str
    user_public_id: str
    created_at: datetime
    items: list[CartItem] = field(
        default_factory=lambda: list[CartItem]()
    )


@dataclass
class ItemPrice:
    """Effective price of one cart item at one chain."""

    product_public_id: str
    product_name: str
    quantity: int
    unit_price_bgn: float
    unit_price_eur: float
    discount: int = 0

    @property
    def line_total_bgn(self) -> float:
        """Unit price times quantity, in BGN."""
        return round(self.unit_price_bgn * self.quantity, 2)

    @property
    def line_total_eur(self) -> float:
        """Unit price times quantity, in EUR."""
        return round(self.unit_price_eur * self.quantity, 2)


@dataclass
class StoreOption:
    """What a cart would cost at one chain."""

    chain: StoreChain
    items: list[ItemPrice] = field(
        default_factory=lambda: list[ItemPrice]()
    )
    total_bgn: float = 0.0
    total_eur: float = 0.0
    covered_items: int = 0
    total_items: int = 0

    @property
    def coverage(self) -> float:
        """Fraction of priceable cart items this chain can supply."""
        if self.total_items == 0:
            return 0.0
        return self.covered_items / self.total_items

    @property
    def is_complete(self) -> bool:
        """True when every priceable cart item is available here."""
        return self.total_items > 0 and self.covered_items == self.total_items


@dataclass
class Suggestion:
    """The cheapest store option for a cart plus the ranked alternatives.

    ``best`` is ``None`` when the cart exists but nothing in it is priced.
    """

    cart_public_id: str
    best: StoreOption | None = None
    alternatives: list[StoreOption] = field(
        default_factory=lambda: list[StoreOption]()
    )
    unpriced_items: int = 0


@dataclass(frozen=True)
class NotFound:
    """Typed 'no such cart/product' result, distinct from a system failure."""

    reason: str
