# shelfprice/storage/price_db.py

"""SQLite-backed catalog, price ledger and cart store."""

import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from shelfprice.config.settings import Settings
from shelfprice.errors import ConfigurationError, StorageError
from shelfprice.models.cart import Cart, CartItem
from shelfprice.models.catalog import Category, Product, StoreChain
from shelfprice.models.deals import ProductOffer
from shelfprice.models.price_record import PriceRecord
from shelfprice.utils.parsing import round_money, utc_now

logger = logging.getLogger("shelfprice.storage")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS store_chains (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    public_id     TEXT    NOT NULL UNIQUE,
    name          TEXT    NOT NULL COLLATE NOCASE UNIQUE,
    base_url      TEXT    NOT NULL,
    products_page TEXT    NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS categories (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    public_id TEXT    NOT NULL UNIQUE,
    name      TEXT    NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS products (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    public_id   TEXT    NOT NULL UNIQUE,
    name        TEXT    NOT NULL,
    brand       TEXT,
    category_id INTEGER NOT NULL
                REFERENCES categories(id) ON DELETE CASCADE,
    barcode     TEXT    UNIQUE,
    image_url   TEXT,
    unit        TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_products_identity
    ON products(name, COALESCE(brand, ''), category_id);

CREATE TABLE IF NOT EXISTS prices (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL
               REFERENCES products(id) ON DELETE CASCADE,
    chain_id   INTEGER NOT NULL
               REFERENCES store_chains(id) ON DELETE CASCADE,
    price_bgn  REAL    NOT NULL,
    price_eur  REAL    NOT NULL,
    valid_from TEXT    NOT NULL,
    valid_to   TEXT,
    discount   INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_prices_product_chain
    ON prices(product_id, chain_id);

CREATE UNIQUE INDEX IF NOT EXISTS idx_prices_open_regular
    ON prices(product_id, chain_id)
    WHERE discount = 0 AND valid_to IS NULL;

CREATE TABLE IF NOT EXISTS carts (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    public_id      TEXT    NOT NULL UNIQUE,
    user_public_id TEXT    NOT NULL UNIQUE,
    created_at     TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS cart_items (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    public_id  TEXT    NOT NULL UNIQUE,
    cart_id    INTEGER NOT NULL
               REFERENCES carts(id) ON DELETE CASCADE,
    product_id INTEGER NOT NULL
               REFERENCES products(id) ON DELETE CASCADE,
    quantity   INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1)
);
"""

_PRICE_COLUMNS = (
    "id, product_id, chain_id, price_bgn, price_eur, "
    "valid_from, valid_to, discount"
)

_PRODUCT_COLUMNS = (
    "id, public_id, name, category_id, brand, barcode, image_url, unit"
)


def _ts(moment: datetime) -> str:
    """Fixed-width ISO timestamp so text comparison orders correctly."""
    return moment.isoformat(timespec="microseconds")


def _new_public_id() -> str:
    return str(uuid.uuid4())


def _to_price(row: sqlite3.Row) -> PriceRecord:
    return PriceRecord(
        id=row["id"],
        product_id=row["product_id"],
        chain_id=row["chain_id"],
        price_bgn=row["price_bgn"],
        price_eur=row["price_eur"],
        valid_from=datetime.fromisoformat(row["valid_from"]),
        valid_to=(
            datetime.fromisoformat(row["valid_to"])
            if row["valid_to"] else None
        ),
        discount=row["discount"],
    )


def _to_product(row: sqlite3.Row) -> Product:
    return Product(
        id=row["id"],
        public_id=row["public_id"],
        name=row["name"],
        category_id=row["category_id"],
        brand=row["brand"],
        barcode=row["barcode"],
        image_url=row["image_url"],
        unit=row["unit"],
    )


def _to_chain(row: sqlite3.Row) -> StoreChain:
    return StoreChain(
        id=row["id"],
        public_id=row["public_id"],
        name=row["name"],
        base_url=row["base_url"],
        products_page=row["products_page"],
    )


class PriceDB:
    """SQLite store for chains, catalog, price ledger and carts.

    One connection is shared by the worker threads that
    ``asyncio.to_thread`` dispatches to; every call takes the instance
    lock, so statements never interleave.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        store_chains: list[dict[str, str]] | None = None,
        categories: list[str] | None = None,
    ) -> None:
        path = db_path or Settings.PRICE_DB_PATH
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(path), check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise ConfigurationError(
                f"Cannot open price database at {path}: {exc}"
            ) from exc
        self._lock = threading.RLock()
        logger.debug("PriceDB opened at %s", path)
        self.seed_store_chains(
            Settings.STORE_CHAINS if store_chains is None else store_chains
        )
        self.seed_categories(
            Settings.SEED_CATEGORIES if categories is None else categories
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    @contextmanager
    def _read(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise StorageError(f"{action} failed: {exc}") from exc

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """Run the body in one transaction; roll back and wrap on error."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise StorageError(f"{action} failed: {exc}") from exc

    # ── Store chains ─────────────────────────────────────

    def seed_store_chains(self, chains: list[dict[str, str]]) -> int:
        """Upsert the chain registry. Returns the number of chains seeded."""
        with self._transaction("seed store chains") as conn:
            for chain in chains:
                conn.execute(
                    "INSERT INTO store_chains "
                    "(public_id, name, base_url, products_page) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(name) DO UPDATE SET "
                    "base_url=excluded.base_url, "
                    "products_page=excluded.products_page",
                    (
                        _new_public_id(),
                        chain["name"],
                        chain["base_url"],
                        chain.get("products_page", ""),
                    ),
                )
        return len(chains)

    def get_store_chain(self, name: str) -> StoreChain | None:
        """Look a chain up by name (case-insensitive)."""
        with self._read("get store chain") as conn:
            row = conn.execute(
                "SELECT * FROM store_chains WHERE name = ?",
                (name.strip(),),
            ).fetchone()
        return _to_chain(row) if row else None

    def list_store_chains(self) -> list[StoreChain]:
        """Return every registered chain ordered by name."""
        with self._read("list store chains") as conn:
            rows = conn.execute(
                "SELECT * FROM store_chains ORDER BY name",
            ).fetchall()
        return [_to_chain(r) for r in rows]

    # ── Categories ───────────────────────────────────────

    def seed_categories(self, names: list[str]) -> int:
        """Make sure the base vocabulary exists. Returns how many were new."""
        with self._transaction("seed categories") as conn:
            before = conn.total_changes
            conn.executemany(
                "INSERT INTO categories (public_id, name) VALUES (?, ?) "
                "ON CONFLICT(name) DO NOTHING",
                [(_new_public_id(), name) for name in names],
            )
            added = conn.total_changes - before
        return added

    def get_category_by_name(self, name: str) -> Category | None:
        """Exact-name category lookup."""
        with self._read("get category") as conn:
            row = conn.execute(
                "SELECT id, public_id, name FROM categories WHERE name = ?",
                (name,),
            ).fetchone()
        return Category(*row) if row else None

    def get_category(self, category_id: int) -> Category | None:
        """Category lookup by id."""
        with self._read("get category by id") as conn:
            row = conn.execute(
                "SELECT id, public_id, name FROM categories WHERE id = ?",
                (category_id,),
            ).fetchone()
        return Category(*row) if row else None

    def create_category(self, name: str) -> Category:
        """Insert a category, or return the existing one with that name."""
        with self._transaction("create category") as conn:
            conn.execute(
                "INSERT INTO categories (public_id, name) VALUES (?, ?) "
                "ON CONFLICT(name) DO NOTHING",
                (_new_public_id(), name),
            )
            row = conn.execute(
                "SELECT id, public_id, name FROM categories WHERE name = ?",
                (name,),
            ).fetchone()
        return Category(*row)

    def list_categories(self) -> list[Category]:
        """Return the full category vocabulary."""
        with self._read("list categories") as conn:
            rows = conn.execute(
                "SELECT id, public_id, name FROM categories ORDER BY id",
            ).fetchall()
        return [Category(*r) for r in rows]

    # ── Products ─────────────────────────────────────────

    def get_product(
        self, name: str, brand: str | None, category_id: int,
    ) -> Product | None:
        """Look a product up by its natural key."""
        with self._read("get product") as conn:
            row = conn.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products "
                "WHERE name = ? AND brand IS ? AND category_id = ?",
                (name, brand, category_id),
            ).fetchone()
        return _to_product(row) if row else None

    def get_product_by_public_id(self, public_id: str) -> Product | None:
        """Look a product up by its public id."""
        with self._read("get product by public id") as conn:
            row = conn.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products "
                "WHERE public_id = ?",
                (public_id,),
            ).fetchone()
        return _to_product(row) if row else None

    def create_product(
        self,
        name: str,
        brand: str | None,
        category_id: int,
        image_url: str | None = None,
        unit: str | None = None,
    ) -> Product:
        """Insert a product, or return the one already holding its natural key."""
        with self._transaction("create product") as conn:
            conn.execute(
                "INSERT INTO products "
                "(public_id, name, brand, category_id, barcode, "
                " image_url, unit) "
                "VALUES (?, ?, ?, ?, NULL, ?, ?) "
                "ON CONFLICT DO NOTHING",
                (_new_public_id(), name, brand, category_id, image_url, unit),
            )
            row = conn.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products "
                "WHERE name = ? AND brand IS ? AND category_id = ?",
                (name, brand, category_id),
            ).fetchone()
        return _to_product(row)

    def count_products(self) -> int:
        """Number of catalog products."""
        with self._read("count products") as conn:
            return conn.execute("SELECT COUNT(*) FROM products").fetchone()[0]

    # ── Price ledger ─────────────────────────────────────

    def get_open_regular_price(
        self, product_id: int, chain_id: int,
    ) -> PriceRecord | None:
        """The current regular price: discount 0 and no validity end."""
        with self._read("get open regular price") as conn:
            row = conn.execute(
                f"SELECT {_PRICE_COLUMNS} FROM prices "
                "WHERE product_id = ? AND chain_id = ? "
                "AND discount = 0 AND valid_to IS NULL",
                (product_id, chain_id),
            ).fetchone()
        return _to_price(row) if row else None

    def find_promo_price(
        self,
        product_id: int,
        chain_id: int,
        price_bgn: float,
        price_eur: float,
        valid_to: datetime | None,
        discount: int,
    ) -> PriceRecord | None:
        """Exact match used to keep promotional inserts idempotent."""
        with self._read("find promo price") as conn:
            row = conn.execute(
                f"SELECT {_PRICE_COLUMNS} FROM prices "
                "WHERE product_id = ? AND chain_id = ? "
                "AND ROUND(price_bgn, 2) = ROUND(?, 2) "
                "AND ROUND(price_eur, 2) = ROUND(?, 2) "
                "AND valid_to IS ? AND discount = ? "
                "LIMIT 1",
                (
                    product_id,
                    chain_id,
                    price_bgn,
                    price_eur,
                    _ts(valid_to) if valid_to else None,
                    discount,
                ),
            ).fetchone()
        return _to_price(row) if row else None

    def insert_price(
        self,
        product_id: int,
        chain_id: int,
        price_bgn: float,
        price_eur: float,
        valid_from: datetime,
        valid_to: datetime | None = None,
        discount: int = 0,
    ) -> PriceRecord:
        """Append a price record and return it."""
        with self._transaction("insert price") as conn:
            cur = conn.execute(
                "INSERT INTO prices "
                "(product_id, chain_id, price_bgn, price_eur, "
                " valid_from, valid_to, discount) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    product_id,
                    chain_id,
                    round_money(price_bgn),
                    round_money(price_eur),
                    _ts(valid_from),
                    _ts(valid_to) if valid_to else None,
                    discount,
                ),
            )
            record_id = cur.lastrowid
        return PriceRecord(
            id=int(record_id or 0),
            product_id=product_id,
            chain_id=chain_id,
            price_bgn=round_money(price_bgn),
            price_eur=round_money(price_eur),
            valid_from=valid_from,
            valid_to=valid_to,
            discount=discount,
        )

    def replace_open_regular(
        self,
        current: PriceRecord,
        closed_at: datetime,
        price_bgn: float,
        price_eur: float,
    ) -> PriceRecord:
        """Close ``current`` at ``closed_at`` and open a new regular record.

        Both writes commit together.  Raises ``StorageError`` if
        ``current`` was closed by someone else in the meantime.
        """
        with self._transaction("replace regular price") as conn:
            updated = conn.execute(
                "UPDATE prices SET valid_to = ? "
                "WHERE id = ? AND valid_to IS NULL",
                (_ts(closed_at), current.id),
            ).rowcount
            if updated != 1:
                raise sqlite3.IntegrityError(
                    f"regular price {current.id} is no longer open"
                )
            cur = conn.execute(
                "INSERT INTO prices "
                "(product_id, chain_id, price_bgn, price_eur, "
                " valid_from, valid_to, discount) "
                "VALUES (?, ?, ?, ?, ?, NULL, 0)",
                (
                    current.product_id,
                    current.chain_id,
                    round_money(price_bgn),
                    round_money(price_eur),
                    _ts(closed_at),
                ),
            )
            record_id = cur.lastrowid
        return PriceRecord(
            id=int(record_id or 0),
            product_id=current.product_id,
            chain_id=current.chain_id,
            price_bgn=round_money(price_bgn),
            price_eur=round_money(price_eur),
            valid_from=closed_at,
        )

    def get_prices_for_product(
        self, product_id: int, chain_id: int | None = None,
    ) -> list[PriceRecord]:
        """Full history of a product, oldest first."""
        query = f"SELECT {_PRICE_COLUMNS} FROM prices WHERE product_id = ?"
        params: list[object] = [product_id]
        if chain_id is not None:
            query += " AND chain_id = ?"
            params.append(chain_id)
        query += " ORDER BY valid_from ASC, id ASC"
        with self._read("get prices for product") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_to_price(r) for r in rows]

    def get_current_prices(
        self, product_ids: list[int], at: datetime | None = None,
    ) -> list[PriceRecord]:
        """Records valid at ``at`` (default now) for the given products."""
        if not product_ids:
            return []
        moment = _ts(at or utc_now())
        placeholders = ", ".join("?" for _ in product_ids)
        with self._read("get current prices") as conn:
            rows = conn.execute(
                f"SELECT {_PRICE_COLUMNS} FROM prices "
                f"WHERE product_id IN ({placeholders}) "
                "AND valid_from <= ? "
                "AND (valid_to IS NULL OR valid_to >= ?) "
                "ORDER BY product_id, chain_id, id",
                (*product_ids, moment, moment),
            ).fetchall()
        return [_to_price(r) for r in rows]

    def get_current_offers(
        self, at: datetime | None = None, chain_id: int | None = None,
    ) -> list[ProductOffer]:
        """Every record valid at ``at`` joined with its product and chain."""
        moment = _ts(at or utc_now())
        query = (
            "SELECT p.public_id, p.name, p.brand, p.unit, p.image_url, "
            "       c.name AS category, sc.name AS chain, "
            "       pr.price_bgn, pr.price_eur, pr.discount, pr.valid_to "
            "FROM prices pr "
            "JOIN products p ON p.id = pr.product_id "
            "JOIN categories c ON c.id = p.category_id "
            "JOIN store_chains sc ON sc.id = pr.chain_id "
            "WHERE pr.valid_from <= ? "
            "AND (pr.valid_to IS NULL OR pr.valid_to >= ?)"
        )
        params: list[object] = [moment, moment]
        if chain_id is not None:
            query += " AND pr.chain_id = ?"
            params.append(chain_id)
        query += " ORDER BY p.id, pr.id"
        with self._read("get current offers") as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            ProductOffer(
                product_public_id=r["public_id"],
                name=r["name"],
                category=r["category"],
                chain=r["chain"],
                price_bgn=r["price_bgn"],
                price_eur=r["price_eur"],
                discount=r["discount"],
                brand=r["brand"],
                unit=r["unit"],
                image_url=r["image_url"],
                valid_to=(
                    datetime.fromisoformat(r["valid_to"])
                    if r["valid_to"] else None
                ),
            )
            for r in rows
        ]

    def count_prices(self, product_id: int | None = None) -> int:
        """Number of ledger records, optionally for one product."""
        with self._read("count prices") as conn:
            if product_id is None:
                row = conn.execute("SELECT COUNT(*) FROM prices").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM prices WHERE product_id = ?",
                    (product_id,),
                ).fetchone()
        return int(row[0])

    # ── Carts ────────────────────────────────────────────

    def create_cart(self, user_public_id: str) -> Cart:
        """Create (or return) the cart owned by ``user_public_id``."""
        with self._transaction("create cart") as conn:
            conn.execute(
                "INSERT INTO carts (public_id, user_public_id, created_at) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(user_public_id) DO NOTHING",
                (_new_public_id(), user_public_id, _ts(utc_now())),
            )
        cart = self.get_cart_by_user(user_public_id)
        if cart is None:
            raise StorageError(f"cart for {user_public_id} was not stored")
        return cart

    def add_cart_item(
        self, cart_id: int, product_id: int, quantity: int = 1,
    ) -> None:
        """Append an item to a cart."""
        with self._transaction("add cart item") as conn:
            conn.execute(
                "INSERT INTO cart_items "
                "(public_id, cart_id, product_id, quantity) "
                "VALUES (?, ?, ?, ?)",
                (_new_public_id(), cart_id, product_id, quantity),
            )

    def get_cart_by_user(self, user_public_id: str) -> Cart | None:
        """Load a user's cart with its items and their products."""
        with self._read("get cart") as conn:
            cart_row = conn.execute(
                "SELECT id, public_id, user_public_id, created_at "
                "FROM carts WHERE user_public_id = ?",
                (user_public_id,),
            ).fetchone()
            if cart_row is None:
                return None
            item_rows = conn.execute(
                "SELECT ci.id AS item_id, ci.public_id AS item_public_id, "
                "       ci.quantity, "
                "       p.id, p.public_id, p.name, p.category_id, "
                "       p.brand, p.barcode, p.image_url, p.unit "
                "FROM cart_items ci "
                "JOIN products p ON p.id = ci.product_id "
                "WHERE ci.cart_id = ? "
                "ORDER BY ci.id",
                (cart_row["id"],),
            ).fetchall()
        return Cart(
            id=cart_row["id"],
            public_id=cart_row["public_id"],
            user_public_id=cart_row["user_public_id"],
            created_at=datetime.fromisoformat(cart_row["created_at"]),
            items=[
                CartItem(
                    id=r["item_id"],
                    public_id=r["item_public_id"],
                    product=_to_product(r),
                    quantity=r["quantity"],
                )
                for r in item_rows
            ],
        )
