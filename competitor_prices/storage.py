"""SQLite persistence for products, variants and price history."""

import logging
import sqlite3
import time
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Iterator

from competitor_prices.cancel import CancelToken
from competitor_prices.errors import PersistenceError
from competitor_prices.models import (
    PriceTarget,
    ProductRecord,
    ProductStub,
    ScrapeStatus,
    TargetKind,
    Variant,
    canonical_url,
    normalize_key,
)
from competitor_prices.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Database server time, millisecond resolution
NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS competitors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    last_scraped TEXT,
    scrape_status TEXT NOT NULL DEFAULT 'idle',
    last_error TEXT
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    competitor_id INTEGER NOT NULL REFERENCES competitors(id),
    name TEXT NOT NULL,
    name_key TEXT NOT NULL,
    UNIQUE (competitor_id, name_key)
);

CREATE TABLE IF NOT EXISTS products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    name_key TEXT NOT NULL,
    url TEXT,
    url_key TEXT UNIQUE,
    category_id INTEGER REFERENCES categories(id),
    sku TEXT,
    source TEXT NOT NULL,
    last_scraped TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_products_name_source
ON products(name_key, source) WHERE url_key IS NULL;

CREATE TABLE IF NOT EXISTS variants (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL REFERENCES products(id),
    title TEXT NOT NULL,
    title_key TEXT NOT NULL,
    price NUMERIC NOT NULL,
    weight_grams NUMERIC,
    url TEXT,
    UNIQUE (product_id, title_key)
);

CREATE TABLE IF NOT EXISTS price_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL REFERENCES products(id),
    price NUMERIC NOT NULL,
    source TEXT NOT NULL,
    captured_at TEXT NOT NULL DEFAULT ({NOW_SQL})
);

CREATE INDEX IF NOT EXISTS idx_price_history_product
ON price_history(product_id, captured_at);

CREATE TABLE IF NOT EXISTS variant_price_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    variant_id INTEGER NOT NULL REFERENCES variants(id),
    price NUMERIC NOT NULL,
    source TEXT NOT NULL,
    captured_at TEXT NOT NULL DEFAULT ({NOW_SQL})
);

CREATE INDEX IF NOT EXISTS idx_variant_price_history_variant
ON variant_price_history(variant_id, captured_at);
"""


def _num(value: Decimal | None) -> str | None:
    """sqlite3 cannot bind Decimal; NUMERIC affinity converts the text back."""
    return str(value) if value is not None else None


def ensure_category(conn: sqlite3.Connection, competitor_id: int, name: str) -> int | None:
    """Id of the category called ``name`` (case-insensitive), created on first sight."""
    key = normalize_key(name)
    if not key:
        return None
    conn.execute(
        """
        INSERT INTO categories (competitor_id, name, name_key) VALUES (?, ?, ?)
        ON CONFLICT (competitor_id, name_key) DO NOTHING
        """,
        (competitor_id, name.strip(), key),
    )
    row = conn.execute(
        "SELECT id FROM categories WHERE competitor_id = ? AND name_key = ?",
        (competitor_id, key),
    ).fetchone()
    return row["id"]


def upsert_product(
    conn: sqlite3.Connection, stub: ProductStub, category_id: int | None, source: str
) -> int:
    """
    Insert or update a product and return its id.

    Matched by canonical URL, or by normalized name and source when the stub
    has no URL. An existing row gets the new name, category and timestamp.
    """
    url_key = canonical_url(stub.url)
    name_key = normalize_key(stub.name)
    if url_key is not None:
        row = conn.execute("SELECT id FROM products WHERE url_key = ?", (url_key,)).fetchone()
    else:
        row = conn.execute(
            "SELECT id FROM products WHERE url_key IS NULL AND name_key = ? AND source = ?",
            (name_key, source),
        ).fetchone()

    if row is not None:
        conn.execute(
            f"""
            UPDATE products
            SET name = ?, name_key = ?, category_id = ?, sku = COALESCE(?, sku),
                last_scraped = {NOW_SQL}
            WHERE id = ?
            """,
            (stub.name.strip(), name_key, category_id, stub.sku, row["id"]),
        )
        return row["id"]

    cur = conn.execute(
        f"""
        INSERT INTO products (name, name_key, url, url_key, category_id, sku, source, last_scraped)
        VALUES (?, ?, ?, ?, ?, ?, ?, {NOW_SQL})
        """,
        (stub.name.strip(), name_key, stub.url, url_key, category_id, stub.sku, source),
    )
    return cur.lastrowid


def upsert_variants(
    conn: sqlite3.Connection,
    product_id: int,
    variants: Iterable[Variant],
    source_url: str | None,
) -> dict[str, int]:
    """
    Bulk insert-or-update the variants of one product.

    Keyed by (product, normalized title); an existing variant only gets its
    price updated. Returns ``{title_key: variant_id}``.
    """
    rows = [
        (product_id, v.title.strip(), normalize_key(v.title), _num(v.price), _num(v.weight_grams), source_url)
        for v in variants
    ]
    if not rows:
        return {}
    conn.executemany(
        """
        INSERT INTO variants (product_id, title, title_key, price, weight_grams, url)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (product_id, title_key) DO UPDATE SET price = excluded.price
        """,
        rows,
    )
    keys = {r[2] for r in rows}
    found = conn.execute(
        "SELECT id, title_key FROM variants WHERE product_id = ?", (product_id,)
    ).fetchall()
    return {r["title_key"]: r["id"] for r in found if r["title_key"] in keys}


def append_price_observation(
    conn: sqlite3.Connection, target: PriceTarget, price: Decimal, source: str
) -> None:
    """
    Append one history row. Never updates history.

    For a variant the variant's current price is set in the same call so the
    two never diverge.
    """
    if target.kind is TargetKind.VARIANT:
        conn.execute(
            "INSERT INTO variant_price_history (variant_id, price, source) VALUES (?, ?, ?)",
            (target.id, _num(price), source),
        )
        conn.execute("UPDATE variants SET price = ? WHERE id = ?", (_num(price), target.id))
    else:
        conn.execute(
            "INSERT INTO price_history (product_id, price, source) VALUES (?, ?, ?)",
            (target.id, _num(price), source),
        )


class PriceStore:
    """
    One SQLite connection for the length of a crawl run.

    ``save_product`` writes everything for one product in one transaction:
    either all of it is visible afterwards or none of it is.
    """

    def __init__(
        self,
        db_path: Path | str,
        retry_attempts: int = 3,
        retry_delay: float = 2.0,
        cancel: CancelToken | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db_path = Path(db_path)
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._cancel = cancel or CancelToken()
        self._sleep = sleep
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> "PriceStore":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("PriceStore is not open")
        return self._conn

    def open(self) -> None:
        if self._conn is not None:
            return
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are explicit BEGIN/COMMIT below
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if str(self.db_path) != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        self._conn = conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        self.conn.executescript(SCHEMA)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def ping(self) -> bool:
        """True if the database answers a trivial query."""
        try:
            return self.conn.execute("SELECT 1").fetchone()[0] == 1
        except (sqlite3.Error, RuntimeError) as e:
            logger.error("Database ping failed: %s", e)
            return False

    def ensure_competitor(self, name: str, url: str) -> int:
        key = canonical_url(url) or url
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO competitors (name, url) VALUES (?, ?)
                ON CONFLICT (url) DO UPDATE SET name = excluded.name
                """,
                (name, key),
            )
            row = conn.execute("SELECT id FROM competitors WHERE url = ?", (key,)).fetchone()
        return row["id"]

    def mark_scrape_started(self, competitor_id: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE competitors SET scrape_status = ?, last_error = NULL WHERE id = ?",
                (ScrapeStatus.IN_PROGRESS.value, competitor_id),
            )

    def mark_scrape_finished(
        self, competitor_id: int, status: ScrapeStatus, error: str | None = None
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                f"""
                UPDATE competitors
                SET scrape_status = ?, last_error = ?, last_scraped = {NOW_SQL}
                WHERE id = ?
                """,
                (status.value, error, competitor_id),
            )

    def competitor(self, competitor_id: int) -> dict | None:
        row = self.conn.execute("SELECT * FROM competitors WHERE id = ?", (competitor_id,)).fetchone()
        return dict(row) if row else None

    def save_product(self, record: ProductRecord, competitor_id: int, source: str) -> tuple[int, int]:
        """
        Persist one product, its variants and its price observations.

        Returns ``(product_id, observations_written)``. Retries on
        ``sqlite3.OperationalError`` (e.g. a locked database) and raises
        ``PersistenceError`` once attempts run out.
        """
        label = f"save {record.stub.url or record.stub.name}"
        try:
            return retry_with_backoff(
                lambda: self._save_once(record, competitor_id, source),
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                retry_on=sqlite3.OperationalError,
                label=label,
                sleep=self._sleep,
                on_attempt=lambda n: self._cancel.check(label),
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"{label} failed: {e}") from e

    def _save_once(self, record: ProductRecord, competitor_id: int, source: str) -> tuple[int, int]:
        stub = record.stub
        written = 0
        with self.transaction() as conn:
            category_id = ensure_category(conn, competitor_id, stub.category)
            product_id = upsert_product(conn, stub, category_id, source)

            if record.price is not None:
                append_price_observation(conn, PriceTarget.product(product_id), record.price, source)
                written += 1

            unique: dict[str, Variant] = {}
            for variant in record.variants:
                unique.setdefault(normalize_key(variant.title), variant)
            ids = upsert_variants(conn, product_id, unique.values(), stub.url)
            for key, variant in unique.items():
                append_price_observation(conn, PriceTarget.variant(ids[key]), variant.price, source)
                written += 1
        return product_id, written

    def recent_prices(self, product_id: int | None = None, limit: int = 100) -> list[dict]:
        """Product price observations, newest first."""
        sql = """
            SELECT p.id AS product_id, p.name, p.url, ph.price, ph.source, ph.captured_at
            FROM price_history ph
            JOIN products p ON p.id = ph.product_id
        """
        params: tuple = ()
        if product_id is not None:
            sql += " WHERE p.id = ?"
            params = (product_id,)
        sql += " ORDER BY ph.captured_at DESC, ph.id DESC LIMIT ?"
        rows = self.conn.execute(sql, params + (limit,)).fetchall()
        return [dict(r) for r in rows]
