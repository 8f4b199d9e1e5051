"""SQLite schema and helpers for the product store.

The store owns products, recalls, reviews and the ingredient blacklist, and
keeps the append-only scan history plus the user-owned pet and livestock
records.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional

import pandas as pd

from pawsitive.config import DB_PATH

__all__ = [
    "DEFAULT_DB_PATH",
    "get_connection",
    "init_db",
    "utcnow_iso",
    "upsert_user",
    "get_user",
    "get_products",
    "get_product",
    "get_product_by_barcode",
    "find_product_by_name",
    "create_product",
    "update_product",
    "update_product_analysis",
    "set_clarity_override",
    "get_product_reviews",
    "get_user_reviews",
    "get_review",
    "create_review",
    "update_review",
    "delete_review",
    "get_active_recalls",
    "get_product_recalls",
    "get_recall",
    "create_recall",
    "deactivate_recall",
    "get_blacklist",
    "add_to_blacklist",
    "deactivate_blacklist_entry",
    "create_scan_record",
    "get_user_scan_history",
    "export_scan_history",
    "get_user_pets",
    "get_pet",
    "create_pet",
    "update_pet",
    "delete_pet",
    "get_pet_saved_products",
    "save_product_for_pet",
    "remove_saved_product",
    "get_user_operations",
    "get_operation",
    "create_operation",
    "get_feed_records",
    "get_feed_record",
    "create_feed_record",
    "update_feed_record",
    "delete_feed_record",
    "get_analytics",
]

DEFAULT_DB_PATH = DB_PATH

# Columns a client may write, per table. Anything else is ignored.
PRODUCT_WRITABLE = (
    "name", "brand", "category", "description", "ingredients", "image_url",
    "barcode", "source_url", "baseline_score", "transparency_level",
    "disposal_instructions", "animal_type",
)
# Fields the scorer reads; changing one invalidates the stored analysis.
SCORE_INPUT_FIELDS = ("ingredients", "baseline_score")
REVIEW_WRITABLE = ("rating", "title", "content", "is_verified")
PET_WRITABLE = (
    "name", "species", "breed", "age", "weight", "weight_unit",
    "allergies", "notes", "is_active",
)
OPERATION_WRITABLE = (
    "operation_name", "operation_type", "total_head_count", "notes", "is_active",
)
FEED_WRITABLE = (
    "operation_id", "pet_id", "product_id", "feed_type", "feed_name",
    "supplier", "quantity_per_feeding", "quantity_unit", "feedings_per_day",
    "current_stock", "notes", "is_active",
)

_JSON_COLUMNS = {"suspicious_ingredients", "affected_batches", "allergies", "analysis_result"}
_BOOL_COLUMNS = {"is_admin", "is_blacklisted", "is_verified", "is_active"}


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def get_connection(db_path: str = DEFAULT_DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE,
                first_name TEXT,
                last_name TEXT,
                is_admin INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                brand TEXT NOT NULL,
                category TEXT NOT NULL,
                description TEXT,
                ingredients TEXT NOT NULL DEFAULT '',
                image_url TEXT,
                barcode TEXT,
                source_url TEXT,
                baseline_score INTEGER,
                cosmic_score INTEGER NOT NULL DEFAULT 0,
                cosmic_clarity TEXT NOT NULL DEFAULT 'unknown',
                clarity_override TEXT,
                transparency_level TEXT NOT NULL DEFAULT 'unknown',
                is_blacklisted INTEGER NOT NULL DEFAULT 0,
                suspicious_ingredients TEXT,
                disposal_instructions TEXT,
                animal_type TEXT NOT NULL DEFAULT 'pet',
                last_analyzed TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK (cosmic_score BETWEEN 0 AND 100)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS product_reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                title TEXT,
                content TEXT NOT NULL,
                is_verified INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS product_recalls (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                recall_number TEXT UNIQUE NOT NULL,
                reason TEXT NOT NULL,
                severity TEXT NOT NULL,
                recall_date TIMESTAMP NOT NULL,
                affected_batches TEXT,
                source TEXT,
                source_url TEXT,
                disposal_instructions TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (product_id) REFERENCES products(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ingredient_blacklist (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ingredient_name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                reason TEXT NOT NULL,
                severity TEXT NOT NULL,
                added_by_user_id TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # product_id is a weak reference: no foreign key, history outlives products
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS scan_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                product_id INTEGER,
                scan_kind TEXT,
                scanned_data TEXT,
                analysis_result TEXT,
                scanned_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS pet_profiles (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                species TEXT NOT NULL,
                breed TEXT,
                age INTEGER,
                weight REAL,
                weight_unit TEXT DEFAULT 'lbs',
                allergies TEXT,
                notes TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS saved_products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                pet_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                notes TEXT,
                status TEXT NOT NULL DEFAULT 'saved',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (pet_id, product_id),
                FOREIGN KEY (pet_id) REFERENCES pet_profiles(id) ON DELETE CASCADE,
                FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS livestock_operations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                operation_name TEXT NOT NULL,
                operation_type TEXT NOT NULL,
                total_head_count INTEGER DEFAULT 0,
                notes TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS feed_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                operation_id INTEGER,
                pet_id INTEGER,
                product_id INTEGER,
                feed_type TEXT NOT NULL,
                feed_name TEXT NOT NULL,
                supplier TEXT,
                quantity_per_feeding REAL,
                quantity_unit TEXT DEFAULT 'lbs',
                feedings_per_day INTEGER DEFAULT 2,
                current_stock REAL DEFAULT 0,
                notes TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (operation_id) REFERENCES livestock_operations(id) ON DELETE CASCADE,
                FOREIGN KEY (pet_id) REFERENCES pet_profiles(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_barcode ON products(barcode)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_name ON products(name COLLATE NOCASE)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reviews_product ON product_reviews(product_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_recalls_product ON product_recalls(product_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_scans_user ON scan_history(user_id, scanned_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_pets_user ON pet_profiles(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_feeds_user ON feed_records(user_id)")

        conn.commit()


# =============================================================================
# Row helpers
# =============================================================================


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    """Convert a row to a dict, decoding JSON and boolean columns."""
    if row is None:
        return None
    record = dict(row)
    for key in _JSON_COLUMNS.intersection(record):
        raw = record[key]
        if raw is None:
            record[key] = [] if key != "analysis_result" else None
            continue
        try:
            record[key] = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            record[key] = None
    for key in _BOOL_COLUMNS.intersection(record):
        record[key] = bool(record[key])
    return record


def _rows_to_dicts(rows: Iterable[sqlite3.Row]) -> List[Dict[str, Any]]:
    return [_row_to_dict(r) for r in rows]


def _encode(key: str, value: Any) -> Any:
    if key in _JSON_COLUMNS and value is not None:
        return json.dumps(value, ensure_ascii=False, default=str)
    if key in _BOOL_COLUMNS and value is not None:
        return 1 if value else 0
    return value


def _filter(data: Mapping[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    allowed = set(allowed)
    return {k: _encode(k, v) for k, v in data.items() if k in allowed}


def _insert(conn: sqlite3.Connection, table: str, values: Dict[str, Any]) -> int:
    cols = list(values.keys())
    placeholders = ", ".join("?" for _ in cols)
    cursor = conn.execute(
        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders})",
        [values[c] for c in cols],
    )
    return cursor.lastrowid


def _update(
    conn: sqlite3.Connection,
    table: str,
    row_id: int,
    values: Dict[str, Any],
    owner_id: Optional[str] = None,
) -> bool:
    """Update one row by id, optionally scoped to an owning user.

    Returns True if a row was updated.
    """
    if not values:
        query = f"SELECT id FROM {table} WHERE id = ?"
        params: List[Any] = [row_id]
        if owner_id is not None:
            query += " AND user_id = ?"
            params.append(owner_id)
        return conn.execute(query, params).fetchone() is not None
    set_clause = ", ".join(f"{k} = ?" for k in values)
    params = list(values.values())
    query = f"UPDATE {table} SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?"
    params.append(row_id)
    if owner_id is not None:
        query += " AND user_id = ?"
        params.append(owner_id)
    cursor = conn.execute(query, params)
    return cursor.rowcount > 0


# =============================================================================
# Users
# =============================================================================


def upsert_user(
    db_path: str,
    user_id: str,
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    is_admin: Optional[bool] = None,
) -> Dict[str, Any]:
    """Insert a user if missing, updating any fields that were given."""
    with get_connection(db_path) as conn:
        conn.execute("""
            INSERT INTO users (id, email, first_name, last_name, is_admin)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                email = COALESCE(excluded.email, users.email),
                first_name = COALESCE(excluded.first_name, users.first_name),
                last_name = COALESCE(excluded.last_name, users.last_name),
                is_admin = CASE WHEN ? IS NULL THEN users.is_admin ELSE excluded.is_admin END,
                updated_at = CURRENT_TIMESTAMP
        """, (
            user_id, email, first_name, last_name,
            1 if is_admin else 0,
            None if is_admin is None else 1,
        ))
        conn.commit()
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_dict(row)


def get_user(db_path: str, user_id: str) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_dict(row)


# =============================================================================
# Products
# =============================================================================


def get_products(
    db_path: str = DEFAULT_DB_PATH,
    limit: int = 50,
    offset: int = 0,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """List products, optionally filtered by a name/brand/category search term."""
    query = "SELECT * FROM products"
    params: List[Any] = []
    if search:
        like = f"%{search.strip()}%"
        query += " WHERE name LIKE ? OR brand LIKE ? OR category LIKE ?"
        params.extend([like, like, like])
    query += " ORDER BY name COLLATE NOCASE LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    with get_connection(db_path) as conn:
        return _rows_to_dicts(conn.execute(query, params).fetchall())


def get_product(db_path: str, product_id: int) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        return _row_to_dict(row)


def get_product_by_barcode(db_path: str, barcode: str) -> Optional[Dict[str, Any]]:
    """Exact barcode match. The oldest product wins if a barcode repeats."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM products WHERE barcode = ? ORDER BY id LIMIT 1",
            (barcode,),
        ).fetchone()
        return _row_to_dict(row)


def find_product_by_name(
    db_path: str,
    name: str,
    brand: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Case-insensitive exact name match, narrowed by brand when given."""
    query = "SELECT * FROM products WHERE name = ? COLLATE NOCASE"
    params: List[Any] = [name.strip()]
    if brand:
        query += " AND brand = ? COLLATE NOCASE"
        params.append(brand.strip())
    query += " ORDER BY id LIMIT 1"
    with get_connection(db_path) as conn:
        return _row_to_dict(conn.execute(query, params).fetchone())


def create_product(db_path: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Insert a product. Derived safety fields are left for analysis to fill."""
    values = _filter(data, PRODUCT_WRITABLE)
    values.setdefault("ingredients", "")
    with get_connection(db_path) as conn:
        product_id = _insert(conn, "products", values)
        conn.commit()
        row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        return _row_to_dict(row)


def update_product(
    db_path: str,
    product_id: int,
    updates: Mapping[str, Any],
) -> Optional[Dict[str, Any]]:
    """Update client-writable product fields.

    Changing the ingredient list or the baseline score clears
    ``last_analyzed`` so the next scan re-scores the product.
    """
    values = _filter(updates, PRODUCT_WRITABLE)
    if any(field in values for field in SCORE_INPUT_FIELDS):
        values["last_analyzed"] = None
    with get_connection(db_path) as conn:
        if not _update(conn, "products", product_id, values):
            return None
        conn.commit()
        row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        return _row_to_dict(row)


def update_product_analysis(
    db_path: str,
    product_id: int,
    analysis: Mapping[str, Any],
) -> Optional[Dict[str, Any]]:
    """Persist a fresh analysis and drop any admin clarity override."""
    with get_connection(db_path) as conn:
        cursor = conn.execute("""
            UPDATE products SET
                cosmic_score = ?,
                cosmic_clarity = ?,
                transparency_level = ?,
                suspicious_ingredients = ?,
                is_blacklisted = ?,
                last_analyzed = ?,
                clarity_override = NULL,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """, (
            analysis["cosmic_score"],
            analysis["cosmic_clarity"],
            analysis["transparency_level"],
            json.dumps(list(analysis.get("suspicious_ingredients") or []), ensure_ascii=False),
            1 if analysis.get("suspicious_ingredients") else 0,
            analysis.get("last_analyzed") or utcnow_iso(),
            product_id,
        ))
        if cursor.rowcount == 0:
            return None
        conn.commit()
        row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        return _row_to_dict(row)


def set_clarity_override(
    db_path: str,
    product_id: int,
    clarity: Optional[str],
) -> Optional[Dict[str, Any]]:
    """Set (or clear, with None) the admin clarity override."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "UPDATE products SET clarity_override = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (clarity, product_id),
        )
        if cursor.rowcount == 0:
            return None
        conn.commit()
        row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        return _row_to_dict(row)


# =============================================================================
# Reviews
# =============================================================================


def get_product_reviews(db_path: str, product_id: int) -> List[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM product_reviews WHERE product_id = ? ORDER BY created_at DESC, id DESC",
            (product_id,),
        ).fetchall()
        return _rows_to_dicts(rows)


def get_user_reviews(db_path: str, user_id: str) -> List[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM product_reviews WHERE user_id = ? ORDER BY created_at DESC, id DESC",
            (user_id,),
        ).fetchall()
        return _rows_to_dicts(rows)


def get_review(db_path: str, review_id: int) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM product_reviews WHERE id = ?", (review_id,)).fetchone()
        return _row_to_dict(row)


def create_review(
    db_path: str,
    product_id: int,
    user_id: str,
    data: Mapping[str, Any],
) -> Dict[str, Any]:
    values = _filter(data, REVIEW_WRITABLE)
    values["product_id"] = product_id
    values["user_id"] = user_id
    with get_connection(db_path) as conn:
        review_id = _insert(conn, "product_reviews", values)
        conn.commit()
        row = conn.execute("SELECT * FROM product_reviews WHERE id = ?", (review_id,)).fetchone()
        return _row_to_dict(row)


def update_review(
    db_path: str,
    review_id: int,
    updates: Mapping[str, Any],
) -> Optional[Dict[str, Any]]:
    """Update a review. Ownership is checked by the caller."""
    values = _filter(updates, REVIEW_WRITABLE)
    with get_connection(db_path) as conn:
        if not _update(conn, "product_reviews", review_id, values):
            return None
        conn.commit()
        row = conn.execute("SELECT * FROM product_reviews WHERE id = ?", (review_id,)).fetchone()
        return _row_to_dict(row)


def delete_review(db_path: str, review_id: int) -> bool:
    with get_connection(db_path) as conn:
        cursor = conn.execute("DELETE FROM product_reviews WHERE id = ?", (review_id,))
        conn.commit()
        return cursor.rowcount > 0


# =============================================================================
# Recalls
# =============================================================================


def get_active_recalls(db_path: str = DEFAULT_DB_PATH) -> List[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM product_recalls WHERE is_active = 1 ORDER BY recall_date DESC"
        ).fetchall()
        return _rows_to_dicts(rows)


def get_product_recalls(
    db_path: str,
    product_id: int,
    active_only: bool = False,
) -> List[Dict[str, Any]]:
    query = "SELECT * FROM product_recalls WHERE product_id = ?"
    if active_only:
        query += " AND is_active = 1"
    query += " ORDER BY recall_date DESC"
    with get_connection(db_path) as conn:
        return _rows_to_dicts(conn.execute(query, (product_id,)).fetchall())


def get_recall(db_path: str, recall_id: int) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM product_recalls WHERE id = ?", (recall_id,)).fetchone()
        return _row_to_dict(row)


def create_recall(db_path: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Create a recall. Raises sqlite3.IntegrityError on a duplicate recall number."""
    values = _filter(data, (
        "product_id", "recall_number", "reason", "severity", "recall_date",
        "affected_batches", "source", "source_url", "disposal_instructions",
    ))
    with get_connection(db_path) as conn:
        recall_id = _insert(conn, "product_recalls", values)
        conn.commit()
        row = conn.execute("SELECT * FROM product_recalls WHERE id = ?", (recall_id,)).fetchone()
        return _row_to_dict(row)


def deactivate_recall(db_path: str, recall_id: int) -> Optional[Dict[str, Any]]:
    """Recalls are never deleted, only deactivated."""
    with get_connection(db_path) as conn:
        if not _update(conn, "product_recalls", recall_id, {"is_active": 0}):
            return None
        conn.commit()
        row = conn.execute("SELECT * FROM product_recalls WHERE id = ?", (recall_id,)).fetchone()
        return _row_to_dict(row)


# =============================================================================
# Ingredient blacklist
# =============================================================================


def get_blacklist(db_path: str = DEFAULT_DB_PATH, active_only: bool = True) -> List[Dict[str, Any]]:
    """Return blacklist entries in insertion order."""
    query = "SELECT * FROM ingredient_blacklist"
    if active_only:
        query += " WHERE is_active = 1"
    query += " ORDER BY id"
    with get_connection(db_path) as conn:
        return _rows_to_dicts(conn.execute(query).fetchall())


def add_to_blacklist(
    db_path: str,
    ingredient_name: str,
    reason: str,
    severity: str,
    added_by_user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Add an ingredient, reactivating it if it was previously removed.

    Names are unique case-insensitively.
    """
    with get_connection(db_path) as conn:
        conn.execute("""
            INSERT INTO ingredient_blacklist (ingredient_name, reason, severity, added_by_user_id)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(ingredient_name) DO UPDATE SET
                reason = excluded.reason,
                severity = excluded.severity,
                is_active = 1,
                updated_at = CURRENT_TIMESTAMP
        """, (ingredient_name.strip(), reason, severity, added_by_user_id))
        conn.commit()
        row = conn.execute(
            "SELECT * FROM ingredient_blacklist WHERE ingredient_name = ? COLLATE NOCASE",
            (ingredient_name.strip(),),
        ).fetchone()
        return _row_to_dict(row)


def deactivate_blacklist_entry(db_path: str, entry_id: int) -> bool:
    with get_connection(db_path) as conn:
        updated = _update(conn, "ingredient_blacklist", entry_id, {"is_active": 0})
        conn.commit()
        return updated


# =============================================================================
# Scan history (append-only)
# =============================================================================


def create_scan_record(
    db_path: str,
    user_id: str,
    scanned_data: Optional[str],
    analysis_result: Optional[Mapping[str, Any]] = None,
    product_id: Optional[int] = None,
    scan_kind: Optional[str] = None,
) -> Dict[str, Any]:
    """Append one scan history record in a single transaction."""
    with get_connection(db_path) as conn:
        with conn:
            scan_id = _insert(conn, "scan_history", {
                "user_id": user_id,
                "product_id": product_id,
                "scan_kind": scan_kind,
                "scanned_data": scanned_data,
                "analysis_result": _encode("analysis_result", analysis_result),
            })
        row = conn.execute("SELECT * FROM scan_history WHERE id = ?", (scan_id,)).fetchone()
        return _row_to_dict(row)


def get_user_scan_history(
    db_path: str,
    user_id: str,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    query = "SELECT * FROM scan_history WHERE user_id = ? ORDER BY scanned_at DESC, id DESC"
    params: List[Any] = [user_id]
    if limit:
        query += " LIMIT ?"
        params.append(limit)
    with get_connection(db_path) as conn:
        return _rows_to_dicts(conn.execute(query, params).fetchall())


def export_scan_history(db_path: str, user_id: str) -> pd.DataFrame:
    """Scan history joined with current product names, for CSV export."""
    query = """
        SELECT s.id AS scan_id,
               s.scanned_at,
               s.scan_kind,
               s.scanned_data,
               s.product_id,
               p.name AS product_name,
               p.brand AS product_brand,
               s.analysis_result
        FROM scan_history s
        LEFT JOIN products p ON p.id = s.product_id
        WHERE s.user_id = ?
        ORDER BY s.scanned_at DESC, s.id DESC
    """
    with get_connection(db_path) as conn:
        return pd.read_sql_query(query, conn, params=(user_id,))


# =============================================================================
# Pets and saved products
# =============================================================================


def get_user_pets(db_path: str, user_id: str) -> List[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM pet_profiles WHERE user_id = ? AND is_active = 1 ORDER BY name",
            (user_id,),
        ).fetchall()
        return _rows_to_dicts(rows)


def get_pet(db_path: str, pet_id: int) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM pet_profiles WHERE id = ?", (pet_id,)).fetchone()
        return _row_to_dict(row)


def create_pet(db_path: str, user_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    values = _filter(data, PET_WRITABLE)
    values["user_id"] = user_id
    with get_connection(db_path) as conn:
        pet_id = _insert(conn, "pet_profiles", values)
        conn.commit()
        row = conn.execute("SELECT * FROM pet_profiles WHERE id = ?", (pet_id,)).fetchone()
        return _row_to_dict(row)


def update_pet(
    db_path: str,
    pet_id: int,
    user_id: str,
    updates: Mapping[str, Any],
) -> Optional[Dict[str, Any]]:
    values = _filter(updates, PET_WRITABLE)
    with get_connection(db_path) as conn:
        if not _update(conn, "pet_profiles", pet_id, values, owner_id=user_id):
            return None
        conn.commit()
        row = conn.execute("SELECT * FROM pet_profiles WHERE id = ?", (pet_id,)).fetchone()
        return _row_to_dict(row)


def delete_pet(db_path: str, pet_id: int, user_id: str) -> bool:
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "DELETE FROM pet_profiles WHERE id = ? AND user_id = ?",
            (pet_id, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0


def get_pet_saved_products(db_path: str, pet_id: int) -> List[Dict[str, Any]]:
    """Saved products for a pet, with the product's current name and clarity."""
    with get_connection(db_path) as conn:
        rows = conn.execute("""
            SELECT sp.*,
                   p.name AS product_name,
                   p.brand AS product_brand,
                   p.cosmic_score,
                   COALESCE(p.clarity_override, p.cosmic_clarity) AS cosmic_clarity
            FROM saved_products sp
            JOIN products p ON p.id = sp.product_id
            WHERE sp.pet_id = ?
            ORDER BY sp.created_at DESC, sp.id DESC
        """, (pet_id,)).fetchall()
        return _rows_to_dicts(rows)


def save_product_for_pet(
    db_path: str,
    user_id: str,
    pet_id: int,
    product_id: int,
    status: str = "saved",
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Save a product for a pet; saving again updates status and notes."""
    with get_connection(db_path) as conn:
        conn.execute("""
            INSERT INTO saved_products (user_id, pet_id, product_id, status, notes)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(pet_id, product_id) DO UPDATE SET
                status = excluded.status,
                notes = COALESCE(excluded.notes, saved_products.notes),
                updated_at = CURRENT_TIMESTAMP
        """, (user_id, pet_id, product_id, status, notes))
        conn.commit()
        row = conn.execute(
            "SELECT * FROM saved_products WHERE pet_id = ? AND product_id = ?",
            (pet_id, product_id),
        ).fetchone()
        return _row_to_dict(row)


def remove_saved_product(db_path: str, saved_id: int, user_id: str) -> bool:
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "DELETE FROM saved_products WHERE id = ? AND user_id = ?",
            (saved_id, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0


# =============================================================================
# Livestock operations and feed tracking
# =============================================================================


def get_user_operations(db_path: str, user_id: str) -> List[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM livestock_operations WHERE user_id = ? AND is_active = 1 ORDER BY operation_name",
            (user_id,),
        ).fetchall()
        return _rows_to_dicts(rows)


def get_operation(db_path: str, operation_id: int) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM livestock_operations WHERE id = ?", (operation_id,)
        ).fetchone()
        return _row_to_dict(row)


def create_operation(db_path: str, user_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    values = _filter(data, OPERATION_WRITABLE)
    values["user_id"] = user_id
    with get_connection(db_path) as conn:
        operation_id = _insert(conn, "livestock_operations", values)
        conn.commit()
        row = conn.execute(
            "SELECT * FROM livestock_operations WHERE id = ?", (operation_id,)
        ).fetchone()
        return _row_to_dict(row)


def get_feed_records(
    db_path: str,
    user_id: str,
    operation_id: Optional[int] = None,
    pet_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    query = "SELECT * FROM feed_records WHERE user_id = ? AND is_active = 1"
    params: List[Any] = [user_id]
    if operation_id is not None:
        query += " AND operation_id = ?"
        params.append(operation_id)
    if pet_id is not None:
        query += " AND pet_id = ?"
        params.append(pet_id)
    query += " ORDER BY feed_name"
    with get_connection(db_path) as conn:
        return _rows_to_dicts(conn.execute(query, params).fetchall())


def get_feed_record(db_path: str, feed_id: int) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM feed_records WHERE id = ?", (feed_id,)).fetchone()
        return _row_to_dict(row)


def create_feed_record(db_path: str, user_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    values = _filter(data, FEED_WRITABLE)
    values["user_id"] = user_id
    with get_connection(db_path) as conn:
        feed_id = _insert(conn, "feed_records", values)
        conn.commit()
        row = conn.execute("SELECT * FROM feed_records WHERE id = ?", (feed_id,)).fetchone()
        return _row_to_dict(row)


def update_feed_record(
    db_path: str,
    feed_id: int,
    user_id: str,
    updates: Mapping[str, Any],
) -> Optional[Dict[str, Any]]:
    values = _filter(updates, FEED_WRITABLE)
    with get_connection(db_path) as conn:
        if not _update(conn, "feed_records", feed_id, values, owner_id=user_id):
            return None
        conn.commit()
        row = conn.execute("SELECT * FROM feed_records WHERE id = ?", (feed_id,)).fetchone()
        return _row_to_dict(row)


def delete_feed_record(db_path: str, feed_id: int, user_id: str) -> bool:
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "DELETE FROM feed_records WHERE id = ? AND user_id = ?",
            (feed_id, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0


# =============================================================================
# Analytics
# =============================================================================


def get_analytics(db_path: str = DEFAULT_DB_PATH) -> Dict[str, int]:
    """Counts for the admin dashboard. Clarity counts use the displayed clarity."""
    with get_connection(db_path) as conn:
        row = conn.execute("""
            SELECT
                (SELECT COUNT(*) FROM products) AS total_products,
                (SELECT COUNT(*) FROM users) AS total_users,
                (SELECT COUNT(*) FROM products
                    WHERE COALESCE(clarity_override, cosmic_clarity) = 'cursed') AS cursed_products,
                (SELECT COUNT(*) FROM products
                    WHERE COALESCE(clarity_override, cosmic_clarity) = 'blessed') AS blessed_products,
                (SELECT COUNT(*) FROM product_recalls WHERE is_active = 1) AS active_recalls,
                (SELECT COUNT(*) FROM ingredient_blacklist WHERE is_active = 1) AS blacklisted_ingredients,
                (SELECT COUNT(*) FROM scan_history) AS total_scans
        """).fetchone()
        return {k: int(row[k] or 0) for k in row.keys()}
