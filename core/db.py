import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from core.config import get_settings
from core.exceptions import DatabaseError
from core.logger import setup_logger

logger = setup_logger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT,
        full_name TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS businesses (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        business_type TEXT,
        base_currency TEXT NOT NULL DEFAULT 'USD',
        fiscal_year_start_month INTEGER NOT NULL DEFAULT 1,
        fiscal_year_start_day INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        business_id TEXT NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('revenue', 'expense', 'asset', 'liability', 'equity')),
        code TEXT,
        is_default INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        UNIQUE (business_id, name, type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id TEXT PRIMARY KEY,
        business_id TEXT NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('income', 'expense')),
        is_default INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS journal_entries (
        id TEXT PRIMARY KEY,
        business_id TEXT NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        transaction_date TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'posted',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS journal_lines (
        id TEXT PRIMARY KEY,
        journal_entry_id TEXT NOT NULL REFERENCES journal_entries(id) ON DELETE CASCADE,
        account_id TEXT REFERENCES accounts(id) ON DELETE SET NULL,
        type TEXT NOT NULL CHECK (type IN ('debit', 'credit')),
        amount REAL NOT NULL,
        position INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        business_id TEXT NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        category_id TEXT NOT NULL REFERENCES categories(id),
        amount REAL NOT NULL,
        currency TEXT NOT NULL,
        base_amount REAL NOT NULL,
        exchange_rate REAL NOT NULL DEFAULT 1,
        rate_estimated INTEGER NOT NULL DEFAULT 0,
        transaction_date TEXT NOT NULL,
        payment_method TEXT NOT NULL CHECK (payment_method IN ('cash', 'card', 'transfer', 'other')),
        client_vendor TEXT,
        notes TEXT,
        status TEXT NOT NULL DEFAULT 'posted',
        journal_entry_id TEXT REFERENCES journal_entries(id) ON DELETE SET NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exchange_rates (
        id TEXT PRIMARY KEY,
        from_currency TEXT NOT NULL,
        to_currency TEXT NOT NULL,
        rate REAL NOT NULL,
        date TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (from_currency, to_currency, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice_catalog_items (
        id TEXT PRIMARY KEY,
        business_id TEXT NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        unit_price REAL NOT NULL,
        unit TEXT NOT NULL DEFAULT 'unit',
        category TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoices (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        business_id TEXT NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        invoice_number TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        issue_date TEXT NOT NULL,
        due_date TEXT NOT NULL,
        client_name TEXT NOT NULL,
        client_email TEXT,
        client_address TEXT,
        client_phone TEXT,
        subtotal REAL NOT NULL DEFAULT 0,
        tax_rate REAL NOT NULL DEFAULT 0,
        tax_amount REAL NOT NULL DEFAULT 0,
        total_amount REAL NOT NULL DEFAULT 0,
        currency TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'draft',
        payment_status TEXT NOT NULL DEFAULT 'unpaid',
        notes TEXT,
        terms TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (business_id, invoice_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice_items (
        id TEXT PRIMARY KEY,
        invoice_id TEXT NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
        catalog_item_id TEXT REFERENCES invoice_catalog_items(id) ON DELETE SET NULL,
        description TEXT NOT NULL,
        quantity REAL NOT NULL,
        unit_price REAL NOT NULL,
        amount REAL NOT NULL,
        position INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice_payments (
        id TEXT PRIMARY KEY,
        invoice_id TEXT NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
        amount REAL NOT NULL,
        payment_date TEXT NOT NULL,
        payment_method TEXT,
        notes TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS planned_payments (
        id TEXT PRIMARY KEY,
        business_id TEXT NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        category_id TEXT REFERENCES categories(id) ON DELETE SET NULL,
        name TEXT NOT NULL,
        amount REAL NOT NULL,
        currency TEXT NOT NULL,
        due_date TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        notes TEXT,
        transaction_id TEXT REFERENCES transactions(id) ON DELETE SET NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notification_log (
        id TEXT PRIMARY KEY,
        business_id TEXT NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        notification_type TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_business ON transactions (business_id, transaction_date)",
    "CREATE INDEX IF NOT EXISTS idx_journal_business ON journal_entries (business_id, transaction_date)",
    "CREATE INDEX IF NOT EXISTS idx_invoices_business ON invoices (business_id, due_date)",
    "CREATE INDEX IF NOT EXISTS idx_planned_business ON planned_payments (business_id, due_date)",
]


def new_id() -> str:
    """Generate a new primary key."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """Current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, db_path: Optional[str] = None):
        self.settings = get_settings()
        self.db_path = db_path or self.settings.database_path

    def get_connection(self) -> sqlite3.Connection:
        """Create a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection that commits on success and rolls back on error.

        Several statements issued inside one ``with`` block form a single
        database transaction.
        """
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Database operation failed: {e}")
            raise DatabaseError("Database operation failed", details={"error": str(e)})
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Initialize database tables."""
        with self.connection() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info(f"Database initialized at {self.db_path}")

    def fetch_one(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        """Run a query and return the first row as a dict, or None."""
        with self.connection() as conn:
            row = conn.execute(query, params).fetchone()
            return dict(row) if row else None

    def fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a query and return all rows as dicts."""
        with self.connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""
        with self.connection() as conn:
            return conn.execute(query, params).rowcount

    def insert(self, table: str, values: Dict[str, Any], or_ignore: bool = False) -> int:
        """
        Insert a row from a column -> value mapping.

        Args:
            table: Table name (internal constant, never user input)
            values: Column values
            or_ignore: Use ``INSERT OR IGNORE`` to skip unique-constraint clashes

        Returns:
            Number of inserted rows (0 when ignored)
        """
        with self.connection() as conn:
            return insert_row(conn, table, values, or_ignore=or_ignore)


def insert_row(
    conn: sqlite3.Connection,
    table: str,
    values: Dict[str, Any],
    or_ignore: bool = False
) -> int:
    """Insert a row on an open connection (for multi-statement transactions)."""
    columns = ", ".join(values.keys())
    placeholders = ", ".join("?" for _ in values)
    verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
    cursor = conn.execute(
        f"{verb} INTO {table} ({columns}) VALUES ({placeholders})",
        tuple(values.values())
    )
    return cursor.rowcount


def update_row(
    conn: sqlite3.Connection,
    table: str,
    row_id: str,
    values: Dict[str, Any],
    scope: Optional[Dict[str, Any]] = None
) -> int:
    """
    Update a row by id on an open connection, optionally scoped by extra columns.

    Args:
        conn: Open connection
        table: Table name (internal constant)
        row_id: Primary key
        values: Columns to set
        scope: Extra equality filters (e.g. ``{"business_id": ...}``)

    Returns:
        Number of updated rows
    """
    if not values:
        return 0
    assignments = ", ".join(f"{column} = ?" for column in values)
    filters = {"id": row_id, **(scope or {})}
    where = " AND ".join(f"{column} = ?" for column in filters)
    cursor = conn.execute(
        f"UPDATE {table} SET {assignments} WHERE {where}",
        tuple(values.values()) + tuple(filters.values())
    )
    return cursor.rowcount


# Global DB instance
_db: Optional[Database] = None


def get_db() -> Database:
    global _db
    if _db is None:
        _db = Database()
    return _db


def reset_db() -> None:
    """Drop the cached database instance (useful for testing)."""
    global _db
    _db = None
