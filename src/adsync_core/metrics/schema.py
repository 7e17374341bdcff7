"""SQLite schema definitions for the daily metrics store.

Database: data/adsync.db (WAL mode)
Tables: daily_metrics, order_refunds, brands, collector_state
"""
import logging
import sqlite3
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a WAL-mode connection with name-addressable rows."""
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_database(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist.

    Args:
        conn: Open SQLite connection
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    current_version = cursor.fetchone()[0] or 0

    if current_version < SCHEMA_VERSION:
        _apply_schema(conn)
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()
        logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
    else:
        logger.debug("Database schema up to date (version %s)", current_version)


def _apply_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS daily_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            brand_id TEXT NOT NULL,
            metric_date TEXT NOT NULL,
            meta_spend REAL NOT NULL DEFAULT 0,
            meta_revenue REAL NOT NULL DEFAULT 0,
            google_spend REAL NOT NULL DEFAULT 0,
            google_roas REAL NOT NULL DEFAULT 0,
            google_sales REAL NOT NULL DEFAULT 0,
            total_sales REAL NOT NULL DEFAULT 0,
            refund_amount REAL NOT NULL DEFAULT 0,
            cod_order_count INTEGER NOT NULL DEFAULT 0,
            prepaid_order_count INTEGER NOT NULL DEFAULT 0,
            total_spend REAL NOT NULL DEFAULT 0,
            gross_roi REAL NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(brand_id, metric_date)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS order_refunds (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            brand_id TEXT NOT NULL,
            order_id TEXT NOT NULL,
            order_created_at TEXT NOT NULL,
            refund_amount REAL NOT NULL DEFAULT 0,
            refund_count INTEGER NOT NULL DEFAULT 0,
            last_refund_at TEXT,
            UNIQUE(brand_id, order_id)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_refunds_order_created
        ON order_refunds(brand_id, order_created_at)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS brands (
            brand_id TEXT PRIMARY KEY,
            credentials_json TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS collector_state (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            brand_id TEXT NOT NULL,
            source_name TEXT NOT NULL,
            window_start TEXT NOT NULL,
            window_end TEXT NOT NULL,
            status TEXT NOT NULL,
            details TEXT,
            collected_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(brand_id, source_name, window_start)
        )
        """
    )


def record_collection_status(
    conn: sqlite3.Connection,
    brand_id: str,
    source_name: str,
    window_start: str,
    window_end: str,
    status: str,
    details: Optional[str] = None,
) -> None:
    """Record the outcome of one source for one window.

    Args:
        conn: SQLite connection
        brand_id: Brand identifier
        source_name: 'meta', 'google' or 'commerce'
        window_start: YYYY-MM-DD (inclusive)
        window_end: YYYY-MM-DD (exclusive)
        status: 'success', 'failed' or 'skipped'
        details: Optional summary or error message
    """
    conn.execute(
        """
        INSERT INTO collector_state (
            brand_id, source_name, window_start, window_end, status, details
        )
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(brand_id, source_name, window_start)
        DO UPDATE SET
            window_end=excluded.window_end,
            status=excluded.status,
            details=excluded.details,
            collected_at=CURRENT_TIMESTAMP
        """,
        (brand_id, source_name, window_start, window_end, status, details),
    )
    conn.commit()
