"""SQLite-backed document store for daily metrics, refunds and credentials.

All writes are upserts keyed by (brand_id, metric_date) or
(brand_id, order_id), so concurrent windows writing disjoint dates commute.
"""
import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from ..schemas.metrics import BrandCredentials, DailyMetricsRecord, RefundRecord
from .schema import init_database, record_collection_status


logger = logging.getLogger(__name__)


DAILY_METRIC_FIELDS = (
    "meta_spend",
    "meta_revenue",
    "google_spend",
    "google_roas",
    "google_sales",
    "total_sales",
    "refund_amount",
    "cod_order_count",
    "prepaid_order_count",
    "total_spend",
    "gross_roi",
)


def _row_to_record(row: sqlite3.Row) -> DailyMetricsRecord:
    return DailyMetricsRecord(
        brand_id=row["brand_id"],
        date=row["metric_date"],
        **{name: row[name] for name in DAILY_METRIC_FIELDS},
    )


def _row_to_refund(row: sqlite3.Row) -> RefundRecord:
    return RefundRecord(
        brand_id=row["brand_id"],
        order_id=row["order_id"],
        order_created_at=datetime.fromisoformat(row["order_created_at"]),
        refund_amount=row["refund_amount"],
        refund_count=row["refund_count"],
        last_refund_at=(
            datetime.fromisoformat(row["last_refund_at"])
            if row["last_refund_at"]
            else None
        ),
    )


class MetricsStore:
    """Daily metrics and refund records over one SQLite connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize store and ensure schema.

        Args:
            conn: Open SQLite connection (see schema.connect)
        """
        conn.row_factory = sqlite3.Row
        self.conn = conn
        init_database(conn)

    def find_one_daily_metrics(
        self, brand_id: str, metric_date: str
    ) -> Optional[DailyMetricsRecord]:
        cursor = self.conn.execute(
            "SELECT * FROM daily_metrics WHERE brand_id=? AND metric_date=?",
            (brand_id, metric_date),
        )
        row = cursor.fetchone()
        return _row_to_record(row) if row else None

    def find_daily_metrics(
        self, brand_id: str, start_date: str, end_date: str
    ) -> list[DailyMetricsRecord]:
        """Records with start_date <= metric_date < end_date, by date."""
        cursor = self.conn.execute(
            """
            SELECT * FROM daily_metrics
            WHERE brand_id=? AND metric_date>=? AND metric_date<?
            ORDER BY metric_date
            """,
            (brand_id, start_date, end_date),
        )
        return [_row_to_record(row) for row in cursor.fetchall()]

    def bulk_upsert_daily_metrics(self, records: list[DailyMetricsRecord]) -> int:
        """Insert or fully replace computed fields, one row per (brand, date).

        Returns:
            Number of records written
        """
        if not records:
            return 0

        columns = ", ".join(DAILY_METRIC_FIELDS)
        placeholders = ", ".join("?" for _ in DAILY_METRIC_FIELDS)
        updates = ",\n                ".join(
            f"{name}=excluded.{name}" for name in DAILY_METRIC_FIELDS
        )

        try:
            self.conn.executemany(
                f"""
                INSERT INTO daily_metrics (brand_id, metric_date, {columns})
                VALUES (?, ?, {placeholders})
                ON CONFLICT(brand_id, metric_date)
                DO UPDATE SET
                {updates},
                updated_at=CURRENT_TIMESTAMP
                """,
                [
                    (
                        record.brand_id,
                        record.date,
                        *(getattr(record, name) for name in DAILY_METRIC_FIELDS),
                    )
                    for record in records
                ],
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            self.conn.rollback()
            logger.error("SQLite upsert failed for daily metrics: %s", exc)
            raise

        logger.info("Upserted %s daily metrics records", len(records))
        return len(records)

    def find_refund_record(
        self, brand_id: str, order_id: str
    ) -> Optional[RefundRecord]:
        cursor = self.conn.execute(
            "SELECT * FROM order_refunds WHERE brand_id=? AND order_id=?",
            (brand_id, order_id),
        )
        row = cursor.fetchone()
        return _row_to_refund(row) if row else None

    def ensure_refund_record(
        self, brand_id: str, order_id: str, order_created_at: datetime
    ) -> None:
        """Create an empty refund record for the order if none exists."""
        self.conn.execute(
            """
            INSERT INTO order_refunds (brand_id, order_id, order_created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(brand_id, order_id) DO NOTHING
            """,
            (brand_id, order_id, order_created_at.isoformat()),
        )
        self.conn.commit()

    def set_refund_record(
        self,
        brand_id: str,
        order_id: str,
        refund_amount: float,
        refund_count: int,
    ) -> None:
        """Overwrite amount and count on an existing refund record."""
        cursor = self.conn.execute(
            """
            UPDATE order_refunds
            SET refund_amount=?, refund_count=?, last_refund_at=?
            WHERE brand_id=? AND order_id=?
            """,
            (
                refund_amount,
                refund_count,
                datetime.now(timezone.utc).isoformat(),
                brand_id,
                order_id,
            ),
        )
        if cursor.rowcount == 0:
            self.conn.rollback()
            raise LookupError(
                f"Refund record not found for brand={brand_id}, order={order_id}"
            )
        self.conn.commit()

    def record_source_status(
        self,
        brand_id: str,
        source_name: str,
        window_start: str,
        window_end: str,
        status: str,
        details: Optional[str] = None,
    ) -> None:
        record_collection_status(
            self.conn, brand_id, source_name, window_start, window_end, status, details
        )


class SQLiteCredentialStore:
    """Per-brand platform credentials stored as JSON documents."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        conn.row_factory = sqlite3.Row
        self.conn = conn
        init_database(conn)

    def get_credentials(self, brand_id: str) -> Optional[BrandCredentials]:
        cursor = self.conn.execute(
            "SELECT credentials_json FROM brands WHERE brand_id=?", (brand_id,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return BrandCredentials.model_validate(
            {**json.loads(row["credentials_json"]), "brand_id": brand_id}
        )

    def save_credentials(self, credentials: BrandCredentials) -> None:
        self.conn.execute(
            """
            INSERT INTO brands (brand_id, credentials_json)
            VALUES (?, ?)
            ON CONFLICT(brand_id)
            DO UPDATE SET
                credentials_json=excluded.credentials_json,
                updated_at=CURRENT_TIMESTAMP
            """,
            (credentials.brand_id, credentials.model_dump_json(exclude={"brand_id"})),
        )
        self.conn.commit()
