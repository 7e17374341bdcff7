"""Pydantic models for the daily metrics pipeline."""
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Iterator, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Source(str, Enum):
    """Upstream platforms feeding the daily record."""

    META = "meta"
    GOOGLE = "google"
    COMMERCE = "commerce"


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class DateWindow(BaseModel):
    """Half-open range of calendar dates [start, end)."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date = Field(..., description="Exclusive upper bound")

    @model_validator(mode="after")
    def _check_bounds(self) -> "DateWindow":
        if self.end <= self.start:
            raise ValueError(
                f"window end must be after start: {self.start} >= {self.end}"
            )
        return self

    def days(self) -> Iterator[date]:
        current = self.start
        while current < self.end:
            yield current
            current += timedelta(days=1)

    def day_keys(self) -> list[str]:
        return [day.isoformat() for day in self.days()]

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    @property
    def last_day(self) -> date:
        """Inclusive last date, for APIs that take closed ranges."""
        return self.end - timedelta(days=1)

    def local_bounds(self, tz: ZoneInfo) -> tuple[datetime, datetime]:
        """Local midnights bounding the window in the given timezone."""
        return (
            datetime.combine(self.start, time.min, tzinfo=tz),
            datetime.combine(self.end, time.min, tzinfo=tz),
        )

    def utc_bounds(self, tz: ZoneInfo) -> tuple[str, str]:
        """Inclusive start and exclusive end instants as UTC ISO-8601 strings."""
        start_dt, end_dt = self.local_bounds(tz)
        return _utc_iso(start_dt), _utc_iso(end_dt)

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


class TaxLine(BaseModel):
    price: float = 0.0


class LineItem(BaseModel):
    quantity: int = 0
    unit_price: float = 0.0
    tax_lines: list[TaxLine] = Field(default_factory=list)


class RefundLineItem(BaseModel):
    subtotal: float = 0.0
    tax: float = 0.0


class RefundShippingLine(BaseModel):
    amount: float = 0.0
    tax: float = 0.0


class OrderAdjustment(BaseModel):
    amount: float = 0.0
    reason: Optional[str] = None


class Refund(BaseModel):
    created_at: Optional[datetime] = None
    refund_line_items: list[RefundLineItem] = Field(default_factory=list)
    refund_shipping_lines: list[RefundShippingLine] = Field(default_factory=list)
    order_adjustments: list[OrderAdjustment] = Field(default_factory=list)


class RawOrder(BaseModel):
    """Commerce order as returned by the paginated orders query."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Externally assigned order id (dedup key)")
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    test: bool = False
    total_price: float = 0.0
    subtotal_price: float = 0.0
    total_discounts: float = 0.0
    total_tax: float = 0.0
    line_items: list[LineItem] = Field(default_factory=list)
    payment_gateway_names: list[str] = Field(default_factory=list)
    refunds: list[Refund] = Field(default_factory=list)


class NormalizedOrder(BaseModel):
    """Computation-ready projection of a RawOrder."""

    id: str
    created_at: datetime
    cancelled: bool = False
    gross_sales: float = 0.0
    total_taxes: float = 0.0
    discount_amount: float = 0.0
    subtotal_price: float = 0.0
    total_price: float = 0.0
    refund_amount: float = 0.0
    refund_count: int = 0
    is_cod: bool = False
    is_prepaid: bool = False
    payment_gateway_names: list[str] = Field(default_factory=list)


class MetaDailyMetrics(BaseModel):
    meta_spend: float = 0.0
    meta_revenue: float = 0.0


class GoogleDailyMetrics(BaseModel):
    google_spend: float = 0.0
    google_roas: float = 0.0
    google_sales: float = 0.0


class CommerceDailyMetrics(BaseModel):
    gross_sales: float = 0.0
    total_taxes: float = 0.0
    discount_amount: float = 0.0
    subtotal_price: float = 0.0
    total_price: float = 0.0
    refund_amount: float = 0.0
    order_count: int = 0
    cancelled_order_count: int = 0
    cod_order_count: int = 0
    prepaid_order_count: int = 0


class DailyMetricsRecord(BaseModel):
    """Persisted daily metrics, unique per (brand_id, date)."""

    brand_id: str
    date: str = Field(..., description="YYYY-MM-DD in the store timezone")
    meta_spend: float = 0.0
    meta_revenue: float = 0.0
    google_spend: float = 0.0
    google_roas: float = 0.0
    google_sales: float = 0.0
    total_sales: float = 0.0
    refund_amount: float = 0.0
    cod_order_count: int = 0
    prepaid_order_count: int = 0
    total_spend: float = 0.0
    gross_roi: float = 0.0


class RefundRecord(BaseModel):
    """Latest refund totals for one order."""

    brand_id: str
    order_id: str
    order_created_at: datetime
    refund_amount: float = 0.0
    refund_count: int = 0
    last_refund_at: Optional[datetime] = None


class ShopifyCredentials(BaseModel):
    shop_name: str
    access_token: str

    @property
    def shop_domain(self) -> str:
        """Shop name without protocol or trailing slash."""
        domain = self.shop_name.strip()
        for prefix in ("https://", "http://"):
            if domain.startswith(prefix):
                domain = domain[len(prefix):]
        return domain.rstrip("/")


class MetaCredentials(BaseModel):
    access_token: str
    ad_account_ids: list[str] = Field(default_factory=list)


class GoogleAdAccount(BaseModel):
    customer_id: str
    manager_id: Optional[str] = None


class GoogleCredentials(BaseModel):
    refresh_token: str
    accounts: list[GoogleAdAccount] = Field(default_factory=list)


class BrandCredentials(BaseModel):
    """Per-brand platform credentials; each platform block is optional."""

    brand_id: str
    shopify: Optional[ShopifyCredentials] = None
    meta: Optional[MetaCredentials] = None
    google: Optional[GoogleCredentials] = None


class ShopProfile(BaseModel):
    iana_timezone: str = "UTC"
    currency: str = "USD"


class FailedWindow(BaseModel):
    start: str
    end: str
    error: str


class AggregateResult(BaseModel):
    """Structured outcome of one pipeline run."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    data: list[dict[str, Any]] = Field(default_factory=list)
    total_chunks: Optional[int] = Field(None, alias="totalChunks")
    total_saved_entries: Optional[int] = Field(None, alias="totalSavedEntries")
    failed_windows: list[FailedWindow] = Field(
        default_factory=list, alias="failedWindows"
    )
    mode: Optional[str] = None

    def to_payload(self) -> dict:
        """Camel-cased dict for external callers."""
        return self.model_dump(by_alias=True, exclude_none=True)
