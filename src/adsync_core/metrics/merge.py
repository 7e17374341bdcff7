"""Merge per-source daily partials into persisted daily records.

Two paths, chosen once per run:
- FULL: every field is recomputed from the partials of all sources.
- INCREMENTAL: a newly connected source's contribution is added onto the
  stored records and only the derived fields are recomputed.
"""
import logging
from enum import Enum
from typing import Optional, Union

from ..schemas.metrics import (
    CommerceDailyMetrics,
    DailyMetricsRecord,
    DateWindow,
    GoogleDailyMetrics,
    MetaDailyMetrics,
    Source,
)


logger = logging.getLogger(__name__)


PartialMetrics = Union[MetaDailyMetrics, GoogleDailyMetrics, CommerceDailyMetrics]
PartialsBySource = dict[Source, dict[str, PartialMetrics]]


class MergeMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


def _round2(value: float) -> float:
    return round(float(value), 2)


def ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0 when the denominator is not positive."""
    if denominator <= 0:
        return 0.0
    return _round2(numerator / denominator)


def derive_totals(record: DailyMetricsRecord) -> DailyMetricsRecord:
    """Recompute total_spend and gross_roi from the record's own fields."""
    total_spend = _round2(record.meta_spend + record.google_spend)
    return record.model_copy(
        update={
            "total_spend": total_spend,
            "gross_roi": ratio(record.meta_revenue + record.google_sales, total_spend),
        }
    )


def build_record(
    brand_id: str,
    day: str,
    meta: Optional[MetaDailyMetrics] = None,
    google: Optional[GoogleDailyMetrics] = None,
    commerce: Optional[CommerceDailyMetrics] = None,
) -> DailyMetricsRecord:
    """Combine one day's partials; missing sources count as zero."""
    meta = meta or MetaDailyMetrics()
    google = google or GoogleDailyMetrics()
    commerce = commerce or CommerceDailyMetrics()

    record = DailyMetricsRecord(
        brand_id=brand_id,
        date=day,
        meta_spend=_round2(meta.meta_spend),
        meta_revenue=_round2(meta.meta_revenue),
        google_spend=_round2(google.google_spend),
        google_roas=_round2(google.google_roas),
        google_sales=_round2(google.google_sales),
        total_sales=_round2(commerce.total_price - commerce.refund_amount),
        refund_amount=_round2(commerce.refund_amount),
        cod_order_count=commerce.cod_order_count,
        prepaid_order_count=commerce.prepaid_order_count,
    )
    return derive_totals(record)


def merge(
    brand_id: str,
    partials_by_source: PartialsBySource,
    window: DateWindow,
) -> list[DailyMetricsRecord]:
    """Build one record per date in ``window`` with any source contribution.

    Args:
        brand_id: Brand identifier
        partials_by_source: Per-source maps of ISO date -> partial metrics
        window: Dates to consider

    Returns:
        Records sorted by date
    """
    meta = partials_by_source.get(Source.META) or {}
    google = partials_by_source.get(Source.GOOGLE) or {}
    commerce = partials_by_source.get(Source.COMMERCE) or {}

    records = []
    for day in window.day_keys():
        if day not in meta and day not in google and day not in commerce:
            continue
        records.append(
            build_record(
                brand_id,
                day,
                meta=meta.get(day),
                google=google.get(day),
                commerce=commerce.get(day),
            )
        )

    logger.debug("Merged %s records for brand=%s %s", len(records), brand_id, window)
    return records


def add_source_contribution(
    record: DailyMetricsRecord, source: Source, partial: PartialMetrics
) -> DailyMetricsRecord:
    """Add one source's partial onto a stored record and re-derive totals."""
    update: dict = {}

    if source == Source.META:
        update["meta_spend"] = _round2(record.meta_spend + partial.meta_spend)
        update["meta_revenue"] = _round2(record.meta_revenue + partial.meta_revenue)
    elif source == Source.GOOGLE:
        google_spend = _round2(record.google_spend + partial.google_spend)
        google_sales = _round2(record.google_sales + partial.google_sales)
        update["google_spend"] = google_spend
        update["google_sales"] = google_sales
        update["google_roas"] = ratio(google_sales, google_spend)
    elif source == Source.COMMERCE:
        update["total_sales"] = _round2(
            record.total_sales + partial.total_price - partial.refund_amount
        )
        update["refund_amount"] = _round2(record.refund_amount + partial.refund_amount)
        update["cod_order_count"] = record.cod_order_count + partial.cod_order_count
        update["prepaid_order_count"] = (
            record.prepaid_order_count + partial.prepaid_order_count
        )
    else:
        raise ValueError(f"Unknown source: {source}")

    return derive_totals(record.model_copy(update=update))


def merge_incremental(
    brand_id: str,
    existing: list[DailyMetricsRecord],
    new_source: Source,
    new_partials: dict[str, PartialMetrics],
    window: DateWindow,
) -> list[DailyMetricsRecord]:
    """Add a newly connected source onto stored records for ``window``.

    Dates with a new-source contribution but no stored record start from an
    all-zero record.
    """
    existing_by_date = {record.date: record for record in existing}

    records = []
    for day in window.day_keys():
        partial = new_partials.get(day)
        if partial is None:
            continue
        base = existing_by_date.get(day) or DailyMetricsRecord(
            brand_id=brand_id, date=day
        )
        records.append(add_source_contribution(base, new_source, partial))

    logger.debug(
        "Incremental merge of %s for brand=%s %s: %s records",
        new_source.value,
        brand_id,
        window,
        len(records),
    )
    return records
