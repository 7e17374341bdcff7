"""Daily metrics layer.

Aggregates per-source daily partials into one record per brand and date:
- Commerce orders bucketed by store-local date, with refund reconciliation
- Meta and Google Ads spend and revenue merged in
- SQLite persistence with idempotent (brand_id, date) upserts

The orchestrator lives in ``metrics.orchestrator``; it is not re-exported
here because the source modules import chunking and merge helpers from this
package.
"""
from .chunking import split_by_months, split_date_range
from .merge import MergeMode, merge, merge_incremental
from .schema import init_database
from .store import MetricsStore, SQLiteCredentialStore

__all__ = [
    "MergeMode",
    "MetricsStore",
    "SQLiteCredentialStore",
    "init_database",
    "merge",
    "merge_incremental",
    "split_by_months",
    "split_date_range",
]
