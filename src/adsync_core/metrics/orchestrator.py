"""Backfill orchestrator.

Splits a date range into top-level windows, fetches every required source
per window concurrently, merges the partials and upserts the daily records.
Failures of one source or one window are recorded and never abort the run.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo

from redis.asyncio import Redis
from redis.asyncio.lock import Lock as AsyncRedisLock

from ..config import PipelineConfig
from ..schemas.metrics import (
    AggregateResult,
    BrandCredentials,
    DailyMetricsRecord,
    DateWindow,
    FailedWindow,
    Source,
)
from ..transport.exceptions import FetchError, PartialFailure
from .aggregation import CommerceAggregator
from .chunking import split_by_months
from .debug_log import LoggerRegistry
from .merge import MergeMode, PartialMetrics, merge, merge_incremental
from .notifications import NotificationChannel, build_completion_payload
from .refunds import RefundReconciler
from .store import MetricsStore, SQLiteCredentialStore


logger = logging.getLogger(__name__)


def _resolve_timezone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except Exception:
        logger.warning("Invalid store timezone '%s', using UTC", tz_name)
        return ZoneInfo("UTC")


@dataclass
class _RunContext:
    brand_id: str
    credentials: BrandCredentials
    tz: ZoneInfo
    mode: MergeMode
    new_source: Optional[Source]


class MetricsOrchestrator:
    """Runs one backfill for one brand and reports an AggregateResult."""

    def __init__(
        self,
        config: PipelineConfig,
        store: MetricsStore,
        credential_store: SQLiteCredentialStore,
        order_reader: Any,
        meta_source: Any = None,
        google_source: Any = None,
        reconciler: Optional[RefundReconciler] = None,
        notifier: Optional[NotificationChannel] = None,
        logger_registry: Optional[LoggerRegistry] = None,
        redis: Optional[Redis] = None,
    ) -> None:
        """Initialize orchestrator with injected collaborators.

        Args:
            config: Pipeline configuration (window sizes, concurrency)
            store: Daily metrics store
            credential_store: Per-brand credential lookup
            order_reader: PaginatedOrderReader (or compatible)
            meta_source: MetaInsightsSource, None when Meta is unavailable
            google_source: GoogleAdsSource, None when Google Ads is unavailable
            reconciler: Refund reconciler used during commerce aggregation
            notifier: Completion notification channel
            logger_registry: Per-date debug loggers, closed after each run
            redis: Redis client for the per-brand run lock
        """
        self.config = config
        self.store = store
        self.credential_store = credential_store
        self.order_reader = order_reader
        self.meta_source = meta_source
        self.google_source = google_source
        self.reconciler = reconciler
        self.notifier = notifier
        self.logger_registry = logger_registry
        self.redis = redis
        self.aggregator = CommerceAggregator(
            reconciler=reconciler, logger_registry=logger_registry
        )

    @staticmethod
    def lock_key(brand_id: str) -> str:
        return f"adsync:metrics:backfill_lock:{brand_id}"

    async def run(
        self,
        brand_id: str,
        start_date: date,
        end_date: date,
        user_id: Optional[str] = None,
        new_source: Optional[Union[Source, str]] = None,
    ) -> AggregateResult:
        """Backfill daily metrics for the inclusive range [start_date, end_date].

        Never raises for fetch or store failures; precondition failures are
        returned with success=False.
        """
        lock: Optional[AsyncRedisLock] = None
        try:
            result = await self._check_preconditions(
                brand_id, start_date, end_date, new_source
            )
            if isinstance(result, AggregateResult):
                return await self._finish(result, brand_id, user_id)
            context = result

            acquired, lock = await self._acquire_lock(brand_id)
            if not acquired:
                return await self._finish(
                    AggregateResult(
                        success=False,
                        message=f"A backfill is already running for brand {brand_id}",
                    ),
                    brand_id,
                    user_id,
                )

            result = await self._run_windows(context, start_date, end_date)
            return await self._finish(result, brand_id, user_id)
        except Exception as exc:
            logger.error(
                "Backfill aborted for brand=%s: %s", brand_id, exc, exc_info=True
            )
            return await self._finish(
                AggregateResult(success=False, message=f"Backfill failed: {exc}"),
                brand_id,
                user_id,
            )
        finally:
            await self._release_lock_best_effort(lock, brand_id)
            if self.logger_registry is not None:
                self.logger_registry.close()

    async def _check_preconditions(
        self,
        brand_id: str,
        start_date: date,
        end_date: date,
        new_source: Optional[Union[Source, str]],
    ) -> Union[_RunContext, AggregateResult]:
        if start_date > end_date:
            return AggregateResult(
                success=False,
                message=f"Invalid date range: {start_date} is after {end_date}",
            )

        source: Optional[Source] = None
        if new_source is not None:
            try:
                source = Source(new_source)
            except ValueError:
                return AggregateResult(
                    success=False, message=f"Unknown source: {new_source}"
                )

        credentials = self.credential_store.get_credentials(brand_id)
        if credentials is None:
            return AggregateResult(
                success=False, message=f"No credentials found for brand {brand_id}"
            )
        if credentials.shopify is None:
            return AggregateResult(
                success=False,
                message=f"Shopify credentials missing for brand {brand_id}",
            )

        try:
            profile = await self.order_reader.fetch_shop_profile(credentials.shopify)
        except FetchError as exc:
            logger.error("Shop profile unavailable for brand=%s: %s", brand_id, exc)
            return AggregateResult(
                success=False, message=f"Failed to read shop profile: {exc}"
            )

        mode = MergeMode.FULL
        if source is not None:
            existing = self.store.find_daily_metrics(
                brand_id,
                start_date.isoformat(),
                (end_date + timedelta(days=1)).isoformat(),
            )
            if existing:
                mode = MergeMode.INCREMENTAL

        logger.info(
            "Backfill for brand=%s %s..%s mode=%s tz=%s",
            brand_id,
            start_date,
            end_date,
            mode.value,
            profile.iana_timezone,
        )
        return _RunContext(
            brand_id=brand_id,
            credentials=credentials,
            tz=_resolve_timezone(profile.iana_timezone),
            mode=mode,
            new_source=source,
        )

    async def _acquire_lock(
        self, brand_id: str
    ) -> tuple[bool, Optional[AsyncRedisLock]]:
        """Take the per-brand lock without blocking.

        Without a Redis client the run proceeds unlocked.
        """
        if self.redis is None:
            return True, None

        lock = AsyncRedisLock(
            self.redis,
            name=self.lock_key(brand_id),
            timeout=self.config.lock_ttl_seconds,
            blocking=False,
        )
        acquired = await lock.acquire(blocking=False)
        if not acquired:
            logger.warning("Backfill lock held for brand=%s", brand_id)
            return False, None

        logger.info("Acquired backfill lock for brand=%s", brand_id)
        return True, lock

    async def _release_lock_best_effort(
        self, lock: Optional[AsyncRedisLock], brand_id: str
    ) -> None:
        if lock is None:
            return
        try:
            await lock.release()
            logger.info("Released backfill lock for brand=%s", brand_id)
        except Exception as exc:
            logger.error("Failed to release lock for brand=%s: %s", brand_id, exc)

    async def _run_windows(
        self, context: _RunContext, start_date: date, end_date: date
    ) -> AggregateResult:
        windows = split_by_months(
            start_date, end_date, self.config.backfill_window_months
        )
        semaphore = asyncio.Semaphore(self.config.max_concurrent_windows)

        async def bounded(window: DateWindow) -> list[DailyMetricsRecord]:
            async with semaphore:
                return await self._process_window(context, window)

        outcomes = await asyncio.gather(
            *(bounded(window) for window in windows), return_exceptions=True
        )

        saved: list[DailyMetricsRecord] = []
        failed: list[FailedWindow] = []
        for window, outcome in zip(windows, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Window %s failed for brand=%s: %s",
                    window,
                    context.brand_id,
                    outcome,
                    exc_info=outcome,
                )
                failed.append(
                    FailedWindow(
                        start=window.start.isoformat(),
                        end=window.end.isoformat(),
                        error=str(outcome),
                    )
                )
                continue
            saved.extend(outcome)

        saved.sort(key=lambda record: record.date)
        success = not failed or len(failed) < len(windows)
        message = f"Saved {len(saved)} daily entries across {len(windows)} windows"
        if failed:
            message += f"; {len(failed)} windows failed"

        return AggregateResult(
            success=success,
            message=message,
            data=[record.model_dump() for record in saved],
            total_chunks=len(windows),
            total_saved_entries=len(saved),
            failed_windows=failed,
            mode=context.mode.value,
        )

    def _required_sources(self, context: _RunContext) -> list[Source]:
        if context.mode == MergeMode.INCREMENTAL and context.new_source is not None:
            return [context.new_source]
        return [Source.META, Source.GOOGLE, Source.COMMERCE]

    async def _fetch_source(
        self, context: _RunContext, source: Source, window: DateWindow
    ) -> Optional[dict[str, PartialMetrics]]:
        """Fetch one source's partials; None when the source is not configured."""
        credentials = context.credentials

        if source == Source.META:
            if self.meta_source is None or credentials.meta is None:
                return None
            return await self.meta_source.fetch_daily(credentials.meta, window)

        if source == Source.GOOGLE:
            if self.google_source is None or credentials.google is None:
                return None
            return await self.google_source.fetch_daily(credentials.google, window)

        orders = await self.order_reader.read_range(
            credentials.shopify, window, context.tz
        )
        return self.aggregator.aggregate(context.brand_id, orders, window, context.tz)

    async def _collect_partials(
        self, context: _RunContext, window: DateWindow
    ) -> dict[Source, dict[str, PartialMetrics]]:
        sources = self._required_sources(context)
        outcomes = await asyncio.gather(
            *(self._fetch_source(context, source, window) for source in sources),
            return_exceptions=True,
        )

        window_start = window.start.isoformat()
        window_end = window.end.isoformat()
        partials: dict[Source, dict[str, PartialMetrics]] = {}

        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, BaseException):
                failure = PartialFailure(f"{source.value} {window}", outcome)
                logger.error("Partial failure for brand=%s: %s", context.brand_id, failure)
                self.store.record_source_status(
                    context.brand_id,
                    source.value,
                    window_start,
                    window_end,
                    "failed",
                    str(outcome),
                )
                partials[source] = {}
            elif outcome is None:
                logger.info(
                    "Source %s not configured for brand=%s, skipping",
                    source.value,
                    context.brand_id,
                )
                self.store.record_source_status(
                    context.brand_id, source.value, window_start, window_end, "skipped"
                )
                partials[source] = {}
            else:
                self.store.record_source_status(
                    context.brand_id,
                    source.value,
                    window_start,
                    window_end,
                    "success",
                    f"{len(outcome)} days",
                )
                partials[source] = outcome

        return partials

    async def _process_window(
        self, context: _RunContext, window: DateWindow
    ) -> list[DailyMetricsRecord]:
        logger.info("Processing window %s for brand=%s", window, context.brand_id)
        partials = await self._collect_partials(context, window)

        if context.mode == MergeMode.INCREMENTAL and context.new_source is not None:
            existing = self.store.find_daily_metrics(
                context.brand_id, window.start.isoformat(), window.end.isoformat()
            )
            records = merge_incremental(
                context.brand_id,
                existing,
                context.new_source,
                partials.get(context.new_source) or {},
                window,
            )
        else:
            records = merge(context.brand_id, partials, window)

        self.store.bulk_upsert_daily_metrics(records)
        logger.info(
            "Window %s saved %s records for brand=%s",
            window,
            len(records),
            context.brand_id,
        )
        return records

    async def _finish(
        self, result: AggregateResult, brand_id: str, user_id: Optional[str]
    ) -> AggregateResult:
        if result.success:
            logger.info("Backfill finished for brand=%s: %s", brand_id, result.message)
        else:
            logger.error("Backfill failed for brand=%s: %s", brand_id, result.message)

        if self.notifier is not None:
            await self.notifier.publish(
                build_completion_payload(result.success, result.message, brand_id, user_id)
            )
        return result
