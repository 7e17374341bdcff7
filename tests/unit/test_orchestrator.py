"""Unit tests for MetricsOrchestrator with fake sources and in-memory SQLite."""
import asyncio
import sqlite3
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.adsync_core.config import PipelineConfig
from src.adsync_core.metrics.orchestrator import MetricsOrchestrator
from src.adsync_core.metrics.refunds import RefundReconciler
from src.adsync_core.metrics.store import MetricsStore, SQLiteCredentialStore
from src.adsync_core.schemas.metrics import (
    BrandCredentials,
    DailyMetricsRecord,
    GoogleAdAccount,
    GoogleCredentials,
    GoogleDailyMetrics,
    MetaCredentials,
    MetaDailyMetrics,
    NormalizedOrder,
    ShopifyCredentials,
    ShopProfile,
)
from src.adsync_core.transport.exceptions import FatalError, TransientError


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def store(conn):
    return MetricsStore(conn)


@pytest.fixture
def credential_store(conn):
    credential_store = SQLiteCredentialStore(conn)
    credential_store.save_credentials(
        BrandCredentials(
            brand_id="b1",
            shopify=ShopifyCredentials(shop_name="acme.myshopify.com", access_token="t"),
            meta=MetaCredentials(access_token="m", ad_account_ids=["1"]),
            google=GoogleCredentials(
                refresh_token="r", accounts=[GoogleAdAccount(customer_id="1")]
            ),
        )
    )
    return credential_store


@pytest.fixture
def config():
    return PipelineConfig(max_concurrent_windows=2, backfill_window_months=1)


@pytest.fixture
def order_reader():
    reader = MagicMock()
    reader.fetch_shop_profile = AsyncMock(return_value=ShopProfile(iana_timezone="UTC"))

    async def read_range(credentials, window, tz):
        if window.start == date(2024, 1, 1):
            return [
                NormalizedOrder(
                    id="1001",
                    created_at=datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc),
                    total_price=500.0,
                    refund_amount=50.0,
                    refund_count=1,
                    is_cod=True,
                )
            ]
        return []

    reader.read_range = AsyncMock(side_effect=read_range)
    return reader


@pytest.fixture
def meta_source():
    source = MagicMock()
    source.fetch_daily = AsyncMock(
        return_value={
            "2024-01-05": MetaDailyMetrics(meta_spend=100.0, meta_revenue=250.0)
        }
    )
    return source


@pytest.fixture
def google_source():
    source = MagicMock()
    source.fetch_daily = AsyncMock(
        return_value={
            "2024-01-05": GoogleDailyMetrics(
                google_spend=25.0, google_roas=2.0, google_sales=50.0
            )
        }
    )
    return source


@pytest.fixture
def notifier():
    channel = MagicMock()
    channel.publish = AsyncMock()
    return channel


@pytest.fixture
def orchestrator(
    config, store, credential_store, order_reader, meta_source, google_source, notifier
):
    return MetricsOrchestrator(
        config=config,
        store=store,
        credential_store=credential_store,
        order_reader=order_reader,
        meta_source=meta_source,
        google_source=google_source,
        reconciler=RefundReconciler(store),
        notifier=notifier,
    )


@pytest.mark.asyncio
async def test_full_run_merges_sources_and_persists(orchestrator, store, notifier):
    """A full run merges all sources, persists and notifies."""
    result = await orchestrator.run(
        "b1", date(2024, 1, 1), date(2024, 2, 15), user_id="u1"
    )

    assert result.success is True
    assert result.mode == "full"
    assert result.total_chunks == 2
    assert result.total_saved_entries == 1
    assert result.failed_windows == []

    record = store.find_one_daily_metrics("b1", "2024-01-05")
    assert record.meta_spend == 100.0
    assert record.google_spend == 25.0
    assert record.total_spend == 125.0
    assert record.total_sales == 450.0
    assert record.refund_amount == 50.0
    assert record.cod_order_count == 1
    assert record.gross_roi == 2.4

    refund = store.find_refund_record("b1", "1001")
    assert refund.refund_amount == 50.0

    payload = notifier.publish.await_args.args[0]
    assert payload["success"] is True
    assert payload["brandId"] == "b1"
    assert payload["userId"] == "u1"


@pytest.mark.asyncio
async def test_rerun_is_idempotent(orchestrator, store):
    """Running the same range twice leaves the same records."""
    await orchestrator.run("b1", date(2024, 1, 1), date(2024, 1, 31))
    first = store.find_daily_metrics("b1", "2024-01-01", "2024-02-01")

    await orchestrator.run("b1", date(2024, 1, 1), date(2024, 1, 31))

    assert store.find_daily_metrics("b1", "2024-01-01", "2024-02-01") == first


@pytest.mark.asyncio
async def test_source_failure_contributes_nothing(orchestrator, store, meta_source):
    """A failed source contributes zeros and is recorded as failed."""
    meta_source.fetch_daily.side_effect = FatalError("HTTP 400", status=400)

    result = await orchestrator.run("b1", date(2024, 1, 1), date(2024, 1, 31))

    assert result.success is True
    record = store.find_one_daily_metrics("b1", "2024-01-05")
    assert record.meta_spend == 0.0
    assert record.google_spend == 25.0
    status = store.conn.execute(
        "SELECT status, details FROM collector_state "
        "WHERE brand_id='b1' AND source_name='meta'"
    ).fetchone()
    assert status["status"] == "failed"
    assert "HTTP 400" in status["details"]


@pytest.mark.asyncio
async def test_window_failure_is_recorded_and_others_continue(
    orchestrator, store, order_reader
):
    """One failing window is reported while the rest are saved."""
    def upsert(records):
        if any(record.date.startswith("2024-01") for record in records):
            raise sqlite3.OperationalError("database is locked")
        return len(records)

    with patch.object(store, "bulk_upsert_daily_metrics", side_effect=upsert):
        result = await orchestrator.run("b1", date(2024, 1, 1), date(2024, 2, 15))

    assert result.success is True
    assert result.total_chunks == 2
    assert len(result.failed_windows) == 1
    assert result.failed_windows[0].start == "2024-01-01"
    assert result.failed_windows[0].end == "2024-02-01"
    assert "database is locked" in result.failed_windows[0].error
    assert "1 windows failed" in result.message


@pytest.mark.asyncio
async def test_all_windows_failing_is_unsuccessful(orchestrator, store):
    """The run fails when every window fails."""
    with patch.object(
        store,
        "bulk_upsert_daily_metrics",
        side_effect=sqlite3.OperationalError("disk I/O error"),
    ):
        result = await orchestrator.run("b1", date(2024, 1, 1), date(2024, 1, 31))

    assert result.success is False
    assert len(result.failed_windows) == 1


@pytest.mark.asyncio
async def test_incremental_mode_adds_only_new_source(
    orchestrator, store, meta_source, order_reader
):
    """Incremental runs fetch and add only the new source."""
    store.bulk_upsert_daily_metrics(
        [
            DailyMetricsRecord(
                brand_id="b1",
                date="2024-01-05",
                meta_spend=100.0,
                meta_revenue=240.0,
                total_sales=500.0,
                total_spend=100.0,
                gross_roi=2.4,
            )
        ]
    )

    result = await orchestrator.run(
        "b1", date(2024, 1, 1), date(2024, 1, 31), new_source="google"
    )

    assert result.mode == "incremental"
    meta_source.fetch_daily.assert_not_awaited()
    order_reader.read_range.assert_not_awaited()
    record = store.find_one_daily_metrics("b1", "2024-01-05")
    assert record.meta_spend == 100.0
    assert record.google_spend == 25.0
    assert record.total_spend == 125.0
    assert record.total_sales == 500.0
    assert record.gross_roi == 2.32


@pytest.mark.asyncio
async def test_new_source_without_stored_records_runs_full(orchestrator):
    """With nothing stored, a new source run falls back to full mode."""
    result = await orchestrator.run(
        "b1", date(2024, 1, 1), date(2024, 1, 31), new_source="google"
    )

    assert result.mode == "full"


@pytest.mark.asyncio
async def test_missing_credentials_fails_run(orchestrator, notifier):
    """An unknown brand fails before any fetch."""
    result = await orchestrator.run("unknown", date(2024, 1, 1), date(2024, 1, 31))

    assert result.success is False
    assert "No credentials" in result.message
    assert notifier.publish.await_args.args[0]["success"] is False


@pytest.mark.asyncio
async def test_missing_shopify_credentials_fails_run(orchestrator, credential_store):
    """A brand without Shopify credentials fails the run."""
    credential_store.save_credentials(
        BrandCredentials(brand_id="b2", meta=MetaCredentials(access_token="m"))
    )

    result = await orchestrator.run("b2", date(2024, 1, 1), date(2024, 1, 31))

    assert result.success is False
    assert "Shopify credentials missing" in result.message


@pytest.mark.asyncio
async def test_start_after_end_fails_run(orchestrator, order_reader):
    """An inverted range fails the run."""
    result = await orchestrator.run("b1", date(2024, 2, 1), date(2024, 1, 1))

    assert result.success is False
    order_reader.fetch_shop_profile.assert_not_awaited()


@pytest.mark.asyncio
async def test_unreachable_shop_fails_run(orchestrator, order_reader):
    """A shop profile fetch error fails the run."""
    order_reader.fetch_shop_profile.side_effect = TransientError("HTTP 503", status=503)

    result = await orchestrator.run("b1", date(2024, 1, 1), date(2024, 1, 31))

    assert result.success is False
    assert "shop profile" in result.message


@pytest.mark.asyncio
async def test_held_lock_fails_run_and_skips_fetch(
    config, store, credential_store, order_reader, meta_source
):
    """A held per-brand lock fails the run without fetching."""
    mock_lock = AsyncMock()
    mock_lock.acquire.return_value = False
    orchestrator = MetricsOrchestrator(
        config=config,
        store=store,
        credential_store=credential_store,
        order_reader=order_reader,
        meta_source=meta_source,
        redis=AsyncMock(),
    )

    with patch(
        "src.adsync_core.metrics.orchestrator.AsyncRedisLock", return_value=mock_lock
    ):
        result = await orchestrator.run("b1", date(2024, 1, 1), date(2024, 1, 31))

    assert result.success is False
    assert "already running" in result.message
    meta_source.fetch_daily.assert_not_awaited()
    mock_lock.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_lock_released_after_run(
    store, credential_store, order_reader, meta_source
):
    """The lock uses the configured TTL and is released afterwards."""
    config = PipelineConfig(backfill_window_months=1, lock_ttl_seconds=7200)
    mock_lock = AsyncMock()
    mock_lock.acquire.return_value = True
    orchestrator = MetricsOrchestrator(
        config=config,
        store=store,
        credential_store=credential_store,
        order_reader=order_reader,
        meta_source=meta_source,
        redis=AsyncMock(),
    )

    with patch(
        "src.adsync_core.metrics.orchestrator.AsyncRedisLock", return_value=mock_lock
    ) as lock_cls:
        result = await orchestrator.run("b1", date(2024, 1, 1), date(2024, 1, 31))

    assert result.success is True
    assert lock_cls.call_args.kwargs["name"] == "adsync:metrics:backfill_lock:b1"
    assert lock_cls.call_args.kwargs["timeout"] == 7200
    mock_lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_window_concurrency_is_bounded(store, credential_store):
    """Six monthly windows never run more than max_concurrent_windows at once."""
    in_flight = 0
    peak = 0

    async def slow_read_range(credentials, window, tz):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return []

    reader = MagicMock()
    reader.fetch_shop_profile = AsyncMock(return_value=ShopProfile(iana_timezone="UTC"))
    reader.read_range = AsyncMock(side_effect=slow_read_range)
    orchestrator = MetricsOrchestrator(
        config=PipelineConfig(max_concurrent_windows=2, backfill_window_months=1),
        store=store,
        credential_store=credential_store,
        order_reader=reader,
    )

    result = await orchestrator.run("b1", date(2024, 1, 1), date(2024, 6, 30))

    assert result.success is True
    assert result.total_chunks == 6
    assert reader.read_range.await_count == 6
    assert peak == 2
