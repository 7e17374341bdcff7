"""Wires the pipeline from configuration and runs one backfill."""
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import aiohttp
from redis.asyncio import Redis

from .ads.google_source import GoogleAdsSource
from .ads.meta_source import MetaInsightsSource
from .config import PipelineConfig
from .metrics.debug_log import LoggerRegistry
from .metrics.notifications import RedisNotificationChannel
from .metrics.orchestrator import MetricsOrchestrator
from .metrics.refunds import RefundReconciler
from .metrics.schema import connect
from .metrics.store import MetricsStore, SQLiteCredentialStore
from .schemas.metrics import AggregateResult
from .shopify.order_reader import PaginatedOrderReader
from .transport.fetcher import RetryingFetcher


logger = logging.getLogger(__name__)


def build_orchestrator(
    config: PipelineConfig,
    session: aiohttp.ClientSession,
    redis: Optional[Redis],
    store: MetricsStore,
    credential_store: SQLiteCredentialStore,
) -> MetricsOrchestrator:
    """Assemble sources, reconciler and notifier around shared resources."""
    fetcher = RetryingFetcher(
        session,
        max_attempts=config.max_fetch_attempts,
        base_delay=config.retry_base_delay,
        timeout=config.request_timeout,
    )
    order_reader = PaginatedOrderReader(
        fetcher,
        api_version=config.shopify_api_version,
        page_size=config.page_size,
        page_delay=config.page_delay,
        window_days=config.order_window_days,
    )
    meta_source = MetaInsightsSource(fetcher, api_version=config.meta_api_version)

    google_source = None
    if config.google_configured:
        google_source = GoogleAdsSource(
            fetcher,
            client_id=config.google_ads_client_id,
            client_secret=config.google_ads_client_secret,
            developer_token=config.google_ads_developer_token,
            api_version=config.google_ads_api_version,
        )
    else:
        logger.warning("Google Ads app credentials not set; Google source disabled")

    return MetricsOrchestrator(
        config=config,
        store=store,
        credential_store=credential_store,
        order_reader=order_reader,
        meta_source=meta_source,
        google_source=google_source,
        reconciler=RefundReconciler(store),
        notifier=RedisNotificationChannel(redis) if redis is not None else None,
        logger_registry=LoggerRegistry(Path(config.log_dir)),
        redis=redis,
    )


async def run_backfill(
    config: PipelineConfig,
    brand_id: str,
    start_date: date,
    end_date: date,
    user_id: Optional[str] = None,
    new_source: Optional[str] = None,
) -> AggregateResult:
    """Open the HTTP session, Redis client and database, then run once."""
    conn = connect(config.db_path)
    redis = Redis.from_url(config.redis_url, decode_responses=False)
    try:
        store = MetricsStore(conn)
        credential_store = SQLiteCredentialStore(conn)
        async with aiohttp.ClientSession() as session:
            orchestrator = build_orchestrator(
                config, session, redis, store, credential_store
            )
            return await orchestrator.run(
                brand_id,
                start_date,
                end_date,
                user_id=user_id,
                new_source=new_source,
            )
    finally:
        await redis.aclose()
        conn.close()
