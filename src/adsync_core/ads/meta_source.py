"""Meta Marketing API daily spend and purchase revenue per ad account."""
import asyncio
import json
import logging
from typing import Any, Optional

from ..schemas.metrics import DateWindow, MetaCredentials, MetaDailyMetrics
from ..transport.fetcher import FetchRequest, RetryingFetcher


logger = logging.getLogger(__name__)


PURCHASE_ACTION_TYPES = ("omni_purchase", "purchase")


def _safe_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _purchase_value(entries: Optional[list[dict]]) -> Optional[float]:
    by_type = {
        entry.get("action_type"): _safe_float(entry.get("value"))
        for entry in entries or []
    }
    for action_type in PURCHASE_ACTION_TYPES:
        value = by_type.get(action_type)
        if value is not None:
            return value
    return None


def insight_revenue(row: dict) -> float:
    """Purchase revenue for one insights row.

    Uses purchase ``action_values`` when reported, otherwise
    ``spend * purchase_roas``.
    """
    revenue = _purchase_value(row.get("action_values"))
    if revenue is not None:
        return revenue

    spend = _safe_float(row.get("spend")) or 0.0
    roas = _purchase_value(row.get("purchase_roas")) or 0.0
    return spend * roas


class MetaInsightsSource:
    """Fetches account-level daily insights for every ad account of a brand."""

    GRAPH_URL = "https://graph.facebook.com"
    MAX_CONCURRENT_ACCOUNTS = 5

    def __init__(
        self,
        fetcher: RetryingFetcher,
        api_version: str = "v21.0",
        max_concurrent_accounts: int = MAX_CONCURRENT_ACCOUNTS,
    ) -> None:
        """Initialize Meta insights source.

        Args:
            fetcher: Shared retrying fetcher
            api_version: Graph API version, e.g. "v21.0"
            max_concurrent_accounts: Parallel account requests
        """
        self.fetcher = fetcher
        self.api_version = api_version
        self._semaphore = asyncio.Semaphore(max_concurrent_accounts)

    @staticmethod
    def _account_path(ad_account_id: str) -> str:
        if not ad_account_id.startswith("act_"):
            ad_account_id = f"act_{ad_account_id}"
        return ad_account_id

    async def _fetch_account(
        self, access_token: str, ad_account_id: str, window: DateWindow
    ) -> list[dict]:
        url = f"{self.GRAPH_URL}/{self.api_version}/{self._account_path(ad_account_id)}/insights"
        params: Optional[dict] = {
            "access_token": access_token,
            "level": "account",
            "time_increment": "1",
            "time_range": json.dumps(
                {
                    "since": window.start.isoformat(),
                    "until": window.last_day.isoformat(),
                }
            ),
            "fields": "spend,purchase_roas,action_values",
            "limit": "500",
        }

        rows: list[dict] = []
        async with self._semaphore:
            while url:
                body = await self.fetcher.execute(
                    FetchRequest(
                        method="GET",
                        url=url,
                        params=params,
                        secrets=[access_token],
                    )
                )
                rows.extend(body.get("data") or [])
                # paging.next is a complete URL carrying every parameter
                url = (body.get("paging") or {}).get("next")
                params = None

        logger.info(
            "Fetched %s Meta insight rows for %s %s", len(rows), ad_account_id, window
        )
        return rows

    async def fetch_daily(
        self, credentials: MetaCredentials, window: DateWindow
    ) -> dict[str, MetaDailyMetrics]:
        """Sum spend and revenue across ad accounts per date in ``window``.

        Raises:
            FetchError: When any account request fails
        """
        if not credentials.ad_account_ids:
            return {}

        account_rows = await asyncio.gather(
            *(
                self._fetch_account(credentials.access_token, account_id, window)
                for account_id in credentials.ad_account_ids
            )
        )

        daily: dict[str, MetaDailyMetrics] = {}
        for rows in account_rows:
            for row in rows:
                day = row.get("date_start")
                if not day:
                    logger.warning("Skipping Meta row without date_start")
                    continue
                bucket = daily.setdefault(day, MetaDailyMetrics())
                bucket.meta_spend += _safe_float(row.get("spend")) or 0.0
                bucket.meta_revenue += insight_revenue(row)

        return daily
