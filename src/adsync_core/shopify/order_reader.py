"""Cursor-paginated Shopify order reader for bounded time windows."""
import asyncio
import logging
from typing import Optional
from zoneinfo import ZoneInfo

from ..metrics.chunking import split_window
from ..schemas.metrics import (
    DateWindow,
    NormalizedOrder,
    ShopifyCredentials,
    ShopProfile,
)
from ..transport.exceptions import FatalError, FetchError, TransientError
from ..transport.fetcher import FetchRequest, RetryingFetcher
from .graphql_strings import QUERY_ORDERS_PAGE, QUERY_SHOP_PROFILE
from .normalizer import normalize_order, raw_order_from_node


logger = logging.getLogger(__name__)


def check_graphql_errors(body: dict) -> None:
    """Raise on GraphQL root-level errors before touching ``data``.

    THROTTLED errors are returned with HTTP 200 and are retryable.
    """
    errors = body.get("errors")
    if errors:
        if isinstance(errors, list):
            codes = {
                (error.get("extensions") or {}).get("code")
                for error in errors
                if isinstance(error, dict)
            }
            messages = [
                error.get("message", str(error)) if isinstance(error, dict) else str(error)
                for error in errors
            ]
        else:
            codes = set()
            messages = [str(errors)]
        if "THROTTLED" in codes:
            raise TransientError(f"GraphQL throttled: {'; '.join(messages)}", status=200)
        raise FatalError(f"GraphQL root errors: {'; '.join(messages)}", status=200)

    if not isinstance(body.get("data"), dict):
        raise FatalError("GraphQL response missing data", status=200)


class PaginatedOrderReader:
    """Walks the orders connection for one window, deduplicating by order id."""

    DEFAULT_PAGE_SIZE = 50
    DEFAULT_PAGE_DELAY = 0.5  # seconds
    DEFAULT_WINDOW_DAYS = 7

    def __init__(
        self,
        fetcher: RetryingFetcher,
        api_version: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        page_delay: float = DEFAULT_PAGE_DELAY,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ):
        """Initialize order reader.

        Args:
            fetcher: Shared retrying fetcher (retries individual pages)
            api_version: Admin API version, e.g. "2024-10"
            page_size: Orders per page
            page_delay: Sleep between page requests (rate limiting)
            window_days: Sub-window size used by read_range
        """
        self.fetcher = fetcher
        self.api_version = api_version
        self.page_size = page_size
        self.page_delay = page_delay
        self.window_days = window_days

    def _graphql_request(
        self, credentials: ShopifyCredentials, query: str, variables: dict
    ) -> FetchRequest:
        return FetchRequest(
            method="POST",
            url=f"https://{credentials.shop_domain}/admin/api/{self.api_version}/graphql.json",
            json_body={"query": query, "variables": variables},
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Access-Token": credentials.access_token,
            },
            secrets=[credentials.access_token],
        )

    async def fetch_shop_profile(self, credentials: ShopifyCredentials) -> ShopProfile:
        """Read the store's IANA timezone and currency.

        Raises:
            FetchError: When the shop cannot be reached
        """
        body = await self.fetcher.execute(
            self._graphql_request(credentials, QUERY_SHOP_PROFILE, {}),
            check=check_graphql_errors,
        )
        shop = body["data"].get("shop") or {}
        return ShopProfile(
            iana_timezone=shop.get("ianaTimezone") or "UTC",
            currency=shop.get("currencyCode") or "USD",
        )

    @staticmethod
    def build_query_filter(window: DateWindow, tz: ZoneInfo) -> str:
        """Search filter with inclusive start and exclusive end (UTC)."""
        start_utc, end_utc = window.utc_bounds(tz)
        return f"created_at:>={start_utc} AND created_at:<{end_utc}"

    async def read_orders(
        self,
        credentials: ShopifyCredentials,
        window: DateWindow,
        tz: ZoneInfo,
        seen_ids: Optional[set[str]] = None,
    ) -> list[NormalizedOrder]:
        """Fetch and normalize all non-test orders created inside ``window``.

        Fetch failures end the window early; orders fetched so far are
        returned. Order nodes that cannot be parsed are logged and skipped.

        Args:
            credentials: Shop domain and access token
            window: Local-date window in the store timezone
            tz: Store timezone
            seen_ids: Optional ids already emitted by earlier windows

        Returns:
            Normalized orders, each id at most once
        """
        query_filter = self.build_query_filter(window, tz)
        start_local, end_local = window.local_bounds(tz)
        window_seen: set[str] = set()
        orders: list[NormalizedOrder] = []
        cursor: Optional[str] = None
        pages = 0

        logger.info("Fetching orders for %s (%s)", window, query_filter)

        try:
            while True:
                variables = {
                    "first": self.page_size,
                    "after": cursor,
                    "query": query_filter,
                }
                body = await self.fetcher.execute(
                    self._graphql_request(credentials, QUERY_ORDERS_PAGE, variables),
                    check=check_graphql_errors,
                )
                pages += 1

                connection = body["data"].get("orders") or {}
                edges = connection.get("edges") or []
                if not edges:
                    break

                for edge in edges:
                    node = edge.get("node") or {}
                    try:
                        raw = raw_order_from_node(node)
                    except FatalError as exc:
                        logger.warning(
                            "Skipping unreadable order in window %s: %s", window, exc
                        )
                        continue

                    if raw.id in window_seen:
                        logger.warning(
                            "Duplicate order %s returned twice in window %s, dropping",
                            raw.id,
                            window,
                        )
                        continue
                    window_seen.add(raw.id)

                    if raw.test:
                        continue

                    if not start_local <= raw.created_at < end_local:
                        logger.debug(
                            "Order %s created %s outside window %s, skipping",
                            raw.id,
                            raw.created_at.isoformat(),
                            window,
                        )
                        continue

                    if seen_ids is not None:
                        if raw.id in seen_ids:
                            logger.warning(
                                "Order %s already emitted by an earlier window, dropping",
                                raw.id,
                            )
                            continue
                        seen_ids.add(raw.id)

                    orders.append(normalize_order(raw))

                page_info = connection.get("pageInfo") or {}
                if not page_info.get("hasNextPage"):
                    break
                cursor = page_info.get("endCursor")

                await asyncio.sleep(self.page_delay)

        except FetchError as exc:
            logger.error(
                "Order fetch failed for window %s after %s pages, "
                "keeping %s partial orders: %s",
                window,
                pages,
                len(orders),
                exc,
            )

        logger.info(
            "Fetched %s orders for %s across %s pages", len(orders), window, pages
        )
        return orders

    async def read_range(
        self,
        credentials: ShopifyCredentials,
        window: DateWindow,
        tz: ZoneInfo,
    ) -> list[NormalizedOrder]:
        """Read a larger window as sequential fixed-size sub-windows."""
        seen_ids: set[str] = set()
        all_orders: list[NormalizedOrder] = []
        sub_windows = split_window(window, self.window_days)

        for index, sub_window in enumerate(sub_windows):
            if index > 0:
                await asyncio.sleep(self.page_delay)
            all_orders.extend(
                await self.read_orders(credentials, sub_window, tz, seen_ids=seen_ids)
            )

        return all_orders
