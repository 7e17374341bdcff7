"""Google Ads daily cost and conversion value via the REST searchStream API."""
import asyncio
import logging
from typing import Any, Optional

from ..metrics.merge import ratio
from ..schemas.metrics import DateWindow, GoogleAdAccount, GoogleCredentials, GoogleDailyMetrics
from ..transport.auth import AuthenticatedClient
from ..transport.exceptions import AuthenticationError, FatalError
from ..transport.fetcher import FetchRequest, RetryingFetcher


logger = logging.getLogger(__name__)


TOKEN_URL = "https://oauth2.googleapis.com/token"
ADS_URL = "https://googleads.googleapis.com"

DAILY_METRICS_QUERY = """
SELECT
  segments.date,
  metrics.cost_micros,
  metrics.conversions_value
FROM customer
WHERE segments.date BETWEEN '{since}' AND '{until}'
"""


def _digits(customer_id: str) -> str:
    return customer_id.replace("-", "").strip()


def _safe_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class GoogleAdsClient(AuthenticatedClient):
    """OAuth2 refresh-token client for the Google Ads REST API."""

    def __init__(
        self,
        fetcher: RetryingFetcher,
        client_id: str,
        client_secret: str,
        developer_token: str,
        refresh_token: str,
        api_version: str = "v17",
        max_auth_retries: int = AuthenticatedClient.DEFAULT_MAX_AUTH_RETRIES,
        auth_retry_delay: float = AuthenticatedClient.DEFAULT_AUTH_RETRY_DELAY,
    ):
        super().__init__(
            fetcher,
            max_auth_retries=max_auth_retries,
            auth_retry_delay=auth_retry_delay,
        )
        self.client_id = client_id
        self.client_secret = client_secret
        self.developer_token = developer_token
        self.refresh_token = refresh_token
        self.api_version = api_version

    async def refresh(self) -> None:
        """Exchange the stored refresh token for a new access token.

        Raises:
            AuthenticationError: When the token endpoint returns no access token
        """
        body = await self.fetcher.execute(
            FetchRequest(
                method="POST",
                url=TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
                secrets=[self.client_secret, self.refresh_token],
            )
        )
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise AuthenticationError("Token endpoint returned no access_token")

        self._access_token = token
        logger.info("Refreshed Google Ads access token")

    def auth_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "developer-token": self.developer_token,
        }

    async def search_stream(
        self,
        customer_id: str,
        query: str,
        login_customer_id: Optional[str] = None,
    ) -> list[dict]:
        """Run a GAQL query and return the flattened result rows."""
        headers = {}
        if login_customer_id:
            headers["login-customer-id"] = _digits(login_customer_id)

        body = await self.request(
            FetchRequest(
                method="POST",
                url=(
                    f"{ADS_URL}/{self.api_version}/customers/"
                    f"{_digits(customer_id)}/googleAds:searchStream"
                ),
                json_body={"query": query},
                headers=headers,
                secrets=[self.developer_token],
            )
        )

        # searchStream answers with a JSON array of result batches
        if isinstance(body, dict):
            body = [body]
        if not isinstance(body, list):
            raise FatalError(f"Unexpected searchStream response: {type(body).__name__}")

        rows: list[dict] = []
        for batch in body:
            rows.extend(batch.get("results") or [])
        return rows


class GoogleAdsSource:
    """Sums cost and conversion value per date across a brand's ad accounts."""

    def __init__(
        self,
        fetcher: RetryingFetcher,
        client_id: str,
        client_secret: str,
        developer_token: str,
        api_version: str = "v17",
    ) -> None:
        self.fetcher = fetcher
        self.client_id = client_id
        self.client_secret = client_secret
        self.developer_token = developer_token
        self.api_version = api_version

    def build_client(self, refresh_token: str) -> GoogleAdsClient:
        return GoogleAdsClient(
            self.fetcher,
            client_id=self.client_id,
            client_secret=self.client_secret,
            developer_token=self.developer_token,
            refresh_token=refresh_token,
            api_version=self.api_version,
        )

    @staticmethod
    def build_query(window: DateWindow) -> str:
        return DAILY_METRICS_QUERY.format(
            since=window.start.isoformat(), until=window.last_day.isoformat()
        ).strip()

    async def _fetch_account(
        self, client: GoogleAdsClient, account: GoogleAdAccount, query: str
    ) -> list[dict]:
        rows = await client.search_stream(
            account.customer_id, query, login_customer_id=account.manager_id
        )
        logger.info(
            "Fetched %s Google Ads rows for customer %s", len(rows), account.customer_id
        )
        return rows

    async def fetch_daily(
        self, credentials: GoogleCredentials, window: DateWindow
    ) -> dict[str, GoogleDailyMetrics]:
        """Daily Google Ads partials for ``window``.

        Args:
            credentials: Refresh token and ad accounts of the brand
            window: Dates to fetch

        Returns:
            Map of ISO date -> GoogleDailyMetrics

        Raises:
            FetchError: When the token refresh or any account query fails
        """
        if not credentials.accounts:
            return {}

        client = self.build_client(credentials.refresh_token)
        await client.refresh()
        query = self.build_query(window)

        account_rows = await asyncio.gather(
            *(self._fetch_account(client, account, query) for account in credentials.accounts)
        )

        daily: dict[str, GoogleDailyMetrics] = {}
        for rows in account_rows:
            for row in rows:
                day = (row.get("segments") or {}).get("date")
                if not day:
                    continue
                metrics = row.get("metrics") or {}
                bucket = daily.setdefault(day, GoogleDailyMetrics())
                bucket.google_spend += _safe_float(metrics.get("costMicros")) / 1_000_000
                bucket.google_sales += _safe_float(metrics.get("conversionsValue"))

        for bucket in daily.values():
            bucket.google_roas = ratio(bucket.google_sales, bucket.google_spend)

        return daily
