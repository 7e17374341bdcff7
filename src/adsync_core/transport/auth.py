"""Authenticated client base with token refresh on classified auth errors."""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Optional

from .exceptions import AuthenticationError
from .fetcher import FetchRequest, ResponseCheck, RetryingFetcher


logger = logging.getLogger(__name__)


class AuthenticatedClient(ABC):
    """Wraps a RetryingFetcher and refreshes credentials on auth failures.

    Subclasses provide ``refresh()`` (mint a fresh access token) and
    ``auth_headers()``. A request that fails with AuthenticationError is
    retried after a short delay and a refresh, at most ``max_auth_retries``
    times.
    """

    DEFAULT_MAX_AUTH_RETRIES = 2
    DEFAULT_AUTH_RETRY_DELAY = 1.0  # seconds

    def __init__(
        self,
        fetcher: RetryingFetcher,
        max_auth_retries: int = DEFAULT_MAX_AUTH_RETRIES,
        auth_retry_delay: float = DEFAULT_AUTH_RETRY_DELAY,
    ):
        self.fetcher = fetcher
        self.max_auth_retries = max_auth_retries
        self.auth_retry_delay = auth_retry_delay
        self._access_token: Optional[str] = None

    @abstractmethod
    async def refresh(self) -> None:
        """Obtain a fresh access token and store it on the client."""

    @abstractmethod
    def auth_headers(self) -> dict:
        """Headers carrying the current access token."""

    def secrets(self) -> list[str]:
        return [self._access_token] if self._access_token else []

    async def request(
        self, request: FetchRequest, check: Optional[ResponseCheck] = None
    ) -> Any:
        """Execute request with auth headers, refreshing on auth errors."""
        if self._access_token is None:
            await self.refresh()

        auth_retries = 0
        while True:
            signed = replace(
                request,
                headers={**request.headers, **self.auth_headers()},
                secrets=[*request.secrets, *self.secrets()],
            )
            try:
                return await self.fetcher.execute(signed, check=check)
            except AuthenticationError as exc:
                if auth_retries >= self.max_auth_retries:
                    raise
                auth_retries += 1
                logger.warning(
                    "Auth error (%s), refreshing token, retry=%s/%s",
                    exc.status,
                    auth_retries,
                    self.max_auth_retries,
                )
                await asyncio.sleep(self.auth_retry_delay)
                await self.refresh()
