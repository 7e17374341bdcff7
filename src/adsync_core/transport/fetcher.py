"""Rate-limit aware HTTP fetcher with linear backoff and classified errors."""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import aiohttp

from .exceptions import AuthenticationError, FatalError, TransientError


logger = logging.getLogger(__name__)


ResponseCheck = Callable[[dict], None]


@dataclass
class FetchRequest:
    """A single upstream HTTP request."""

    method: str
    url: str
    params: Optional[dict] = None
    json_body: Optional[Any] = None
    data: Optional[dict] = None
    headers: dict = field(default_factory=dict)
    # Values that must never appear in log lines or error messages
    secrets: list[str] = field(default_factory=list)

    def redact(self, text: str) -> str:
        if not text:
            return text
        redacted = text
        for secret in self.secrets:
            if secret:
                redacted = redacted.replace(secret, "[REDACTED]")
        return redacted


class RetryingFetcher:
    """Executes requests against upstream APIs, retrying transient failures.

    Backoff is linear: the delay before attempt ``n + 1`` is ``n * base_delay``.
    The fetcher holds no per-request state and can be shared by concurrent
    windows.
    """

    DEFAULT_MAX_ATTEMPTS = 7
    DEFAULT_BASE_DELAY = 2.0  # seconds
    DEFAULT_TIMEOUT = 60  # seconds

    def __init__(
        self,
        session: aiohttp.ClientSession,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize fetcher.

        Args:
            session: Injected aiohttp ClientSession
            max_attempts: Total attempts per request (first try included)
            base_delay: Linear backoff unit in seconds
            timeout: Per-request total timeout in seconds
            logger_instance: Optional logger
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.session = session
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self.logger = logger_instance or logger

    async def execute(
        self, request: FetchRequest, check: Optional[ResponseCheck] = None
    ) -> Any:
        """Execute request, retrying only on TransientError.

        Args:
            request: Request to send
            check: Optional callback run on the parsed body; may raise
                TransientError (retried) or FatalError (propagated)

        Returns:
            Parsed JSON response body

        Raises:
            TransientError: When every attempt failed transiently
            AuthenticationError: On HTTP 401/403
            FatalError: On other non-retryable failures
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                body = await self._send(request)
                if check is not None:
                    check(body)
                return body
            except TransientError as exc:
                if attempt >= self.max_attempts:
                    self.logger.error(
                        "Giving up on %s %s after %s attempts: %s",
                        request.method,
                        request.redact(request.url),
                        attempt,
                        request.redact(str(exc)),
                    )
                    raise
                delay = self.backoff_delay(attempt)
                self.logger.warning(
                    "Transient error on %s: %s, backoff=%.2fs, attempt=%s",
                    request.redact(request.url),
                    request.redact(str(exc)),
                    delay,
                    attempt,
                )
                await asyncio.sleep(delay)

    def backoff_delay(self, attempt: int) -> float:
        """Linear backoff delay after a failed attempt (1-indexed)."""
        return attempt * self.base_delay

    async def _send(self, request: FetchRequest) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout, connect=10)
        try:
            async with self.session.request(
                request.method,
                request.url,
                params=request.params,
                json=request.json_body,
                data=request.data,
                headers=request.headers,
                timeout=timeout,
            ) as resp:
                response_text = await resp.text()

                if resp.status == 429:
                    raise TransientError(
                        f"HTTP 429 rate limited: {request.redact(response_text[:200])}",
                        status=429,
                    )

                if 500 <= resp.status < 600:
                    raise TransientError(
                        f"HTTP {resp.status}: {request.redact(response_text[:200])}",
                        status=resp.status,
                    )

                if resp.status in (401, 403):
                    raise AuthenticationError(
                        f"HTTP {resp.status} (auth): {request.redact(response_text[:500])}",
                        status=resp.status,
                    )

                if 400 <= resp.status < 500:
                    raise FatalError(
                        f"HTTP {resp.status} (non-retryable): "
                        f"{request.redact(response_text[:500])}",
                        status=resp.status,
                    )

                try:
                    return json.loads(response_text)
                except ValueError as exc:
                    raise FatalError(
                        f"Malformed JSON response (HTTP {resp.status}): "
                        f"{request.redact(response_text[:200])}",
                        status=resp.status,
                    ) from exc

        except aiohttp.ClientError as exc:
            raise TransientError(f"Network error: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise TransientError(f"Request timeout after {self.timeout}s") from exc
