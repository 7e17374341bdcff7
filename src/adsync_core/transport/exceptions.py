"""Error taxonomy for upstream platform requests."""


class FetchError(Exception):
    """Base exception for all upstream fetch errors."""


class TransientError(FetchError):
    """Retryable failure: rate limiting, 5xx, timeouts, refused connections."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class FatalError(FetchError):
    """Non-retryable failure: 4xx other than 429, malformed responses."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class AuthenticationError(FatalError):
    """Raised on HTTP 401/403 so authenticated clients can refresh tokens."""


class PartialFailure(FetchError):
    """One data source or one window failed while the rest of the run continued."""

    def __init__(self, scope: str, error: BaseException):
        self.scope = scope
        self.error = error
        super().__init__(f"{scope} failed: {error}")
