"""HTTP transport: retrying fetcher, authenticated clients, error taxonomy."""
from .auth import AuthenticatedClient
from .exceptions import (
    AuthenticationError,
    FatalError,
    FetchError,
    PartialFailure,
    TransientError,
)
from .fetcher import FetchRequest, RetryingFetcher

__all__ = [
    "AuthenticatedClient",
    "AuthenticationError",
    "FatalError",
    "FetchError",
    "FetchRequest",
    "PartialFailure",
    "RetryingFetcher",
    "TransientError",
]
