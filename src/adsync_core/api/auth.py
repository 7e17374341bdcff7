"""Request guards for the adsync job API."""
import hmac
import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config import PipelineConfig


logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-ADSYNC-API-KEY"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_pipeline_config() -> PipelineConfig:
    """Load pipeline settings for one request."""
    return PipelineConfig.from_env()


async def require_api_key(
    config: Annotated[PipelineConfig, Depends(get_pipeline_config)],
    api_key: Annotated[Optional[str], Security(api_key_header)] = None,
) -> PipelineConfig:
    """Admit a request whose key header matches ``config.api_key``.

    The admitted config is handed to the job, so the key check and the
    backfill run against the same settings.

    Raises:
        HTTPException: 503 when no key is configured, 401 when the header
            is missing or wrong
    """
    if not config.api_key:
        logger.error("ADSYNC_API_KEY is not set, refusing job submissions")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job API is not configured",
        )

    if not api_key or not hmac.compare_digest(
        api_key.encode(), config.api_key.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return config
