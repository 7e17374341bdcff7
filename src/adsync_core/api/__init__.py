"""adsync API layer for backfill job submission."""
from .auth import get_pipeline_config, require_api_key
from .routes import router

__all__ = ["get_pipeline_config", "require_api_key", "router"]
