"""Advertising platform sources (Meta Marketing API, Google Ads)."""
from .google_source import GoogleAdsClient, GoogleAdsSource
from .meta_source import MetaInsightsSource

__all__ = ["GoogleAdsClient", "GoogleAdsSource", "MetaInsightsSource"]
