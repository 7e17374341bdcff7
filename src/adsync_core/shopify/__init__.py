"""Shopify Admin GraphQL order ingestion."""
from .normalizer import normalize_order
from .order_reader import PaginatedOrderReader

__all__ = ["PaginatedOrderReader", "normalize_order"]
