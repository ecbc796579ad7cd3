"""Capability-aware item search with full-text, trigram and ILIKE strategies."""

from app.search.capabilities import CapabilityProber, SearchCapability
from app.search.engine import SearchService
from app.search.errors import SearchError, SearchValidationError, StoreConnectivityError
from app.search.normalizer import SearchResult, SearchResultItem
from app.search.query import SearchQuery, build_search_query

__all__ = [
    "CapabilityProber",
    "SearchCapability",
    "SearchError",
    "SearchQuery",
    "SearchResult",
    "SearchResultItem",
    "SearchService",
    "SearchValidationError",
    "StoreConnectivityError",
    "build_search_query",
]
