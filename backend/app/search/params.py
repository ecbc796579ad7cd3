"""Centralized search parameter management.

Ranking constants live here so strategies never read environment
variables directly. Values configured through :class:`app.config.Settings`
override the module defaults.

Usage in strategies::

    from app.search.params import get_search_params
    params = get_search_params()
    threshold = params["trigram_threshold"]
"""

from __future__ import annotations

from typing import Any

from app.config import Settings, get_settings

DEFAULT_SEARCH_PARAMS: dict[str, Any] = {
    # Full-text (ts_rank_cd normalization flag 32 maps rank into [0, 1))
    "fts_config": "english",
    "fts_rank_normalization": 32,
    # Trigram
    "trigram_threshold": 0.3,
    "trigram_name_weight": 1.0,
    "trigram_description_weight": 0.8,
    # ILIKE fallback fixed scores
    "ilike_exact_score": 1.0,
    "ilike_prefix_score": 0.75,
    "ilike_partial_score": 0.5,
    # Execution
    "strategy_timeout_seconds": 5.0,
    "default_limit": 20,
    "max_limit": 100,
}


def get_search_params(settings: Settings | None = None) -> dict[str, Any]:
    """Return current search parameters, merging settings values over defaults."""
    if settings is None:
        settings = get_settings()

    merged = {**DEFAULT_SEARCH_PARAMS}
    merged["fts_config"] = settings.SEARCH_TEXT_CONFIG
    merged["trigram_threshold"] = min(max(settings.SEARCH_TRIGRAM_THRESHOLD, 0.0), 1.0)
    merged["strategy_timeout_seconds"] = settings.SEARCH_STRATEGY_TIMEOUT_SECONDS
    merged["default_limit"] = settings.SEARCH_DEFAULT_LIMIT
    return merged
