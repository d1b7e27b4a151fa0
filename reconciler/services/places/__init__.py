"""
Place Search Provider Factory

Provides a single entry point for obtaining a place search provider.
Automatically selects Mock or Google Places based on ENV_MODE configuration.

Usage:
    from reconciler.services.places import get_place_search_provider

    provider = get_place_search_provider()
    candidates = await provider.search("Trabuxu Bistro Malta")

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from reconciler.core.config import get_settings
from reconciler.services.places.base import BasePlaceSearchProvider
from reconciler.services.places.google import GooglePlaceSearchProvider
from reconciler.services.places.mock import MockPlaceSearchProvider

logger = logging.getLogger(__name__)


@lru_cache()
def get_place_search_provider() -> BasePlaceSearchProvider:
    """
    Get the configured place search provider instance.

    Returns:
        BasePlaceSearchProvider: Mock in development, Google otherwise

    Raises:
        ValueError: If production mode but Google API key not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Place Search: Using MockPlaceSearchProvider (development mode)")
        return MockPlaceSearchProvider(
            failure_rate=0.05,  # 5% simulated transient failures
            min_latency=0.05,
            max_latency=0.2,
        )

    logger.info(
        f"Place Search: Using GooglePlaceSearchProvider "
        f"({settings.env_mode.value} mode)"
    )
    return GooglePlaceSearchProvider()


def reset_place_search_provider() -> None:
    """
    Clear the cached provider instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_place_search_provider.cache_clear()
    logger.debug("Place search provider cache cleared")


__all__ = [
    "get_place_search_provider",
    "reset_place_search_provider",
    "BasePlaceSearchProvider",
    "MockPlaceSearchProvider",
    "GooglePlaceSearchProvider",
]
