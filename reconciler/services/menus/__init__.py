"""
Menu Source Factory

Provides a single entry point for obtaining a menu source.
Automatically selects Mock or Wolt based on ENV_MODE configuration.

Usage:
    from reconciler.services.menus import get_menu_source

    source = get_menu_source()
    catalog = await source.list_venues()

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from reconciler.core.config import get_settings
from reconciler.services.menus.base import BaseMenuSource
from reconciler.services.menus.mock import MockMenuSource
from reconciler.services.menus.wolt import WoltMenuSource

logger = logging.getLogger(__name__)


@lru_cache()
def get_menu_source() -> BaseMenuSource:
    """
    Get the configured menu source instance.

    Returns:
        BaseMenuSource: Mock in development, Wolt otherwise
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Menu Source: Using MockMenuSource (development mode)")
        return MockMenuSource(
            failure_rate=0.05,  # 5% simulated transient failures
            min_latency=0.05,
            max_latency=0.2,
        )

    logger.info(f"Menu Source: Using WoltMenuSource ({settings.env_mode.value} mode)")
    return WoltMenuSource()


def reset_menu_source() -> None:
    """Clear the cached menu source instance."""
    get_menu_source.cache_clear()
    logger.debug("Menu source cache cleared")


__all__ = [
    "get_menu_source",
    "reset_menu_source",
    "BaseMenuSource",
    "MockMenuSource",
    "WoltMenuSource",
]
