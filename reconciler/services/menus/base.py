"""
Menu Source Provider Abstract Base Class

Defines the interface contract for menu catalog implementations.
Both MockMenuSource and WoltMenuSource must implement these methods.

A menu source differs from a place search provider in one way that shapes
the whole run: its venue catalog is listed ONCE per run and every input
name is resolved against that pre-fetched list.

Detail blob shape (what fetch_detail returns):
    {
        "name": "Trabuxu Bistro",
        "currency": "EUR",
        "menu": {
            "categories": [
                {"name": "Wines", "items": [
                    {"name": "House Red", "baseprice": 650, "description": "..."}
                ]}
            ]
        }
    }

Author: Khalil_Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from typing import Any

from reconciler.pipeline.types import CandidateRecord


class BaseMenuSource(ABC):
    """
    Abstract base class for menu sources.

    Example:
        >>> source = get_menu_source()
        >>> catalog = await source.list_venues()
        >>> blob = await source.fetch_detail(catalog[0].external_id)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the menu source.

        Returns:
            str: Provider name (e.g., "mock", "wolt")
        """
        pass

    @abstractmethod
    async def list_venues(self) -> list[CandidateRecord]:
        """
        List every venue the source serves in the configured area.

        Returns:
            list[CandidateRecord]: Catalog entries keyed by venue slug

        Raises:
            ProviderError: On any provider failure
        """
        pass

    @abstractmethod
    async def fetch_detail(self, ref: str) -> dict[str, Any]:
        """
        Fetch the raw menu blob of one venue.

        Args:
            ref: Venue reference (the catalog entry's external_id)

        Returns:
            dict: Raw detail blob, parsed by MenuExtractionAdapter

        Raises:
            ProviderNotFoundError: If the venue is unknown
            ProviderError: On any other provider failure
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the menu source.

        Returns:
            bool: True if source is operational
        """
        pass
