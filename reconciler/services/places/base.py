"""
Place Search Provider Abstract Base Class

Defines the interface contract for all place search implementations.
Both MockPlaceSearchProvider and GooglePlaceSearchProvider must implement
these methods.

Use Cases:
    - Resolving an operator-supplied venue name to a provider record
    - Fetching details (address, rating, photos) of a resolved venue
    - Building photo URLs for persisted photo items

Contract:
    Implementations raise only the ProviderError taxonomy of
    reconciler.core.exceptions; library exceptions never leak out.

Author: Khalil_Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod

from reconciler.pipeline.types import CandidateRecord, PlaceDetails


class BasePlaceSearchProvider(ABC):
    """
    Abstract base class for place search providers.

    Example:
        >>> provider = get_place_search_provider()
        >>> candidates = await provider.search("Tortuga Malta")
        >>> details = await provider.details(candidates[0].external_id)
        >>> print(len(details.photos))
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the place provider.

        Returns:
            str: Provider name (e.g., "mock", "google")
        """
        pass

    @abstractmethod
    async def search(self, query: str) -> list[CandidateRecord]:
        """
        Free-text place search.

        Args:
            query: Search text (venue name plus optional region hint)

        Returns:
            list[CandidateRecord]: Provider-ranked candidates, possibly empty

        Raises:
            ProviderError: On any provider failure
        """
        pass

    @abstractmethod
    async def details(self, external_id: str) -> PlaceDetails:
        """
        Fetch the full record of one place.

        Args:
            external_id: Provider place id

        Returns:
            PlaceDetails: Record plus ordered photo references

        Raises:
            ProviderNotFoundError: If the id is unknown
            ProviderError: On any other provider failure
        """
        pass

    @abstractmethod
    def photo_url(self, reference: str, max_width: int = 1600) -> str:
        """
        Build a URL for a photo reference.

        The URL never embeds credentials; the serving layer appends them.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the place provider.

        Returns:
            bool: True if provider is operational
        """
        pass
