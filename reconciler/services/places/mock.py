"""
Mock Place Search Provider

Simulates the Google Places API without making real API calls.
Used in development mode (ENV_MODE=development) and throughout the tests.

Behavior:
    - Searches an in-memory catalog of Malta venues
    - Simulates network latency (configurable, 0 in tests)
    - Configurable random transient failure rate for exercising retries
    - Scripted failures (`fail_next`) for deterministic tests

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import random
from collections import deque
from typing import Iterable, Optional

from reconciler.core.exceptions import (
    ProviderError,
    ProviderNotFoundError,
    ProviderTransientError,
)
from reconciler.pipeline.normalize import normalize
from reconciler.pipeline.similarity import similarity
from reconciler.pipeline.types import (
    CandidateRecord,
    GeoPoint,
    PhotoReference,
    PlaceDetails,
)
from reconciler.services.places.base import BasePlaceSearchProvider

logger = logging.getLogger(__name__)


def default_catalog() -> list[PlaceDetails]:
    """A handful of real-looking Malta venues for local rehearsals."""
    def place(external_id, name, address, lat, lng, rating, reviews, photos):
        refs = tuple(
            PhotoReference(reference=f"{external_id}-photo-{i}", width=1600, height=1200)
            for i in range(photos)
        )
        return PlaceDetails(
            record=CandidateRecord(
                external_id=external_id,
                display_name=name,
                address=address,
                rating=rating,
                review_count=reviews,
                phone="+356 2122 0000",
                photo_refs=tuple(r.reference for r in refs),
                geo=GeoPoint(lat=lat, lng=lng),
            ),
            photos=refs,
        )

    return [
        place("mock-trabuxu", "Trabuxu Bistro", "1 Strait Street, Valletta",
              35.8989, 14.5146, 4.6, 812, 3),
        place("mock-tortuga", "Tortuga", "St George's Bay, St Julian's",
              35.9264, 14.4907, 4.3, 455, 7),
        place("mock-kings-pub", "Kings Pub", "Triq il-Wied, Mellieha",
              35.9564, 14.3622, 4.1, 230, 2),
        place("mock-crafty-cat", "The Crafty Cat Pub", "Triq San Gorg, St Julian's",
              35.9215, 14.4891, 4.5, 1032, 5),
        place("mock-white-tower", "White Tower Lido", "Armier Bay, Mellieha",
              35.9898, 14.3619, 3.9, 98, 0),
    ]


class MockPlaceSearchProvider(BasePlaceSearchProvider):
    """
    Mock implementation of the place search provider.

    Attributes:
        failure_rate: Probability of a simulated transient failure (0.0-1.0)
        min_latency: Minimum response time in seconds
        max_latency: Maximum response time in seconds
        calls: Log of (method, argument) tuples, for assertions in tests

    Example:
        >>> provider = MockPlaceSearchProvider(failure_rate=0)
        >>> results = await provider.search("Trabuxu Bistro Malta")
        >>> print(results[0].external_id)
        'mock-trabuxu'
    """

    # Candidates scoring below this against the query are not returned
    SEARCH_CUTOFF = 0.5

    def __init__(
        self,
        catalog: Optional[Iterable[PlaceDetails]] = None,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self._places: dict[str, PlaceDetails] = {}
        self._search_results: dict[str, list[CandidateRecord]] = {}
        self._scripted_failures: deque[ProviderError] = deque()
        self.calls: list[tuple[str, str]] = []

        for details in (default_catalog() if catalog is None else catalog):
            self.add_place(details)

        logger.info(
            f"MockPlaceSearchProvider initialized "
            f"(failure_rate={failure_rate:.0%}, places={len(self._places)})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    # =========================================================================
    # TEST HOOKS
    # =========================================================================

    def add_place(self, details: PlaceDetails) -> None:
        self._places[details.record.external_id] = details

    def set_search_results(self, query: str, results: list[CandidateRecord]) -> None:
        """Pin the exact result list returned for `query`."""
        self._search_results[query] = list(results)

    def fail_next(self, *errors: ProviderError) -> None:
        """Raise these errors, in order, on the next calls."""
        self._scripted_failures.extend(errors)

    # =========================================================================
    # SIMULATION
    # =========================================================================

    async def _simulate(self, method: str, argument: str) -> None:
        self.calls.append((method, argument))

        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

        if self._scripted_failures:
            error = self._scripted_failures.popleft()
            logger.debug(f"Mock: scripted {error.kind.value} failure on {method}")
            raise error

        if self.failure_rate and random.random() < self.failure_rate:
            logger.debug(f"Mock: simulated transient failure on {method}")
            raise ProviderTransientError("Simulated provider timeout", provider="mock")

    # =========================================================================
    # PROVIDER API
    # =========================================================================

    async def search(self, query: str) -> list[CandidateRecord]:
        """Rank catalog places by similarity to the query."""
        await self._simulate("search", query)

        if query in self._search_results:
            return list(self._search_results[query])

        wanted = normalize(query)
        scored = []
        for details in self._places.values():
            name = normalize(details.record.display_name)
            score = 1.0 if name and name in wanted else similarity(wanted, name)
            if score >= self.SEARCH_CUTOFF:
                scored.append((score, details.record))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        logger.debug(f"Mock: search '{query}' -> {len(scored)} candidates")
        return [record for _, record in scored]

    async def details(self, external_id: str) -> PlaceDetails:
        """Return the catalog entry for `external_id`."""
        await self._simulate("details", external_id)

        details = self._places.get(external_id)
        if details is None:
            raise ProviderNotFoundError(f"Unknown place id {external_id}", provider="mock")
        return details

    def photo_url(self, reference: str, max_width: int = 1600) -> str:
        return f"https://mock.places.local/photo/{reference}?maxwidth={max_width}"

    async def health_check(self) -> bool:
        """Mock health check always returns True."""
        logger.debug("Mock: Places health check passed")
        return True
