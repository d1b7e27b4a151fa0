"""
Mock Menu Source

Simulates the menu catalog API without making real HTTP calls.
Used in development mode (ENV_MODE=development) and in tests.

Behavior:
    - Serves a small catalog of Malta venues with realistic menu blobs
    - Simulates network latency and a configurable transient failure rate
    - Scripted failures (`fail_next`) for deterministic tests

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import copy
import logging
import random
from collections import deque
from typing import Any, Optional

from reconciler.core.exceptions import (
    ProviderError,
    ProviderNotFoundError,
    ProviderTransientError,
)
from reconciler.pipeline.types import CandidateRecord
from reconciler.services.menus.base import BaseMenuSource

logger = logging.getLogger(__name__)


def _blob(name: str, categories: dict[str, list[tuple[str, int]]]) -> dict[str, Any]:
    return {
        "name": name,
        "currency": "EUR",
        "menu": {
            "categories": [
                {
                    "name": category,
                    "items": [{"name": item, "baseprice": cents} for item, cents in items],
                }
                for category, items in categories.items()
            ]
        },
    }


DEFAULT_MENUS: dict[str, dict[str, Any]] = {
    "trabuxu-bistro": _blob("Trabuxu Bistro", {
        "Wines": [("House Red", 650), ("Gellewza Rosé", 700)],
        "Platters": [("Maltese Platter", 1450), ("Cheese Board", 1200)],
    }),
    "tortuga": _blob("Tortuga", {
        "Cocktails": [("Mojito", 900), ("Aperol Spritz", 850)],
        "Beer": [("Cisk Lager", 400)],
    }),
    "kings-pub": _blob("Kings Pub", {
        "Mains": [("Fish and Chips", 1300), ("Rabbit Stew", 1600)],
    }),
    "empty-kitchen": _blob("Empty Kitchen", {}),
}


class MockMenuSource(BaseMenuSource):
    """
    Mock implementation of the menu source.

    Attributes:
        failure_rate: Probability of a simulated transient failure (0.0-1.0)
        calls: Log of (method, argument) tuples, for assertions in tests
    """

    def __init__(
        self,
        menus: Optional[dict[str, dict[str, Any]]] = None,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self._menus = copy.deepcopy(DEFAULT_MENUS if menus is None else menus)
        self._scripted_failures: deque[ProviderError] = deque()
        self.calls: list[tuple[str, str]] = []

        logger.info(
            f"MockMenuSource initialized "
            f"(failure_rate={failure_rate:.0%}, venues={len(self._menus)})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    def fail_next(self, *errors: ProviderError) -> None:
        """Raise these errors, in order, on the next calls."""
        self._scripted_failures.extend(errors)

    async def _simulate(self, method: str, argument: str) -> None:
        self.calls.append((method, argument))

        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

        if self._scripted_failures:
            raise self._scripted_failures.popleft()

        if self.failure_rate and random.random() < self.failure_rate:
            logger.debug(f"Mock: simulated transient failure on {method}")
            raise ProviderTransientError("Simulated menu API timeout", provider="mock")

    async def list_venues(self) -> list[CandidateRecord]:
        await self._simulate("list_venues", "")
        return [
            CandidateRecord(external_id=slug, display_name=blob.get("name", slug))
            for slug, blob in self._menus.items()
        ]

    async def fetch_detail(self, ref: str) -> dict[str, Any]:
        await self._simulate("fetch_detail", ref)
        blob = self._menus.get(ref)
        if blob is None:
            raise ProviderNotFoundError(f"Unknown venue {ref}", provider="mock")
        return copy.deepcopy(blob)

    async def health_check(self) -> bool:
        """Mock health check always returns True."""
        return True
