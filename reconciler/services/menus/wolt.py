"""
Wolt Menu Source

Production menu source backed by the public Wolt restaurant API.
Used when ENV_MODE=production or ENV_MODE=staging.

Endpoints:
    GET /v1/pages/restaurants?lat=..&lon=..   discovery page (catalog)
    GET /v3/venues/slug/{slug}                venue with its menu

Error translation:
    429                        -> ProviderQuotaExceededError
    404                        -> ProviderNotFoundError
    5xx, timeouts, transport   -> ProviderTransientError
    other 4xx, invalid JSON    -> ProviderMalformedError

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from typing import Any, Optional

import httpx

from reconciler.core.config import get_settings
from reconciler.core.exceptions import (
    ProviderError,
    ProviderMalformedError,
    ProviderNotFoundError,
    ProviderQuotaExceededError,
    ProviderTransientError,
)
from reconciler.pipeline.types import CandidateRecord, GeoPoint
from reconciler.services.menus.base import BaseMenuSource

logger = logging.getLogger(__name__)


class WoltMenuSource(BaseMenuSource):
    """
    Wolt-backed menu source.

    Example:
        >>> source = WoltMenuSource()
        >>> catalog = await source.list_venues()
        >>> blob = await source.fetch_detail("trabuxu-bistro")
        >>> await source.aclose()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()

        self.base_url = (base_url or settings.menu_api_base_url).rstrip("/")
        self.lat = settings.menu_catalog_lat if lat is None else lat
        self.lon = settings.menu_catalog_lon if lon is None else lon
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
        )

        logger.info(f"WoltMenuSource initialized ({self.base_url})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "wolt"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        """GET a JSON document and translate failures into provider errors."""
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"timeout on {path}", provider="wolt") from e
        except httpx.TransportError as e:
            raise ProviderTransientError(f"transport error on {path}: {e}", provider="wolt") from e

        status = response.status_code
        if status == 429:
            raise ProviderQuotaExceededError(f"rate limited on {path}", provider="wolt")
        if status == 404:
            raise ProviderNotFoundError(f"{path} not found", provider="wolt")
        if status >= 500:
            raise ProviderTransientError(f"HTTP {status} on {path}", provider="wolt")
        if status >= 400:
            raise ProviderMalformedError(f"HTTP {status} on {path}", provider="wolt")

        try:
            return response.json()
        except ValueError as e:
            raise ProviderMalformedError(f"invalid JSON from {path}", provider="wolt") from e

    async def list_venues(self) -> list[CandidateRecord]:
        """List venues from the discovery page around the configured point."""
        data = await self._get_json(
            "/v1/pages/restaurants",
            params={"lat": self.lat, "lon": self.lon},
        )
        if not isinstance(data, dict):
            raise ProviderMalformedError("discovery page is not an object", provider="wolt")

        venues: list[CandidateRecord] = []
        seen: set[str] = set()
        sections = data.get("sections") or []
        if not isinstance(sections, list):
            raise ProviderMalformedError("discovery sections are not a list", provider="wolt")

        for section in sections:
            if not isinstance(section, dict):
                logger.warning(f"Wolt: skipping malformed section {section!r}")
                continue
            items = section.get("items") or []
            if not isinstance(items, list):
                logger.warning("Wolt: skipping section with malformed items")
                continue
            for item in items:
                venue = item.get("venue") if isinstance(item, dict) else None
                if not isinstance(venue, dict) or not venue.get("slug") or venue["slug"] in seen:
                    continue
                seen.add(venue["slug"])

                geo = None
                location = venue.get("location")
                if isinstance(location, list) and len(location) == 2:
                    # Wolt sends [lon, lat]
                    geo = GeoPoint(lat=float(location[1]), lng=float(location[0]))

                venues.append(CandidateRecord(
                    external_id=venue["slug"],
                    display_name=venue.get("name") or venue["slug"],
                    address=venue.get("address"),
                    geo=geo,
                ))

        logger.info(f"Wolt: {len(venues)} venues listed at ({self.lat}, {self.lon})")
        return venues

    async def fetch_detail(self, ref: str) -> dict[str, Any]:
        """Return the venue object, including its menu, for a slug."""
        data = await self._get_json(f"/v3/venues/slug/{ref}")
        if not isinstance(data, dict):
            raise ProviderMalformedError(f"venue {ref} is not an object", provider="wolt")

        results = data.get("results")
        if not results:
            raise ProviderNotFoundError(f"venue {ref} has no results", provider="wolt")
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise ProviderMalformedError(f"venue {ref} results have unexpected shape", provider="wolt")
        return results[0]

    async def health_check(self) -> bool:
        """Verify the discovery endpoint answers."""
        try:
            await self._get_json(
                "/v1/pages/restaurants",
                params={"lat": self.lat, "lon": self.lon},
            )
            logger.debug("Wolt: Health check passed")
            return True
        except ProviderError as e:
            logger.error(f"Wolt: Health check failed - {e}")
            return False
