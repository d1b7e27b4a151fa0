"""
Google Places Search Provider

Production implementation using the Google Places API (Text Search and
Place Details). Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - GOOGLE_MAPS_API_KEY must be set in environment
    - Places API must be enabled in Google Cloud Console

Error translation:
    OVER_QUERY_LIMIT / OVER_DAILY_LIMIT   -> ProviderQuotaExceededError
    NOT_FOUND                             -> ProviderNotFoundError
    INVALID_REQUEST / REQUEST_DENIED      -> ProviderMalformedError
    UNKNOWN_ERROR, Timeout, TransportError, HTTP 5xx
                                          -> ProviderTransientError

The library's own OVER_QUERY_LIMIT retry loop is disabled; retries belong
to RateLimitedClient.

API Documentation:
    https://developers.google.com/maps/documentation/places/web-service

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import googlemaps
from googlemaps.exceptions import ApiError, HTTPError, Timeout, TransportError

from reconciler.core.config import get_settings
from reconciler.core.exceptions import (
    ProviderError,
    ProviderMalformedError,
    ProviderNotFoundError,
    ProviderQuotaExceededError,
    ProviderTransientError,
)
from reconciler.pipeline.types import (
    CandidateRecord,
    GeoPoint,
    PhotoReference,
    PlaceDetails,
)
from reconciler.services.places.base import BasePlaceSearchProvider

logger = logging.getLogger(__name__)

PHOTO_ENDPOINT = "https://maps.googleapis.com/maps/api/place/photo"

DETAIL_FIELDS = [
    "place_id",
    "name",
    "formatted_address",
    "formatted_phone_number",
    "rating",
    "user_ratings_total",
    "photo",
    "geometry",
]

QUOTA_STATUSES = {"OVER_QUERY_LIMIT", "OVER_DAILY_LIMIT"}
MALFORMED_STATUSES = {"INVALID_REQUEST", "REQUEST_DENIED"}


def translate_error(error: Exception) -> ProviderError:
    """Map a googlemaps exception onto the provider error taxonomy."""
    if isinstance(error, ApiError):
        detail = f"{error.status}: {error.message}" if error.message else error.status
        if error.status in QUOTA_STATUSES:
            return ProviderQuotaExceededError(detail, provider="google")
        if error.status == "NOT_FOUND":
            return ProviderNotFoundError(detail, provider="google")
        if error.status in MALFORMED_STATUSES:
            return ProviderMalformedError(detail, provider="google")
        return ProviderTransientError(detail, provider="google")

    if isinstance(error, Timeout):
        return ProviderTransientError("request timed out", provider="google")

    if isinstance(error, HTTPError):
        if error.status_code >= 500:
            return ProviderTransientError(f"HTTP {error.status_code}", provider="google")
        return ProviderMalformedError(f"HTTP {error.status_code}", provider="google")

    if isinstance(error, TransportError):
        return ProviderTransientError(f"transport error: {error}", provider="google")

    return ProviderMalformedError(f"unexpected error: {error}", provider="google")


def _to_record(result: dict[str, Any], fallback_id: Optional[str] = None) -> CandidateRecord:
    location = (result.get("geometry") or {}).get("location") or {}
    geo = None
    if location.get("lat") is not None and location.get("lng") is not None:
        geo = GeoPoint(lat=float(location["lat"]), lng=float(location["lng"]))

    return CandidateRecord(
        external_id=result.get("place_id") or fallback_id or "",
        display_name=result.get("name") or "",
        address=result.get("formatted_address"),
        rating=result.get("rating"),
        review_count=result.get("user_ratings_total"),
        phone=result.get("formatted_phone_number"),
        photo_refs=tuple(
            photo["photo_reference"]
            for photo in result.get("photos") or []
            if isinstance(photo, dict) and photo.get("photo_reference")
        ),
        geo=geo,
    )


class GooglePlaceSearchProvider(BasePlaceSearchProvider):
    """
    Production Google Places provider.

    Configuration:
        Requires GOOGLE_MAPS_API_KEY environment variable, unless a
        preconfigured `client` is injected.

    Example:
        >>> provider = GooglePlaceSearchProvider()
        >>> candidates = await provider.search("Trabuxu Bistro Malta")
        >>> print(candidates[0].display_name)
        'Trabuxu Bistro'
    """

    def __init__(self, client: Optional[Any] = None):
        """
        Initialize the Google Maps client.

        Raises:
            ValueError: If GOOGLE_MAPS_API_KEY is not configured
        """
        settings = get_settings()

        if client is None:
            if not settings.google_maps_api_key:
                raise ValueError(
                    "GOOGLE_MAPS_API_KEY is required for production mode. "
                    "Set it in your .env file or environment variables."
                )
            client = googlemaps.Client(
                key=settings.google_maps_api_key,
                retry_over_query_limit=False,
            )

        self._client = client
        self._language = settings.places_language
        self._region = settings.places_region

        logger.info("GooglePlaceSearchProvider initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "google"

    async def search(self, query: str) -> list[CandidateRecord]:
        """Run a Text Search; ZERO_RESULTS is an empty list."""
        logger.debug(f"Google: Text search - {query}")

        # googlemaps is synchronous; a run issues one request at a time anyway
        try:
            response = self._client.places(
                query=query,
                language=self._language,
                region=self._region,
            )
        except (ApiError, HTTPError, Timeout, TransportError) as e:
            raise translate_error(e) from e

        if not isinstance(response, dict):
            raise ProviderMalformedError("search response is not an object", provider="google")

        results = response.get("results") or []
        candidates = [_to_record(r) for r in results if r.get("place_id")]
        logger.debug(f"Google: '{query}' -> {len(candidates)} candidates")
        return candidates

    async def details(self, external_id: str) -> PlaceDetails:
        """Fetch Place Details with the fields the pipeline stores."""
        logger.debug(f"Google: Place details - {external_id}")

        try:
            response = self._client.place(
                place_id=external_id,
                fields=DETAIL_FIELDS,
                language=self._language,
            )
        except (ApiError, HTTPError, Timeout, TransportError) as e:
            raise translate_error(e) from e

        result = response.get("result") if isinstance(response, dict) else None
        if not result:
            raise ProviderNotFoundError(f"No details for {external_id}", provider="google")

        photos = tuple(
            PhotoReference(
                reference=photo["photo_reference"],
                width=photo.get("width"),
                height=photo.get("height"),
            )
            for photo in result.get("photos") or []
            if isinstance(photo, dict) and photo.get("photo_reference")
        )
        return PlaceDetails(record=_to_record(result, fallback_id=external_id), photos=photos)

    def photo_url(self, reference: str, max_width: int = 1600) -> str:
        """Photo URL without the API key; the serving layer signs it."""
        return f"{PHOTO_ENDPOINT}?{urlencode({'maxwidth': max_width, 'photo_reference': reference})}"

    async def health_check(self) -> bool:
        """
        Verify Google Places API connectivity.

        Makes a simple text search to verify credentials and connectivity.
        """
        try:
            self._client.places(query="Valletta", region=self._region)
            logger.debug("Google: Health check passed")
            return True
        except (ApiError, HTTPError, Timeout, TransportError) as e:
            logger.error(f"Google: Health check failed - {e}")
            return False
