"""
Google Maps Geo Service Implementation

Production implementation using the Google Maps Geocoding API.
Used when ENV_MODE=production or ENV_MODE=staging and a maps key is
configured (admin settings first, GOOGLE_MAPS_API_KEY as fallback).

API Documentation:
    https://developers.google.com/maps/documentation/geocoding/requests-reverse-geocoding

Author: Bistro Engineering
Version: 1.0.0
"""

import logging
from datetime import datetime

import googlemaps
from googlemaps.exceptions import ApiError, Timeout, TransportError, HTTPError

from bistro.services.geo.base import BaseGeoService, GeoLookupResult

logger = logging.getLogger(__name__)


class GoogleGeoService(BaseGeoService):
    """
    Production Google Maps geo service implementation.

    Example:
        >>> service = GoogleGeoService(api_key="AIza...")
        >>> result = await service.reverse_geocode(40.7484, -73.9857)
        >>> print(result.formatted_address)
        '350 5th Ave, New York, NY 10118, USA'
    """

    def __init__(self, api_key: str):
        """
        Initialize Google Maps client with API key.

        Raises:
            ValueError: If no API key is given
        """
        if not api_key:
            raise ValueError("A Google Maps API key is required for GoogleGeoService")

        self._client = googlemaps.Client(key=api_key)

        logger.info("GoogleGeoService initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "google"

    def _failure(
        self,
        lat: float,
        lng: float,
        start_time: datetime,
        message: str,
        code: str,
    ) -> GeoLookupResult:
        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
        return GeoLookupResult(
            success=False,
            latitude=lat,
            longitude=lng,
            error_message=message,
            error_code=code,
            response_time_ms=elapsed_ms,
        )

    async def reverse_geocode(self, lat: float, lng: float) -> GeoLookupResult:
        """
        Resolve coordinates with the Geocoding API.

        The first result is Google's most specific match (usually a street
        address), so it is the one used for delivery.
        """
        start_time = datetime.now()

        logger.debug(f"Google: Reverse geocoding ({lat}, {lng})")

        try:
            # googlemaps is synchronous, but a single lookup is lightweight
            results = self._client.reverse_geocode((lat, lng))

        except Timeout:
            logger.error("Google: API timeout")
            return self._failure(
                lat, lng, start_time,
                "Address lookup timed out. Please try again.",
                "timeout",
            )

        except ApiError as e:
            logger.error(f"Google: API error - {e}")
            return self._failure(
                lat, lng, start_time,
                "Address lookup service error",
                "api_error",
            )

        except (TransportError, HTTPError) as e:
            logger.error(f"Google: Transport error - {e}")
            return self._failure(
                lat, lng, start_time,
                "Unable to reach address lookup service",
                "transport_error",
            )

        if not results:
            logger.warning(f"Google: No address found for ({lat}, {lng})")
            return self._failure(
                lat, lng, start_time,
                "No address found at this location",
                "address_not_found",
            )

        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
        formatted_address = results[0].get("formatted_address")

        logger.info(f"Google: Location resolved - {formatted_address}")

        return GeoLookupResult(
            success=bool(formatted_address),
            latitude=lat,
            longitude=lng,
            formatted_address=formatted_address,
            error_code=None if formatted_address else "address_not_found",
            response_time_ms=elapsed_ms,
        )

    async def health_check(self) -> bool:
        """
        Verify Google Maps API connectivity.

        Makes a simple geocode request to verify credentials and connectivity.
        """
        try:
            result = self._client.geocode("New York, NY")

            if result:
                logger.debug("Google: Health check passed")
                return True

            return False

        except (ApiError, Timeout, TransportError) as e:
            logger.error(f"Google: Health check failed - {e}")
            return False
