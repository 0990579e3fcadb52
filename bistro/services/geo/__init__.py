"""
Geo Service Factory

Provides a single entry point for obtaining a geo service instance.
Automatically selects Mock or Google Maps based on ENV_MODE configuration
and the maps key from the integration settings.

Usage:
    from bistro.services.geo import get_geo_service

    geo_service = get_geo_service(config.maps_api_key)
    if geo_service is not None:
        result = await geo_service.reverse_geocode(lat, lng)

Environment Switching:
    - ENV_MODE=development → MockGeoService
    - ENV_MODE=staging/production → GoogleGeoService, or None when no key
      is configured

Author: Bistro Engineering
Version: 1.0.0
"""

import logging
from functools import lru_cache
from typing import Optional

from bistro.core.config import get_settings
from bistro.services.geo.base import BaseGeoService, GeoLookupResult
from bistro.services.geo.mock import MockGeoService
from bistro.services.geo.google import GoogleGeoService

logger = logging.getLogger(__name__)


@lru_cache()
def get_geo_service(api_key: Optional[str] = None) -> Optional[BaseGeoService]:
    """
    Get the geo service for ``api_key``.

    Instances are cached per key, so saving a new key in the admin
    settings picks up a fresh client on the next request.

    Returns:
        BaseGeoService, or None when lookups are not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Geo Service: Using MockGeoService (development mode)")
        return MockGeoService(
            failure_rate=settings.mock_failure_rate,
            min_latency=0.05,
            max_latency=0.2,
        )

    if not api_key:
        logger.warning("Geo Service: No Google Maps key configured; lookups disabled")
        return None

    logger.info(
        f"Geo Service: Using GoogleGeoService "
        f"({settings.env_mode.value} mode)"
    )
    return GoogleGeoService(api_key)


def reset_geo_service() -> None:
    """
    Clear the cached geo service instances.

    Useful for testing or when configuration changes at runtime.
    """
    get_geo_service.cache_clear()
    logger.debug("Geo service cache cleared")


__all__ = [
    "get_geo_service",
    "reset_geo_service",
    "BaseGeoService",
    "GeoLookupResult",
    "MockGeoService",
    "GoogleGeoService",
]
