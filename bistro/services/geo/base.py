"""
Geo Service Abstract Base Class

Defines the interface contract for delivery-location lookups. The order page
lets a shopper drop a pin on a map; the picked coordinates are turned into a
human-readable address that can stand in for a typed delivery address.

Author: Bistro Engineering
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class GeoLookupResult:
    """
    Standardized result from a reverse geocode.

    Attributes:
        success: Whether an address was found
        formatted_address: Address suitable for a delivery driver
        latitude: Requested latitude
        longitude: Requested longitude
        error_message: Error description if the lookup failed
        error_code: Machine-readable error code
        response_time_ms: Provider response time
    """
    success: bool
    latitude: float
    longitude: float
    formatted_address: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "formatted_address": self.formatted_address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "response_time_ms": self.response_time_ms,
        }


class BaseGeoService(ABC):
    """
    Abstract base class for geolocation services.

    Example:
        >>> service = get_geo_service(config.maps_api_key)
        >>> result = await service.reverse_geocode(40.7484, -73.9857)
        >>> if result.success:
        ...     print(result.formatted_address)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the geo provider.

        Returns:
            str: Provider name (e.g., "mock", "google")
        """
        pass

    @abstractmethod
    async def reverse_geocode(self, lat: float, lng: float) -> GeoLookupResult:
        """
        Resolve coordinates to a street address.

        Never raises for provider errors; failures come back with
        ``success=False`` and an error code.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the geo service.

        Returns:
            bool: True if service is operational
        """
        pass
