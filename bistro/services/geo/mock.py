"""
Mock Geo Service Implementation

Simulates Google Maps reverse geocoding without making real API calls.
Used in development mode (ENV_MODE=development) for local testing.

Behavior:
    - Synthesizes a stable street address from the coordinates
      (the same point always yields the same address)
    - Simulates network latency
    - Configurable random failure rate for testing error handling

Author: Bistro Engineering
Version: 1.0.0
"""

import asyncio
import random
import logging

from bistro.services.geo.base import BaseGeoService, GeoLookupResult

logger = logging.getLogger(__name__)


class MockGeoService(BaseGeoService):
    """
    Mock implementation of the geo service.

    Attributes:
        failure_rate: Probability of simulated API failure (0.0-1.0)
        min_latency: Minimum response time in seconds
        max_latency: Maximum response time in seconds
        city: City name used in synthesized addresses

    Example:
        >>> service = MockGeoService()
        >>> result = await service.reverse_geocode(40.7128, -74.0060)
        >>> print(result.formatted_address)
        '389 Greenwich Avenue, New York'
    """

    STREETS = [
        "Mulberry Street",
        "Bleecker Street",
        "Hudson Street",
        "Spring Street",
        "Greenwich Avenue",
        "Lafayette Street",
        "Bowery",
        "Canal Street",
    ]

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        city: str = "New York",
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.city = city

        logger.info(f"MockGeoService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    async def _simulate_latency(self) -> float:
        """
        Simulate network latency.

        Returns:
            float: Latency in milliseconds
        """
        latency = random.uniform(self.min_latency, self.max_latency)
        if latency > 0:
            await asyncio.sleep(latency)
        return latency * 1000

    def _should_fail(self) -> bool:
        """Determine if this request should simulate a failure."""
        return random.random() < self.failure_rate

    def _synthesize_address(self, lat: float, lng: float) -> str:
        seed = int(round(abs(lat) * 10000)) + int(round(abs(lng) * 10000))
        number = seed % 400 + 1
        street = self.STREETS[seed % len(self.STREETS)]
        return f"{number} {street}, {self.city}"

    async def reverse_geocode(self, lat: float, lng: float) -> GeoLookupResult:
        logger.debug(f"Mock: Reverse geocoding ({lat}, {lng})")

        latency_ms = await self._simulate_latency()

        if self._should_fail():
            logger.debug("Mock: Simulated API failure")
            return GeoLookupResult(
                success=False,
                latitude=lat,
                longitude=lng,
                error_message="Geocoding service temporarily unavailable",
                error_code="service_unavailable",
                response_time_ms=latency_ms,
            )

        address = self._synthesize_address(lat, lng)
        logger.info(f"Mock: Location resolved - {address}")

        return GeoLookupResult(
            success=True,
            latitude=lat,
            longitude=lng,
            formatted_address=address,
            response_time_ms=latency_ms,
        )

    async def health_check(self) -> bool:
        """Mock health check always returns True."""
        logger.debug("Mock: Geo health check passed")
        return True
