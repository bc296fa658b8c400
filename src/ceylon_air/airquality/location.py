"""Location resolution for the fetch cycle."""

import asyncio
import logging
from functools import lru_cache
from typing import Optional, Protocol, Tuple

from geopy.exc import GeocoderServiceError, GeocoderTimedOut, GeocoderUnavailable
from geopy.geocoders import Nominatim
from pydantic import ValidationError

from ceylon_air.config import (
    DEFAULT_CITY, DEFAULT_LAT, DEFAULT_LON, GEOCODING_USER_AGENT,
    LOCATION_CITY, LOCATION_FALLBACK_ENABLED, LOCATION_LAT, LOCATION_LON
)
from ceylon_air.airquality.models import Coordinate, ResolvedLocation

logger = logging.getLogger(__name__)


class LocationUnavailableError(Exception):
    """Raised when no location can be determined for a fetch cycle."""
    pass


class LocationProvider(Protocol):
    """Source of the user's current location."""

    async def get_current_location(self) -> ResolvedLocation:
        ...


def default_location() -> ResolvedLocation:
    """The fixed fallback location."""
    return ResolvedLocation(
        coordinates=Coordinate(latitude=DEFAULT_LAT, longitude=DEFAULT_LON),
        name=DEFAULT_CITY,
        is_fallback=True,
    )


class GeocodingService:
    """Forward geocoding of place names with Nominatim."""

    def __init__(self, geolocator: Optional[Nominatim] = None):
        self.geolocator = geolocator or Nominatim(user_agent=GEOCODING_USER_AGENT)

    @lru_cache(maxsize=128)
    def forward_geocode(self, city: str) -> Tuple[float, float]:
        """Convert a city name to coordinates.

        Args:
            city: City name to geocode

        Returns:
            Tuple of (latitude, longitude)

        Raises:
            LocationUnavailableError: If geocoding fails
        """
        try:
            logger.info(f"Geocoding city: {city}")
            location = self.geolocator.geocode(city)
        except (GeocoderUnavailable, GeocoderTimedOut) as e:
            logger.error(f"Geocoding service unavailable for '{city}': {e}")
            raise LocationUnavailableError("Geocoding service temporarily unavailable")
        except GeocoderServiceError as e:
            logger.error(f"Geocoding failed for '{city}': {e}")
            raise LocationUnavailableError(f"Failed to geocode city: {e}")

        if not location:
            raise LocationUnavailableError(f"City '{city}' not found")

        logger.info(f"Geocoded '{city}' to ({location.latitude}, {location.longitude})")
        return location.latitude, location.longitude


class ConfiguredLocationProvider:
    """Location taken from configuration.

    Explicit coordinates win over a city name. When neither resolves,
    the default city is used and flagged as a fallback, unless fallback
    is disabled, in which case the cycle fails with
    ``LocationUnavailableError``.
    """

    def __init__(
        self,
        city: str = LOCATION_CITY,
        lat: str = LOCATION_LAT,
        lon: str = LOCATION_LON,
        fallback_enabled: bool = LOCATION_FALLBACK_ENABLED,
        geocoding_service: Optional[GeocodingService] = None
    ):
        self.city = city
        self.lat = lat
        self.lon = lon
        self.fallback_enabled = fallback_enabled
        self.geocoding_service = geocoding_service

    async def get_current_location(self) -> ResolvedLocation:
        try:
            return await self._resolve()
        except LocationUnavailableError as e:
            if not self.fallback_enabled:
                raise
            logger.warning(f"Location unavailable ({e}), using default location {DEFAULT_CITY}")
            return default_location()

    async def _resolve(self) -> ResolvedLocation:
        if self.lat and self.lon:
            try:
                coordinates = Coordinate(latitude=float(self.lat), longitude=float(self.lon))
            except (ValueError, ValidationError) as e:
                raise LocationUnavailableError(f"Invalid configured coordinates: {e}")
            return ResolvedLocation(coordinates=coordinates, name=self.city or None)

        if self.city:
            if self.geocoding_service is None:
                self.geocoding_service = GeocodingService()
            # Nominatim is blocking
            lat, lon = await asyncio.to_thread(self.geocoding_service.forward_geocode, self.city)
            return ResolvedLocation(coordinates=Coordinate(latitude=lat, longitude=lon), name=self.city)

        raise LocationUnavailableError("No location configured")
