"""Air quality service: concurrent provider fan-out, normalization and fusion."""

import asyncio
import logging
from typing import Optional

import httpx
from pydantic import BaseModel

from ceylon_air.airquality.clients import (
    IQAirClient, OpenWeatherClient, ProviderClient, WeatherApiClient, create_http_client
)
from ceylon_air.airquality.fusion import FusionEngine
from ceylon_air.airquality.models import (
    Coordinate, FusedSnapshot, IQAirResult, OpenWeatherResult, ProviderReadings,
    ResolvedLocation, WeatherApiResult
)
from ceylon_air.airquality.normalizer import normalize

logger = logging.getLogger(__name__)


class ProviderResults(BaseModel):
    """Raw results of one fan-out; a failed provider is None."""
    iq_air: Optional[IQAirResult] = None
    open_weather: Optional[OpenWeatherResult] = None
    weather_api: Optional[WeatherApiResult] = None

    @property
    def failed(self) -> int:
        return sum(result is None for result in (self.iq_air, self.open_weather, self.weather_api))


class AirQualityService:
    """Queries all providers for a location and fuses their readings."""

    def __init__(
        self,
        iq_air: Optional[ProviderClient] = None,
        open_weather: Optional[ProviderClient] = None,
        weather_api: Optional[ProviderClient] = None,
        fusion_engine: Optional[FusionEngine] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """Initialize the air quality service.

        Args:
            iq_air: IQAir client (creates default if None)
            open_weather: OpenWeatherMap client (creates default if None)
            weather_api: WeatherAPI client (creates default if None)
            fusion_engine: Fusion engine (creates default if None)
            http_client: HTTP client shared by the default provider clients
        """
        self._owns_http_client = http_client is None and None in (iq_air, open_weather, weather_api)
        if self._owns_http_client:
            http_client = create_http_client()
        self.http_client = http_client

        self.iq_air = iq_air or IQAirClient(client=http_client)
        self.open_weather = open_weather or OpenWeatherClient(client=http_client)
        self.weather_api = weather_api or WeatherApiClient(client=http_client)
        self.fusion_engine = fusion_engine or FusionEngine()

    async def fetch_all(self, coordinate: Coordinate) -> ProviderResults:
        """Query the three providers concurrently.

        All calls run to completion; a failing provider never cancels
        the others and is reported as None.
        """
        logger.info(f"Fetching air quality data for lat={coordinate.latitude}, lon={coordinate.longitude}")

        clients = (self.iq_air, self.open_weather, self.weather_api)
        settled = await asyncio.gather(
            *(client.fetch(coordinate) for client in clients),
            return_exceptions=True
        )

        results = []
        for client, outcome in zip(clients, settled):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(f"Provider {client.name} unavailable: {outcome}")
                results.append(None)
            else:
                results.append(outcome)

        provider_results = ProviderResults(
            iq_air=results[0],
            open_weather=results[1],
            weather_api=results[2],
        )
        logger.info(f"Providers answered: {3 - provider_results.failed}/3")
        return provider_results

    @staticmethod
    def normalize_results(results: ProviderResults) -> ProviderReadings:
        return ProviderReadings(
            iq_air=normalize(results.iq_air) if results.iq_air else None,
            open_weather=normalize(results.open_weather, "aqi") if results.open_weather else None,
            open_weather_uv=normalize(results.open_weather, "uv") if results.open_weather else None,
            weather_api=normalize(results.weather_api) if results.weather_api else None,
        )

    async def collect(self, location: ResolvedLocation, now_ms: Optional[int] = None):
        """Fetch, normalize and fuse for a resolved location.

        Returns:
            Tuple of (FusedSnapshot, ProviderResults)
        """
        results = await self.fetch_all(location.coordinates)
        readings = self.normalize_results(results)
        snapshot: FusedSnapshot = self.fusion_engine.fuse(
            readings,
            location.coordinates,
            now_ms=now_ms,
            location_is_fallback=location.is_fallback
        )
        return snapshot, results

    async def aclose(self):
        """Close provider clients and the shared HTTP client."""
        for client in (self.iq_air, self.open_weather, self.weather_api):
            try:
                await client.aclose()
            except Exception as e:
                logger.error(f"Error closing {client.name} client: {e}")
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()
