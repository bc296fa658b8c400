"""HTTP clients for the IQAir, OpenWeatherMap and WeatherAPI services."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ceylon_air.config import (
    IQAIR_API_KEY, IQAIR_BASE_URL,
    OPENWEATHER_API_KEY, OPENWEATHER_BASE_URL,
    WEATHERAPI_API_KEY, WEATHERAPI_BASE_URL,
    REQUEST_TIMEOUT_SECONDS, USER_AGENT
)
from ceylon_air.airquality.models import (
    Coordinate, IQAirResult, OpenWeatherResult, WeatherApiResult
)

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when a provider cannot deliver a usable result."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


def create_http_client(timeout: float = REQUEST_TIMEOUT_SECONDS) -> httpx.AsyncClient:
    """Shared async HTTP client for all providers."""
    return httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, timeout=timeout)


def _coordinate(lat: Any, lon: Any) -> Optional[Coordinate]:
    try:
        return Coordinate(latitude=float(lat), longitude=float(lon))
    except (TypeError, ValueError, ValidationError):
        return None


def _iso_to_ms(timestamp: Optional[str]) -> int:
    if not timestamp:
        return 0
    parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    return int(parsed.timestamp() * 1000)


class ProviderClient:
    """Base class for the provider clients.

    Subclasses implement ``fetch``; this class handles credentials,
    the GET request and error translation into ``ProviderError``.
    """

    name = "provider"

    def __init__(self, api_key: str, base_url: str, client: Optional[httpx.AsyncClient] = None):
        """Initialize the provider client.

        Args:
            api_key: Provider API key
            base_url: Base URL of the provider API
            client: Shared HTTP client (creates one if None)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = client or create_http_client()
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and not self.api_key.startswith("your_")

    async def fetch(self, coordinate: Coordinate):
        raise NotImplementedError

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET ``path`` and return the decoded JSON object.

        Raises:
            ProviderError: On missing credentials, HTTP or transport errors,
                or a body that is not a JSON object
        """
        if not self.configured:
            raise ProviderError(self.name, "API key not configured")

        url = f"{self.base_url}/{path}"
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error from {self.name}: {e.response.status_code} - {e.response.text[:200]}")
            raise ProviderError(self.name, f"HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"Request error to {self.name}: {e}")
            raise ProviderError(self.name, f"request failed: {e}")
        except ValueError as e:
            logger.error(f"Invalid JSON from {self.name}: {e}")
            raise ProviderError(self.name, "response is not valid JSON")

        if not isinstance(data, dict):
            raise ProviderError(self.name, "unexpected response shape")
        return data

    async def aclose(self):
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self.client.aclose()


class IQAirClient(ProviderClient):
    """Nearest air quality station from IQAir (AirVisual API v2)."""

    name = "IQAir"

    def __init__(self, api_key: str = IQAIR_API_KEY, base_url: str = IQAIR_BASE_URL,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(api_key, base_url, client)

    async def fetch(self, coordinate: Coordinate) -> IQAirResult:
        logger.info(f"Fetching IQAir nearest city for lat={coordinate.latitude}, lon={coordinate.longitude}")
        payload = await self._get_json("nearest_city", {
            "lat": coordinate.latitude,
            "lon": coordinate.longitude,
            "key": self.api_key,
        })

        if payload.get("status") != "success":
            raise ProviderError(self.name, f"status {payload.get('status')!r}")

        try:
            data = payload["data"]
            pollution = data["current"]["pollution"]
            station = None
            location_coords = (data.get("location") or {}).get("coordinates")
            if location_coords and len(location_coords) >= 2:
                # GeoJSON order: [longitude, latitude]
                station = _coordinate(location_coords[1], location_coords[0])

            return IQAirResult(
                city=data.get("city"),
                state=data.get("state"),
                country=data.get("country"),
                coordinates=station,
                aqi_us=int(pollution.get("aqius") or 0),
                pollution_timestamp_ms=_iso_to_ms(pollution.get("ts")),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.error(f"Failed to parse IQAir response: {e}")
            raise ProviderError(self.name, f"malformed payload: {e}")


class OpenWeatherClient(ProviderClient):
    """Air pollution and UV index from OpenWeatherMap."""

    name = "OpenWeatherMap"

    def __init__(self, api_key: str = OPENWEATHER_API_KEY, base_url: str = OPENWEATHER_BASE_URL,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(api_key, base_url, client)

    async def fetch(self, coordinate: Coordinate) -> OpenWeatherResult:
        logger.info(f"Fetching OpenWeather air pollution for lat={coordinate.latitude}, lon={coordinate.longitude}")
        params = {"lat": coordinate.latitude, "lon": coordinate.longitude, "appid": self.api_key}
        payload = await self._get_json("air_pollution", params)

        try:
            sample = payload["list"][0]
            coord = payload.get("coord") or {}
            result = OpenWeatherResult(
                coordinates=_coordinate(coord.get("lat"), coord.get("lon")),
                aqi_class=int(sample["main"]["aqi"]),
                components=sample.get("components") or {},
                sample_timestamp_ms=int(sample.get("dt") or 0) * 1000,
            )
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
            logger.error(f"Failed to parse OpenWeather response: {e}")
            raise ProviderError(self.name, f"malformed payload: {e}")

        uv_value = await self.fetch_uv(coordinate)
        if uv_value is None:
            return result
        return result.model_copy(update={"uv_value": uv_value})

    async def fetch_uv(self, coordinate: Coordinate) -> Optional[float]:
        """UV index for the coordinate, or None if the UV call fails."""
        try:
            payload = await self._get_json("uvi", {
                "lat": coordinate.latitude,
                "lon": coordinate.longitude,
                "appid": self.api_key,
            })
            return float(payload["value"])
        except ProviderError as e:
            logger.warning(f"OpenWeather UV unavailable: {e}")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to parse OpenWeather UV response: {e}")
        return None


class WeatherApiClient(ProviderClient):
    """Current UV index from WeatherAPI.com."""

    name = "WeatherAPI"

    def __init__(self, api_key: str = WEATHERAPI_API_KEY, base_url: str = WEATHERAPI_BASE_URL,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(api_key, base_url, client)

    async def fetch(self, coordinate: Coordinate) -> WeatherApiResult:
        logger.info(f"Fetching WeatherAPI current conditions for lat={coordinate.latitude}, lon={coordinate.longitude}")
        payload = await self._get_json("current.json", {
            "key": self.api_key,
            "q": f"{coordinate.latitude},{coordinate.longitude}",
        })

        try:
            current = payload["current"]
            location = payload.get("location") or {}
            return WeatherApiResult(
                coordinates=_coordinate(location.get("lat"), location.get("lon")),
                uv_value=float(current["uv"]),
                last_updated_ms=int(current.get("last_updated_epoch") or 0) * 1000,
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.error(f"Failed to parse WeatherAPI response: {e}")
            raise ProviderError(self.name, f"malformed payload: {e}")
