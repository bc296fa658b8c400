"""Hybrid fusion of AQI and UV readings from several providers."""

import logging
import math
import time
from typing import Callable, List, NamedTuple, Optional

from ceylon_air.airquality.geo import distance_km
from ceylon_air.airquality.models import (
    AqiEstimate, Coordinate, FusedSnapshot, NormalizedReading, ProviderReadings,
    RiskLevel, UvEstimate
)
from ceylon_air.airquality.normalizer import (
    IQAIR_SOURCE, OPENWEATHER_SOURCE, WEATHERAPI_SOURCE, aqi_category, uv_category
)

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000

# IQAir station weight by distance from the user
CLOSE_STATION_KM = 2.0
MEDIUM_STATION_KM = 10.0
CLOSE_STATION_WEIGHT = 0.9
MEDIUM_STATION_WEIGHT = 0.7
FAR_STATION_WEIGHT = 0.3
UNLOCATED_STATION_WEIGHT = 0.5

# Freshness factors by reading age
FRESH_FACTOR = 1.0   # < 1 hour
STALE_FACTOR = 0.5   # 1-6 hours
OLD_FACTOR = 0.2     # >= 6 hours

DEFAULT_AQI = AqiEstimate(value=50, category="Good", source="default", confidence=0.0)
DEFAULT_UV = UvEstimate(value=3, category="Moderate", source="default")

AQI_SEVERE_RECOMMENDATIONS = (
    "Avoid outdoor activities",
    "Keep windows and doors closed",
    "Use air purifiers if available",
)
AQI_ELEVATED_RECOMMENDATIONS = (
    "Limit outdoor activities",
    "Sensitive groups should avoid outdoor exercise",
)
UV_SEVERE_RECOMMENDATIONS = (
    "Avoid sun exposure during peak hours (10 AM - 4 PM)",
    "Use sunscreen with SPF 30+",
    "Wear protective clothing and hat",
)
UV_ELEVATED_RECOMMENDATIONS = (
    "Use sunscreen and seek shade during midday",
)

SOURCE_DISPLAY_NAMES = {
    IQAIR_SOURCE: "IQAir",
    OPENWEATHER_SOURCE: "OpenWeatherMap",
    WEATHERAPI_SOURCE: "WeatherAPI",
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (inputs are non-negative)."""
    return int(math.floor(value + 0.5))


def aqi_recommendations(value: float) -> List[str]:
    if value > 150:
        return list(AQI_SEVERE_RECOMMENDATIONS)
    if value > 100:
        return list(AQI_ELEVATED_RECOMMENDATIONS)
    return []


def uv_recommendations(value: float) -> List[str]:
    if value > 8:
        return list(UV_SEVERE_RECOMMENDATIONS)
    if value > 6:
        return list(UV_ELEVATED_RECOMMENDATIONS)
    return []


def aqi_risk_level(value: float) -> RiskLevel:
    if value <= 50:
        return RiskLevel.GOOD
    if value <= 100:
        return RiskLevel.MODERATE
    if value <= 150:
        return RiskLevel.UNHEALTHY_SENSITIVE
    if value <= 200:
        return RiskLevel.UNHEALTHY
    return RiskLevel.VERY_UNHEALTHY


def uv_risk_level(value: float) -> RiskLevel:
    if value <= 2:
        return RiskLevel.GOOD
    if value <= 5:
        return RiskLevel.MODERATE
    if value <= 7:
        return RiskLevel.UNHEALTHY_SENSITIVE
    if value <= 10:
        return RiskLevel.UNHEALTHY
    return RiskLevel.VERY_UNHEALTHY


def atmosphere_score(aqi: float, uv: float) -> int:
    """Combined 0-100 health score; AQI contributes 70%, UV 30%."""
    aqi_score = min(100.0, max(0.0, 100 - aqi / 5))
    uv_score = min(100.0, max(0.0, 100 - uv * 8))
    return min(100, max(0, round_half_up(aqi_score * 0.7 + uv_score * 0.3)))


class AqiWeights(NamedTuple):
    """Weights assigned to the two AQI sources for one fusion."""
    iq_air: float
    open_weather: float
    distance_km: Optional[float]


class FusionEngine:
    """Combines normalized readings into a single snapshot.

    AQI is a distance- and freshness-weighted blend of IQAir's nearest
    station and OpenWeather's modelled value. UV is the plain mean of
    the providers that reported it.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        """Initialize the fusion engine.

        Args:
            clock: Returns the current time in epoch milliseconds
        """
        self.clock = clock or (lambda: int(time.time() * 1000))

    def fuse(
        self,
        readings: ProviderReadings,
        user_location: Coordinate,
        now_ms: Optional[int] = None,
        location_is_fallback: bool = False
    ) -> FusedSnapshot:
        """Fuse provider readings into a snapshot for the user's location.

        Args:
            readings: Normalized readings; missing providers are None
            user_location: Where the user is
            now_ms: Reference time for freshness (defaults to the clock)
            location_is_fallback: Whether ``user_location`` is the default city

        Returns:
            FusedSnapshot for this cycle
        """
        now_ms = self.clock() if now_ms is None else now_ms

        aqi = self.fuse_aqi(readings, user_location, now_ms)
        uv = self.fuse_uv(readings)

        snapshot = FusedSnapshot(
            aqi=aqi,
            uv=uv,
            atmosphere_score=atmosphere_score(aqi.value, uv.value),
            risk_level=RiskLevel.most_severe(aqi_risk_level(aqi.value), uv_risk_level(uv.value)),
            recommendations=aqi_recommendations(aqi.value) + uv_recommendations(uv.value),
            sources=self.data_sources(readings),
            timestamp_ms=now_ms,
            coordinates=user_location,
            location_is_fallback=location_is_fallback,
        )

        logger.info(
            f"Fused AQI {aqi.value} ({aqi.source}, confidence {aqi.confidence:.2f}), "
            f"UV {uv.value} ({uv.source}), score {snapshot.atmosphere_score}, risk {snapshot.risk_level.value}"
        )
        return snapshot

    def fuse_aqi(self, readings: ProviderReadings, user_location: Coordinate, now_ms: int) -> AqiEstimate:
        iq_air = readings.iq_air
        open_weather = readings.open_weather

        if iq_air is None and open_weather is None:
            logger.info("No AQI sources available, using default AQI")
            return DEFAULT_AQI

        weights = self.aqi_weights(readings, user_location, now_ms)

        if weights.iq_air > 0 and weights.open_weather > 0:
            value = (
                iq_air.value * weights.iq_air + open_weather.value * weights.open_weather
            ) / (weights.iq_air + weights.open_weather)
            source = "hybrid"
        elif weights.iq_air > 0:
            value = iq_air.value
            source = iq_air.source_name
        else:
            value = open_weather.value
            source = open_weather.source_name

        rounded = round_half_up(value)
        return AqiEstimate(
            value=rounded,
            category=aqi_category(rounded),
            source=source,
            confidence=max(weights.iq_air, weights.open_weather),
        )

    def aqi_weights(self, readings: ProviderReadings, user_location: Coordinate, now_ms: int) -> AqiWeights:
        """Compute the IQAir and OpenWeather weights.

        OpenWeather receives whatever IQAir leaves over, each side
        scaled by the freshness of its own reading.
        """
        iq_air_weight = 0.0
        open_weather_weight = 0.0
        station_km = None

        iq_air = readings.iq_air
        if iq_air is not None:
            if iq_air.coordinates is not None:
                station_km = distance_km(user_location, iq_air.coordinates)
                iq_air_weight = self.distance_weight(station_km)
                iq_air_weight *= self.freshness_factor(now_ms - iq_air.timestamp_ms)
            else:
                iq_air_weight = UNLOCATED_STATION_WEIGHT

        open_weather = readings.open_weather
        if open_weather is not None:
            open_weather_weight = (1 - iq_air_weight) * self.freshness_factor(now_ms - open_weather.timestamp_ms)

        logger.debug(
            f"AQI weights: iqair={iq_air_weight:.3f}, openweather={open_weather_weight:.3f}, station_km={station_km}"
        )
        return AqiWeights(iq_air_weight, open_weather_weight, station_km)

    @staticmethod
    def distance_weight(km: float) -> float:
        """IQAir weight for a station ``km`` away; 2 km and 10 km are medium."""
        if km < CLOSE_STATION_KM:
            return CLOSE_STATION_WEIGHT
        if km <= MEDIUM_STATION_KM:
            return MEDIUM_STATION_WEIGHT
        return FAR_STATION_WEIGHT

    @staticmethod
    def freshness_factor(age_ms: int) -> float:
        """Influence multiplier for a reading ``age_ms`` old."""
        if age_ms < HOUR_MS:
            return FRESH_FACTOR
        if age_ms < 6 * HOUR_MS:
            return STALE_FACTOR
        return OLD_FACTOR

    def fuse_uv(self, readings: ProviderReadings) -> UvEstimate:
        available: List[NormalizedReading] = [
            reading for reading in (readings.open_weather_uv, readings.weather_api) if reading is not None
        ]
        if not available:
            logger.info("No UV sources available, using default UV")
            return DEFAULT_UV

        mean = sum(reading.value for reading in available) / len(available)
        rounded = round_half_up(mean)
        return UvEstimate(
            value=rounded,
            category=uv_category(rounded),
            source="hybrid" if len(available) > 1 else available[0].source_name,
        )

    @staticmethod
    def data_sources(readings: ProviderReadings) -> List[str]:
        """Display names of the providers that contributed data."""
        sources = []
        if readings.iq_air is not None:
            sources.append(SOURCE_DISPLAY_NAMES[IQAIR_SOURCE])
        if readings.open_weather is not None or readings.open_weather_uv is not None:
            sources.append(SOURCE_DISPLAY_NAMES[OPENWEATHER_SOURCE])
        if readings.weather_api is not None:
            sources.append(SOURCE_DISPLAY_NAMES[WEATHERAPI_SOURCE])
        return sources
