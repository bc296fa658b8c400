"""Conversion of provider payloads into provider-independent readings."""

from typing import Optional, Union

from ceylon_air.airquality.models import (
    IQAirResult, Metric, NormalizedReading, OpenWeatherResult, WeatherApiResult
)

RawProviderResult = Union[IQAirResult, OpenWeatherResult, WeatherApiResult]

# US EPA AQI buckets, upper bound inclusive
AQI_BREAKPOINTS = (
    (50, "Good"),
    (100, "Moderate"),
    (150, "Unhealthy for Sensitive Groups"),
    (200, "Unhealthy"),
    (300, "Very Unhealthy"),
)
AQI_TOP_CATEGORY = "Hazardous"

UV_BREAKPOINTS = (
    (2, "Low"),
    (5, "Moderate"),
    (7, "High"),
    (10, "Very High"),
)
UV_TOP_CATEGORY = "Extreme"

# OpenWeather reports a 1-5 class instead of a 0-500 index
OPENWEATHER_AQI_CLASS_TO_US = {1: 50, 2: 100, 3: 150, 4: 200, 5: 300}
OPENWEATHER_DEFAULT_AQI = 50

IQAIR_SOURCE = "iqair"
OPENWEATHER_SOURCE = "openweather"
WEATHERAPI_SOURCE = "weatherapi"


def _bucket(value: float, breakpoints, top: str) -> str:
    for upper, category in breakpoints:
        if value <= upper:
            return category
    return top


def aqi_category(value: float) -> str:
    """US EPA category for an AQI value."""
    return _bucket(value, AQI_BREAKPOINTS, AQI_TOP_CATEGORY)


def uv_category(value: float) -> str:
    """WHO category for a UV index value."""
    return _bucket(value, UV_BREAKPOINTS, UV_TOP_CATEGORY)


def convert_openweather_aqi(aqi_class: Optional[int]) -> int:
    """Map OpenWeather's 1-5 AQI class onto the US AQI scale."""
    return OPENWEATHER_AQI_CLASS_TO_US.get(aqi_class, OPENWEATHER_DEFAULT_AQI)


def _reading(metric: Metric, value: Optional[float], timestamp_ms: Optional[int], coordinates, source: str) -> NormalizedReading:
    value = max(0.0, float(value or 0))
    category = aqi_category(value) if metric == "aqi" else uv_category(value)
    return NormalizedReading(
        metric=metric,
        value=value,
        category=category,
        timestamp_ms=timestamp_ms or 0,
        coordinates=coordinates,
        source_name=source,
    )


def normalize(raw: RawProviderResult, metric: Optional[Metric] = None) -> Optional[NormalizedReading]:
    """Convert a raw provider result into a reading for one metric.

    Args:
        raw: Result returned by one of the provider clients
        metric: "aqi" or "uv"; defaults to the metric the provider is used for
            (AQI for IQAir and OpenWeather, UV for WeatherAPI)

    Returns:
        The normalized reading, or None when the payload does not carry
        the requested metric (e.g. OpenWeather without a UV sample)

    Raises:
        TypeError: If ``raw`` is not a known provider result
    """
    if isinstance(raw, IQAirResult):
        if (metric or "aqi") != "aqi":
            return None
        return _reading("aqi", raw.aqi_us, raw.pollution_timestamp_ms, raw.coordinates, IQAIR_SOURCE)

    if isinstance(raw, OpenWeatherResult):
        if (metric or "aqi") == "aqi":
            return _reading(
                "aqi",
                convert_openweather_aqi(raw.aqi_class),
                raw.sample_timestamp_ms,
                raw.coordinates,
                OPENWEATHER_SOURCE,
            )
        if raw.uv_value is None:
            return None
        return _reading("uv", raw.uv_value, raw.sample_timestamp_ms, raw.coordinates, OPENWEATHER_SOURCE)

    if isinstance(raw, WeatherApiResult):
        if (metric or "uv") != "uv":
            return None
        return _reading("uv", raw.uv_value, raw.last_updated_ms, raw.coordinates, WEATHERAPI_SOURCE)

    raise TypeError(f"Unsupported provider result: {type(raw).__name__}")
