"""Data models for the air quality fusion service."""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Metric = Literal["aqi", "uv"]


class Coordinate(BaseModel):
    """Geographic coordinate in decimal degrees."""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90, description="Latitude in decimal degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in decimal degrees")


class ResolvedLocation(BaseModel):
    """Location handed to the fetch cycle by a location provider."""
    coordinates: Coordinate
    name: Optional[str] = Field(None, description="Human readable place name if known")
    is_fallback: bool = Field(False, description="True when the default location was substituted")


# Raw provider payloads, already lifted out of each provider's JSON envelope

class IQAirResult(BaseModel):
    """Nearest-station reading from IQAir (AirVisual)."""
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    coordinates: Optional[Coordinate] = Field(None, description="Station location")
    aqi_us: int = Field(0, description="US EPA AQI reported by the station")
    pollution_timestamp_ms: int = Field(0, description="Time of the pollution sample")


class OpenWeatherResult(BaseModel):
    """Air pollution (and optional UV) sample from OpenWeatherMap."""
    coordinates: Optional[Coordinate] = None
    aqi_class: int = Field(1, description="OpenWeather AQI class, 1 (good) to 5 (very poor)")
    components: Dict[str, float] = Field(default_factory=dict, description="Pollutant concentrations")
    uv_value: Optional[float] = Field(None, description="UV index if the UV call succeeded")
    sample_timestamp_ms: int = 0


class WeatherApiResult(BaseModel):
    """Current conditions from WeatherAPI, used for UV only."""
    coordinates: Optional[Coordinate] = None
    uv_value: float = 0.0
    last_updated_ms: int = 0


class NormalizedReading(BaseModel):
    """Provider-independent single-metric reading."""
    metric: Metric
    value: float = Field(..., ge=0)
    category: str
    timestamp_ms: int
    coordinates: Optional[Coordinate] = None
    source_name: str


class ProviderReadings(BaseModel):
    """Normalized readings fed into the fusion engine; absent sources are None."""
    iq_air: Optional[NormalizedReading] = None
    open_weather: Optional[NormalizedReading] = None
    open_weather_uv: Optional[NormalizedReading] = None
    weather_api: Optional[NormalizedReading] = None


class RiskLevel(str, Enum):
    """Ordinal risk classification, least to most severe."""
    GOOD = "good"
    MODERATE = "moderate"
    UNHEALTHY_SENSITIVE = "unhealthy_sensitive"
    UNHEALTHY = "unhealthy"
    VERY_UNHEALTHY = "very_unhealthy"

    @property
    def severity(self) -> int:
        return list(RiskLevel).index(self)

    @classmethod
    def most_severe(cls, *levels: "RiskLevel") -> "RiskLevel":
        return max(levels, key=lambda level: level.severity)


class AqiEstimate(BaseModel):
    """Fused AQI value."""
    model_config = ConfigDict(frozen=True)

    value: int
    category: str
    source: str
    confidence: float = 0.0


class UvEstimate(BaseModel):
    """Fused UV index value."""
    model_config = ConfigDict(frozen=True)

    value: int
    category: str
    source: str


class FusedSnapshot(BaseModel):
    """Result of one fetch cycle. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    aqi: AqiEstimate
    uv: UvEstimate
    atmosphere_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    recommendations: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    timestamp_ms: int
    coordinates: Coordinate
    location_is_fallback: bool = False


class CachedSnapshot(BaseModel):
    """Snapshot as stored under the "latest" key."""
    snapshot: FusedSnapshot
    cached_at: int


class HistoryEntry(BaseModel):
    """One point of the rolling AQI/UV time series."""
    timestamp_ms: int
    coordinates: Coordinate
    aqi: int
    uv: int
    atmosphere_score: int
    aqi_category: str
    uv_category: str

    @classmethod
    def from_snapshot(cls, snapshot: FusedSnapshot) -> "HistoryEntry":
        return cls(
            timestamp_ms=snapshot.timestamp_ms,
            coordinates=snapshot.coordinates,
            aqi=snapshot.aqi.value,
            uv=snapshot.uv.value,
            atmosphere_score=snapshot.atmosphere_score,
            aqi_category=snapshot.aqi.category,
            uv_category=snapshot.uv.category,
        )


class ThresholdConfig(BaseModel):
    """User alert thresholds; a metric alerts when strictly above its threshold."""
    aqi: int = Field(150, ge=0, description="AQI alert threshold")
    uv: int = Field(8, ge=0, description="UV index alert threshold")


class FetchState(BaseModel):
    """Process-wide fetch bookkeeping, persisted across restarts."""
    last_fetch_time_ms: Optional[int] = None
    fetch_interval_ms: int = Field(60 * 60 * 1000, gt=0)


class AlertEvent(BaseModel):
    """A threshold breach for one metric."""
    type: Metric
    level: str
    value: int
    threshold: int
    recommendations: List[str] = Field(default_factory=list)


class AlertRecord(AlertEvent):
    """Alert as kept in the notification history."""
    timestamp_ms: int
    read: bool = False
