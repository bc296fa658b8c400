"""Shared fixtures and fakes for the test suite."""
import math

import pytest

from ceylon_air.airquality.clients import ProviderError
from ceylon_air.airquality.location import LocationUnavailableError
from ceylon_air.airquality.models import (
    Coordinate, IQAirResult, OpenWeatherResult, ResolvedLocation, WeatherApiResult
)
from ceylon_air.airquality.fusion import FusionEngine
from ceylon_air.airquality.service import AirQualityService
from ceylon_air.scheduler import FetchScheduler
from ceylon_air.store import (
    AlertHistory, FetchStateStore, InMemoryKeyValueStore, PersistentCache, ThresholdStore
)

NOW = 1_700_000_000_000
MINUTE = 60 * 1000
HOUR = 60 * MINUTE
DAY = 24 * HOUR

COLOMBO = Coordinate(latitude=6.9271, longitude=79.8612)


def north_of(origin: Coordinate, km: float) -> Coordinate:
    """Point ``km`` due north of ``origin`` on the 6371 km sphere."""
    return Coordinate(latitude=origin.latitude + math.degrees(km / 6371.0), longitude=origin.longitude)


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeProvider:
    """Provider client returning a canned result or raising."""

    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = 0

    async def fetch(self, coordinate):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self):
        pass


class FakeLocationProvider:
    def __init__(self, location=None, error=None):
        self.location = location or ResolvedLocation(coordinates=COLOMBO, name="Colombo")
        self.error = error
        self.calls = 0

    async def get_current_location(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.location


class RecordingSink:
    def __init__(self):
        self.sent = []

    async def send(self, title, body):
        self.sent.append((title, body))


class FlakyStore(InMemoryKeyValueStore):
    """In-memory store whose writes to selected keys fail."""

    def __init__(self, failing_keys=()):
        super().__init__()
        self.failing_keys = set(failing_keys)

    async def set(self, key, value):
        if key in self.failing_keys:
            raise ConnectionError(f"store unavailable for {key}")
        await super().set(key, value)


class DownStore(FlakyStore):
    """Store whose reads and/or writes fail like an unreachable Redis."""

    def __init__(self, reads_fail=True, writes_fail=True):
        super().__init__()
        self.reads_fail = reads_fail
        self.writes_fail = writes_fail

    async def get(self, key):
        if self.reads_fail:
            raise ConnectionError("redis down")
        return await super().get(key)

    async def set(self, key, value):
        if self.writes_fail:
            raise ConnectionError("redis down")
        await super().set(key, value)


def iq_air_result(aqi=180, km=0.5, timestamp_ms=NOW):
    return IQAirResult(
        city="Colombo",
        state="Western",
        country="Sri Lanka",
        coordinates=north_of(COLOMBO, km),
        aqi_us=aqi,
        pollution_timestamp_ms=timestamp_ms,
    )


def open_weather_result(aqi_class=2, uv=4.0, timestamp_ms=NOW):
    return OpenWeatherResult(
        coordinates=COLOMBO,
        aqi_class=aqi_class,
        components={"pm2_5": 12.5},
        uv_value=uv,
        sample_timestamp_ms=timestamp_ms,
    )


def weather_api_result(uv=6.0, timestamp_ms=NOW):
    return WeatherApiResult(coordinates=COLOMBO, uv_value=uv, last_updated_ms=timestamp_ms)


def make_providers(iq_air=None, open_weather=None, weather_api=None):
    """Fake providers; pass an Exception instance to make one fail."""
    def build(name, value, default):
        if isinstance(value, Exception):
            return FakeProvider(name, error=value)
        return FakeProvider(name, result=value if value is not None else default)

    return (
        build("IQAir", iq_air, iq_air_result()),
        build("OpenWeatherMap", open_weather, open_weather_result()),
        build("WeatherAPI", weather_api, weather_api_result()),
    )


def make_scheduler(store=None, providers=None, location_provider=None, sink=None, clock=None):
    store = store if store is not None else InMemoryKeyValueStore()
    clock = clock or FakeClock()
    providers = providers or make_providers()
    service = AirQualityService(*providers, fusion_engine=FusionEngine(clock=clock))
    return FetchScheduler(
        location_provider=location_provider or FakeLocationProvider(),
        service=service,
        cache=PersistentCache(store, clock=clock),
        thresholds=ThresholdStore(store),
        fetch_state_store=FetchStateStore(store, default_interval_ms=HOUR),
        notification_sink=sink or RecordingSink(),
        alert_history=AlertHistory(store, clock=clock),
        clock=clock,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def provider_failure():
    return ProviderError("IQAir", "HTTP 503")


@pytest.fixture
def location_failure():
    return LocationUnavailableError("No location configured")
