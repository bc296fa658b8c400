"""Tests for the provider HTTP clients."""
import asyncio

import httpx
import pytest

from ceylon_air.airquality.clients import (
    IQAirClient, OpenWeatherClient, ProviderError, WeatherApiClient
)
from ceylon_air.airquality.models import Coordinate
from ceylon_air.airquality.service import AirQualityService
from conftest import COLOMBO, FakeProvider, make_providers


@pytest.fixture
def iq_air_response():
    """Sample IQAir nearest_city response."""
    return {
        "status": "success",
        "data": {
            "city": "Colombo",
            "state": "Western",
            "country": "Sri Lanka",
            "location": {"type": "Point", "coordinates": [79.85, 6.93]},
            "current": {
                "pollution": {"ts": "2023-11-14T22:00:00.000Z", "aqius": 87, "mainus": "p2"},
                "weather": {"tp": 28, "hu": 80},
            },
        },
    }


@pytest.fixture
def open_weather_response():
    """Sample OpenWeather air_pollution response."""
    return {
        "coord": {"lon": 79.8612, "lat": 6.9271},
        "list": [
            {
                "main": {"aqi": 3},
                "components": {"co": 201.94, "no2": 0.77, "o3": 68.66, "pm2_5": 16.2, "pm10": 21.5},
                "dt": 1700000000,
            }
        ],
    }


@pytest.fixture
def weather_api_response():
    """Sample WeatherAPI current.json response."""
    return {
        "location": {"name": "Colombo", "lat": 6.93, "lon": 79.85, "tz_id": "Asia/Colombo"},
        "current": {"uv": 9.0, "last_updated_epoch": 1700000100, "temp_c": 29.0},
    }


def mock_client(routes):
    """HTTP client answering from a path -> (status, json) mapping."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status, body = routes[request.url.path.rsplit("/", 1)[-1]]
        return httpx.Response(status, json=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, requests


def test_iq_air_success(iq_air_response):
    client, requests = mock_client({"nearest_city": (200, iq_air_response)})
    provider = IQAirClient(api_key="test_key", base_url="https://iqair.test/v2", client=client)

    result = asyncio.run(provider.fetch(COLOMBO))

    assert result.city == "Colombo"
    assert result.aqi_us == 87
    # GeoJSON order is [lon, lat]
    assert result.coordinates == Coordinate(latitude=6.93, longitude=79.85)
    assert result.pollution_timestamp_ms == 1699999200000
    params = requests[0].url.params
    assert params["key"] == "test_key"
    assert float(params["lat"]) == COLOMBO.latitude


def test_iq_air_failed_status():
    client, _ = mock_client({"nearest_city": (200, {"status": "fail", "data": {"message": "city_not_found"}})})
    provider = IQAirClient(api_key="test_key", client=client)

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(provider.fetch(COLOMBO))

    assert "fail" in str(exc_info.value)
    assert exc_info.value.provider == "IQAir"


def test_iq_air_http_error():
    client, _ = mock_client({"nearest_city": (401, {"status": "fail", "data": {"message": "incorrect_api_key"}})})
    provider = IQAirClient(api_key="test_key", client=client)

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(provider.fetch(COLOMBO))

    assert "401" in str(exc_info.value)


def test_iq_air_malformed_payload():
    client, _ = mock_client({"nearest_city": (200, {"status": "success", "data": {"city": "Colombo"}})})
    provider = IQAirClient(api_key="test_key", client=client)

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(provider.fetch(COLOMBO))

    assert "malformed payload" in str(exc_info.value)


def test_missing_api_key_never_calls_provider(iq_air_response):
    client, requests = mock_client({"nearest_city": (200, iq_air_response)})
    provider = IQAirClient(api_key="your_iqair_api_key_here", client=client)

    assert provider.configured is False
    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(provider.fetch(COLOMBO))

    assert "API key not configured" in str(exc_info.value)
    assert requests == []


def test_network_error_becomes_provider_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = WeatherApiClient(api_key="test_key", client=client)

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(provider.fetch(COLOMBO))

    assert "request failed" in str(exc_info.value)


def test_open_weather_with_uv(open_weather_response):
    client, requests = mock_client({
        "air_pollution": (200, open_weather_response),
        "uvi": (200, {"lat": 6.93, "lon": 79.86, "date": 1700000000, "value": 7.5}),
    })
    provider = OpenWeatherClient(api_key="test_key", client=client)

    result = asyncio.run(provider.fetch(COLOMBO))

    assert result.aqi_class == 3
    assert result.components["pm2_5"] == 16.2
    assert result.sample_timestamp_ms == 1700000000000
    assert result.uv_value == 7.5
    assert result.coordinates == COLOMBO
    assert [request.url.params["appid"] for request in requests] == ["test_key", "test_key"]


def test_open_weather_uv_failure_keeps_air_quality(open_weather_response):
    client, _ = mock_client({
        "air_pollution": (200, open_weather_response),
        "uvi": (500, {"cod": 500, "message": "Internal error"}),
    })
    provider = OpenWeatherClient(api_key="test_key", client=client)

    result = asyncio.run(provider.fetch(COLOMBO))

    assert result.aqi_class == 3
    assert result.uv_value is None


def test_open_weather_empty_list():
    client, _ = mock_client({"air_pollution": (200, {"coord": {}, "list": []})})
    provider = OpenWeatherClient(api_key="test_key", client=client)

    with pytest.raises(ProviderError):
        asyncio.run(provider.fetch(COLOMBO))


def test_weather_api_success(weather_api_response):
    client, requests = mock_client({"current.json": (200, weather_api_response)})
    provider = WeatherApiClient(api_key="test_key", client=client)

    result = asyncio.run(provider.fetch(COLOMBO))

    assert result.uv_value == 9.0
    assert result.last_updated_ms == 1700000100000
    assert result.coordinates == Coordinate(latitude=6.93, longitude=79.85)
    assert requests[0].url.params["q"] == f"{COLOMBO.latitude},{COLOMBO.longitude}"


def test_weather_api_missing_uv():
    client, _ = mock_client({"current.json": (200, {"current": {"temp_c": 30}})})
    provider = WeatherApiClient(api_key="test_key", client=client)

    with pytest.raises(ProviderError):
        asyncio.run(provider.fetch(COLOMBO))


def test_service_fetch_all_tolerates_failures():
    iq_air, open_weather, weather_api = make_providers()
    failing = FakeProvider("IQAir", error=ProviderError("IQAir", "HTTP 503"))
    service = AirQualityService(failing, open_weather, weather_api)

    results = asyncio.run(service.fetch_all(COLOMBO))

    assert results.iq_air is None
    assert results.open_weather == open_weather.result
    assert results.weather_api == weather_api.result
    assert results.failed == 1
    assert open_weather.calls == 1 and weather_api.calls == 1


def test_service_normalizes_open_weather_for_both_metrics():
    _, open_weather, weather_api = make_providers()
    service = AirQualityService(FakeProvider("IQAir", error=ProviderError("IQAir", "down")), open_weather, weather_api)

    readings = service.normalize_results(asyncio.run(service.fetch_all(COLOMBO)))

    assert readings.iq_air is None
    assert readings.open_weather.metric == "aqi"
    assert readings.open_weather_uv.metric == "uv"
    assert readings.weather_api.metric == "uv"
