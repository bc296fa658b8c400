"""API endpoints for the air quality fusion service."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ceylon_air.config import DEFAULT_CITY, DEFAULT_LAT, DEFAULT_LON
from ceylon_air.airquality.models import AlertRecord, FusedSnapshot, HistoryEntry, ThresholdConfig
from ceylon_air.scheduler import FetchOutcome, FetchStatus
from ceylon_air.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/airquality", tags=["airquality"])


def get_services(request: Request) -> Services:
    """Dependency returning the components built at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


@router.get("/latest", response_model=FusedSnapshot)
async def get_latest(services: Services = Depends(get_services)) -> FusedSnapshot:
    """Most recent fused snapshot.

    Raises:
        HTTPException: 404 if nothing is cached or the cache is stale
    """
    snapshot = await services.cache.get_latest()
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No recent air quality data, trigger a refresh")
    return snapshot


@router.post("/refresh", response_model=FetchOutcome)
async def refresh(services: Services = Depends(get_services)) -> FetchOutcome:
    """Run a fetch cycle now, ignoring the fetch interval.

    Raises:
        HTTPException: 503 if the location could not be resolved
    """
    outcome = await services.scheduler.manual_fetch()
    if outcome.status == FetchStatus.TOTAL_FAILURE:
        raise HTTPException(status_code=503, detail=f"Location unavailable: {outcome.reason}")
    return outcome


@router.get("/history", response_model=List[HistoryEntry])
async def get_history(
    since_ms: Optional[int] = Query(None, ge=0, description="Only entries at or after this epoch-ms time"),
    services: Services = Depends(get_services)
) -> List[HistoryEntry]:
    """Rolling history of fused readings (last 7 days)."""
    return await services.cache.get_history(since_ms)


@router.get("/thresholds", response_model=ThresholdConfig)
async def get_thresholds(services: Services = Depends(get_services)) -> ThresholdConfig:
    return await services.thresholds.get()


@router.put("/thresholds", response_model=ThresholdConfig)
async def set_thresholds(thresholds: ThresholdConfig, services: Services = Depends(get_services)) -> ThresholdConfig:
    await services.thresholds.set(thresholds)
    return thresholds


@router.get("/status")
async def get_status(services: Services = Depends(get_services)) -> dict:
    """Fetch scheduler status."""
    return services.scheduler.status()


@router.put("/interval")
async def set_interval(
    minutes: int = Query(..., gt=0, description="Minimum minutes between scheduled fetches"),
    services: Services = Depends(get_services)
) -> dict:
    await services.scheduler.set_fetch_interval(minutes)
    return services.scheduler.status()


@router.get("/alerts", response_model=List[AlertRecord])
async def get_alerts(services: Services = Depends(get_services)) -> List[AlertRecord]:
    """Alerts sent so far, newest first."""
    return await services.alert_history.get_all()


@router.post("/alerts/test")
async def send_test_alert(services: Services = Depends(get_services)) -> dict:
    await services.scheduler.send_test_notification()
    return {"sent": True}


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Health status response
    """
    return {"status": "healthy", "service": "ceylon-air"}


@router.get("/info")
async def get_service_info() -> dict:
    """Service information including default location and data sources."""
    return {
        "service": "Ceylon Air Quality Fusion Service",
        "version": "0.1.0",
        "default_location": {
            "city": DEFAULT_CITY,
            "latitude": DEFAULT_LAT,
            "longitude": DEFAULT_LON,
        },
        "features": [
            "Hybrid AQI from distance- and freshness-weighted sources",
            "Averaged UV index",
            "Threshold alerts",
            "Seven day history",
        ],
        "data_sources": ["IQAir", "OpenWeatherMap", "WeatherAPI"],
    }
