"""Construction of the application's components."""

import logging
from dataclasses import dataclass
from typing import Optional

from ceylon_air.airquality.location import ConfiguredLocationProvider, LocationProvider
from ceylon_air.airquality.service import AirQualityService
from ceylon_air.notifications import NotificationSink, create_notification_sink
from ceylon_air.scheduler import FetchScheduler
from ceylon_air.store import (
    AlertHistory, FetchStateStore, KeyValueStore, PersistentCache, RedisKeyValueStore, ThresholdStore
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Components shared by the scheduler and the API, built once at startup."""
    store: KeyValueStore
    cache: PersistentCache
    thresholds: ThresholdStore
    alert_history: AlertHistory
    air_quality: AirQualityService
    scheduler: FetchScheduler

    async def aclose(self):
        """Release network resources."""
        await self.air_quality.aclose()
        for resource in (self.scheduler.notification_sink, self.store):
            for closer in ("aclose", "close"):
                close = getattr(resource, closer, None)
                if close is not None:
                    try:
                        await close()
                    except Exception as e:
                        logger.error(f"Error closing {type(resource).__name__}: {e}")
                    break


def build_services(
    store: Optional[KeyValueStore] = None,
    air_quality: Optional[AirQualityService] = None,
    location_provider: Optional[LocationProvider] = None,
    notification_sink: Optional[NotificationSink] = None
) -> Services:
    """Wire up the components; anything not supplied gets its default."""
    store = store or RedisKeyValueStore()
    cache = PersistentCache(store)
    thresholds = ThresholdStore(store)
    alert_history = AlertHistory(store)
    air_quality = air_quality or AirQualityService()

    scheduler = FetchScheduler(
        location_provider=location_provider or ConfiguredLocationProvider(),
        service=air_quality,
        cache=cache,
        thresholds=thresholds,
        fetch_state_store=FetchStateStore(store),
        notification_sink=notification_sink or create_notification_sink(),
        alert_history=alert_history,
    )

    return Services(
        store=store,
        cache=cache,
        thresholds=thresholds,
        alert_history=alert_history,
        air_quality=air_quality,
        scheduler=scheduler,
    )
