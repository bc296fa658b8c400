"""Fetch scheduling: the fetch/fuse/persist/alert cycle and its periodic trigger."""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

from pydantic import BaseModel, Field

from ceylon_air.airquality.alerts import AlertEvaluator, format_alert
from ceylon_air.airquality.location import LocationProvider
from ceylon_air.airquality.models import AlertEvent, FetchState, FusedSnapshot, HistoryEntry
from ceylon_air.airquality.service import AirQualityService, ProviderResults
from ceylon_air.notifications import NotificationSink
from ceylon_air.store import (
    AlertHistory, CacheError, FetchStateStore, PersistentCache, ThresholdStore, now_ms
)

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"


class FetchStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"
    PERSIST_FAILURE = "persist_failure"


class FetchOutcome(BaseModel):
    """What a tick or manual fetch did."""
    status: FetchStatus
    timestamp_ms: int
    snapshot: Optional[FusedSnapshot] = None
    alerts: List[AlertEvent] = Field(default_factory=list)
    failed_providers: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class PeriodicScheduler(Protocol):
    """Platform mechanism that invokes a callback at a fixed interval."""

    def register_periodic(self, interval_ms: int, callback: Callable[[], Awaitable[object]]) -> None:
        ...

    def unregister(self) -> None:
        ...


class AsyncioPeriodicScheduler:
    """Runs a coroutine callback on a background asyncio task.

    The callback fires immediately on registration and then every
    ``interval_ms``. Exceptions from the callback are logged and do not
    stop the loop.
    """

    def __init__(self):
        self._task: Optional[asyncio.Task] = None

    @property
    def registered(self) -> bool:
        return self._task is not None and not self._task.done()

    def register_periodic(self, interval_ms: int, callback: Callable[[], Awaitable[object]]) -> None:
        if self.registered:
            self.unregister()
        self._task = asyncio.create_task(self._run(interval_ms / 1000, callback))
        logger.info(f"Periodic fetch registered every {interval_ms / 1000:.0f}s")

    async def _run(self, interval_seconds: float, callback: Callable[[], Awaitable[object]]) -> None:
        while True:
            try:
                await callback()
            except Exception:
                logger.exception("Periodic fetch callback failed")
            await asyncio.sleep(interval_seconds)

    def unregister(self) -> None:
        if self._task is not None:
            self._task.cancel()
            logger.info("Periodic fetch unregistered")

    async def stop(self) -> None:
        """Unregister and wait for the background task to finish."""
        task = self._task
        self.unregister()
        self._task = None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass


class FetchScheduler:
    """Drives the location → providers → fusion → cache → alerts pipeline.

    Scheduled ticks are gated by the fetch interval; manual fetches are
    not. A single lock serialises cycles: a scheduled tick that finds a
    cycle in flight is skipped, a manual fetch waits for it. The last
    fetch time is committed only once the snapshot has been persisted.
    """

    def __init__(
        self,
        location_provider: LocationProvider,
        service: AirQualityService,
        cache: PersistentCache,
        thresholds: ThresholdStore,
        fetch_state_store: FetchStateStore,
        notification_sink: NotificationSink,
        alert_history: Optional[AlertHistory] = None,
        alert_evaluator: Optional[AlertEvaluator] = None,
        clock: Callable[[], int] = now_ms
    ):
        self.location_provider = location_provider
        self.service = service
        self.cache = cache
        self.thresholds = thresholds
        self.fetch_state_store = fetch_state_store
        self.notification_sink = notification_sink
        self.alert_history = alert_history
        self.alert_evaluator = alert_evaluator or AlertEvaluator()
        self.clock = clock

        self.state = SchedulerState.IDLE
        self.fetch_state = FetchState(fetch_interval_ms=fetch_state_store.default_interval_ms)
        self.periodic: Optional[PeriodicScheduler] = None
        self._lock = asyncio.Lock()

    async def load_state(self) -> FetchState:
        """Restore last fetch time and interval from the store."""
        try:
            self.fetch_state = await self.fetch_state_store.load()
        except CacheError as e:
            logger.error(f"Fetch state unavailable, starting with defaults: {e}")
            return self.fetch_state
        logger.info(
            f"Loaded fetch state: last fetch {self.fetch_state.last_fetch_time_ms}, "
            f"interval {self.fetch_state.fetch_interval_ms}ms"
        )
        return self.fetch_state

    def start(self, periodic: PeriodicScheduler, tick_interval_ms: int) -> None:
        """Hand ``tick`` to a periodic scheduler."""
        self.periodic = periodic
        periodic.register_periodic(tick_interval_ms, self.tick)

    def stop(self) -> None:
        if self.periodic is not None:
            self.periodic.unregister()

    def is_due(self, now: int) -> bool:
        last = self.fetch_state.last_fetch_time_ms
        return last is None or now - last >= self.fetch_state.fetch_interval_ms

    async def tick(self, now_ms: Optional[int] = None) -> FetchOutcome:
        """Scheduled entry point; runs a cycle only when the interval has elapsed."""
        now = self.clock() if now_ms is None else now_ms

        if self._lock.locked():
            logger.info("Fetch skipped - a fetch cycle is already running")
            return FetchOutcome(status=FetchStatus.SKIPPED, timestamp_ms=now, reason="in_flight")

        async with self._lock:
            if not self.is_due(now):
                logger.info("Fetch skipped - too soon since last fetch")
                return FetchOutcome(status=FetchStatus.SKIPPED, timestamp_ms=now, reason="interval")
            return await self._run_cycle(now)

    async def manual_fetch(self, now_ms: Optional[int] = None) -> FetchOutcome:
        """User-initiated refresh; ignores the interval."""
        logger.info("Manual fetch triggered")
        async with self._lock:
            now = self.clock() if now_ms is None else now_ms
            return await self._run_cycle(now)

    async def retry_persist(self, outcome: FetchOutcome) -> FetchOutcome:
        """Persist the snapshot of a ``persist_failure`` outcome without refetching."""
        if outcome.status != FetchStatus.PERSIST_FAILURE or outcome.snapshot is None:
            raise ValueError("Only persist_failure outcomes carrying a snapshot can be retried")

        async with self._lock:
            try:
                await self._persist(outcome.snapshot)
            except CacheError as e:
                logger.error(f"Retrying persistence failed: {e}")
                return outcome
            await self._commit_fetch_time(outcome.timestamp_ms)

        return outcome.model_copy(update={
            "status": self._provider_status(outcome.failed_providers),
            "reason": None,
        })

    async def _run_cycle(self, now: int) -> FetchOutcome:
        self.state = SchedulerState.FETCHING
        try:
            try:
                location = await self.location_provider.get_current_location()
            except Exception as e:
                logger.error(f"Fetch aborted - location unavailable: {e}")
                return FetchOutcome(status=FetchStatus.TOTAL_FAILURE, timestamp_ms=now, reason=str(e))

            snapshot, results = await self.service.collect(location, now_ms=now)
            failed = self._failed_providers(results)

            persist_error = None
            try:
                await self._persist(snapshot)
            except CacheError as e:
                logger.error(f"Fused snapshot could not be persisted: {e}")
                persist_error = str(e)

            alerts = await self._dispatch_alerts(snapshot)

            if persist_error is not None:
                return FetchOutcome(
                    status=FetchStatus.PERSIST_FAILURE,
                    timestamp_ms=now,
                    snapshot=snapshot,
                    alerts=alerts,
                    failed_providers=failed,
                    reason=persist_error,
                )

            await self._commit_fetch_time(now)
            status = self._provider_status(failed)
            logger.info(f"Fetch completed: {status.value}, sources {', '.join(snapshot.sources) or 'none'}")
            return FetchOutcome(
                status=status,
                timestamp_ms=now,
                snapshot=snapshot,
                alerts=alerts,
                failed_providers=failed,
            )
        finally:
            self.state = SchedulerState.IDLE

    async def _persist(self, snapshot: FusedSnapshot) -> None:
        await self.cache.set_latest(snapshot)
        await self.cache.append_history(HistoryEntry.from_snapshot(snapshot))

    async def _commit_fetch_time(self, now: int) -> None:
        self.fetch_state = self.fetch_state.model_copy(update={"last_fetch_time_ms": now})
        try:
            await self.fetch_state_store.save_last_fetch(now)
        except CacheError as e:
            logger.error(f"Last fetch time not persisted, it will be lost on restart: {e}")

    async def _dispatch_alerts(self, snapshot: FusedSnapshot) -> List[AlertEvent]:
        thresholds = await self.thresholds.get()
        alerts = self.alert_evaluator.evaluate(snapshot, thresholds)

        for alert in alerts:
            title, body = format_alert(alert)
            try:
                await self.notification_sink.send(title, body)
                logger.info(f"Alert sent: {alert.type} - {alert.value}")
            except Exception as e:
                logger.error(f"Error sending {alert.type} alert: {e}")

            if self.alert_history is not None:
                try:
                    await self.alert_history.record(alert)
                except CacheError as e:
                    logger.error(f"Error saving alert to history: {e}")

        return alerts

    def _failed_providers(self, results: ProviderResults) -> List[str]:
        failed = []
        if results.iq_air is None:
            failed.append(self.service.iq_air.name)
        if results.open_weather is None:
            failed.append(self.service.open_weather.name)
        if results.weather_api is None:
            failed.append(self.service.weather_api.name)
        return failed

    @staticmethod
    def _provider_status(failed_providers: List[str]) -> FetchStatus:
        return FetchStatus.PARTIAL_FAILURE if failed_providers else FetchStatus.SUCCESS

    async def set_fetch_interval(self, minutes: int) -> FetchState:
        """Change and persist the minimum time between scheduled fetches."""
        if minutes <= 0:
            raise ValueError("Fetch interval must be a positive number of minutes")
        interval_ms = minutes * 60 * 1000
        await self.fetch_state_store.save_interval(interval_ms)
        self.fetch_state = self.fetch_state.model_copy(update={"fetch_interval_ms": interval_ms})
        logger.info(f"Fetch interval set to {minutes} minutes")
        return self.fetch_state

    async def send_test_notification(self) -> None:
        await self.notification_sink.send("CeylonAir Test", "This is a test notification from CeylonAir")

    def status(self) -> dict:
        registered = bool(getattr(self.periodic, "registered", self.periodic is not None))
        return {
            "status": "registered" if registered else "not_registered",
            "state": self.state.value,
            "last_fetch_time_ms": self.fetch_state.last_fetch_time_ms,
            "fetch_interval_ms": self.fetch_state.fetch_interval_ms,
        }
