"""Threshold alerts for fused snapshots."""

import logging
from typing import List, Tuple

from ceylon_air.airquality.fusion import (
    AQI_ELEVATED_RECOMMENDATIONS, AQI_SEVERE_RECOMMENDATIONS,
    UV_ELEVATED_RECOMMENDATIONS, UV_SEVERE_RECOMMENDATIONS
)
from ceylon_air.airquality.models import AlertEvent, FusedSnapshot, ThresholdConfig

logger = logging.getLogger(__name__)

AQI_RECOMMENDATION_SET = frozenset(AQI_SEVERE_RECOMMENDATIONS + AQI_ELEVATED_RECOMMENDATIONS)
UV_RECOMMENDATION_SET = frozenset(UV_SEVERE_RECOMMENDATIONS + UV_ELEVATED_RECOMMENDATIONS)

MAX_RECOMMENDATIONS_IN_MESSAGE = 3


class AlertEvaluator:
    """Compares a snapshot against user thresholds.

    Emits at most one event per metric. Repeated alerts across cycles are
    not suppressed here; the fetch interval is what rate-limits them.
    """

    def evaluate(self, snapshot: FusedSnapshot, thresholds: ThresholdConfig) -> List[AlertEvent]:
        events = []

        if snapshot.aqi.value > thresholds.aqi:
            events.append(AlertEvent(
                type="aqi",
                level=snapshot.aqi.category,
                value=snapshot.aqi.value,
                threshold=thresholds.aqi,
                recommendations=[r for r in snapshot.recommendations if r in AQI_RECOMMENDATION_SET],
            ))

        if snapshot.uv.value > thresholds.uv:
            events.append(AlertEvent(
                type="uv",
                level=snapshot.uv.category,
                value=snapshot.uv.value,
                threshold=thresholds.uv,
                recommendations=[r for r in snapshot.recommendations if r in UV_RECOMMENDATION_SET],
            ))

        if events:
            logger.info(f"Thresholds exceeded: {', '.join(event.type for event in events)}")
        return events


def format_alert(event: AlertEvent) -> Tuple[str, str]:
    """Render an alert as a notification title and body."""
    if event.type == "aqi":
        title = "Air Quality Alert"
        body = f"Air Quality Index is {event.value} ({event.level})."
    else:
        title = "UV Index Alert"
        body = f"UV Index is {event.value} ({event.level})."
    body += f" This exceeds the safe threshold of {event.threshold}."

    if event.recommendations:
        tips = "\n".join(f"• {tip}" for tip in event.recommendations[:MAX_RECOMMENDATIONS_IN_MESSAGE])
        body += f"\n\nHealth recommendations:\n{tips}"

    return title, body
