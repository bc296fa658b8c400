"""Tests for notification sinks."""
import asyncio
import json
import logging

import httpx

from ceylon_air.notifications import (
    LoggingNotificationSink, WebhookNotificationSink, create_notification_sink
)


def test_webhook_posts_json():
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(204)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sink = WebhookNotificationSink("https://hooks.test/alerts", client=client)

    asyncio.run(sink.send("Air Quality Alert", "AQI is 168"))

    assert received == [{"title": "Air Quality Alert", "body": "AQI is 168"}]


def test_webhook_failure_is_logged_not_raised(caplog):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")))
    sink = WebhookNotificationSink("https://hooks.test/alerts", client=client)

    with caplog.at_level(logging.ERROR):
        asyncio.run(sink.send("UV Index Alert", "UV is 11"))

    assert "500" in caplog.text


def test_logging_sink(caplog):
    with caplog.at_level(logging.WARNING, logger="ceylon_air.notifications"):
        asyncio.run(LoggingNotificationSink().send("UV Index Alert", "UV is 11"))

    assert "UV Index Alert: UV is 11" in caplog.text


def test_sink_factory():
    assert isinstance(create_notification_sink(""), LoggingNotificationSink)
    assert isinstance(create_notification_sink("https://hooks.test/alerts"), WebhookNotificationSink)
