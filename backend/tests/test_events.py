import json

import httpx

from backend.app.core.config import Settings
from backend.app.db.models.core_types import EventAction
from backend.services.events import (
    Actor,
    HttpEventPublisher,
    LoggingEventPublisher,
    build_publisher,
)


def _publisher(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpEventPublisher("http://relay.local/events", app_name="stock", client=client)


def test_http_publisher_posts_event_with_routing_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(202)

    event = _publisher(handler).publish_crud(
        "orders",
        EventAction.updated,
        {"id": 7, "status": "COMPLETED"},
        Actor(id="1", email="paul@example.com"),
    )

    assert len(seen) == 1
    assert seen[0].headers["X-Routing-Key"] == "stock.orders.updated"
    body = json.loads(seen[0].content)
    assert body["id"] == 7
    assert body["action"] == "updated"
    assert body["actor"] == {"id": "1", "email": "paul@example.com"}
    assert event.id == 7


def test_http_publisher_drops_event_on_relay_error(caplog):
    def handler(request):
        return httpx.Response(503)

    _publisher(handler).publish_crud("products", EventAction.deleted, {"id": 3})

    assert "dropped" in caplog.text


def test_http_publisher_drops_event_on_network_error(caplog):
    def handler(request):
        raise httpx.ConnectError("relay down", request=request)

    event = _publisher(handler).publish_crud("sites", EventAction.inserted, {"id": 1})

    assert event.table == "sites"
    assert "dropped" in caplog.text


def test_build_publisher_defaults_to_logging():
    assert isinstance(build_publisher(Settings(EVENT_RELAY_URL="")), LoggingEventPublisher)

    publisher = build_publisher(Settings(EVENT_RELAY_URL="http://relay.local/events", APP_NAME="kiosk"))
    try:
        assert isinstance(publisher, HttpEventPublisher)
        assert publisher.app_name == "kiosk"
    finally:
        publisher.close()
