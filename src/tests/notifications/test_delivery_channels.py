"""通知通道与分发器"""
from __future__ import annotations

import asyncio
import json
from uuid import uuid4

import httpx
import pytest

from src.core.exceptions import DeliveryError
from src.core.websocket import ConnectionManager
from src.domains.incidents.schemas import ActorKind
from src.domains.notifications.channels import (
    NotificationDispatcher,
    PushGatewayChannel,
    WebSocketChannel,
)
from src.domains.notifications.schemas import (
    DeliveryOutcome,
    NotificationKind,
    NotificationMessage,
    Recipient,
)


class _FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []

    async def accept(self) -> None:
        return None

    async def send_json(self, data: dict) -> None:
        if self.fail and data.get("type") != "connected":
            raise RuntimeError("socket closed")
        self.sent.append(data)


class _BrokenChannel:
    name = "broken"

    async def deliver(self, recipient, message):
        raise DeliveryError(self.name, recipient.label, "gateway down")


class _OkChannel:
    name = "ok"

    def __init__(self) -> None:
        self.count = 0

    async def deliver(self, recipient, message):
        self.count += 1
        return DeliveryOutcome(channel=self.name, recipient=recipient.label, delivered=True)


def _message(kind: NotificationKind = NotificationKind.volunteer_offer) -> NotificationMessage:
    return NotificationMessage(
        kind=kind,
        title="Emergency nearby",
        body="CRITICAL emergency 1.2km away",
        incident_id=uuid4(),
        data={"offer_id": "o-1"},
    )


def _volunteer(**kw) -> Recipient:
    return Recipient(kind=ActorKind.volunteer, id="vol-1", **kw)


def test_websocket_channel_skips_offline_recipient() -> None:
    channel = WebSocketChannel(ConnectionManager())
    outcome = asyncio.run(channel.deliver(_volunteer(), _message()))
    assert outcome.delivered is False
    assert outcome.error == "offline"


def test_websocket_channel_routes_offers_to_offer_channel() -> None:
    async def scenario():
        manager = ConnectionManager()
        socket = _FakeSocket()
        await manager.connect(socket, "client-1", user_id="vol-1")
        outcome = await WebSocketChannel(manager).deliver(_volunteer(), _message())
        return socket, outcome

    socket, outcome = asyncio.run(scenario())
    assert outcome.delivered is True
    pushed = socket.sent[-1]
    assert pushed["channel"] == "offers"
    assert pushed["event_type"] == "volunteer_offer"
    assert pushed["payload"]["data"] == {"offer_id": "o-1"}


def test_websocket_channel_raises_when_every_connection_fails() -> None:
    async def scenario():
        manager = ConnectionManager()
        await manager.connect(_FakeSocket(fail=True), "client-1", user_id="vol-1")
        await WebSocketChannel(manager).deliver(_volunteer(), _message(NotificationKind.status_update))

    with pytest.raises(DeliveryError):
        asyncio.run(scenario())


def test_push_gateway_posts_to_mode_path() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    channel = PushGatewayChannel("http://gateway.local/", transport=httpx.MockTransport(handler))
    outcome = asyncio.run(channel.deliver(_volunteer(fcm_token="tok-1"), _message()))

    assert outcome.delivered is True
    assert outcome.channel == "push"
    assert requests[0].url.path == "/push"
    body = json.loads(requests[0].content)
    assert body["to"] == "tok-1"
    assert body["data"]["kind"] == "volunteer_offer"


def test_push_gateway_error_status_raises_delivery_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="unavailable"))
    channel = PushGatewayChannel("http://gateway.local", mode="email", transport=transport)

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(channel.deliver(_volunteer(email="v@example.com"), _message()))
    assert exc_info.value.channel == "email"
    assert "503" in exc_info.value.reason


def test_push_gateway_without_address_is_skipped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    channel = PushGatewayChannel("http://gateway.local", mode="email", transport=httpx.MockTransport(handler))
    outcome = asyncio.run(channel.deliver(_volunteer(fcm_token="tok-1"), _message()))
    assert outcome.delivered is False
    assert outcome.error == "no_address"


def test_push_gateway_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError):
        PushGatewayChannel("http://gateway.local", mode="sms")


def test_dispatcher_keeps_going_after_channel_failure() -> None:
    ok = _OkChannel()
    dispatcher = NotificationDispatcher([_BrokenChannel(), ok])

    outcomes = asyncio.run(dispatcher.notify(_volunteer(), _message()))

    assert [o.channel for o in outcomes] == ["broken", "ok"]
    assert outcomes[0].delivered is False
    assert outcomes[0].error == "gateway down"
    assert outcomes[1].delivered is True
    assert ok.count == 1


def test_dispatcher_notify_many_and_publish_without_realtime() -> None:
    ok = _OkChannel()
    dispatcher = NotificationDispatcher([ok])
    recipients = [Recipient(kind=ActorKind.user, name=n) for n in ("Arjun", "Divya")]

    results = asyncio.run(dispatcher.notify_many(recipients, _message(NotificationKind.contact_alert)))

    assert len(results) == 2
    assert ok.count == 2
    assert asyncio.run(dispatcher.publish("incident.created", {"x": 1})) == 0


def test_dispatcher_publish_reaches_channel_subscribers() -> None:
    async def scenario():
        manager = ConnectionManager()
        socket = _FakeSocket()
        await manager.connect(socket, "dash-1")
        await manager.subscribe("dash-1", ["incidents"])
        sent = await NotificationDispatcher([], realtime=manager).publish("incident.created", {"id": "i-1"})
        return sent, socket

    sent, socket = asyncio.run(scenario())
    assert sent == 1
    assert socket.sent[-1]["event_type"] == "incident.created"
