"""Tests for the Home Assistant MQTT connection and command router."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest

from govee_mqtt.hass import (
    CommandRouter,
    HassClient,
    MqttSettings,
    decode_bool,
    decode_int,
    decode_string,
    topic_safe_string,
)


class FakePahoClient:
    """Minimal stand-in for the Paho MQTT client."""

    def __init__(self, client_id: str) -> None:
        """Store client metadata for later inspection."""
        self.client_id = client_id
        self.credentials: tuple[str | None, str | None] | None = None
        self.will: tuple[str, str, int, bool] | None = None
        self.subscriptions: list[tuple[str, int]] = []
        self.published: list[tuple[str, Any, int, bool]] = []
        self.on_connect: Callable[..., None] | None = None
        self.on_disconnect: Callable[..., None] | None = None
        self.on_message: Callable[..., None] | None = None
        self.loop_running = False
        self.disconnected = False

    def username_pw_set(self, username: str | None, password: str | None = None) -> None:
        """Record broker credentials."""
        self.credentials = (username, password)

    def will_set(self, topic: str, payload: str, qos: int, retain: bool) -> None:
        """Record the last-will message."""
        self.will = (topic, payload, qos, retain)

    def connect_async(self, host: str, port: int, keepalive: int) -> None:
        """Record asynchronous connection details."""
        self.connect_args = (host, port, keepalive)

    def loop_start(self) -> None:
        """Simulate the broker accepting the connection."""
        self.loop_running = True
        if self.on_connect:
            self.on_connect(self, None, {}, 0, None)

    def loop_stop(self) -> None:
        """Stop the simulated network loop."""
        self.loop_running = False

    def subscribe(self, topic: str, qos: int) -> None:
        """Capture subscription requests."""
        self.subscriptions.append((topic, qos))

    def publish(self, topic: str, payload: Any, qos: int = 0, retain: bool = False) -> None:
        """Record published messages for assertions."""
        self.published.append((topic, payload, qos, retain))

    def disconnect(self) -> None:
        """Flag the client as disconnected."""
        self.disconnected = True


@dataclass
class FakeMessage:
    """Inbound MQTT message."""

    topic: str
    payload: bytes


@pytest.fixture
def paho_clients(monkeypatch: pytest.MonkeyPatch) -> list[FakePahoClient]:
    """Capture every Paho client the connection creates."""

    clients: list[FakePahoClient] = []

    def _factory(client_id: str) -> FakePahoClient:
        client = FakePahoClient(client_id)
        clients.append(client)
        return client

    monkeypatch.setattr("govee_mqtt.hass._create_paho_client", _factory)
    return clients


async def _drain() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


def test_topic_safe_string_replaces_separators() -> None:
    """Colons, spaces and slashes are not kept in ids."""

    assert topic_safe_string("AA:BB cc/dd-ee_ff") == "AA_BB_cc_dd-ee_ff"


def test_decoders() -> None:
    """Payload decoders accept the hub's spellings and reject garbage."""

    assert decode_string("Auto".encode()) == "Auto"
    assert decode_int(b" 42 ") == 42
    assert decode_bool(b"ON") is True
    assert decode_bool(b"false") is False
    with pytest.raises(ValueError):
        decode_int(b"fast")
    with pytest.raises(ValueError):
        decode_bool(b"sometimes")


@pytest.mark.asyncio
async def test_router_matches_parameters_and_reports_misses() -> None:
    """Topic parameters reach the handler; unknown topics are not handled."""

    router = CommandRouter()
    calls: list[tuple[Any, dict[str, str]]] = []

    async def _handler(value: Any, params: dict[str, str]) -> None:
        calls.append((value, params))

    router.route("gv2mqtt/switch/{id}/command/{instance}", decode_string, _handler)
    router.route("gv2mqtt/fan/{id}/set-speed", decode_int, _handler)

    assert router.subscriptions == [
        "gv2mqtt/switch/+/command/+",
        "gv2mqtt/fan/+/set-speed",
    ]
    assert await router.async_dispatch("gv2mqtt/fan/abc/set-speed", b"12")
    assert await router.async_dispatch("gv2mqtt/switch/abc/command/powerSwitch", b"ON")
    assert not await router.async_dispatch("gv2mqtt/fan/abc/set-mode", b"Auto")
    assert calls == [
        (12, {"id": "abc"}),
        ("ON", {"id": "abc", "instance": "powerSwitch"}),
    ]


@pytest.mark.asyncio
async def test_client_connects_subscribes_and_announces(
    paho_clients: list[FakePahoClient],
) -> None:
    """Connecting sets the will, subscribes to routes and goes online."""

    router = CommandRouter()
    router.route("gv2mqtt/fan/{id}/set-mode", decode_string, _noop)
    settings = MqttSettings(host="broker", username="user", password="secret")
    client = HassClient(settings, router)
    connected: list[bool] = []

    async def _on_connect() -> None:
        connected.append(True)

    client.add_connect_callback(_on_connect)
    await client.async_start()
    await client.async_wait_connected(timeout=1)
    await _drain()

    paho = paho_clients[0]
    assert paho.client_id == "govee-mqtt"
    assert paho.credentials == ("user", "secret")
    assert paho.will == ("gv2mqtt/availability", "offline", 1, True)
    assert paho.connect_args == ("broker", 1883, 60)
    assert paho.subscriptions == [("gv2mqtt/fan/+/set-mode", 0)]
    assert ("gv2mqtt/availability", "online", 1, True) in paho.published
    assert connected == [True]


@pytest.mark.asyncio
async def test_client_dispatches_messages_on_the_loop(
    paho_clients: list[FakePahoClient],
) -> None:
    """Messages from the network thread run through the router."""

    router = CommandRouter()
    received: list[str] = []

    async def _handler(value: str, params: dict[str, str]) -> None:
        received.append(f"{params['id']}={value}")

    client = HassClient(MqttSettings(host="broker"), router)
    client.subscribe("gv2mqtt/fan/{id}/set-mode", decode_string, _handler)
    await client.async_start()

    paho = paho_clients[0]
    assert paho.on_message is not None
    paho.on_message(paho, None, FakeMessage("gv2mqtt/fan/abc/set-mode", b"Sleep"))
    await _drain()

    assert received == ["abc=Sleep"]


@pytest.mark.asyncio
async def test_publish_requires_started_client(
    paho_clients: list[FakePahoClient],
) -> None:
    """Publishing before start fails; JSON objects are serialised."""

    client = HassClient(MqttSettings(host="broker", qos=1), CommandRouter())
    with pytest.raises(RuntimeError):
        await client.async_publish("topic", "payload")

    await client.async_start()
    await client.async_publish_obj("homeassistant/fan/x/config", {"a": 1}, retain=True)

    assert ("homeassistant/fan/x/config", '{"a": 1}', 1, True) in paho_clients[0].published


@pytest.mark.asyncio
async def test_stop_marks_offline_and_disconnects(
    paho_clients: list[FakePahoClient],
) -> None:
    """Stopping publishes the offline status before disconnecting."""

    client = HassClient(MqttSettings(host="broker"), CommandRouter())
    await client.async_start()
    await client.async_stop()

    paho = paho_clients[0]
    assert paho.published[-1] == ("gv2mqtt/availability", "offline", 1, True)
    assert paho.disconnected
    assert not paho.loop_running


@pytest.mark.asyncio
async def test_failed_connection_does_not_subscribe(
    paho_clients: list[FakePahoClient],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A refused connection leaves the client offline."""

    def _refuse(self: FakePahoClient) -> None:
        self.loop_running = True
        if self.on_connect:
            self.on_connect(self, None, {}, 5, None)

    monkeypatch.setattr(FakePahoClient, "loop_start", _refuse)
    router = CommandRouter()
    router.route("gv2mqtt/fan/{id}/set-mode", decode_string, _noop)
    client = HassClient(MqttSettings(host="broker"), router)
    await client.async_start()

    with pytest.raises(asyncio.TimeoutError):
        await client.async_wait_connected(timeout=0.01)
    assert paho_clients[0].subscriptions == []


async def _noop(value: Any, params: dict[str, str]) -> None:
    """Ignore a routed command."""
