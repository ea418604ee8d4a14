"""MQTT connection to Home Assistant plus topic and payload helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import paho.mqtt.client as _paho

from .const import DEFAULT_DISCOVERY_PREFIX, DEFAULT_TOPIC_PREFIX

if TYPE_CHECKING:
    from .device import Device

_LOGGER = logging.getLogger(__name__)

_UNSAFE_TOPIC_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_PARAM_SEGMENT = re.compile(r"^\{([a-z_]+)\}$")

PayloadDecoder = Callable[[bytes], Any]
RouteHandler = Callable[[Any, dict[str, str]], Awaitable[None]]


def topic_safe_string(value: str) -> str:
    """Replace characters that are awkward in MQTT topics and ids."""

    return _UNSAFE_TOPIC_CHARS.sub("_", value)


def topic_safe_id(device: Device) -> str:
    """Return the topic-safe identifier for ``device``."""

    return topic_safe_string(device.id)


def availability_topic(prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    """Return the bridge availability (birth/last-will) topic."""

    return f"{prefix}/availability"


def hass_status_topic(discovery_prefix: str = DEFAULT_DISCOVERY_PREFIX) -> str:
    """Return the topic Home Assistant uses to announce restarts."""

    return f"{discovery_prefix}/status"


def decode_string(payload: bytes) -> str:
    """Decode a UTF-8 payload."""

    return payload.decode("utf-8")


def decode_int(payload: bytes) -> int:
    """Decode a decimal integer payload."""

    text = payload.decode("utf-8").strip()
    try:
        return int(text)
    except ValueError as exc:
        raise ValueError(f"expected an integer payload, got {text!r}") from exc


_TRUE_WORDS = frozenset({"true", "on", "1", "yes"})
_FALSE_WORDS = frozenset({"false", "off", "0", "no"})


def decode_bool(payload: bytes) -> bool:
    """Decode a boolean payload such as ``true``, ``OFF`` or ``1``."""

    text = payload.decode("utf-8").strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"expected a boolean payload, got {text!r}")


@dataclass(frozen=True, slots=True)
class _Route:
    pattern: str
    regex: re.Pattern[str]
    subscription: str
    decoder: PayloadDecoder
    handler: RouteHandler


def _compile_pattern(pattern: str) -> tuple[re.Pattern[str], str]:
    """Turn ``a/{id}/b`` into a matching regex and an MQTT subscription."""

    regex_parts: list[str] = []
    subscription_parts: list[str] = []
    for segment in pattern.split("/"):
        match = _PARAM_SEGMENT.match(segment)
        if match:
            regex_parts.append(f"(?P<{match.group(1)}>[^/]+)")
            subscription_parts.append("+")
        else:
            regex_parts.append(re.escape(segment))
            subscription_parts.append(segment)
    return re.compile("^" + "/".join(regex_parts) + "$"), "/".join(subscription_parts)


class CommandRouter:
    """Dispatch inbound MQTT messages to handlers by topic pattern."""

    def __init__(self) -> None:
        """Create an empty route table."""

        self._routes: list[_Route] = []

    def route(
        self, pattern: str, decoder: PayloadDecoder, handler: RouteHandler
    ) -> None:
        """Register ``handler`` for topics matching ``pattern``."""

        regex, subscription = _compile_pattern(pattern)
        self._routes.append(_Route(pattern, regex, subscription, decoder, handler))

    @property
    def subscriptions(self) -> list[str]:
        """Return the MQTT subscriptions needed to receive every route."""

        return list(dict.fromkeys(route.subscription for route in self._routes))

    async def async_dispatch(self, topic: str, payload: bytes) -> bool:
        """Invoke the first matching route; return False when none matched.

        Handler failures are logged and swallowed so that one bad command
        cannot take down the MQTT loop.
        """

        for route in self._routes:
            match = route.regex.match(topic)
            if match is None:
                continue
            try:
                value = route.decoder(payload)
                await route.handler(value, match.groupdict())
            except Exception:
                _LOGGER.exception("Handler for %s failed (payload %r)", topic, payload)
            return True
        _LOGGER.debug("No route for %s", topic)
        return False


@dataclass(frozen=True, slots=True)
class MqttSettings:
    """Connection parameters for the Home Assistant broker."""

    host: str
    port: int = 1883
    username: str | None = None
    password: str | None = None
    client_id: str = "govee-mqtt"
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    discovery_prefix: str = DEFAULT_DISCOVERY_PREFIX
    qos: int = 0


def _create_paho_client(client_id: str) -> Any:
    """Instantiate a Paho MQTT client for the provided ``client_id``."""

    return _paho.Client(_paho.CallbackAPIVersion.VERSION2, client_id=client_id)


class HassClient:
    """Async facade over the Paho connection to the Home Assistant broker."""

    def __init__(
        self,
        settings: MqttSettings,
        router: CommandRouter,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Bind broker settings and the router that receives commands."""

        self._settings = settings
        self._router = router
        self._loop = loop
        self._mqtt_client: Any | None = None
        self._connected = asyncio.Event()
        self._pending_tasks: set[asyncio.Task[Any]] = set()
        self._on_connected: list[Callable[[], Any]] = []

    @property
    def settings(self) -> MqttSettings:
        """Return the broker settings."""

        return self._settings

    @property
    def router(self) -> CommandRouter:
        """Return the command router fed by this connection."""

        return self._router

    def subscribe(
        self, pattern: str, decoder: PayloadDecoder, handler: RouteHandler
    ) -> None:
        """Route messages matching ``pattern`` to ``handler``.

        Must be called before :meth:`async_start`; subscriptions are sent on
        every (re)connection.
        """

        self._router.route(pattern, decoder, handler)

    def add_connect_callback(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` on the event loop after every (re)connection."""

        self._on_connected.append(callback)

    async def async_start(self) -> None:
        """Connect to the broker and start the Paho network loop."""

        if self._mqtt_client is not None:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        settings = self._settings
        client = _create_paho_client(settings.client_id)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        client.will_set(
            availability_topic(settings.topic_prefix), "offline", qos=1, retain=True
        )
        client.on_connect = self._handle_connect
        client.on_disconnect = self._handle_disconnect
        client.on_message = self._handle_message
        client.connect_async(settings.host, settings.port, keepalive=60)
        client.loop_start()
        self._mqtt_client = client

    async def async_wait_connected(self, timeout: float | None = None) -> None:
        """Wait until the broker accepted the connection."""

        await asyncio.wait_for(self._connected.wait(), timeout)

    async def async_stop(self) -> None:
        """Mark the bridge offline, disconnect and stop the network loop."""

        if self._mqtt_client is None:
            return
        client = self._mqtt_client
        self._mqtt_client = None
        client.publish(
            availability_topic(self._settings.topic_prefix), "offline", qos=1, retain=True
        )
        client.disconnect()
        client.loop_stop()
        self._connected.clear()

    def _handle_connect(
        self, client: Any, _userdata: Any, _flags: Any, reason_code: Any, _props: Any = None
    ) -> None:
        """Subscribe to command topics once the connection succeeds."""

        if reason_code != 0:
            _LOGGER.error("MQTT connection failed: %s", reason_code)
            return
        for subscription in self._router.subscriptions:
            client.subscribe(subscription, self._settings.qos)
        client.publish(
            availability_topic(self._settings.topic_prefix), "online", qos=1, retain=True
        )
        assert self._loop is not None
        self._loop.call_soon_threadsafe(self._run_connect_callbacks)

    def _handle_disconnect(
        self, _client: Any, _userdata: Any, _flags: Any, reason_code: Any, _props: Any = None
    ) -> None:
        """Record the loss of the broker connection."""

        _LOGGER.warning("Disconnected from MQTT broker: %s", reason_code)
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._connected.clear)

    def _run_connect_callbacks(self) -> None:
        self._connected.set()
        for callback in list(self._on_connected):
            self._track(callback())

    def _handle_message(self, _client: Any, _userdata: Any, message: Any) -> None:
        """Hand inbound messages to the router on the event loop thread."""

        assert self._loop is not None
        self._loop.call_soon_threadsafe(
            self._schedule_dispatch, message.topic, bytes(message.payload)
        )

    def _schedule_dispatch(self, topic: str, payload: bytes) -> None:
        self._track(self._router.async_dispatch(topic, payload))

    def _track(self, result: Any) -> None:
        if not asyncio.iscoroutine(result):
            return
        task = asyncio.ensure_future(result)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def async_publish(
        self, topic: str, payload: str | bytes, *, retain: bool = False
    ) -> None:
        """Publish ``payload`` to ``topic``."""

        if self._mqtt_client is None:
            raise RuntimeError("MQTT client is not connected")
        self._mqtt_client.publish(topic, payload, qos=self._settings.qos, retain=retain)

    async def async_publish_obj(
        self, topic: str, obj: Any, *, retain: bool = False
    ) -> None:
        """Publish ``obj`` serialised as JSON."""

        await self.async_publish(topic, json.dumps(obj), retain=retain)
