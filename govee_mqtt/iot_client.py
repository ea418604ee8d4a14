"""AWS IoT client used for low-latency device control and status updates."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import ssl
import tempfile
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import paho.mqtt.client as _paho

from .auth import IoTBundle
from .errors import ControlError

_LOGGER = logging.getLogger(__name__)

DeviceUpdateCallback = Callable[[str, dict[str, Any]], Any]


@dataclass(frozen=True, slots=True)
class IoTClientConfig:
    """Runtime configuration for the IoT client."""

    endpoint: str
    account_topic: str
    client_id: str
    certificate: str
    private_key: str
    qos: int = 1

    @classmethod
    def from_bundle(cls, bundle: IoTBundle) -> IoTClientConfig:
        """Build a configuration from the account's IoT credentials."""

        return cls(
            endpoint=bundle.endpoint,
            account_topic=bundle.topic,
            client_id=f"AP/{bundle.account_id}/{bundle.client_id}",
            certificate=bundle.certificate,
            private_key=bundle.private_key,
        )


def _create_ssl_context(*, certificate: str, private_key: str) -> ssl.SSLContext:
    """Create a TLS context that presents the account's client certificate."""

    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    cert_file = tempfile.NamedTemporaryFile("w", delete=False)
    key_file = tempfile.NamedTemporaryFile("w", delete=False)
    try:
        cert_file.write(certificate.strip())
        cert_file.flush()
        key_file.write(private_key.strip())
        key_file.flush()
        context.load_cert_chain(certfile=cert_file.name, keyfile=key_file.name)
    finally:
        cert_file.close()
        key_file.close()
        os.unlink(cert_file.name)
        os.unlink(key_file.name)
    return context


def _create_paho_client(client_id: str) -> Any:
    """Instantiate a Paho MQTT client for the provided ``client_id``."""

    return _paho.Client(
        _paho.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=_paho.MQTTv311,
    )


def _parse_endpoint(endpoint: str) -> tuple[str, int]:
    """Extract host and port from an AWS IoT endpoint URI."""

    if "://" not in endpoint:
        endpoint = f"ssl://{endpoint}"
    parsed = urlparse(endpoint)
    host = parsed.hostname or endpoint
    port = parsed.port or 8883
    return host, port


def _new_transaction() -> str:
    """Generate a transaction identifier compatible with the upstream service."""

    millis = int(time.time() * 1000)
    return f"v_{millis}000"


class IoTClient:
    """Async wrapper around the AWS IoT MQTT connection."""

    def __init__(
        self,
        *,
        config: IoTClientConfig,
        on_device_update: DeviceUpdateCallback,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Bind configuration and the callback that receives device updates."""

        self._config = config
        self._on_device_update = on_device_update
        self._loop = loop
        self._mqtt_client: Any | None = None
        self._connected = False
        self._pending_tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_connected(self) -> bool:
        """Return True while the broker connection is established."""

        return self._mqtt_client is not None and self._connected

    async def async_start(self) -> None:
        """Establish the MQTT connection and subscribe to the account topic."""

        if self._mqtt_client is not None:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        context = _create_ssl_context(
            certificate=self._config.certificate,
            private_key=self._config.private_key,
        )
        client = _create_paho_client(self._config.client_id)
        client.tls_set_context(context)
        client.on_connect = self._handle_connect
        client.on_disconnect = self._handle_disconnect
        client.on_message = self._handle_message
        host, port = _parse_endpoint(self._config.endpoint)
        client.connect_async(host, port, keepalive=60)
        client.loop_start()
        self._mqtt_client = client

    def _handle_connect(
        self, client: Any, _userdata: Any, _flags: Any, reason_code: Any, _props: Any = None
    ) -> None:
        """Subscribe to the account topic once the connection succeeds."""

        if reason_code != 0:
            _LOGGER.error("IoT connection failed: %s", reason_code)
            self._connected = False
            return
        _LOGGER.info("Connected to AWS IoT")
        self._connected = True
        client.subscribe(self._config.account_topic, self._config.qos)

    def _handle_disconnect(
        self, _client: Any, _userdata: Any, _flags: Any, reason_code: Any, _props: Any = None
    ) -> None:
        """Record the loss of the connection so transport selection falls back."""

        _LOGGER.warning("Disconnected from AWS IoT: %s", reason_code)
        self._connected = False

    def _handle_message(self, _client: Any, _userdata: Any, message: Any) -> None:
        """Process incoming MQTT messages on the account topic."""

        try:
            payload = self._decode_payload(message.payload)
        except (TypeError, ValueError) as err:
            _LOGGER.debug("Ignoring undecodable IoT payload: %s", err)
            return

        device_id = self._extract_device_id(payload)
        if device_id is None:
            return
        assert self._loop is not None
        self._loop.call_soon_threadsafe(self._emit_update, device_id, payload)

    @staticmethod
    def _extract_device_id(payload: Mapping[str, Any]) -> str | None:
        """Extract a device identifier from the IoT payload."""

        for key in ("device", "deviceId"):
            value = payload.get(key)
            if isinstance(value, str):
                return value
        return None

    def _emit_update(self, device_id: str, payload: dict[str, Any]) -> None:
        """Dispatch updates to the registered callback on the event loop."""

        result = self._on_device_update(device_id, payload)
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

    def _build_message(self, topic: str, cmd: str, data: Any) -> dict[str, Any]:
        """Create a command envelope matching the upstream IoT contract."""

        return {
            "msg": {
                "accountTopic": self._config.account_topic,
                "cmd": cmd,
                "cmdVersion": 0,
                "data": data,
                "transaction": _new_transaction(),
                "type": 1,
            },
            "topic": topic,
        }

    def _publish(self, topic: str, message: dict[str, Any]) -> None:
        if not self.is_connected:
            raise ControlError("IoT client is not connected")
        assert self._mqtt_client is not None
        info = self._mqtt_client.publish(
            topic, json.dumps(message), qos=self._config.qos, retain=False
        )
        rc = getattr(info, "rc", 0)
        if rc != 0:
            raise ControlError(f"IoT publish to {topic} failed with code {rc}")

    async def async_publish_command(self, topic: str, payload: Mapping[str, Any]) -> None:
        """Publish ``payload`` (a ``cmd``/``data`` body) to the device ``topic``."""

        message = self._build_message(
            topic, str(payload.get("cmd") or "ptReal"), payload.get("data", {})
        )
        _LOGGER.debug("IoT publish %s: %s", topic, message["msg"]["cmd"])
        self._publish(topic, message)

    async def async_request_status(self, topic: str) -> None:
        """Ask the device on ``topic`` to report its status."""

        self._publish(topic, self._build_message(topic, "status", {}))

    def _decode_payload(self, payload: bytes | bytearray | str) -> dict[str, Any]:
        """Decode a JSON payload from the MQTT broker."""

        if isinstance(payload, (bytes, bytearray)):
            text = payload.decode("utf-8")
        else:
            text = str(payload)
        decoded = json.loads(text)
        if not isinstance(decoded, dict):
            raise TypeError("IoT payload must be an object")
        return decoded

    async def async_stop(self) -> None:
        """Disconnect the MQTT client and stop the network loop."""

        if self._mqtt_client is None:
            return
        client = self._mqtt_client
        self._mqtt_client = None
        self._connected = False
        client.disconnect()
        client.loop_stop()
