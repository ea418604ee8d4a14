"""Choose between the AWS IoT and platform API control paths."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from . import opcodes
from .const import INSTANCE_WORK_MODE
from .device import Device
from .errors import ControlError, UnsupportedCapability
from .iot_client import IoTClient
from .rest_client import GoveePlatformClient

_LOGGER = logging.getLogger(__name__)


class Transport(Enum):
    """Control paths a command can take."""

    PRIMARY = "iot"
    SECONDARY = "http"


class Dispatched(Enum):
    """Outcome of a successful dispatch.

    ``AUTHORITATIVE`` results come from a channel whose device reports
    confirm the change, so callers leave the cache alone. ``OPTIMISTIC``
    results were accepted but will not be echoed back; callers latch the
    value they sent until the next poll replaces it.
    """

    AUTHORITATIVE = "authoritative"
    OPTIMISTIC = "optimistic"

    @property
    def is_optimistic(self) -> bool:
        """Return True when the caller should write its cache."""

        return self is Dispatched.OPTIMISTIC


class TransportSelector:
    """Route capability writes to the best available transport."""

    def __init__(
        self,
        iot_client_getter: Callable[[], IoTClient | None],
        platform_client: GoveePlatformClient,
    ) -> None:
        """Bind the IoT client accessor and the platform API client."""

        self._iot_client_getter = iot_client_getter
        self._platform_client = platform_client

    def is_iot_client_available(self) -> bool:
        """Return True when an IoT client exists and is connected right now."""

        client = self._iot_client_getter()
        return client is not None and client.is_connected

    def select(self, device: Device, instance: str) -> Transport:
        """Pick the transport for writing ``instance`` on ``device``."""

        if (
            device.iot_api_supported()
            and opcodes.supports_instance(instance)
            and self.is_iot_client_available()
        ):
            transport = Transport.PRIMARY
        else:
            transport = Transport.SECONDARY
        _LOGGER.debug("Transport for %s %s: %s", device.id, instance, transport.name)
        return transport

    async def dispatch(self, device: Device, instance: str, value: Any) -> Dispatched:
        """Send ``value`` for ``instance`` through the selected transport."""

        if self.select(device, instance) is Transport.PRIMARY:
            await self.dispatch_via_iot(device, instance, value)
            return Dispatched.AUTHORITATIVE
        await self.dispatch_via_http(device, instance, value)
        return Dispatched.OPTIMISTIC

    async def dispatch_via_iot(self, device: Device, instance: str, value: Any) -> None:
        """Publish ``value`` for ``instance`` over AWS IoT."""

        client = self._iot_client_getter()
        if client is None or not client.is_connected:
            raise ControlError("IoT client is not available")
        if not device.iot_topic:
            raise UnsupportedCapability(device.id, instance)
        try:
            body = opcodes.encode_capability(instance, value)
        except (KeyError, ValueError) as err:
            raise UnsupportedCapability(device.id, instance) from err
        await client.async_publish_command(device.iot_topic, body)

    async def dispatch_via_http(self, device: Device, instance: str, value: Any) -> None:
        """Write ``value`` for ``instance`` through the platform API."""

        capability = device.capability_by_instance(instance)
        if capability is None:
            raise UnsupportedCapability(device.id, instance)
        await self._platform_client.async_control_device(device, capability, value)

    async def fan_set_parameter(
        self, device: Device, mode_num: int, value: Any
    ) -> Dispatched:
        """Switch ``device`` to work mode ``mode_num`` with sub-value ``value``."""

        return await self.dispatch(
            device, INSTANCE_WORK_MODE, {"workMode": mode_num, "modeValue": value}
        )
