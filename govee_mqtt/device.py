"""Runtime device model shared by the registry, transports and entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .capabilities import (
    CapabilityState,
    DeviceCapability,
    HttpDeviceInfo,
    HttpDeviceState,
)


@dataclass(frozen=True, slots=True)
class DeviceState:
    """Observed power and connectivity of a device."""

    on: bool
    online: bool | None = None


@dataclass(slots=True)
class Device:
    """Everything the bridge knows about one physical device.

    Instances handed out by :class:`~govee_mqtt.registry.DeviceRegistry`
    are snapshots; changes go through the registry's mutable handle.
    """

    id: str
    sku: str
    name: str = ""
    room: str | None = None
    http_device_info: HttpDeviceInfo | None = None
    http_device_state: HttpDeviceState | None = None
    iot_topic: str | None = None
    on: bool | None = None
    online: bool | None = None
    target_speed: int | None = None
    fan_work_mode: int | None = None
    oscillating: bool | None = None
    last_polled: datetime | None = None

    def iot_api_supported(self) -> bool:
        """Return True when the device can be controlled over AWS IoT."""

        return bool(self.iot_topic)

    def pollable_via_iot(self) -> bool:
        """Return True when status requests can be sent over AWS IoT."""

        return self.iot_api_supported()

    def device_state(self) -> DeviceState | None:
        """Return the observed power state, or None if never reported."""

        if self.on is None:
            return None
        return DeviceState(on=self.on, online=self.online)

    def device_type(self) -> str:
        """Return the platform API device type, if known."""

        if self.http_device_info is None:
            return ""
        return self.http_device_info.device_type

    def computed_name(self) -> str:
        """Return the best available human-readable name."""

        if self.name:
            return self.name
        if self.http_device_info is not None and self.http_device_info.device_name:
            return self.http_device_info.device_name
        return f"{self.sku}_{self.id[-5:].replace(':', '')}"

    def capability_by_instance(self, instance: str) -> DeviceCapability | None:
        """Return the advertised capability for ``instance``."""

        if self.http_device_info is None:
            return None
        return self.http_device_info.capability_by_instance(instance)

    def get_state_capability_by_instance(self, instance: str) -> CapabilityState | None:
        """Return the last reported state for ``instance``."""

        if self.http_device_state is None:
            return None
        return self.http_device_state.capability_by_instance(instance)
