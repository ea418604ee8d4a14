"""Shared device registry with narrow, lock-protected mutation."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from .capabilities import (
    CapabilityDescriptor,
    CapabilityKind,
    HttpDeviceInfo,
    HttpDeviceState,
)
from .const import (
    AUTO_MODE_NAME,
    INSTANCE_FAN_SPEED,
    INSTANCE_OSCILLATION,
    INSTANCE_POWER_SWITCH,
    MODE_VALUE_STATE_POINTER,
    UNIT_PERCENT,
    WORK_MODE_STATE_POINTER,
)
from .device import Device
from .errors import DeviceNotFound, NoWorkModeCapability
from .hass import topic_safe_id
from .opcodes import decode_status_frames
from .speed import SpeedRange, to_percent
from .work_mode import ModeTable, auto_speed_range

_LOGGER = logging.getLogger(__name__)

DeviceListener = Callable[[str], Any]
PollScheduler = Callable[[Device], Any]


def _camel_to_snake(value: str) -> str:
    """Convert camelCase or PascalCase identifiers to snake_case."""

    result = []
    for index, char in enumerate(value):
        if char.isupper() and index > 0 and value[index - 1] != "_":
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _as_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    try:
        return bool(int(value))
    except (TypeError, ValueError):
        return None


class MutableDeviceRef:
    """Scoped write access to a single device entry."""

    def __init__(self, registry: DeviceRegistry, device_id: str) -> None:
        """Bind the handle to ``device_id`` within ``registry``."""

        self._registry = registry
        self._device_id = device_id

    @property
    def device_id(self) -> str:
        """Return the identifier this handle writes to."""

        return self._device_id

    async def set_target_speed(self, percent: int) -> None:
        """Record the last requested (or guessed) speed percentage."""

        await self._registry._async_set_field(self._device_id, "target_speed", percent)

    async def set_fan_work_mode(self, mode: int) -> None:
        """Record the native work mode value."""

        await self._registry._async_set_field(self._device_id, "fan_work_mode", mode)

    async def set_on(self, on: bool) -> None:
        """Record the power state."""

        await self._registry._async_set_field(self._device_id, "on", on)

    async def set_oscillating(self, oscillating: bool) -> None:
        """Record the oscillation state."""

        await self._registry._async_set_field(
            self._device_id, "oscillating", oscillating
        )

    async def set_http_device_info(self, info: HttpDeviceInfo) -> None:
        """Replace the platform API metadata for the device."""

        await self._registry._async_set_field(self._device_id, "http_device_info", info)

    async def set_http_device_state(self, state: HttpDeviceState) -> None:
        """Replace the raw state blob without deriving cached fields."""

        await self._registry._async_set_field(self._device_id, "http_device_state", state)

    async def set_iot_topic(self, topic: str | None) -> None:
        """Record the AWS IoT topic used to command the device."""

        await self._registry._async_set_field(self._device_id, "iot_topic", topic)


class DeviceRegistry:
    """Own every known :class:`Device` and notify listeners about changes."""

    def __init__(self) -> None:
        """Create an empty registry."""

        self._devices: dict[str, Device] = {}
        self._lock = asyncio.Lock()
        self._listeners: list[DeviceListener] = []
        self._poll_scheduler: PollScheduler | None = None

    def add_listener(self, listener: DeviceListener) -> Callable[[], None]:
        """Register ``listener`` for change notifications; return a remover."""

        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def set_poll_scheduler(self, scheduler: PollScheduler | None) -> None:
        """Install the callback used to schedule a poll after a control."""

        self._poll_scheduler = scheduler

    def _notify(self, device_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(device_id)
            except Exception:  # pragma: no cover - listener bugs must not stop updates
                _LOGGER.exception("Device listener failed for %s", device_id)

    async def device_by_id(self, device_id: str) -> Device | None:
        """Return a snapshot of the device, or None when unknown."""

        async with self._lock:
            device = self._devices.get(device_id)
            return replace(device) if device is not None else None

    async def devices(self) -> list[Device]:
        """Return snapshots of every known device."""

        async with self._lock:
            return [replace(device) for device in self._devices.values()]

    async def device_mut(self, sku: str, device_id: str) -> MutableDeviceRef:
        """Return a write handle for the device, creating the entry if needed."""

        async with self._lock:
            if device_id not in self._devices:
                self._devices[device_id] = Device(id=device_id, sku=sku)
        return MutableDeviceRef(self, device_id)

    async def resolve_device_for_control(self, label: str) -> Device:
        """Find a device by id, name or topic-safe id.

        Raises :class:`DeviceNotFound` when nothing matches.
        """

        async with self._lock:
            device = self._devices.get(label)
            if device is None:
                wanted = label.lower()
                for candidate in self._devices.values():
                    if candidate.computed_name().lower() == wanted:
                        device = candidate
                        break
            if device is None:
                for candidate in self._devices.values():
                    if topic_safe_id(candidate) == label:
                        device = candidate
                        break
            if device is None:
                raise DeviceNotFound(label)
            return replace(device)

    def device_was_controlled(self, device: Device) -> None:
        """Ask the poller to re-read ``device`` after a short delay."""

        scheduler = self._poll_scheduler
        if scheduler is None:
            _LOGGER.debug("No poll scheduler; not re-polling %s", device.id)
            return
        scheduler(device)

    async def _async_set_field(self, device_id: str, name: str, value: Any) -> None:
        async with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                raise DeviceNotFound(device_id)
            if getattr(device, name) == value:
                return
            setattr(device, name, value)
        self._notify(device_id)

    async def ingest_http_state(self, device_id: str, state: HttpDeviceState) -> None:
        """Apply an authoritative platform API state snapshot."""

        async with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                raise DeviceNotFound(device_id)
            device.http_device_state = state
            device.last_polled = datetime.now(timezone.utc)

            power = state.capability_by_instance(INSTANCE_POWER_SWITCH)
            if power is not None:
                on = _as_bool(power.pointer("/value"))
                if on is not None:
                    device.on = on
            online = state.capability_by_instance("online")
            if online is not None:
                device.online = _as_bool(online.pointer("/value"))
            work_mode = state.capability_by_instance("workMode")
            if work_mode is not None:
                mode = _as_int(work_mode.pointer(WORK_MODE_STATE_POINTER))
                if mode is not None:
                    device.fan_work_mode = mode
                    percent = self._auto_speed_percent(
                        device, mode, work_mode.pointer(MODE_VALUE_STATE_POINTER)
                    )
                    if percent is not None:
                        device.target_speed = percent
            oscillation = state.capability_by_instance(INSTANCE_OSCILLATION)
            if oscillation is not None:
                oscillating = _as_bool(oscillation.pointer("/value"))
                if oscillating is not None:
                    device.oscillating = oscillating
            speed = state.capability_by_instance(INSTANCE_FAN_SPEED)
            if speed is not None:
                percent = self._speed_percent(device, speed.pointer("/value"))
                if percent is not None:
                    device.target_speed = percent
        self._notify(device_id)

    @staticmethod
    def _speed_percent(device: Device, value: Any) -> int | None:
        code = _as_int(value)
        capability = device.capability_by_instance(INSTANCE_FAN_SPEED)
        if code is None or capability is None:
            return None
        descriptor = CapabilityDescriptor.from_capability(capability)
        if descriptor is None or descriptor.kind is not CapabilityKind.NUMERIC_RANGE:
            return None
        if descriptor.unit == UNIT_PERCENT:
            return code
        speed_range = SpeedRange.from_capability(capability)
        assert speed_range is not None
        return to_percent(code, speed_range)

    @staticmethod
    def _auto_speed_percent(device: Device, mode_num: Any, sub_value: Any) -> int | None:
        """Read the speed carried by an Auto mode sub-value as a percent."""

        code = _as_int(sub_value)
        if code is None:
            return None
        try:
            table = ModeTable.resolve(device)
        except NoWorkModeCapability:
            return None
        mode = table.mode_for_value(mode_num)
        if mode is None or mode.name != AUTO_MODE_NAME:
            return None
        return to_percent(code, auto_speed_range(device, mode))

    async def ingest_iot_update(self, device_id: str, payload: dict[str, Any]) -> None:
        """Apply a status frame received over AWS IoT."""

        updates = _flatten_iot_payload(payload)
        async with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                _LOGGER.debug("Ignoring IoT update for unknown device %s", device_id)
                return
            on = _as_bool(updates.get("on_off"))
            if on is not None:
                device.on = on
            commands = updates.get("op", {}).get("command") or []
            readings = decode_status_frames(
                [command for command in commands if isinstance(command, str)]
            )
            if "work_mode" in readings:
                device.fan_work_mode = readings["work_mode"]
                percent = self._auto_speed_percent(
                    device, readings["work_mode"], readings.get("mode_value")
                )
                if percent is not None:
                    device.target_speed = percent
            if "oscillating" in readings:
                device.oscillating = readings["oscillating"]
            device.online = True
        self._notify(device_id)


def _flatten_iot_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested AWS IoT frames into a single snake_case mapping."""

    frames: list[dict[str, Any]] = []
    queue: deque[dict[str, Any]] = deque([payload])
    while queue:
        frame = queue.popleft()
        frames.append(frame)
        for key in ("msg", "data"):
            nested = frame.get(key)
            if isinstance(nested, dict):
                queue.append(nested)

    flattened: dict[str, Any] = {}
    for frame in frames:
        for key, value in frame.items():
            if key in ("msg", "data"):
                continue
            if key == "state" and isinstance(value, dict):
                for state_key, state_value in value.items():
                    flattened.setdefault(_camel_to_snake(state_key), state_value)
                continue
            if key == "op" and isinstance(value, dict):
                flattened.setdefault("op", value)
                continue
            flattened.setdefault(_camel_to_snake(key), value)
    return flattened
