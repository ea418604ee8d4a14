"""Fan entity and the hub commands that drive it.

Speed is always cached as a percentage. Devices whose ``fan`` capability
uses another unit are converted at dispatch time and when ingesting polled
state, so both the command path and the state path read the same value.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .capabilities import CapabilityDescriptor, CapabilityKind, on_off_values
from .const import (
    AUTO_MODE_NAME,
    DEVICE_TYPE_FAN,
    INSTANCE_FAN_SPEED,
    INSTANCE_OSCILLATION,
    INSTANCE_WORK_MODE,
    UNIT_PERCENT,
    WORK_MODE_STATE_POINTER,
)
from .device import Device
from .entity import EntityConfig, publish_entity_config
from .errors import (
    DecodeAmbiguous,
    ModeNotFound,
    NoWorkModeCapability,
    UnsupportedCapability,
)
from .hass import CommandRouter, HassClient, decode_bool, decode_int, decode_string, topic_safe_id
from .registry import DeviceRegistry
from .speed import SpeedRange, from_percent
from .transport import TransportSelector
from .work_mode import ModeTable, auto_mode, auto_speed_range

if TYPE_CHECKING:
    from .bridge import BridgeContext

_LOGGER = logging.getLogger(__name__)

DEVICE_CLASS_FAN = "fan"


class FanConfig(EntityConfig):
    """Discovery document for an MQTT fan."""

    command_topic: str
    state_topic: str
    oscillation_command_topic: str | None = None
    oscillation_state_topic: str | None = None
    payload_oscillation_on: str | None = None
    payload_oscillation_off: str | None = None
    preset_mode_command_topic: str
    preset_mode_state_topic: str
    preset_modes: list[str] | None = None
    percentage_command_topic: str
    percentage_state_topic: str
    speed_range_min: int | None = None
    speed_range_max: int | None = None
    optimistic: bool


def _percent_speed_range(device: Device) -> SpeedRange | None:
    """Return the ``fan`` range when the device reports speed in percent."""

    capability = device.capability_by_instance(INSTANCE_FAN_SPEED)
    if capability is None:
        return None
    descriptor = CapabilityDescriptor.from_capability(capability)
    if (
        descriptor is None
        or descriptor.kind is not CapabilityKind.NUMERIC_RANGE
        or descriptor.unit != UNIT_PERCENT
    ):
        return None
    return SpeedRange.from_capability(capability)


def current_mode_name(device: Device) -> str:
    """Decode the active work mode name of ``device``.

    The cached native mode wins; the raw ``workMode`` state is only
    consulted when no mode has been cached yet. Raises
    :class:`DecodeAmbiguous` when neither source yields a known mode.
    """

    try:
        table = ModeTable.resolve(device)
    except NoWorkModeCapability as err:
        raise DecodeAmbiguous(str(err)) from err

    if device.fan_work_mode is not None:
        mode = table.mode_for_value(device.fan_work_mode)
        if mode is None:
            raise DecodeAmbiguous(
                f"{device.id}: work mode {device.fan_work_mode} is not in the mode table"
            )
        return mode.name

    state = device.get_state_capability_by_instance(INSTANCE_WORK_MODE)
    if state is None:
        raise DecodeAmbiguous(f"{device.id}: no workMode state reported")
    mode_num = state.pointer(WORK_MODE_STATE_POINTER)
    mode = table.mode_for_value(mode_num) if mode_num is not None else None
    if mode is None:
        raise DecodeAmbiguous(f"{device.id}: cannot decode workMode state {mode_num!r}")
    return mode.name


class Fan:
    """MQTT fan backed by a device's work mode and speed capabilities."""

    def __init__(self, config: FanConfig, device: Device, registry: DeviceRegistry) -> None:
        """Bind an already-built config to the device it describes."""

        self._config = config
        self._device_id = device.id
        self._sku = device.sku
        self._registry = registry

    @property
    def config(self) -> FanConfig:
        """Return the immutable discovery document."""

        return self._config

    @classmethod
    def create(
        cls,
        device: Device,
        registry: DeviceRegistry,
        selector: TransportSelector,
        topic_prefix: str,
    ) -> Fan:
        """Build the fan entity for ``device``."""

        safe_id = topic_safe_id(device)
        use_iot = device.iot_api_supported() and selector.is_iot_client_available()

        try:
            preset_modes = ModeTable.resolve(device).mode_names()
        except NoWorkModeCapability:
            preset_modes = []

        speed_range = _percent_speed_range(device)
        has_oscillation = device.capability_by_instance(INSTANCE_OSCILLATION) is not None
        base = f"{topic_prefix}/fan/{safe_id}"

        config = FanConfig(
            **EntityConfig.base_fields(
                device,
                unique_id=f"gv2mqtt-{safe_id}-fan",
                name=None if device.device_type() == DEVICE_TYPE_FAN else "Fan",
                topic_prefix=topic_prefix,
            ),
            device_class=DEVICE_CLASS_FAN,
            # Power is owned by the powerSwitch switch entity.
            command_topic=f"{topic_prefix}/switch/{safe_id}/command/powerSwitch",
            state_topic=f"{base}/state",
            oscillation_command_topic=f"{base}/set-oscillation" if has_oscillation else None,
            oscillation_state_topic=f"{base}/notify-oscillation" if has_oscillation else None,
            payload_oscillation_on="true" if has_oscillation else None,
            payload_oscillation_off="false" if has_oscillation else None,
            preset_mode_command_topic=f"{base}/set-mode",
            preset_mode_state_topic=f"{base}/notify-mode",
            preset_modes=preset_modes or None,
            percentage_command_topic=f"{base}/set-speed",
            percentage_state_topic=f"{base}/notify-speed",
            speed_range_min=speed_range.min if speed_range else None,
            speed_range_max=speed_range.max if speed_range else None,
            optimistic=not use_iot,
        )
        return cls(config, device, registry)

    async def async_publish_config(self, client: HassClient) -> None:
        """Publish the fan discovery document."""

        await publish_entity_config("fan", client, self._config)

    async def async_notify_state(self, client: HassClient) -> None:
        """Publish power, speed, mode and oscillation state."""

        device = await self._registry.device_by_id(self._device_id)
        if device is None:
            _LOGGER.debug("Fan %s has no registry entry", self._device_id)
            return
        config = self._config

        device_state = device.device_state()
        is_on = device_state is not None and device_state.on
        await client.async_publish(config.state_topic, "ON" if is_on else "OFF")

        speed = device.target_speed
        if speed is None:
            # The hub keeps percentage control disabled until it has seen a
            # value, so latch a guess that is then treated as real state.
            speed = config.speed_range_min or 0
            handle = await self._registry.device_mut(device.sku, device.id)
            await handle.set_target_speed(speed)
        await client.async_publish(config.percentage_state_topic, str(speed))

        try:
            mode_name = current_mode_name(device)
        except DecodeAmbiguous as err:
            _LOGGER.debug("Not publishing fan mode: %s", err)
        else:
            await client.async_publish(config.preset_mode_state_topic, mode_name)

        if config.oscillation_state_topic and device.oscillating is not None:
            await client.async_publish(
                config.oscillation_state_topic,
                "true" if device.oscillating else "false",
            )


async def mqtt_fan_set_work_mode(mode: str, device_id: str, ctx: BridgeContext) -> None:
    """Switch a fan to the work mode called ``mode``."""

    _LOGGER.info("mqtt_fan_set_mode: %s: %s", device_id, mode)
    device = await ctx.registry.resolve_device_for_control(device_id)

    work_modes = ModeTable.resolve(device)
    work_mode = work_modes.mode_by_name(mode)
    if work_mode is None:
        raise ModeNotFound(mode)
    mode_num = work_mode.native_int()
    if mode_num is None:
        raise ModeNotFound(mode, f"mode {mode} has non-numeric value {work_mode.value!r}")

    result = await ctx.selector.fan_set_parameter(
        device, mode_num, work_mode.default_value()
    )
    if result.is_optimistic:
        handle = await ctx.registry.device_mut(device.sku, device.id)
        await handle.set_fan_work_mode(mode_num)
    ctx.registry.device_was_controlled(device)


async def mqtt_fan_set_speed(percent: int, device_id: str, ctx: BridgeContext) -> None:
    """Set a fan's speed from a 0-100 percentage."""

    _LOGGER.info("mqtt_fan_set_speed: %s: %s", device_id, percent)
    percent = max(0, min(100, percent))
    device = await ctx.registry.resolve_device_for_control(device_id)

    use_iot = device.iot_api_supported() and ctx.selector.is_iot_client_available()
    fan_capability = device.capability_by_instance(INSTANCE_FAN_SPEED)

    if fan_capability is not None and (not use_iot or auto_mode(device) is None):
        value = percent
        fan_range = SpeedRange.from_capability(fan_capability)
        if fan_range is not None and _percent_speed_range(device) is None:
            value = from_percent(percent, fan_range)
        await ctx.selector.dispatch_via_http(device, INSTANCE_FAN_SPEED, value)
        # The platform API does not echo state; remember what we asked for.
        handle = await ctx.registry.device_mut(device.sku, device.id)
        await handle.set_target_speed(percent)
        # Some fans also power on and switch to Auto; the deferred poll
        # picks that up.
        ctx.registry.device_was_controlled(device)
        return

    work_modes = ModeTable.resolve(device)
    work_mode = work_modes.mode_by_name(AUTO_MODE_NAME)
    if work_mode is None:
        raise ModeNotFound(AUTO_MODE_NAME)
    mode_num = work_mode.native_int()
    if mode_num is None:
        raise ModeNotFound(
            AUTO_MODE_NAME, f"mode Auto has non-numeric value {work_mode.value!r}"
        )

    code = from_percent(percent, auto_speed_range(device, work_mode))

    result = await ctx.selector.fan_set_parameter(device, mode_num, code)
    if result.is_optimistic:
        handle = await ctx.registry.device_mut(device.sku, device.id)
        await handle.set_target_speed(percent)
    ctx.registry.device_was_controlled(device)


async def mqtt_fan_set_oscillation(
    oscillate: bool, device_id: str, ctx: BridgeContext
) -> None:
    """Turn fan oscillation on or off."""

    _LOGGER.info("mqtt_fan_set_oscillation: %s: %s", device_id, oscillate)
    device = await ctx.registry.resolve_device_for_control(device_id)

    capability = device.capability_by_instance(INSTANCE_OSCILLATION)
    if capability is None:
        raise UnsupportedCapability(device.id, INSTANCE_OSCILLATION)
    on_value, off_value = on_off_values(capability)

    result = await ctx.selector.dispatch(
        device, INSTANCE_OSCILLATION, on_value if oscillate else off_value
    )
    if result.is_optimistic:
        handle = await ctx.registry.device_mut(device.sku, device.id)
        await handle.set_oscillating(oscillate)
    ctx.registry.device_was_controlled(device)


def register_fan_routes(router: CommandRouter, ctx: BridgeContext) -> None:
    """Route the fan command topics to their handlers."""

    prefix = ctx.topic_prefix

    async def _set_mode(value: str, params: dict[str, str]) -> None:
        await mqtt_fan_set_work_mode(value, params["id"], ctx)

    async def _set_speed(value: int, params: dict[str, str]) -> None:
        await mqtt_fan_set_speed(value, params["id"], ctx)

    async def _set_oscillation(value: bool, params: dict[str, str]) -> None:
        await mqtt_fan_set_oscillation(value, params["id"], ctx)

    router.route(f"{prefix}/fan/{{id}}/set-mode", decode_string, _set_mode)
    router.route(f"{prefix}/fan/{{id}}/set-speed", decode_int, _set_speed)
    router.route(f"{prefix}/fan/{{id}}/set-oscillation", decode_bool, _set_oscillation)
