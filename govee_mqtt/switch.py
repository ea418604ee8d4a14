"""On/off capabilities exposed as MQTT switches."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from .capabilities import json_value_eq, on_off_values
from .const import (
    CAPABILITY_ON_OFF,
    CAPABILITY_TOGGLE,
    INSTANCE_OSCILLATION,
    INSTANCE_POWER_SWITCH,
)
from .device import Device
from .entity import EntityConfig, publish_entity_config
from .hass import CommandRouter, HassClient, decode_string, topic_safe_id
from .registry import DeviceRegistry

if TYPE_CHECKING:
    from .bridge import BridgeContext

_LOGGER = logging.getLogger(__name__)

SWITCH_CAPABILITY_TYPES = frozenset({CAPABILITY_ON_OFF, CAPABILITY_TOGGLE})


class SwitchConfig(EntityConfig):
    """Discovery document for an MQTT switch."""

    command_topic: str
    state_topic: str
    optimistic: bool = False


def _switch_name(instance: str) -> str:
    if instance == INSTANCE_POWER_SWITCH:
        return "Power"
    words = re.sub(r"(?<!^)(?=[A-Z])", " ", instance).split()
    return " ".join(word.capitalize() for word in words)


def switch_instances(device: Device) -> list[str]:
    """Return the on/off capability instances ``device`` advertises."""

    if device.http_device_info is None:
        return []
    return [
        capability.instance
        for capability in device.http_device_info.capabilities
        if capability.type in SWITCH_CAPABILITY_TYPES
    ]


class CapabilitySwitch:
    """Switch for one on/off capability of a device."""

    def __init__(
        self, config: SwitchConfig, device: Device, instance: str, registry: DeviceRegistry
    ) -> None:
        """Bind the config to the capability it controls."""

        self._config = config
        self._device_id = device.id
        self._instance = instance
        self._registry = registry

    @property
    def config(self) -> SwitchConfig:
        """Return the immutable discovery document."""

        return self._config

    @property
    def instance(self) -> str:
        """Return the capability instance this switch controls."""

        return self._instance

    @classmethod
    def create(
        cls,
        device: Device,
        instance: str,
        registry: DeviceRegistry,
        topic_prefix: str,
        *,
        optimistic: bool = False,
    ) -> CapabilitySwitch:
        """Build the switch for ``instance`` on ``device``."""

        safe_id = topic_safe_id(device)
        config = SwitchConfig(
            **EntityConfig.base_fields(
                device,
                unique_id=f"gv2mqtt-{safe_id}-{instance}",
                name=_switch_name(instance),
                topic_prefix=topic_prefix,
            ),
            command_topic=f"{topic_prefix}/switch/{safe_id}/command/{instance}",
            state_topic=f"{topic_prefix}/switch/{safe_id}/{instance}/state",
            optimistic=optimistic,
        )
        return cls(config, device, instance, registry)

    async def async_publish_config(self, client: HassClient) -> None:
        """Publish the switch discovery document."""

        await publish_entity_config("switch", client, self._config)

    def _is_on(self, device: Device) -> bool:
        if self._instance == INSTANCE_POWER_SWITCH and device.on is not None:
            return device.on
        if self._instance == INSTANCE_OSCILLATION and device.oscillating is not None:
            return device.oscillating
        state = device.get_state_capability_by_instance(self._instance)
        if state is None:
            return False
        on_value, _off_value = on_off_values(device.capability_by_instance(self._instance))
        return json_value_eq(state.pointer("/value"), on_value)

    async def async_notify_state(self, client: HassClient) -> None:
        """Publish ON/OFF; missing state reads as OFF."""

        device = await self._registry.device_by_id(self._device_id)
        if device is None:
            return
        await client.async_publish(
            self._config.state_topic, "ON" if self._is_on(device) else "OFF"
        )


def _parse_on_off(payload: str) -> bool:
    text = payload.strip().upper()
    if text == "ON":
        return True
    if text == "OFF":
        return False
    raise ValueError(f"expected ON or OFF, got {payload!r}")


async def mqtt_switch_command(
    payload: str, device_id: str, instance: str, ctx: BridgeContext
) -> None:
    """Turn the ``instance`` capability of a device on or off."""

    _LOGGER.info("mqtt_switch_command: %s %s: %s", device_id, instance, payload)
    on = _parse_on_off(payload)
    device = await ctx.registry.resolve_device_for_control(device_id)

    on_value, off_value = on_off_values(device.capability_by_instance(instance))
    result = await ctx.selector.dispatch(device, instance, on_value if on else off_value)
    if result.is_optimistic:
        handle = await ctx.registry.device_mut(device.sku, device.id)
        if instance == INSTANCE_POWER_SWITCH:
            await handle.set_on(on)
        elif instance == INSTANCE_OSCILLATION:
            await handle.set_oscillating(on)
    ctx.registry.device_was_controlled(device)


def register_switch_routes(router: CommandRouter, ctx: BridgeContext) -> None:
    """Route switch command topics to :func:`mqtt_switch_command`."""

    async def _command(value: str, params: dict[str, str]) -> None:
        await mqtt_switch_command(value, params["id"], params["instance"], ctx)

    router.route(
        f"{ctx.topic_prefix}/switch/{{id}}/command/{{instance}}", decode_string, _command
    )
