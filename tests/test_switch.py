"""Tests for capability switches."""

from __future__ import annotations

import pytest

from factories import (
    FAN_ID,
    OSCILLATION_CAPABILITY,
    POWER_CAPABILITY,
    STANDARD_WORK_MODE,
    FakeContext,
    FakeHassClient,
    FakeIoTClient,
    FakePlatformClient,
    make_device,
    make_state,
    seed_registry,
)
from govee_mqtt.hass import CommandRouter
from govee_mqtt.registry import DeviceRegistry
from govee_mqtt.switch import (
    CapabilitySwitch,
    mqtt_switch_command,
    register_switch_routes,
    switch_instances,
)
from govee_mqtt.transport import TransportSelector

SAFE_ID = "AA_BB_CC_DD_EE_FF_00_11"
IOT_TOPIC = "GD/123456"


def _context(
    registry: DeviceRegistry,
    iot: FakeIoTClient | None = None,
) -> tuple[FakeContext, FakePlatformClient, list[str]]:
    platform = FakePlatformClient()
    selector = TransportSelector(lambda: iot, platform)  # type: ignore[arg-type]
    scheduled: list[str] = []
    registry.set_poll_scheduler(lambda device: scheduled.append(device.id))
    return FakeContext(registry, selector), platform, scheduled


async def _switch(registry: DeviceRegistry, instance: str) -> CapabilitySwitch:
    device = await registry.device_by_id(FAN_ID)
    assert device is not None
    return CapabilitySwitch.create(device, instance, registry, "gv2mqtt")


def test_switch_instances_lists_on_off_capabilities() -> None:
    """Only on_off and toggle capabilities become switches."""

    device = make_device([POWER_CAPABILITY, STANDARD_WORK_MODE, OSCILLATION_CAPABILITY])

    assert switch_instances(device) == ["powerSwitch", "oscillationToggle"]


@pytest.mark.asyncio
async def test_switch_config_topics_and_names() -> None:
    """Switches live under the switch namespace with readable names."""

    registry = DeviceRegistry()
    await seed_registry(registry, [POWER_CAPABILITY, OSCILLATION_CAPABILITY])

    power = (await _switch(registry, "powerSwitch")).config
    oscillation = (await _switch(registry, "oscillationToggle")).config

    assert power.name == "Power"
    assert power.unique_id == f"gv2mqtt-{SAFE_ID}-powerSwitch"
    assert power.command_topic == f"gv2mqtt/switch/{SAFE_ID}/command/powerSwitch"
    assert power.state_topic == f"gv2mqtt/switch/{SAFE_ID}/powerSwitch/state"
    assert oscillation.name == "Oscillation Toggle"


@pytest.mark.asyncio
async def test_switch_state_follows_cache_and_reported_state() -> None:
    """Cached power wins; other instances read the reported value."""

    registry = DeviceRegistry()
    await seed_registry(
        registry,
        [POWER_CAPABILITY, {**OSCILLATION_CAPABILITY, "instance": "nightlightToggle"}],
    )
    power = await _switch(registry, "powerSwitch")
    nightlight = await _switch(registry, "nightlightToggle")
    client = FakeHassClient()

    await power.async_notify_state(client)  # type: ignore[arg-type]
    await nightlight.async_notify_state(client)  # type: ignore[arg-type]

    handle = await registry.device_mut("H7102", FAN_ID)
    await handle.set_on(True)
    await registry.ingest_http_state(
        FAN_ID,
        make_state(
            [{"type": "devices.capabilities.toggle", "instance": "nightlightToggle",
              "state": {"value": 1}}]
        ),
    )
    await power.async_notify_state(client)  # type: ignore[arg-type]
    await nightlight.async_notify_state(client)  # type: ignore[arg-type]

    assert client.payloads(f"gv2mqtt/switch/{SAFE_ID}/powerSwitch/state") == ["OFF", "ON"]
    assert client.payloads(f"gv2mqtt/switch/{SAFE_ID}/nightlightToggle/state") == ["OFF", "ON"]


@pytest.mark.asyncio
async def test_power_command_over_http_latches_power() -> None:
    """Optimistic power writes update the cached power state."""

    registry = DeviceRegistry()
    await seed_registry(registry, [POWER_CAPABILITY])
    ctx, platform, scheduled = _context(registry)

    await mqtt_switch_command("ON", FAN_ID, "powerSwitch", ctx)  # type: ignore[arg-type]

    assert platform.controls == [(FAN_ID, "powerSwitch", 1)]
    device = await registry.device_by_id(FAN_ID)
    assert device is not None and device.on is True
    assert scheduled == [FAN_ID]


@pytest.mark.asyncio
async def test_power_command_over_iot_waits_for_report() -> None:
    """Authoritative power writes leave the cache alone."""

    registry = DeviceRegistry()
    await seed_registry(registry, [POWER_CAPABILITY], iot_topic=IOT_TOPIC)
    iot = FakeIoTClient(connected=True)
    ctx, platform, _ = _context(registry, iot=iot)

    await mqtt_switch_command("off", FAN_ID, "powerSwitch", ctx)  # type: ignore[arg-type]

    assert platform.controls == []
    assert iot.commands == [(IOT_TOPIC, {"cmd": "turn", "data": {"val": 0}})]
    device = await registry.device_by_id(FAN_ID)
    assert device is not None and device.on is None


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected() -> None:
    """Only ON and OFF are accepted."""

    registry = DeviceRegistry()
    await seed_registry(registry, [POWER_CAPABILITY])
    ctx, platform, _ = _context(registry)

    with pytest.raises(ValueError):
        await mqtt_switch_command("maybe", FAN_ID, "powerSwitch", ctx)  # type: ignore[arg-type]
    assert platform.controls == []


@pytest.mark.asyncio
async def test_switch_route_passes_instance() -> None:
    """The instance segment of the topic selects the capability."""

    registry = DeviceRegistry()
    await seed_registry(registry, [POWER_CAPABILITY, OSCILLATION_CAPABILITY])
    ctx, platform, _ = _context(registry)
    router = CommandRouter()
    register_switch_routes(router, ctx)  # type: ignore[arg-type]

    assert router.subscriptions == ["gv2mqtt/switch/+/command/+"]
    assert await router.async_dispatch(
        f"gv2mqtt/switch/{SAFE_ID}/command/oscillationToggle", b"ON"
    )

    assert platform.controls == [(FAN_ID, "oscillationToggle", 1)]
    device = await registry.device_by_id(FAN_ID)
    assert device is not None and device.oscillating is True
