"""Tests for transport selection and dispatch tagging."""

from __future__ import annotations

import base64

import pytest

from factories import (
    POWER_CAPABILITY,
    STANDARD_WORK_MODE,
    FakeIoTClient,
    FakePlatformClient,
    fan_speed_capability,
    make_device,
)
from govee_mqtt.errors import ControlError, UnsupportedCapability
from govee_mqtt.transport import Dispatched, Transport, TransportSelector

IOT_TOPIC = "GD/123456"


def _selector(iot: FakeIoTClient | None, platform: FakePlatformClient) -> TransportSelector:
    return TransportSelector(lambda: iot, platform)  # type: ignore[arg-type]


def test_primary_requires_topic_support_and_connection() -> None:
    """All three conditions are needed for the IoT path."""

    iot = FakeIoTClient(connected=True)
    selector = _selector(iot, FakePlatformClient())
    device = make_device([STANDARD_WORK_MODE], iot_topic=IOT_TOPIC)

    assert selector.select(device, "workMode") is Transport.PRIMARY
    assert selector.select(device, "fan") is Transport.SECONDARY
    assert selector.select(make_device([STANDARD_WORK_MODE]), "workMode") is Transport.SECONDARY


def test_availability_is_rechecked_on_every_call() -> None:
    """A dropped connection takes effect immediately."""

    iot = FakeIoTClient(connected=True)
    selector = _selector(iot, FakePlatformClient())
    device = make_device([STANDARD_WORK_MODE], iot_topic=IOT_TOPIC)

    assert selector.is_iot_client_available()
    iot.is_connected = False
    assert not selector.is_iot_client_available()
    assert selector.select(device, "workMode") is Transport.SECONDARY


def test_missing_iot_client_is_unavailable() -> None:
    """No client means no primary transport."""

    selector = _selector(None, FakePlatformClient())

    assert not selector.is_iot_client_available()


@pytest.mark.asyncio
async def test_primary_dispatch_is_authoritative() -> None:
    """IoT writes are tagged authoritative and encoded as ptReal frames."""

    iot = FakeIoTClient(connected=True)
    platform = FakePlatformClient()
    selector = _selector(iot, platform)
    device = make_device([STANDARD_WORK_MODE], iot_topic=IOT_TOPIC)

    result = await selector.fan_set_parameter(device, 3, 5)

    assert result is Dispatched.AUTHORITATIVE
    assert not result.is_optimistic
    assert platform.controls == []
    topic, body = iot.commands[0]
    assert topic == IOT_TOPIC
    assert body["cmd"] == "ptReal"
    frame = base64.b64decode(body["data"]["command"][0])
    assert frame[:4] == bytes([0x33, 0x05, 3, 5])
    assert len(frame) == 20


@pytest.mark.asyncio
async def test_secondary_dispatch_is_optimistic() -> None:
    """Platform API writes are tagged optimistic."""

    platform = FakePlatformClient()
    selector = _selector(FakeIoTClient(connected=False), platform)
    device = make_device([STANDARD_WORK_MODE], iot_topic=IOT_TOPIC)

    result = await selector.fan_set_parameter(device, 3, 5)

    assert result is Dispatched.OPTIMISTIC
    assert platform.controls == [
        (device.id, "workMode", {"workMode": 3, "modeValue": 5})
    ]


@pytest.mark.asyncio
async def test_secondary_without_capability_is_unsupported() -> None:
    """The HTTP path needs the instance on the device descriptor."""

    platform = FakePlatformClient()
    selector = _selector(None, platform)
    device = make_device([fan_speed_capability(1, 8)])

    with pytest.raises(UnsupportedCapability):
        await selector.dispatch(device, "workMode", {"workMode": 1, "modeValue": 0})
    assert platform.controls == []


@pytest.mark.asyncio
async def test_transport_failures_are_not_retried() -> None:
    """A failed IoT publish surfaces without falling back to HTTP."""

    iot = FakeIoTClient(connected=True, fail=True)
    platform = FakePlatformClient()
    selector = _selector(iot, platform)
    device = make_device([POWER_CAPABILITY], iot_topic=IOT_TOPIC)

    with pytest.raises(ControlError):
        await selector.dispatch(device, "powerSwitch", 1)
    assert platform.controls == []


@pytest.mark.asyncio
async def test_forced_iot_dispatch_requires_connection() -> None:
    """Callers forcing the IoT path get a control error when offline."""

    selector = _selector(FakeIoTClient(connected=False), FakePlatformClient())
    device = make_device([POWER_CAPABILITY], iot_topic=IOT_TOPIC)

    with pytest.raises(ControlError):
        await selector.dispatch_via_iot(device, "powerSwitch", 1)


@pytest.mark.asyncio
async def test_values_that_do_not_fit_a_frame_are_unsupported() -> None:
    """Sub-values outside a byte raise UnsupportedCapability before publishing."""

    iot = FakeIoTClient(connected=True)
    platform = FakePlatformClient()
    selector = _selector(iot, platform)
    device = make_device([STANDARD_WORK_MODE], iot_topic=IOT_TOPIC)

    with pytest.raises(UnsupportedCapability) as excinfo:
        await selector.fan_set_parameter(device, 3, 300)
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert iot.commands == []
    assert platform.controls == []
