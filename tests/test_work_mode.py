"""Tests for work mode tables."""

from __future__ import annotations

import pytest

from factories import (
    STANDARD_WORK_MODE,
    fan_speed_capability,
    make_device,
    work_mode_capability,
)
from govee_mqtt.errors import NoWorkModeCapability, UnsupportedCapability
from govee_mqtt.work_mode import ModeTable, WorkMode


def test_resolve_builds_modes_in_descriptor_order() -> None:
    """Mode names keep the order the device advertises."""

    table = ModeTable.resolve(make_device([STANDARD_WORK_MODE]))

    assert table.mode_names() == ["FanSpeed", "Custom", "Auto", "Sleep", "Nature"]
    assert len(table) == 5


def test_every_mode_round_trips_between_name_and_value() -> None:
    """A mode found by value is found again by its name."""

    table = ModeTable.resolve(make_device([STANDARD_WORK_MODE]))

    for mode in table:
        decoded = table.mode_for_value(mode.value)
        assert decoded is not None
        assert table.mode_by_name(decoded.name) == mode


def test_mode_by_name_is_case_sensitive() -> None:
    """Names must match exactly."""

    table = ModeTable.resolve(
        make_device([work_mode_capability([("sleep", 1), ("Auto", 2)])])
    )

    assert table.mode_by_name("Sleep") is None
    assert table.mode_by_name("sleep") is not None


def test_mode_for_value_accepts_float_encodings() -> None:
    """Observed state may encode the native value as a float."""

    table = ModeTable.resolve(make_device([STANDARD_WORK_MODE]))

    mode = table.mode_for_value(3.0)
    assert mode is not None
    assert mode.name == "Auto"
    assert table.mode_for_value(42) is None


def test_sub_parameters_supply_default_values() -> None:
    """Each mode carries the default sub-value to send with it."""

    table = ModeTable.resolve(make_device([STANDARD_WORK_MODE]))

    auto = table.mode_by_name("Auto")
    fan_speed = table.mode_by_name("FanSpeed")
    sleep = table.mode_by_name("Sleep")
    assert auto is not None and fan_speed is not None and sleep is not None
    assert auto.range == range(1, 9)
    assert auto.default_value() == 1
    assert fan_speed.default_value() == 1
    assert sleep.default_value() == 0
    assert auto.contains(8)
    assert not auto.contains(9)


def test_mode_without_sub_parameters_defaults_to_zero() -> None:
    """Modes with no modeValue entry send zero."""

    table = ModeTable.resolve(make_device([work_mode_capability([("Auto", 2)])]))

    auto = table.mode_by_name("Auto")
    assert auto is not None
    assert auto.default_value() == 0
    assert auto.native_int() == 2


def test_missing_work_mode_capability_is_unsupported() -> None:
    """Devices without workMode fail with a capability error."""

    device = make_device([fan_speed_capability(1, 8)])

    with pytest.raises(NoWorkModeCapability) as excinfo:
        ModeTable.resolve(device)
    assert isinstance(excinfo.value, UnsupportedCapability)
    assert excinfo.value.instance == "workMode"


def test_duplicate_names_and_values_are_rejected() -> None:
    """Names and native values are unique within a table."""

    with pytest.raises(ValueError):
        ModeTable([WorkMode("Auto", 1), WorkMode("Auto", 2)])
    with pytest.raises(ValueError):
        ModeTable([WorkMode("Auto", 1), WorkMode("Sleep", 1.0)])


def test_duplicate_mode_values_in_a_capability_mean_no_work_modes() -> None:
    """A capability whose modes collide is treated as having no work modes."""

    device = make_device([work_mode_capability([("Auto", 3), ("Sleep", 3)])])

    with pytest.raises(NoWorkModeCapability):
        ModeTable.resolve(device)
