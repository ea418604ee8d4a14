"""Work mode tables decoded from a device's ``workMode`` capability.

The platform API describes work modes as a STRUCT with two members:
``workMode`` enumerates the modes themselves, and ``modeValue`` lists, per
mode name, the sub-parameter that mode accepts (a default value, a numeric
range or a nested list of options). :class:`ModeTable` joins the two so
that callers can go from a hub-facing mode name to the pair of native
values a device expects, and back again from an observed state.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from .capabilities import DeviceCapability, EnumOption, StructField, json_value_eq
from .const import (
    AUTO_MODE_NAME,
    FIELD_MODE_VALUE,
    FIELD_WORK_MODE,
    INSTANCE_FAN_SPEED,
    INSTANCE_WORK_MODE,
)
from .device import Device
from .errors import NoWorkModeCapability
from .speed import PERCENT_RANGE, SpeedRange


@dataclass(frozen=True, slots=True)
class WorkMode:
    """One entry of a mode table."""

    name: str
    value: Any
    label: str | None = None
    range: range | None = None
    values: tuple[EnumOption, ...] = ()
    default_sub_value: Any = None

    def default_value(self) -> Any:
        """Return the sub-parameter to send when only the mode is chosen."""

        if self.default_sub_value is not None:
            return self.default_sub_value
        if self.range is not None and len(self.range) > 0:
            return self.range.start
        if self.values:
            return self.values[0].value
        return 0

    def contains(self, sub_value: Any) -> bool:
        """Return True when ``sub_value`` is acceptable for this mode."""

        if self.range is not None:
            return (
                isinstance(sub_value, int)
                and not isinstance(sub_value, bool)
                and sub_value in self.range
            )
        if self.values:
            return any(json_value_eq(option.value, sub_value) for option in self.values)
        return True

    def native_int(self) -> int | None:
        """Return the native mode value as an integer when it is one."""

        value = self.value
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return None


def _range_of(option: EnumOption | StructField) -> range | None:
    if option.range is None:
        return None
    return range(option.range.min, option.range.max + 1)


class ModeTable:
    """Ordered, immutable set of work modes for one device."""

    __slots__ = ("_modes",)

    def __init__(self, modes: Sequence[WorkMode]) -> None:
        """Validate uniqueness of names and native values."""

        names: set[str] = set()
        for index, mode in enumerate(modes):
            if mode.name in names:
                raise ValueError(f"duplicate work mode name {mode.name!r}")
            names.add(mode.name)
            for other in modes[:index]:
                if json_value_eq(other.value, mode.value):
                    raise ValueError(
                        f"work modes {other.name!r} and {mode.name!r} share value {mode.value!r}"
                    )
        self._modes: tuple[WorkMode, ...] = tuple(modes)

    @classmethod
    def resolve(cls, device: Device) -> ModeTable:
        """Build the mode table for ``device``.

        Raises :class:`NoWorkModeCapability` when the device does not
        advertise an enumerated work mode.
        """

        capability = device.capability_by_instance(INSTANCE_WORK_MODE)
        if capability is None:
            raise NoWorkModeCapability(device.id)
        return cls.from_capability(capability, device.id)

    @classmethod
    def from_capability(cls, capability: DeviceCapability, device_id: str) -> ModeTable:
        """Build a mode table from a raw ``workMode`` capability."""

        params = capability.parameters
        if params is None:
            raise NoWorkModeCapability(device_id)
        mode_field = params.field_by_name(FIELD_WORK_MODE)
        if mode_field is None or not mode_field.options:
            raise NoWorkModeCapability(device_id)

        value_field = params.field_by_name(FIELD_MODE_VALUE)
        sub_params: dict[str, EnumOption] = {}
        if value_field is not None:
            for option in value_field.options:
                sub_params.setdefault(option.name, option)

        modes: list[WorkMode] = []
        for option in mode_field.options:
            sub = sub_params.get(option.name)
            if sub is not None:
                modes.append(
                    WorkMode(
                        name=option.name,
                        value=option.value,
                        range=_range_of(sub),
                        values=tuple(sub.options),
                        default_sub_value=(
                            sub.default_value if sub.default_value is not None else sub.value
                        ),
                    )
                )
            elif value_field is not None and not value_field.options:
                # A plain INTEGER modeValue applies to every mode.
                modes.append(
                    WorkMode(
                        name=option.name,
                        value=option.value,
                        range=_range_of(value_field),
                        default_sub_value=value_field.default_value,
                    )
                )
            else:
                modes.append(WorkMode(name=option.name, value=option.value))
        try:
            return cls(modes)
        except ValueError as err:
            raise NoWorkModeCapability(device_id) from err

    def __iter__(self) -> Iterator[WorkMode]:
        """Iterate over modes in descriptor order."""

        return iter(self._modes)

    def __len__(self) -> int:
        """Return the number of modes."""

        return len(self._modes)

    def mode_by_name(self, name: str) -> WorkMode | None:
        """Return the mode called exactly ``name`` (case-sensitive)."""

        for mode in self._modes:
            if mode.name == name:
                return mode
        return None

    def mode_for_value(self, value: Any) -> WorkMode | None:
        """Return the mode whose native value equals ``value``."""

        for mode in self._modes:
            if json_value_eq(mode.value, value):
                return mode
        return None

    def mode_names(self) -> list[str]:
        """Return mode names in the order the device advertises them."""

        return [mode.name for mode in self._modes]


def auto_speed_range(device: Device, mode: WorkMode) -> SpeedRange:
    """Return the native speed codes the Auto mode's sub-value spans."""

    return (
        SpeedRange.from_python_range(mode.range)
        or SpeedRange.from_capability(device.capability_by_instance(INSTANCE_FAN_SPEED))
        or PERCENT_RANGE
    )


def auto_mode(device: Device) -> WorkMode | None:
    """Return the device's Auto mode, or None when it has no usable one."""

    try:
        table = ModeTable.resolve(device)
    except NoWorkModeCapability:
        return None
    mode = table.mode_by_name(AUTO_MODE_NAME)
    if mode is None or mode.native_int() is None:
        return None
    return mode
