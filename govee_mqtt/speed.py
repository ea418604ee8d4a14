"""Percent to native fan speed conversion."""

from __future__ import annotations

import math
from dataclasses import dataclass

from .capabilities import CapabilityDescriptor, CapabilityKind, DeviceCapability


@dataclass(frozen=True, slots=True)
class SpeedRange:
    """Inclusive range of native speed codes accepted by a device."""

    min: int
    max: int

    def __post_init__(self) -> None:
        """Reject inverted ranges."""

        if self.min > self.max:
            raise ValueError(f"speed range min {self.min} exceeds max {self.max}")

    @property
    def span(self) -> int:
        """Return the number of steps between min and max."""

        return self.max - self.min

    @property
    def step_percent(self) -> float:
        """Return how many percent one native step covers."""

        if self.span == 0:
            return 100.0
        return 100.0 / self.span

    @classmethod
    def from_capability(cls, capability: DeviceCapability | None) -> SpeedRange | None:
        """Build a range from an INTEGER capability, if it is one."""

        if capability is None:
            return None
        descriptor = CapabilityDescriptor.from_capability(capability)
        if descriptor is None or descriptor.kind is not CapabilityKind.NUMERIC_RANGE:
            return None
        assert descriptor.min is not None and descriptor.max is not None
        return cls(descriptor.min, descriptor.max)

    @classmethod
    def from_python_range(cls, value: range | None) -> SpeedRange | None:
        """Build a range from an inclusive-start, exclusive-stop ``range``."""

        if value is None or len(value) == 0:
            return None
        return cls(value.start, value.stop - 1)


PERCENT_RANGE = SpeedRange(0, 100)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def from_percent(percent: int, speed_range: SpeedRange) -> int:
    """Map a 0-100 percentage onto the device's native speed codes."""

    percent = max(0, min(100, percent))
    return speed_range.min + _round_half_up(percent * speed_range.span / 100)


def to_percent(code: int, speed_range: SpeedRange) -> int:
    """Map a native speed code back onto a 0-100 percentage."""

    if speed_range.span == 0:
        return 100
    code = max(speed_range.min, min(speed_range.max, code))
    return _round_half_up((code - speed_range.min) * 100 / speed_range.span)
