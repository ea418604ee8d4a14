"""Capability descriptors advertised by the Govee platform API."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_MISSING = object()


class _PlatformModel(BaseModel):
    """Base model accepting both the camelCase wire names and field names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class IntegerRange(_PlatformModel):
    """Inclusive numeric range advertised for an integer parameter."""

    min: int
    max: int
    precision: int = 1


class EnumOption(_PlatformModel):
    """Single option of an enumerated parameter.

    Work mode sub-parameters reuse this shape: an option may carry a
    ``defaultValue``, a nested ``range`` or its own nested ``options``
    instead of a plain ``value``.
    """

    name: str
    value: Any = None
    default_value: Any = Field(default=None, alias="defaultValue")
    range: IntegerRange | None = None
    options: list[EnumOption] = Field(default_factory=list)


EnumOption.model_rebuild()


class StructField(_PlatformModel):
    """Named member of a STRUCT parameter."""

    field_name: str = Field(alias="fieldName")
    data_type: str = Field(default="", alias="dataType")
    unit: str | None = None
    range: IntegerRange | None = None
    options: list[EnumOption] = Field(default_factory=list)
    default_value: Any = Field(default=None, alias="defaultValue")
    required: bool = False


class DeviceParameters(_PlatformModel):
    """Parameter description of a device capability."""

    data_type: str = Field(default="", alias="dataType")
    unit: str | None = None
    range: IntegerRange | None = None
    options: list[EnumOption] = Field(default_factory=list)
    fields: list[StructField] = Field(default_factory=list)

    def field_by_name(self, name: str) -> StructField | None:
        """Return the STRUCT member named ``name``."""

        return next((field for field in self.fields if field.field_name == name), None)


class DeviceCapability(_PlatformModel):
    """Capability entry from the platform API device list."""

    type: str = ""
    instance: str
    parameters: DeviceParameters | None = None


class HttpDeviceInfo(_PlatformModel):
    """Device entry returned by the platform API device list."""

    sku: str
    device: str
    device_name: str = Field(default="", alias="deviceName")
    device_type: str = Field(default="", alias="type")
    capabilities: list[DeviceCapability] = Field(default_factory=list)

    def capability_by_instance(self, instance: str) -> DeviceCapability | None:
        """Return the capability advertised under ``instance``."""

        return next(
            (cap for cap in self.capabilities if cap.instance == instance), None
        )


class CapabilityState(_PlatformModel):
    """Reported state of one capability."""

    type: str = ""
    instance: str
    state: dict[str, Any] = Field(default_factory=dict)

    def pointer(self, path: str, default: Any = None) -> Any:
        """Resolve a JSON pointer relative to this capability's state."""

        value = resolve_pointer(self.state, path, _MISSING)
        return default if value is _MISSING else value


class HttpDeviceState(_PlatformModel):
    """State snapshot returned by the platform API state query."""

    sku: str
    device: str
    capabilities: list[CapabilityState] = Field(default_factory=list)

    def capability_by_instance(self, instance: str) -> CapabilityState | None:
        """Return the reported state for ``instance``."""

        return next(
            (cap for cap in self.capabilities if cap.instance == instance), None
        )


class CapabilityKind(str, Enum):
    """Kinds of capability the bridge can normalize."""

    NUMERIC_RANGE = "numeric_range"
    ENUMERATED = "enumerated"


@dataclass(frozen=True, slots=True)
class CapabilityDescriptor:
    """Hub-agnostic view of one controllable device parameter."""

    instance: str
    kind: CapabilityKind
    min: int | None = None
    max: int | None = None
    unit: str | None = None
    options: tuple[tuple[str, Any], ...] = ()

    def __post_init__(self) -> None:
        """Enforce that exactly one kind of payload is populated."""

        has_range = self.min is not None or self.max is not None
        if self.kind is CapabilityKind.NUMERIC_RANGE:
            if self.min is None or self.max is None:
                raise ValueError(f"{self.instance}: numeric range needs min and max")
            if self.min > self.max:
                raise ValueError(
                    f"{self.instance}: range min {self.min} exceeds max {self.max}"
                )
            if self.options:
                raise ValueError(f"{self.instance}: numeric range cannot have options")
        elif has_range or self.unit is not None:
            raise ValueError(f"{self.instance}: enumerated capability cannot have a range")

    @classmethod
    def from_capability(cls, capability: DeviceCapability) -> CapabilityDescriptor | None:
        """Normalize ``capability``; return None for unsupported shapes."""

        params = capability.parameters
        if params is None:
            return None
        data_type = params.data_type.upper()
        if data_type == "INTEGER" and params.range is not None:
            return cls(
                instance=capability.instance,
                kind=CapabilityKind.NUMERIC_RANGE,
                min=params.range.min,
                max=params.range.max,
                unit=params.unit,
            )
        if data_type == "ENUM" and params.options:
            return cls(
                instance=capability.instance,
                kind=CapabilityKind.ENUMERATED,
                options=tuple((option.name, option.value) for option in params.options),
            )
        return None

    def option_value(self, name: str) -> Any:
        """Return the native value for the option called ``name``."""

        for option_name, value in self.options:
            if option_name == name:
                return value
        return None

    def option_name(self, value: Any) -> str | None:
        """Return the option name whose native value matches ``value``."""

        for option_name, option_value in self.options:
            if json_value_eq(option_value, value):
                return option_name
        return None


def json_value_eq(left: Any, right: Any) -> bool:
    """Compare JSON values treating integers and floats as the same number."""

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, int | float) and isinstance(right, int | float):
        return float(left) == float(right)
    return left == right


def resolve_pointer(document: Any, pointer: str, default: Any = None) -> Any:
    """Resolve an RFC 6901 JSON pointer against ``document``."""

    if pointer == "":
        return document
    if not pointer.startswith("/"):
        raise ValueError(f"Invalid JSON pointer: {pointer!r}")
    current = document
    for raw in pointer[1:].split("/"):
        token = raw.replace("~1", "/").replace("~0", "~")
        if isinstance(current, dict):
            if token not in current:
                return default
            current = current[token]
        elif isinstance(current, list):
            if not token.isdigit() or int(token) >= len(current):
                return default
            current = current[int(token)]
        else:
            return default
    return current


def on_off_values(capability: DeviceCapability | None) -> tuple[Any, Any]:
    """Return the native ``(on, off)`` values of a toggle capability.

    Falls back to ``(1, 0)`` when the capability does not enumerate options
    named ``on`` and ``off``.
    """

    on_value: Any = 1
    off_value: Any = 0
    if capability is not None:
        descriptor = CapabilityDescriptor.from_capability(capability)
        if descriptor is not None and descriptor.kind is CapabilityKind.ENUMERATED:
            for name, value in descriptor.options:
                if name.lower() == "on":
                    on_value = value
                elif name.lower() == "off":
                    off_value = value
    return on_value, off_value
