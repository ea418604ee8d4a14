"""BLE frame helpers used to build and read AWS IoT ``ptReal`` payloads."""

from __future__ import annotations

import base64
from collections.abc import Mapping, Sequence
from typing import Any

from .const import INSTANCE_OSCILLATION, INSTANCE_POWER_SWITCH, INSTANCE_WORK_MODE

_DEFAULT_FRAME_SIZE = 20

COMMAND_PREFIX = 0x33
STATUS_PREFIX = 0xAA
OPCODE_WORK_MODE = 0x05
OPCODE_OSCILLATION = 0x18


def _to_base64(data: bytes) -> str:
    """Encode a byte payload into base64 ASCII text."""

    return base64.b64encode(data).decode("ascii")


def _to_bytes(payload: bytes | Sequence[int] | None) -> bytes:
    """Normalise payload inputs to a byte string."""

    if payload is None:
        return b""
    if isinstance(payload, bytes):
        return payload
    return bytes(payload)


def assemble_command(
    identifiers: Sequence[int],
    payload: bytes | Sequence[int],
    extra_payload: bytes | Sequence[int] | None = None,
    frame_size: int = _DEFAULT_FRAME_SIZE,
) -> bytes:
    """Assemble a BLE command frame with XOR checksum padding."""

    frame = bytearray()
    frame.extend(_to_bytes(identifiers))
    frame.extend(_to_bytes(payload))
    frame.extend(_to_bytes(extra_payload))

    if len(frame) >= frame_size:
        raise ValueError("Payload exceeds frame size")

    frame.extend(b"\x00" * (frame_size - 1 - len(frame)))

    checksum = 0
    for byte in frame:
        checksum ^= byte
    frame.append(checksum)
    return bytes(frame)


def ble_command_to_base64(
    identifiers: Sequence[int],
    payload: bytes | Sequence[int],
    *,
    extra_payload: bytes | Sequence[int] | None = None,
    frame_size: int = _DEFAULT_FRAME_SIZE,
) -> str:
    """Assemble and encode a BLE command frame for transport."""

    frame = assemble_command(
        identifiers, payload, extra_payload=extra_payload, frame_size=frame_size
    )
    return _to_base64(frame)


def _as_byte(value: Any, what: str) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or not 0 <= value <= 0xFF:
        raise ValueError(f"{what} must fit in a byte, got {value!r}")
    return value


def _ptreal(*frames: str) -> dict[str, Any]:
    return {"cmd": "ptReal", "data": {"command": list(frames)}}


def supports_instance(instance: str) -> bool:
    """Return True when ``instance`` can be encoded for the IoT channel."""

    return instance in _ENCODERS


def encode_capability(instance: str, value: Any) -> dict[str, Any]:
    """Encode a capability write as an IoT command body.

    Raises ``KeyError`` for instances the IoT channel cannot express and
    ``ValueError`` when ``value`` does not fit the frame layout.
    """

    return _ENCODERS[instance](value)


def _encode_power(value: Any) -> dict[str, Any]:
    return {"cmd": "turn", "data": {"val": 1 if value else 0}}


def _encode_work_mode(value: Any) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"workMode value must be a mapping, got {value!r}")
    mode = _as_byte(value.get("workMode"), "workMode")
    sub_value = _as_byte(value.get("modeValue", 0), "modeValue")
    return _ptreal(ble_command_to_base64([COMMAND_PREFIX, OPCODE_WORK_MODE], [mode, sub_value]))


def _encode_oscillation(value: Any) -> dict[str, Any]:
    return _ptreal(
        ble_command_to_base64([COMMAND_PREFIX, OPCODE_OSCILLATION], [1 if value else 0])
    )


_ENCODERS = {
    INSTANCE_POWER_SWITCH: _encode_power,
    INSTANCE_WORK_MODE: _encode_work_mode,
    INSTANCE_OSCILLATION: _encode_oscillation,
}


def decode_status_frames(commands: Sequence[str]) -> dict[str, Any]:
    """Extract work mode and oscillation readings from status frames."""

    readings: dict[str, Any] = {}
    for encoded in commands:
        try:
            frame = base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError):
            continue
        if len(frame) < 3 or frame[0] != STATUS_PREFIX:
            continue
        if frame[1] == OPCODE_WORK_MODE and len(frame) >= 4:
            readings["work_mode"] = frame[2]
            readings["mode_value"] = frame[3]
        elif frame[1] == OPCODE_OSCILLATION:
            readings["oscillating"] = bool(frame[2])
    return readings
