"""Exceptions raised by the Govee MQTT bridge."""

from __future__ import annotations


class GoveeBridgeError(RuntimeError):
    """Base class for bridge errors."""


class UnsupportedCapability(GoveeBridgeError):
    """Raised when a device lacks the capability a command needs."""

    def __init__(self, device_id: str, instance: str) -> None:
        """Record the device and the missing capability instance."""

        super().__init__(f"device {device_id} does not support {instance}")
        self.device_id = device_id
        self.instance = instance


class NoWorkModeCapability(UnsupportedCapability):
    """Raised when a device exposes no enumerated work mode capability."""

    def __init__(self, device_id: str) -> None:
        """Record the device that has no work modes."""

        super().__init__(device_id, "workMode")


class ModeNotFound(GoveeBridgeError):
    """Raised when a requested work mode is not advertised by the device."""

    def __init__(self, mode: str, reason: str | None = None) -> None:
        """Record the mode name that failed to resolve."""

        super().__init__(reason or f"mode {mode} not found")
        self.mode = mode


class ControlError(GoveeBridgeError):
    """Raised when a transport fails to deliver a control request."""


class DecodeAmbiguous(GoveeBridgeError):
    """Raised when reported device state cannot be decoded."""


class DeviceNotFound(GoveeBridgeError, KeyError):
    """Raised when a command targets an unknown device."""

    def __init__(self, device_id: str) -> None:
        """Record the identifier that did not resolve."""

        super().__init__(f"device {device_id} not found")
        self.device_id = device_id

    def __str__(self) -> str:
        """Return the message rather than KeyError's quoted repr."""

        return str(self.args[0])


class ConfigError(GoveeBridgeError):
    """Raised when the bridge configuration is invalid."""
