"""Bridge configuration loaded from YAML and the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

import voluptuous as vol
import yaml

from .const import (
    DEFAULT_CONTROL_POLL_DELAY,
    DEFAULT_DISCOVERY_PREFIX,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TOPIC_PREFIX,
    MIN_POLL_INTERVAL,
)
from .errors import ConfigError
from .hass import MqttSettings

DEFAULT_STORAGE_PATH = "~/.config/govee-mqtt/auth.json"

_ENV_OVERRIDES: tuple[tuple[str, tuple[str, str]], ...] = (
    ("GOVEE_API_KEY", ("govee", "api_key")),
    ("GOVEE_EMAIL", ("govee", "email")),
    ("GOVEE_PASSWORD", ("govee", "password")),
    ("GOVEE_MQTT_HOST", ("mqtt", "host")),
    ("GOVEE_MQTT_PORT", ("mqtt", "port")),
    ("GOVEE_MQTT_USER", ("mqtt", "username")),
    ("GOVEE_MQTT_PASSWORD", ("mqtt", "password")),
)

_GOVEE_SCHEMA = vol.Schema(
    {
        vol.Required("api_key"): vol.All(str, vol.Length(min=1)),
        vol.Optional("email"): vol.Any(None, str),
        vol.Optional("password"): vol.Any(None, str),
        vol.Optional("storage_path", default=DEFAULT_STORAGE_PATH): str,
    }
)

_MQTT_SCHEMA = vol.Schema(
    {
        vol.Required("host"): vol.All(str, vol.Length(min=1)),
        vol.Optional("port", default=1883): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
        vol.Optional("username"): vol.Any(None, str),
        vol.Optional("password"): vol.Any(None, str),
        vol.Optional("client_id", default="govee-mqtt"): str,
    }
)

_HASS_SCHEMA = vol.Schema(
    {
        vol.Optional("discovery_prefix", default=DEFAULT_DISCOVERY_PREFIX): str,
        vol.Optional("topic_prefix", default=DEFAULT_TOPIC_PREFIX): str,
    }
)

_POLLING_SCHEMA = vol.Schema(
    {
        vol.Optional(
            "interval", default=int(DEFAULT_POLL_INTERVAL.total_seconds())
        ): vol.All(
            vol.Coerce(int), vol.Range(min=int(MIN_POLL_INTERVAL.total_seconds()))
        ),
        vol.Optional(
            "control_delay", default=int(DEFAULT_CONTROL_POLL_DELAY.total_seconds())
        ): vol.All(vol.Coerce(float), vol.Range(min=0)),
    }
)

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("govee"): _GOVEE_SCHEMA,
        vol.Required("mqtt"): _MQTT_SCHEMA,
        vol.Optional("hass", default={}): _HASS_SCHEMA,
        vol.Optional("polling", default={}): _POLLING_SCHEMA,
    }
)


@dataclass(frozen=True, slots=True)
class GoveeSettings:
    """Credentials for the Govee cloud APIs."""

    api_key: str
    email: str | None = None
    password: str | None = None
    storage_path: Path = Path(DEFAULT_STORAGE_PATH).expanduser()

    @property
    def has_account_credentials(self) -> bool:
        """Return True when AWS IoT login can be attempted."""

        return bool(self.email and self.password)


@dataclass(frozen=True, slots=True)
class PollingSettings:
    """Timings for periodic and post-control polls."""

    interval: timedelta = DEFAULT_POLL_INTERVAL
    control_delay: timedelta = DEFAULT_CONTROL_POLL_DELAY


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Validated bridge configuration."""

    govee: GoveeSettings
    mqtt: MqttSettings
    polling: PollingSettings = PollingSettings()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> BridgeConfig:
        """Validate ``data`` and build a configuration."""

        try:
            validated = CONFIG_SCHEMA(dict(data))
        except vol.Invalid as err:
            path = ".".join(str(part) for part in err.path) or "<root>"
            raise ConfigError(f"invalid configuration at {path}: {err.msg}") from err

        govee = validated["govee"]
        mqtt = validated["mqtt"]
        hass = validated["hass"]
        polling = validated["polling"]
        return cls(
            govee=GoveeSettings(
                api_key=govee["api_key"],
                email=govee.get("email"),
                password=govee.get("password"),
                storage_path=Path(govee["storage_path"]).expanduser(),
            ),
            mqtt=MqttSettings(
                host=mqtt["host"],
                port=mqtt["port"],
                username=mqtt.get("username"),
                password=mqtt.get("password"),
                client_id=mqtt["client_id"],
                topic_prefix=hass["topic_prefix"],
                discovery_prefix=hass["discovery_prefix"],
            ),
            polling=PollingSettings(
                interval=timedelta(seconds=polling["interval"]),
                control_delay=timedelta(seconds=polling["control_delay"]),
            ),
        )


def apply_env_overrides(
    data: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Return a copy of ``data`` with ``GOVEE_*`` environment values applied."""

    if environ is None:
        environ = os.environ
    merged: dict[str, Any] = {
        key: dict(value) if isinstance(value, Mapping) else value
        for key, value in data.items()
    }
    for variable, (section, key) in _ENV_OVERRIDES:
        value = environ.get(variable)
        if value is None or value == "":
            continue
        target = merged.get(section)
        if not isinstance(target, dict):
            target = {}
            merged[section] = target
        target[key] = value
    return merged


def load_config(
    path: str | os.PathLike[str] | None, environ: Mapping[str, str] | None = None
) -> BridgeConfig:
    """Load, merge and validate the configuration at ``path``.

    ``path`` may be None to configure the bridge from the environment alone.
    """

    data: Any = {}
    if path is not None:
        try:
            with open(path, encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except OSError as err:
            raise ConfigError(f"cannot read {path}: {err}") from err
        except yaml.YAMLError as err:
            raise ConfigError(f"cannot parse {path}: {err}") from err
    if not isinstance(data, Mapping):
        raise ConfigError(f"{path}: top level must be a mapping")
    return BridgeConfig.from_mapping(apply_env_overrides(data, environ))
