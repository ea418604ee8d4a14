"""Client for the documented Govee platform API."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import ValidationError

from .capabilities import DeviceCapability, HttpDeviceInfo, HttpDeviceState
from .const import PLATFORM_API_BASE_URL
from .device import Device
from .errors import ControlError

_LOGGER = logging.getLogger(__name__)

_DEVICES_PATH = "/router/api/v1/user/devices"
_STATE_PATH = "/router/api/v1/device/state"
_CONTROL_PATH = "/router/api/v1/device/control"
_API_KEY_HEADER = "Govee-API-Key"


def _create_http_client() -> httpx.AsyncClient:
    """Return an httpx async client configured for the platform API."""

    return httpx.AsyncClient(base_url=PLATFORM_API_BASE_URL, timeout=30.0)


class GoveePlatformClient:
    """List devices, read their state and send capability controls."""

    def __init__(self, api_key: str, client: httpx.AsyncClient | None = None) -> None:
        """Bind the API key and (optionally) a pre-built HTTP client."""

        self._api_key = api_key
        self._client = client if client is not None else _create_http_client()

    async def async_close(self) -> None:
        """Close the underlying HTTP client."""

        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {_API_KEY_HEADER: self._api_key, "Content-Type": "application/json"}

    async def _request(
        self, method: str, path: str, body: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method, path, json=body, headers=self._headers()
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as err:
            _LOGGER.error("Platform API %s %s failed: %s", method, path, err)
            raise ControlError(f"platform API {method} {path} failed: {err}") from err

        if not isinstance(payload, Mapping):
            raise ControlError(f"platform API {path} returned {payload!r}")
        code = payload.get("code", 200)
        if code != 200:
            message = payload.get("msg") or payload.get("message") or "unknown error"
            raise ControlError(f"platform API {path} returned code {code}: {message}")
        return dict(payload)

    async def async_get_devices(self) -> list[HttpDeviceInfo]:
        """Return every device on the account with its capabilities."""

        payload = await self._request("GET", _DEVICES_PATH)
        devices: list[HttpDeviceInfo] = []
        for entry in payload.get("data") or []:
            try:
                devices.append(HttpDeviceInfo.model_validate(entry))
            except ValidationError as err:
                _LOGGER.warning("Skipping malformed device entry %r: %s", entry, err)
        return devices

    async def async_get_device_state(self, device: Device) -> HttpDeviceState:
        """Return the current capability state of ``device``."""

        body = {
            "requestId": str(uuid.uuid4()),
            "payload": {"sku": device.sku, "device": device.id},
        }
        payload = await self._request("POST", _STATE_PATH, body)
        try:
            return HttpDeviceState.model_validate(payload.get("payload") or {})
        except ValidationError as err:
            raise ControlError(f"malformed state for {device.id}: {err}") from err

    async def async_control_device(
        self, device: Device, capability: DeviceCapability, value: Any
    ) -> None:
        """Write ``value`` to ``capability`` on ``device``."""

        body = {
            "requestId": str(uuid.uuid4()),
            "payload": {
                "sku": device.sku,
                "device": device.id,
                "capability": {
                    "type": capability.type,
                    "instance": capability.instance,
                    "value": value,
                },
            },
        }
        _LOGGER.debug(
            "Platform control %s %s=%r", device.id, capability.instance, value
        )
        await self._request("POST", _CONTROL_PATH, body)
