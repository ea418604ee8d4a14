"""Periodic and post-control polling of device state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import timedelta
from typing import Any

from .const import DEFAULT_CONTROL_POLL_DELAY, DEFAULT_POLL_INTERVAL
from .device import Device
from .errors import GoveeBridgeError
from .iot_client import IoTClient
from .registry import DeviceRegistry
from .rest_client import GoveePlatformClient

_LOGGER = logging.getLogger(__name__)


class DevicePoller:
    """Keep the registry converging on real device state."""

    def __init__(
        self,
        registry: DeviceRegistry,
        platform_client: GoveePlatformClient,
        iot_client_getter: Callable[[], IoTClient | None],
        *,
        poll_interval: timedelta = DEFAULT_POLL_INTERVAL,
        control_poll_delay: timedelta = DEFAULT_CONTROL_POLL_DELAY,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Bind the registry, transports and timings."""

        self._registry = registry
        self._platform_client = platform_client
        self._iot_client_getter = iot_client_getter
        self._poll_interval = poll_interval
        self._control_poll_delay = control_poll_delay
        self._loop = loop
        self._scheduled: dict[str, asyncio.TimerHandle] = {}
        self._refresh_handle: asyncio.TimerHandle | None = None
        self._pending_tasks: set[asyncio.Task[Any]] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = self._get_loop().create_task(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    def schedule_poll(self, device: Device) -> None:
        """Poll ``device`` once after the control delay.

        Repeated calls before the poll fires collapse into one poll.
        """

        if device.id in self._scheduled:
            return

        def _fire() -> None:
            self._scheduled.pop(device.id, None)
            self._spawn(self._async_poll_by_id(device.id))

        self._scheduled[device.id] = self._get_loop().call_later(
            self._control_poll_delay.total_seconds(), _fire
        )

    @property
    def scheduled_device_ids(self) -> list[str]:
        """Return the devices with a pending post-control poll."""

        return list(self._scheduled)

    async def _async_poll_by_id(self, device_id: str) -> None:
        device = await self._registry.device_by_id(device_id)
        if device is None:
            return
        await self.async_poll_device(device)

    async def async_poll_device(self, device: Device) -> None:
        """Refresh the state of one device; failures are logged, not raised."""

        iot_client = self._iot_client_getter()
        try:
            if (
                device.pollable_via_iot()
                and iot_client is not None
                and iot_client.is_connected
            ):
                assert device.iot_topic is not None
                _LOGGER.debug("Requesting IoT status for %s", device.id)
                await iot_client.async_request_status(device.iot_topic)
                return
            if device.http_device_info is None:
                _LOGGER.debug("Not polling %s: no platform API metadata", device.id)
                return
            state = await self._platform_client.async_get_device_state(device)
            await self._registry.ingest_http_state(device.id, state)
        except GoveeBridgeError as err:
            _LOGGER.warning("Polling %s failed: %s", device.id, err)

    async def async_poll_all(self) -> None:
        """Poll every known device over the platform API."""

        for device in await self._registry.devices():
            if device.http_device_info is None:
                continue
            try:
                state = await self._platform_client.async_get_device_state(device)
                await self._registry.ingest_http_state(device.id, state)
            except GoveeBridgeError as err:
                _LOGGER.warning("Polling %s failed: %s", device.id, err)

    async def async_start(self) -> None:
        """Start periodic polling and accept post-control poll requests."""

        loop = self._get_loop()
        self._registry.set_poll_scheduler(self.schedule_poll)

        def _wrapper() -> None:
            self._spawn(self.async_poll_all())
            self._refresh_handle = loop.call_later(
                self._poll_interval.total_seconds(), _wrapper
            )

        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
        self._refresh_handle = loop.call_later(
            self._poll_interval.total_seconds(), _wrapper
        )

    async def async_stop(self) -> None:
        """Cancel every pending timer and in-flight poll."""

        self._registry.set_poll_scheduler(None)
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
        for handle in self._scheduled.values():
            handle.cancel()
        self._scheduled.clear()
        tasks = list(self._pending_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
