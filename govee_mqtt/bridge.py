"""Wire the registry, transports and hub connection into a running bridge."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .auth import AuthError, GoveeAuthManager
from .config import BridgeConfig
from .const import DEVICE_TYPE_FAN, INSTANCE_FAN_SPEED
from .device import Device
from .entity import EntityList
from .fan import Fan, register_fan_routes
from .hass import CommandRouter, HassClient, decode_string, hass_status_topic
from .iot_client import IoTClient, IoTClientConfig
from .poller import DevicePoller
from .registry import DeviceRegistry
from .rest_client import GoveePlatformClient
from .storage import JsonStore
from .switch import CapabilitySwitch, register_switch_routes, switch_instances
from .transport import Transport, TransportSelector

_LOGGER = logging.getLogger(__name__)

_IOT_CONNECT_TIMEOUT = 10.0


@dataclass(frozen=True, slots=True)
class BridgeContext:
    """Collaborators handed to every command handler."""

    registry: DeviceRegistry
    selector: TransportSelector
    poller: DevicePoller
    config: BridgeConfig

    @property
    def topic_prefix(self) -> str:
        """Return the namespace of the bridge's own topics."""

        return self.config.mqtt.topic_prefix


def wants_fan_entity(device: Device) -> bool:
    """Return True when ``device`` should be exposed as a fan."""

    return (
        device.device_type() == DEVICE_TYPE_FAN
        or device.capability_by_instance(INSTANCE_FAN_SPEED) is not None
    )


class GoveeBridge:
    """The running service: discovery, entities, commands and polling."""

    def __init__(
        self,
        config: BridgeConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        hass_client: HassClient | None = None,
    ) -> None:
        """Build every collaborator; nothing connects until :meth:`async_start`."""

        self._config = config
        self._registry = DeviceRegistry()
        self._platform_client = GoveePlatformClient(config.govee.api_key, http_client)
        self._app_http_client: httpx.AsyncClient | None = None
        self._auth: GoveeAuthManager | None = None
        self._iot_client: IoTClient | None = None
        self._selector = TransportSelector(lambda: self._iot_client, self._platform_client)
        self._poller = DevicePoller(
            self._registry,
            self._platform_client,
            lambda: self._iot_client,
            poll_interval=config.polling.interval,
            control_poll_delay=config.polling.control_delay,
        )
        self._router = CommandRouter()
        self._hass = hass_client or HassClient(config.mqtt, self._router)
        self._entities = EntityList()
        self._remove_listener: Any = None
        self._pending_tasks: set[asyncio.Task[Any]] = set()
        self.context = BridgeContext(
            registry=self._registry,
            selector=self._selector,
            poller=self._poller,
            config=config,
        )

    @property
    def registry(self) -> DeviceRegistry:
        """Return the device registry."""

        return self._registry

    @property
    def entities(self) -> EntityList:
        """Return the entities created during discovery."""

        return self._entities

    async def async_start(self) -> None:
        """Log in, discover devices, publish entities and start polling."""

        await self._async_start_iot()
        await self.async_discover_devices()
        await self._poller.async_poll_all()
        await self.async_build_entities()

        register_fan_routes(self._hass.router, self.context)
        register_switch_routes(self._hass.router, self.context)
        self._hass.subscribe(
            hass_status_topic(self._config.mqtt.discovery_prefix),
            decode_string,
            self._handle_hass_status,
        )
        self._hass.add_connect_callback(self.async_publish_all)
        self._remove_listener = self._registry.add_listener(self._on_device_changed)

        await self._hass.async_start()
        await self._poller.async_start()
        _LOGGER.info("Bridge started with %d entities", len(self._entities))

    async def async_stop(self) -> None:
        """Tear everything down in reverse start order."""

        await self._poller.async_stop()
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        await self._hass.async_stop()
        if self._iot_client is not None:
            await self._iot_client.async_stop()
            self._iot_client = None
        await self._platform_client.async_close()
        if self._app_http_client is not None:
            await self._app_http_client.aclose()
            self._app_http_client = None

    async def _async_start_iot(self) -> None:
        """Connect to AWS IoT when account credentials are configured."""

        govee = self._config.govee
        if not govee.has_account_credentials:
            _LOGGER.info("No Govee account credentials; using the platform API only")
            return
        assert govee.email is not None and govee.password is not None

        self._app_http_client = httpx.AsyncClient(timeout=30.0)
        self._auth = GoveeAuthManager(
            JsonStore(govee.storage_path), self._app_http_client
        )
        try:
            await self._auth.async_initialize()
            await self._auth.async_ensure_login(govee.email, govee.password)
            bundle = await self._auth.async_get_iot_bundle()
        except (httpx.HTTPError, AuthError) as err:
            _LOGGER.error("Govee account login failed; IoT control disabled: %s", err)
            self._auth = None
            return
        if bundle is None:
            _LOGGER.warning("Account has no IoT credentials; IoT control disabled")
            return

        client = IoTClient(
            config=IoTClientConfig.from_bundle(bundle),
            on_device_update=self._registry.ingest_iot_update,
        )
        await client.async_start()
        self._iot_client = client
        loop = asyncio.get_running_loop()
        deadline = loop.time() + _IOT_CONNECT_TIMEOUT
        while not client.is_connected and loop.time() < deadline:
            await asyncio.sleep(0.25)
        if not client.is_connected:
            _LOGGER.warning("AWS IoT not connected yet; commands use the platform API")

    async def async_discover_devices(self) -> None:
        """Populate the registry from the platform API and the app device list."""

        topics: dict[str, str] = {}
        if self._auth is not None:
            try:
                topics = await self._auth.async_get_device_topics()
            except (httpx.HTTPError, AuthError) as err:
                _LOGGER.warning("Unable to fetch IoT device topics: %s", err)

        for info in await self._platform_client.async_get_devices():
            handle = await self._registry.device_mut(info.sku, info.device)
            await handle.set_http_device_info(info)
            await handle.set_iot_topic(topics.get(info.device))
            _LOGGER.debug(
                "Discovered %s (%s) iot=%s", info.device, info.sku, info.device in topics
            )

    async def async_build_entities(self) -> None:
        """Create the entities exposed for every known device."""

        prefix = self._config.mqtt.topic_prefix
        for device in await self._registry.devices():
            if wants_fan_entity(device):
                self._entities.add(
                    device.id, Fan.create(device, self._registry, self._selector, prefix)
                )
            for instance in switch_instances(device):
                optimistic = self._selector.select(device, instance) is Transport.SECONDARY
                self._entities.add(
                    device.id,
                    CapabilitySwitch.create(
                        device, instance, self._registry, prefix, optimistic=optimistic
                    ),
                )

    async def async_publish_all(self) -> None:
        """Publish every discovery document followed by current state."""

        await self._entities.async_publish_configs(self._hass)
        await self._entities.async_notify_all(self._hass)

    async def _handle_hass_status(self, status: str, _params: dict[str, str]) -> None:
        if status.strip() == "online":
            _LOGGER.info("Home Assistant restarted; re-publishing entities")
            await self.async_publish_all()

    def _on_device_changed(self, device_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._async_notify(device_id))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _async_notify(self, device_id: str) -> None:
        try:
            await self._entities.async_notify_state(device_id, self._hass)
        except RuntimeError as err:
            _LOGGER.warning("Unable to publish state for %s: %s", device_id, err)
