"""Home Assistant MQTT discovery models and the entity contract."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .const import MANUFACTURER, ORIGIN_NAME, ORIGIN_URL
from .device import Device
from .hass import HassClient, availability_topic, topic_safe_id

_LOGGER = logging.getLogger(__name__)


class _DiscoveryModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Origin(_DiscoveryModel):
    """Identifies the bridge as the source of a discovery document."""

    name: str = ORIGIN_NAME
    sw_version: str = Field(default=__version__, alias="sw")
    url: str = ORIGIN_URL


class DeviceInfo(_DiscoveryModel):
    """Device block shared by every entity of one physical device."""

    identifiers: list[str]
    name: str
    manufacturer: str = MANUFACTURER
    model: str | None = None
    suggested_area: str | None = None
    via_device: str | None = None

    @classmethod
    def for_device(cls, device: Device) -> DeviceInfo:
        """Describe ``device`` for the hub's device registry."""

        return cls(
            identifiers=[f"gv2mqtt-{topic_safe_id(device)}"],
            name=device.computed_name(),
            model=device.sku,
            suggested_area=device.room,
        )


class EntityConfig(_DiscoveryModel):
    """Fields common to every discovery document."""

    availability_topic: str
    name: str | None
    device_class: str | None = None
    origin: Origin = Field(default_factory=Origin)
    device: DeviceInfo
    unique_id: str
    entity_category: str | None = None
    icon: str | None = None

    @classmethod
    def base_fields(
        cls, device: Device, unique_id: str, name: str | None, topic_prefix: str
    ) -> dict[str, object]:
        """Return the common keyword arguments for a config of ``device``."""

        return {
            "availability_topic": availability_topic(topic_prefix),
            "name": name,
            "device": DeviceInfo.for_device(device),
            "unique_id": unique_id,
        }


async def publish_entity_config(
    kind: str, client: HassClient, config: EntityConfig
) -> None:
    """Publish ``config`` as a retained discovery document."""

    topic = f"{client.settings.discovery_prefix}/{kind}/{config.unique_id}/config"
    payload = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    # An explicit null name tells the hub to use the device name.
    if config.name is None:
        payload["name"] = None
    _LOGGER.debug("Publishing %s config to %s", kind, topic)
    await client.async_publish_obj(topic, payload, retain=True)


@runtime_checkable
class EntityInstance(Protocol):
    """What the bridge needs from each exposed entity."""

    async def async_publish_config(self, client: HassClient) -> None:
        """Publish the static discovery document."""

    async def async_notify_state(self, client: HassClient) -> None:
        """Publish current state derived from the registry."""


class EntityList:
    """Entities grouped by the device that backs them."""

    def __init__(self) -> None:
        """Create an empty list."""

        self._by_device: dict[str, list[EntityInstance]] = {}

    def add(self, device_id: str, entity: EntityInstance) -> None:
        """Attach ``entity`` to ``device_id``."""

        self._by_device.setdefault(device_id, []).append(entity)

    def for_device(self, device_id: str) -> list[EntityInstance]:
        """Return the entities of ``device_id``."""

        return list(self._by_device.get(device_id, ()))

    def __len__(self) -> int:
        """Return the total number of entities."""

        return sum(len(entities) for entities in self._by_device.values())

    async def async_publish_configs(self, client: HassClient) -> None:
        """Publish every discovery document."""

        for entities in self._by_device.values():
            for entity in entities:
                await entity.async_publish_config(client)

    async def async_notify_state(self, device_id: str, client: HassClient) -> None:
        """Publish the state of every entity of ``device_id``."""

        for entity in self._by_device.get(device_id, ()):
            await entity.async_notify_state(client)

    async def async_notify_all(self, client: HassClient) -> None:
        """Publish the state of every entity."""

        for device_id in list(self._by_device):
            await self.async_notify_state(device_id, client)
