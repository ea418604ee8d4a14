"""Constants for the Govee MQTT bridge."""

from datetime import timedelta

DEFAULT_TOPIC_PREFIX = "gv2mqtt"
DEFAULT_DISCOVERY_PREFIX = "homeassistant"
MANUFACTURER = "Govee"
ORIGIN_NAME = "govee-mqtt"
ORIGIN_URL = "https://github.com/wez/govee2mqtt"

PLATFORM_API_BASE_URL = "https://openapi.api.govee.com"
APP_API_BASE_URL = "https://app2.govee.com"

# Capability instance names advertised by the platform API.
INSTANCE_POWER_SWITCH = "powerSwitch"
INSTANCE_WORK_MODE = "workMode"
INSTANCE_FAN_SPEED = "fan"
INSTANCE_OSCILLATION = "oscillationToggle"

# Struct field names inside the workMode capability.
FIELD_WORK_MODE = "workMode"
FIELD_MODE_VALUE = "modeValue"

WORK_MODE_STATE_POINTER = "/value/workMode"
MODE_VALUE_STATE_POINTER = "/value/modeValue"
AUTO_MODE_NAME = "Auto"

UNIT_PERCENT = "unit.percent"
DEVICE_TYPE_FAN = "devices.types.fan"

DEFAULT_POLL_INTERVAL = timedelta(minutes=10)
MIN_POLL_INTERVAL = timedelta(seconds=30)
DEFAULT_CONTROL_POLL_DELAY = timedelta(seconds=5)

CAPABILITY_ON_OFF = "devices.capabilities.on_off"
CAPABILITY_TOGGLE = "devices.capabilities.toggle"
