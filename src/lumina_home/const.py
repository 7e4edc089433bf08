import os

import tzlocal

from lumina_home import __version__

__all__ = [
    "ACTIVITY_LOG_MAX_ENTRIES",
    "API_SRV_START_TASK_NAME",
    "BROKER_SESSION_START_TASK_NAME",
    "DEFAULT_INTENSITY",
    "LIGHT_VALUE_MAX",
    "LIGHT_VALUE_MIN",
    "LOCAL_TZ",
    "LUMINA_API_PORT",
    "LUMINA_DEBUG",
    "LUMINA_DEVICES_FILE",
    "LUMINA_GEMINI_API_BASE",
    "LUMINA_GEMINI_API_KEY",
    "LUMINA_GEMINI_MODEL",
    "LUMINA_GEMINI_TIMEOUT",
    "LUMINA_LOG_FORMAT",
    "LUMINA_LOG_HUMAN_OUTPUT",
    "LUMINA_LOG_JSON_FILE",
    "LUMINA_MQTT_CLIENT_ID",
    "LUMINA_MQTT_CONNECT_TIMEOUT",
    "LUMINA_MQTT_HOST",
    "LUMINA_MQTT_KEEPALIVE",
    "LUMINA_MQTT_PASS",
    "LUMINA_MQTT_PATH",
    "LUMINA_MQTT_PORT",
    "LUMINA_MQTT_PROTOCOL",
    "LUMINA_MQTT_RECONNECT_DELAY",
    "LUMINA_MQTT_RECONNECT_JITTER",
    "LUMINA_MQTT_RECONNECT_MAX_DELAY",
    "LUMINA_MQTT_USER",
    "LUMINA_PROPERTY_ID",
    "LUMINA_SERVICE_ID",
    "LUMINA_SRV_HOST",
    "LUMINA_SYNC_DEVICE_ID",
    "LUMINA_VERSION",
    "REPORT_TOPIC_TEMPLATE",
    "SET_TOPIC_TEMPLATE",
    "YES_ANSWER",
    "env_float",
    "env_int",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
LOCAL_TZ = tzlocal.get_localzone()
LUMINA_VERSION: str = __version__

# IoTDA device topics, formatted with the MQTT username (the device id)
REPORT_TOPIC_TEMPLATE: str = "$oc/devices/{username}/sys/properties/report"
SET_TOPIC_TEMPLATE: str = "$oc/devices/{username}/sys/properties/set/#"

ACTIVITY_LOG_MAX_ENTRIES: int = 50
LIGHT_VALUE_MIN: int = 0
LIGHT_VALUE_MAX: int = 255
# published when a synced light is switched on without a remembered intensity
DEFAULT_INTENSITY: int = 255

BROKER_SESSION_START_TASK_NAME = "BrokerSession_START"
API_SRV_START_TASK_NAME = "DashboardServer_START"


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


LUMINA_DEBUG = os.environ.get("LUMINA_DEBUG", "0").casefold() in YES_ANSWER

# Broker endpoint. Defaults point at the IoTDA east-3 test device.
LUMINA_MQTT_HOST: str = os.environ.get(
    "LUMINA_MQTT_HOST", "5bc5a47419.st1.iotda-device.cn-east-3.myhuaweicloud.com"
)
LUMINA_MQTT_PORT: int = env_int("LUMINA_MQTT_PORT", 443)
LUMINA_MQTT_PROTOCOL: str = os.environ.get("LUMINA_MQTT_PROTOCOL", "wss").casefold()
LUMINA_MQTT_PATH: str = os.environ.get("LUMINA_MQTT_PATH", "/mqtt")
LUMINA_MQTT_CLIENT_ID: str = os.environ.get("LUMINA_MQTT_CLIENT_ID", "693118372447a4269a6466e2_TEST_0_0_2026010716")
LUMINA_MQTT_USER: str = os.environ.get("LUMINA_MQTT_USER", "693118372447a4269a6466e2_TEST")
LUMINA_MQTT_PASS: str | None = os.environ.get("LUMINA_MQTT_PASS") or None
LUMINA_MQTT_CONNECT_TIMEOUT: float = env_float("LUMINA_MQTT_CONNECT_TIMEOUT", 10.0)
LUMINA_MQTT_KEEPALIVE: int = env_int("LUMINA_MQTT_KEEPALIVE", 60)
LUMINA_MQTT_RECONNECT_DELAY: float = env_float("LUMINA_MQTT_RECONNECT_DELAY", 5.0)
LUMINA_MQTT_RECONNECT_MAX_DELAY: float = env_float("LUMINA_MQTT_RECONNECT_MAX_DELAY", 5.0)
LUMINA_MQTT_RECONNECT_JITTER: float = env_float("LUMINA_MQTT_RECONNECT_JITTER", 0.0)

# The single property synchronized with the cloud
LUMINA_SYNC_DEVICE_ID: str = os.environ.get("LUMINA_SYNC_DEVICE_ID", "l1")
LUMINA_SERVICE_ID: str = os.environ.get("LUMINA_SERVICE_ID", "light")
LUMINA_PROPERTY_ID: str = os.environ.get("LUMINA_PROPERTY_ID", "dengguang")

_devices_file = os.environ.get("LUMINA_DEVICES_FILE")
LUMINA_DEVICES_FILE: str | None = _devices_file if _devices_file else None

LUMINA_SRV_HOST: str = os.environ.get("LUMINA_SRV_HOST", "0.0.0.0")
LUMINA_API_PORT: int = env_int("LUMINA_API_PORT", 8080)

# Assistant
LUMINA_GEMINI_API_BASE: str = os.environ.get(
    "LUMINA_GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
)
LUMINA_GEMINI_API_KEY: str | None = os.environ.get("LUMINA_GEMINI_API_KEY") or None
LUMINA_GEMINI_MODEL: str = os.environ.get("LUMINA_GEMINI_MODEL", "gemini-2.0-flash")
LUMINA_GEMINI_TIMEOUT: float = env_float("LUMINA_GEMINI_TIMEOUT", 20.0)

# Logging Configuration
LUMINA_LOG_FORMAT: str = os.environ.get("LUMINA_LOG_FORMAT", "both")  # "json", "human", or "both"
_json_file = os.environ.get("LUMINA_LOG_JSON_FILE")
LUMINA_LOG_JSON_FILE: str | None = _json_file if _json_file else None
LUMINA_LOG_HUMAN_OUTPUT: str = os.environ.get("LUMINA_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path
