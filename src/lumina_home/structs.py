"""Core data structures and typing protocols for the Lumina controller."""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from enum import StrEnum
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from lumina_home.const import (
    LUMINA_API_PORT,
    LUMINA_DEVICES_FILE,
    LUMINA_GEMINI_API_KEY,
    LUMINA_GEMINI_MODEL,
    LUMINA_MQTT_CLIENT_ID,
    LUMINA_MQTT_CONNECT_TIMEOUT,
    LUMINA_MQTT_HOST,
    LUMINA_MQTT_KEEPALIVE,
    LUMINA_MQTT_PASS,
    LUMINA_MQTT_PATH,
    LUMINA_MQTT_PORT,
    LUMINA_MQTT_PROTOCOL,
    LUMINA_MQTT_RECONNECT_DELAY,
    LUMINA_MQTT_RECONNECT_JITTER,
    LUMINA_MQTT_RECONNECT_MAX_DELAY,
    LUMINA_MQTT_USER,
    LUMINA_PROPERTY_ID,
    LUMINA_SERVICE_ID,
    LUMINA_SRV_HOST,
    LUMINA_SYNC_DEVICE_ID,
    REPORT_TOPIC_TEMPLATE,
    SET_TOPIC_TEMPLATE,
    env_int,
)

__all__ = [
    "ActivityEntry",
    "AssistantAction",
    "AssistantReply",
    "BrokerConfig",
    "ChatMessage",
    "CloudSnapshot",
    "ConnectionStatus",
    "ControllerEnv",
    "Device",
    "DeviceKind",
    "EnvironmentReading",
    "MessageHandler",
    "PropertyReport",
    "ServiceProperties",
    "StatusListener",
    "SyncBinding",
]


class DeviceKind(StrEnum):
    """Closed set of device kinds known to the controller."""

    LIGHT = "LIGHT"
    DOOR = "DOOR"
    AC = "AC"
    SENSOR = "SENSOR"


class ConnectionStatus(StrEnum):
    """Broker connection status as broadcast to observers."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class Device(BaseModel):
    """A controllable device.

    For doors ``is_on`` means locked. ``value`` is the light intensity (0-255)
    or the AC target temperature.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: DeviceKind
    is_on: bool = False
    value: int | float | None = None
    unit: str | None = None


class EnvironmentReading(BaseModel):
    """Ambient readings shown next to the device list."""

    model_config = ConfigDict(frozen=True)

    temperature: float = 23.5
    humidity: float = 48.0
    air_quality: str = "Excellent"


class ActivityEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    message: str


class SyncBinding(BaseModel):
    """Names the one device property mirrored to the cloud."""

    model_config = ConfigDict(frozen=True)

    device_id: str = LUMINA_SYNC_DEVICE_ID
    service_id: str = LUMINA_SERVICE_ID
    property_id: str = LUMINA_PROPERTY_ID


class BrokerConfig(BaseModel):
    """Static broker endpoint and credentials, loaded once at startup."""

    model_config = ConfigDict(frozen=True)

    host: str = LUMINA_MQTT_HOST
    port: int = LUMINA_MQTT_PORT
    protocol: Literal["wss", "ws", "mqtt", "tcp"] = Field(default=LUMINA_MQTT_PROTOCOL, validate_default=True)
    websocket_path: str = LUMINA_MQTT_PATH
    client_id: str = LUMINA_MQTT_CLIENT_ID
    username: str = LUMINA_MQTT_USER
    password: str | None = LUMINA_MQTT_PASS
    service_id: str = LUMINA_SERVICE_ID
    property_id: str = LUMINA_PROPERTY_ID
    connect_timeout: float = LUMINA_MQTT_CONNECT_TIMEOUT
    keepalive: int = LUMINA_MQTT_KEEPALIVE
    reconnect_delay: float = Field(default=LUMINA_MQTT_RECONNECT_DELAY, ge=0)
    reconnect_max_delay: float = Field(default=LUMINA_MQTT_RECONNECT_MAX_DELAY, ge=0)
    reconnect_jitter: float = Field(default=LUMINA_MQTT_RECONNECT_JITTER, ge=0)

    @classmethod
    def from_env(cls) -> BrokerConfig:
        """Re-read the environment; falls back to the module defaults."""
        env = os.environ
        overrides: dict[str, object] = {}
        mapping = {
            "LUMINA_MQTT_HOST": "host",
            "LUMINA_MQTT_PORT": "port",
            "LUMINA_MQTT_PROTOCOL": "protocol",
            "LUMINA_MQTT_PATH": "websocket_path",
            "LUMINA_MQTT_CLIENT_ID": "client_id",
            "LUMINA_MQTT_USER": "username",
            "LUMINA_MQTT_PASS": "password",
            "LUMINA_SERVICE_ID": "service_id",
            "LUMINA_PROPERTY_ID": "property_id",
            "LUMINA_MQTT_CONNECT_TIMEOUT": "connect_timeout",
            "LUMINA_MQTT_KEEPALIVE": "keepalive",
            "LUMINA_MQTT_RECONNECT_DELAY": "reconnect_delay",
            "LUMINA_MQTT_RECONNECT_MAX_DELAY": "reconnect_max_delay",
            "LUMINA_MQTT_RECONNECT_JITTER": "reconnect_jitter",
        }
        for var, field_name in mapping.items():
            raw = env.get(var)
            if raw:
                overrides[field_name] = raw.casefold() if field_name == "protocol" else raw
        if "protocol" not in overrides:
            overrides["protocol"] = LUMINA_MQTT_PROTOCOL
        return cls.model_validate(overrides)

    @property
    def url(self) -> str:
        if self.protocol in ("wss", "ws"):
            return f"{self.protocol}://{self.host}:{self.port}{self.websocket_path}"
        return f"mqtt://{self.host}:{self.port}"

    @property
    def report_topic(self) -> str:
        return REPORT_TOPIC_TEMPLATE.format(username=self.username)

    @property
    def set_topic(self) -> str:
        return SET_TOPIC_TEMPLATE.format(username=self.username)


class ServiceProperties(BaseModel):
    """One service entry of a property report or set command."""

    service_id: str
    properties: dict[str, object] = Field(default_factory=dict)
    event_time: str | None = None


class PropertyReport(BaseModel):
    """Outbound ``properties/report`` payload."""

    services: list[ServiceProperties]

    def to_payload(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode()


class AssistantAction(BaseModel):
    device_id: str
    action: str = "toggle"


class AssistantReply(BaseModel):
    text: str = ""
    actions: list[AssistantAction] = Field(default_factory=list)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


StatusListener = Callable[[ConnectionStatus], object]

# Fetches the cloud-side values of the synced service after a successful connect
CloudSnapshot = Callable[[], Awaitable[Mapping[str, object] | None]]


class MessageHandler(Protocol):
    """Receives every message delivered on a subscribed topic."""

    def __call__(self, topic: str, payload: bytes) -> object | Awaitable[object]:
        """Handle one inbound message."""
        ...


class ControllerEnv(BaseModel):
    """Process settings outside the broker config; re-read after ``--env`` loads a file."""

    devices_file: str | None = LUMINA_DEVICES_FILE
    sync_device_id: str = LUMINA_SYNC_DEVICE_ID
    api_host: str = LUMINA_SRV_HOST
    api_port: int = LUMINA_API_PORT
    gemini_api_key: str | None = LUMINA_GEMINI_API_KEY
    gemini_model: str = LUMINA_GEMINI_MODEL

    @classmethod
    def from_env(cls) -> ControllerEnv:
        env = os.environ
        return cls(
            devices_file=env.get("LUMINA_DEVICES_FILE") or None,
            sync_device_id=env.get("LUMINA_SYNC_DEVICE_ID") or LUMINA_SYNC_DEVICE_ID,
            api_host=env.get("LUMINA_SRV_HOST") or LUMINA_SRV_HOST,
            api_port=env_int("LUMINA_API_PORT", LUMINA_API_PORT),
            gemini_api_key=env.get("LUMINA_GEMINI_API_KEY") or None,
            gemini_model=env.get("LUMINA_GEMINI_MODEL") or LUMINA_GEMINI_MODEL,
        )
