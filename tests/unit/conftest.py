"""
Shared fixtures for unit tests.

Provides an in-memory stand-in for ``aiomqtt.Client`` so the broker session
can be exercised without a broker, plus registry, log and config fixtures.
"""

import asyncio
import json
from collections.abc import Callable
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiomqtt
import pytest
import pytest_asyncio

from lumina_home.activity_log import ActivityLog
from lumina_home.mqtt.session import BrokerSession
from lumina_home.registry import DeviceRegistry
from lumina_home.structs import BrokerConfig

DEVICE_USER = "693118372447a4269a6466e2_TEST"

_DROP = object()
HANG = "hang"


class FakeClient:
    """Records subscribe/publish calls; inbound messages are fed through ``deliver``."""

    def __init__(
        self,
        fail_connect: bool = False,
        publish_error: bool = False,
        connect_error: Exception | None = None,
        hang_connect: bool = False,
    ):
        self.fail_connect = fail_connect
        self.connect_error = connect_error
        self.hang_connect = hang_connect
        self.publish_error = publish_error
        self.entered = False
        self.exited = False
        self.subscribed: list[tuple[str, int]] = []
        self.published: list[tuple[str, bytes, int]] = []
        self._queue: asyncio.Queue[object] = asyncio.Queue()

    async def __aenter__(self):
        if self.hang_connect:
            await asyncio.Event().wait()
        if self.connect_error is not None:
            raise self.connect_error
        if self.fail_connect:
            msg = "[code:134] Bad user name or password"
            raise aiomqtt.MqttError(msg)
        self.entered = True
        return self

    async def __aexit__(self, *_exc_info):
        self.exited = True

    async def subscribe(self, topic, qos=0, **_kwargs):
        self.subscribed.append((topic, qos))

    async def publish(self, topic, payload=None, qos=0, retain=False, **_kwargs):
        if self.publish_error:
            msg = "Operation timed out"
            raise aiomqtt.MqttError(msg)
        self.published.append((topic, payload, qos))

    @property
    def messages(self):
        return self._iter_messages()

    async def _iter_messages(self):
        while True:
            item = await self._queue.get()
            if item is _DROP:
                msg = "Disconnected during message iteration"
                raise aiomqtt.MqttError(msg)
            yield item

    def deliver(self, topic: str, payload: bytes) -> None:
        self._queue.put_nowait(SimpleNamespace(topic=SimpleNamespace(value=topic), payload=payload))

    def drop(self) -> None:
        self._queue.put_nowait(_DROP)

    def published_json(self, index: int = -1) -> dict:
        return json.loads(self.published[index][1])


class FakeClientFactory:
    """
    Client factory for BrokerSession.

    ``outcomes`` lists what each successive connection attempt does: True
    connects, False fails with MqttError, ``HANG`` never completes and an
    exception instance is raised from ``__aenter__``. Attempts beyond the
    list succeed.
    """

    def __init__(self, outcomes: list[object] | None = None, publish_error: bool = False):
        self.outcomes = list(outcomes or [])
        self.publish_error = publish_error
        self.clients: list[FakeClient] = []

    def __call__(self, _config: BrokerConfig) -> FakeClient:
        outcome = self.outcomes.pop(0) if self.outcomes else True
        client = FakeClient(
            fail_connect=outcome is False,
            publish_error=self.publish_error,
            connect_error=outcome if isinstance(outcome, Exception) else None,
            hang_connect=outcome == HANG,
        )
        self.clients.append(client)
        return client

    @property
    def connected_clients(self) -> list[FakeClient]:
        return [c for c in self.clients if c.entered]

    @property
    def current(self) -> FakeClient:
        return self.connected_clients[-1]


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            msg = "condition not met before timeout"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


@pytest.fixture
def broker_config():
    """Broker config with zero reconnect delay so retries happen immediately."""
    return BrokerConfig(
        host="iot.example.test",
        port=443,
        protocol="wss",
        client_id=f"{DEVICE_USER}_0_0_2026010716",
        username=DEVICE_USER,
        password="secret",
        reconnect_delay=0,
        reconnect_max_delay=0,
    )


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest_asyncio.fixture
async def session(broker_config, client_factory):
    """BrokerSession backed by FakeClient; closed after the test."""
    broker_session = BrokerSession(broker_config, client_factory=client_factory)
    yield broker_session
    await broker_session.close()


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def activity_log():
    return ActivityLog()


@pytest.fixture
def mock_publisher():
    """
    Mock CommandPublisher.

    ``publish`` is an AsyncMock returning True.
    """
    publisher = MagicMock()
    publisher.publish = AsyncMock(return_value=True)
    return publisher
