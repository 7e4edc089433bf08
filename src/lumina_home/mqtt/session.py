"""Broker session: one aiomqtt connection supervised for the life of the process.

The supervisor task is the only code that opens, replaces or drops the
transport. Everything else talks to the broker through :meth:`BrokerSession.publish`
and learns about connectivity through status listeners.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import ssl
from collections.abc import Callable

import aiomqtt

from lumina_home.const import BROKER_SESSION_START_TASK_NAME
from lumina_home.logging_abstraction import get_logger
from lumina_home.metrics import record_reconnect_attempt
from lumina_home.mqtt.retry_policy import RetryPolicy
from lumina_home.structs import BrokerConfig, ConnectionStatus, MessageHandler, StatusListener

__all__ = ["BrokerSession", "ClientFactory", "build_client"]

logger = get_logger(__name__)

ClientFactory = Callable[[BrokerConfig], aiomqtt.Client]


def build_client(config: BrokerConfig) -> aiomqtt.Client:
    """Create a fresh aiomqtt client for one connection attempt.

    ``wss`` and ``ws`` use the websocket transport on ``websocket_path``;
    ``wss`` also wraps it in TLS with the system trust store.
    """
    use_websockets = config.protocol in ("wss", "ws")
    return aiomqtt.Client(
        hostname=config.host,
        port=config.port,
        username=config.username,
        password=config.password,
        identifier=config.client_id,
        transport="websockets" if use_websockets else "tcp",
        websocket_path=config.websocket_path if use_websockets else None,
        tls_context=ssl.create_default_context() if config.protocol == "wss" else None,
        clean_session=True,
        keepalive=config.keepalive,
        timeout=config.connect_timeout,
    )


class BrokerSession:
    """Owns the single transport connection to the IoT broker."""

    lp: str = "mqtt:"

    def __init__(
        self,
        config: BrokerConfig,
        retry_policy: RetryPolicy | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.config: BrokerConfig = config
        self.retry_policy: RetryPolicy = retry_policy or RetryPolicy.from_config(config)
        self._client_factory: ClientFactory = client_factory or build_client
        self._status: ConnectionStatus = ConnectionStatus.CONNECTING
        self._status_listeners: list[StatusListener] = []
        self._message_handlers: list[MessageHandler] = []
        self._client: aiomqtt.Client | None = None
        self._connected: bool = False
        self._closing: bool = False
        self._initial_result: asyncio.Future[bool] | None = None
        self.start_task: asyncio.Task[None] | None = None
        self.connect_attempts: int = 0
        self.subscriptions: int = 0

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    # -- observers -------------------------------------------------------

    def add_status_listener(self, listener: StatusListener) -> None:
        if listener not in self._status_listeners:
            self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        with contextlib.suppress(ValueError):
            self._status_listeners.remove(listener)

    def add_message_handler(self, handler: MessageHandler) -> None:
        if handler not in self._message_handlers:
            self._message_handlers.append(handler)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        lp = f"{self.lp}status:"
        logger.info("%s %s -> %s", lp, self._status, status)
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("%s status listener %r failed", lp, listener)

    def _resolve_initial(self, result: bool) -> None:
        if self._initial_result is not None and not self._initial_result.done():
            self._initial_result.set_result(result)

    # -- lifecycle -------------------------------------------------------

    async def connect(self, on_status_change: StatusListener | None = None) -> bool:
        """Start the session supervisor and wait for the first connection attempt.

        Returns True if the first attempt connected, False if it failed. The
        supervisor keeps retrying in the background either way. Calling this
        again while the supervisor runs never opens a second transport.
        """
        lp = f"{self.lp}connect:"
        if on_status_change is not None:
            self.add_status_listener(on_status_change)
        if self._closing:
            logger.warning("%s session is closed, not reconnecting", lp)
            return False

        if self.start_task is None or self.start_task.done():
            logger.debug("%s starting session supervisor for %s", lp, self.config.url)
            self._initial_result = asyncio.get_running_loop().create_future()
            self.start_task = asyncio.create_task(self._supervise(), name=BROKER_SESSION_START_TASK_NAME)
        elif self.is_connected:
            logger.debug("%s already connected, ignoring connect()", lp)
            return True

        assert self._initial_result is not None, "initial result must be initialized"
        return await asyncio.shield(self._initial_result)

    async def _open(self) -> aiomqtt.Client | None:
        lp = f"{self.lp}open:"
        try:
            # ssl.create_default_context() can fail on a broken CA bundle
            client = self._client_factory(self.config)
        except OSError as os_err:
            logger.warning("%s unable to create client for %s [OSError] -> %s", lp, self.config.url, os_err)
            return None
        try:
            _ = await client.__aenter__()
        except aiomqtt.MqttError as mqtt_err_exc:
            # -> [Errno 111] Connection refused
            # [code:134] Bad user name or password
            logger.warning("%s connection to %s failed [MqttError] -> %s", lp, self.config.url, mqtt_err_exc)
            return None
        except OSError as os_err:
            logger.warning("%s connection to %s failed [OSError] -> %s", lp, self.config.url, os_err)
            return None
        except (asyncio.CancelledError, Exception):
            # half-open transport, tear it down before propagating
            await self._close_client(client)
            raise
        logger.info(
            "%s connected to IoT broker %s as %s",
            lp,
            self.config.url,
            self.config.client_id,
        )
        return client

    async def _subscribe(self, client: aiomqtt.Client) -> bool:
        lp = f"{self.lp}subscribe:"
        topic = self.config.set_topic
        try:
            _ = await client.subscribe(topic, qos=1)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s subscribing to %s failed, inbound commands disabled -> %s", lp, topic, mqtt_err)
            return False
        self.subscriptions += 1
        logger.info("%s subscribed to command topic: %s", lp, topic)
        return True

    async def _receive(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}rcv:"
        async for message in client.messages:
            payload = message.payload
            if not payload:
                logger.debug("%s empty payload for topic: %s, skipping...", lp, message.topic)
                continue
            if isinstance(payload, str):
                payload = payload.encode()
            elif not isinstance(payload, (bytes, bytearray)):
                payload = str(payload).encode()
            await self._dispatch(message.topic.value, bytes(payload))

    async def _dispatch(self, topic: str, payload: bytes) -> None:
        lp = f"{self.lp}dispatch:"
        logger.debug("%s topic=%s payload_len=%d", lp, topic, len(payload))
        for handler in list(self._message_handlers):
            try:
                result = handler(topic, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s message handler %r failed for topic %s", lp, handler, topic)

    async def _close_client(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}close_client:"
        try:
            await client.__aexit__(None, None, None)
        except (aiomqtt.MqttError, OSError) as err:
            logger.debug("%s disconnect after connection loss -> %s", lp, err)

    async def _run_connected(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}run:"
        self._client = client
        self._connected = True
        self._set_status(ConnectionStatus.CONNECTED)
        self._resolve_initial(True)
        try:
            _ = await self._subscribe(client)
            await self._receive(client)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s connection lost -> %s", lp, mqtt_err)
        finally:
            self._connected = False
            self._client = None
            # close() exits the client itself once it has set _closing
            if not self._closing:
                await self._close_client(client)
        if not self._closing:
            self._set_status(ConnectionStatus.DISCONNECTED)

    async def _supervise(self) -> None:
        lp = f"{self.lp}supervise:"
        failures = 0
        try:
            while not self._closing:
                self.connect_attempts += 1
                if self.connect_attempts > 1:
                    record_reconnect_attempt()
                self._set_status(ConnectionStatus.CONNECTING)

                try:
                    client = await self._open()
                    if client is None:
                        self._set_status(ConnectionStatus.ERROR)
                        self._resolve_initial(False)
                    else:
                        failures = 0
                        await self._run_connected(client)
                except Exception:
                    logger.exception("%s connection attempt EXCEPTION", lp)
                    self._set_status(ConnectionStatus.ERROR)
                    self._resolve_initial(False)
                if self._closing:
                    break

                delay = self.retry_policy.get_delay(failures)
                failures += 1
                logger.info("%s reconnecting to IoT broker in %.1f seconds...", lp, delay)
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("%s supervisor cancelled", lp)
            raise

    async def publish(self, topic: str, payload: bytes, qos: int = 1) -> bool:
        """Publish one message; False (never an exception) if it could not be sent."""
        lp = f"{self.lp}publish:"
        client = self._client
        if not self._connected or client is None:
            logger.warning("%s not connected to IoT broker, dropping message for %s", lp, topic)
            return False
        try:
            await client.publish(topic, payload, qos=qos, retain=False)
        except aiomqtt.MqttCodeError as mqtt_code_exc:
            logger.warning("%s [MqttCodeError] -> %s", lp, mqtt_code_exc)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err)
        else:
            return True
        return False

    async def close(self) -> None:
        """Stop the supervisor and disconnect. The session cannot be reconnected afterwards."""
        lp = f"{self.lp}close:"
        self._closing = True
        client = self._client
        task = self.start_task
        if task is not None and not task.done():
            logger.debug("%s cancelling session supervisor", lp)
            _ = task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if client is not None:
            try:
                await client.__aexit__(None, None, None)
            except aiomqtt.MqttError as mqtt_err:
                logger.warning("%s MQTT disconnect failed: %s", lp, mqtt_err)
            else:
                logger.info("%s disconnected from IoT broker", lp)
        self._connected = False
        self._client = None
        self._resolve_initial(False)
        self._set_status(ConnectionStatus.DISCONNECTED)
