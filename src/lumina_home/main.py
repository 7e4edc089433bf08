from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import dotenv
import uvloop

from lumina_home.activity_log import ActivityLog
from lumina_home.api import DashboardServer, create_app
from lumina_home.assistant import AssistantChat, AssistantProtocol, GeminiAssistant
from lumina_home.const import API_SRV_START_TASK_NAME, LUMINA_DEBUG, LUMINA_VERSION
from lumina_home.correlation import intent_context
from lumina_home.intents import IntentRouter
from lumina_home.logging_abstraction import get_logger, set_global_level
from lumina_home.metrics import record_connection_state
from lumina_home.mqtt.command_routing import InboundCommandHandler
from lumina_home.mqtt.publisher import CommandPublisher
from lumina_home.mqtt.session import BrokerSession, ClientFactory
from lumina_home.registry import DeviceRegistry
from lumina_home.structs import BrokerConfig, CloudSnapshot, ControllerEnv, SyncBinding

logger = get_logger(__name__)

# Configure third-party loggers (uvicorn, aiomqtt) to reduce noise
uv_handler = logging.StreamHandler(sys.stdout)
uv_handler.setLevel(logging.INFO)
uv_handler.setFormatter(
    logging.Formatter(
        "%(asctime)s.%(msecs)d %(levelname)s (%(name)s) > %(message)s",
        "%m/%d/%y %H:%M:%S",
    ),
)

for _ul in (logging.getLogger(name) for name in ("uvicorn", "uvicorn.error", "uvicorn.access")):
    _ul.setLevel(logging.INFO)
    _ul.propagate = False
    _ul.addHandler(uv_handler)

mqtt_logger = logging.getLogger("aiomqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False


class LuminaController:
    """Builds and owns every component: registry, broker session, publisher, router, assistant, API."""

    lp: str = "LuminaController:"

    def __init__(
        self,
        config: BrokerConfig | None = None,
        env: ControllerEnv | None = None,
        registry: DeviceRegistry | None = None,
        assistant: AssistantProtocol | None = None,
        client_factory: ClientFactory | None = None,
        enable_api: bool = True,
        cloud_snapshot: CloudSnapshot | None = None,
    ) -> None:
        self.config: BrokerConfig = config or BrokerConfig()
        self.env: ControllerEnv = env or ControllerEnv()
        binding = SyncBinding(
            device_id=self.env.sync_device_id,
            service_id=self.config.service_id,
            property_id=self.config.property_id,
        )
        if registry is not None:
            self.registry: DeviceRegistry = registry
        elif self.env.devices_file:
            self.registry = DeviceRegistry.from_yaml(self.env.devices_file, binding=binding)
        else:
            self.registry = DeviceRegistry(binding=binding)

        self.activity_log: ActivityLog = ActivityLog()
        self.session: BrokerSession = BrokerSession(self.config, client_factory=client_factory)
        self.session.add_status_listener(self.activity_log.record_status)
        self.session.add_status_listener(record_connection_state)
        self.inbound: InboundCommandHandler = InboundCommandHandler(self.registry, self.config, self.activity_log)
        self.session.add_message_handler(self.inbound)
        self.publisher: CommandPublisher = CommandPublisher(self.session, self.activity_log)
        self.router: IntentRouter = IntentRouter(self.registry, self.publisher)
        self.assistant: AssistantProtocol = assistant or GeminiAssistant(
            api_key=self.env.gemini_api_key,
            model=self.env.gemini_model,
        )
        self.chat: AssistantChat = AssistantChat(self.router, self.assistant)
        self.cloud_snapshot: CloudSnapshot | None = cloud_snapshot

        self.app = create_app(self)
        self.api_server: DashboardServer | None = (
            DashboardServer(self.app, host=self.env.api_host, port=self.env.api_port) if enable_api else None
        )
        self.api_task: asyncio.Task[None] | None = None

    async def start(self) -> bool:
        """Connect to the broker and start the API. Returns the result of the first connection attempt."""
        lp = f"{self.lp}start:"
        logger.info(
            "%s Initializing Lumina controller",
            lp,
            extra={"version": LUMINA_VERSION, "broker": self.config.url, "devices": len(self.registry)},
        )
        if self.api_server is not None and self.api_task is None:
            self.api_task = asyncio.create_task(self.api_server.start(), name=API_SRV_START_TASK_NAME)
        connected = await self.session.connect()
        if not connected:
            logger.warning("%s initial broker connection failed, retrying in the background", lp)
        elif self.cloud_snapshot is not None:
            await self.seed_from_cloud()
        return connected

    async def seed_from_cloud(self) -> None:
        """Apply the cloud snapshot to the synced device. Failures are logged, never raised."""
        lp = f"{self.lp}seed_from_cloud:"
        if self.cloud_snapshot is None:
            return
        try:
            snapshot = await self.cloud_snapshot()
        except Exception:
            logger.exception("%s fetching cloud snapshot failed", lp)
            return
        if not snapshot:
            logger.debug("%s cloud snapshot is empty, keeping local state", lp)
            return
        updated = self.inbound.apply_snapshot(snapshot)
        logger.info("%s seeded %d device(s) from cloud snapshot", lp, len(updated))

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        logger.info("%s Shutting down Lumina controller...", lp)
        await self.router.drain()
        await self.session.close()
        if self.api_server is not None:
            self.api_server.stop()
        if self.api_task is not None:
            try:
                await asyncio.wait_for(self.api_task, timeout=5)
            except TimeoutError:
                logger.warning("%s dashboard API did not stop in time", lp)
            self.api_task = None
        if isinstance(self.assistant, GeminiAssistant):
            await self.assistant.close()

    async def run_forever(self) -> None:
        """Run until SIGINT or SIGTERM."""
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
        logger.debug("%s Signal handlers configured for SIGINT & SIGTERM", self.lp)
        try:
            _ = await self.start()
            _ = await stop_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                _ = loop.remove_signal_handler(sig)
            await self.stop()


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Lumina home controller")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument(
        "--no-api",
        action="store_false",
        dest="api",
        help="Do not start the dashboard API",
    )
    _ = parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    args = parser.parse_args(argv)

    if args.debug:
        set_global_level(logging.DEBUG)
        logger.info("Debug mode enabled via CLI argument")

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info("Environment variables loaded", extra={"source": str(env_path)})
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return args


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Lumina controller."""
    with intent_context("main"):
        logger.info("Starting Lumina controller", extra={"version": LUMINA_VERSION})
        args = parse_cli(argv)
        if LUMINA_DEBUG:
            logger.info("Debug logging enabled via configuration")
            set_global_level(logging.DEBUG)

        controller = LuminaController(
            config=BrokerConfig.from_env(),
            env=ControllerEnv.from_env(),
            enable_api=args.api,
        )
        try:
            uvloop.run(controller.run_forever())
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
        else:
            logger.info("Lumina controller stopped gracefully")
        finally:
            logger.info("Lumina controller shutdown complete")


if __name__ == "__main__":
    main()
