"""FastAPI dashboard API: device state out, user intents in."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Annotated, Any

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app  # type: ignore[import-untyped]
from pydantic import BaseModel, Field

from lumina_home.const import LUMINA_API_PORT, LUMINA_SRV_HOST, LUMINA_VERSION
from lumina_home.exceptions import DeviceNotFoundError, InvalidDeviceValueError
from lumina_home.logging_abstraction import get_logger
from lumina_home.structs import ActivityEntry, ChatMessage, Device, EnvironmentReading

if TYPE_CHECKING:
    from lumina_home.main import LuminaController

__all__ = ["DashboardServer", "create_app", "router"]

logger = get_logger(__name__)

# number of chat messages returned by the assistant endpoint
CHAT_TAIL = 10


class ToggleRequest(BaseModel):
    should_sync: bool = True


class IntensityRequest(BaseModel):
    value: int = Field(ge=0, le=255)


class TemperatureRequest(BaseModel):
    value: float = Field(allow_inf_nan=False)


class AssistantRequest(BaseModel):
    text: str


def get_controller(request: Request) -> LuminaController:
    return request.app.state.controller


# LuminaController is imported for type checking only
Controller = Annotated[Any, Depends(get_controller)]

router = APIRouter(prefix="/api")


@router.get("/healthcheck")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify if the server is running."""
    return {"status": "ok", "message": "Lumina controller is running", "version": LUMINA_VERSION}


@router.get("/status")
async def get_status(controller: Controller) -> dict[str, Any]:
    session = controller.session
    return {
        "status": session.status,
        "connected": session.is_connected,
        "broker": session.config.url,
        "client_id": session.config.client_id,
        "synced_device": controller.registry.binding.device_id,
    }


@router.get("/devices")
async def list_devices(controller: Controller) -> list[Device]:
    return controller.registry.devices()


@router.get("/devices/{device_id}")
async def get_device(device_id: str, controller: Controller) -> Device:
    return controller.registry.get(device_id)


@router.get("/environment")
async def get_environment(controller: Controller) -> EnvironmentReading:
    return controller.registry.environment


@router.get("/logs")
async def get_logs(controller: Controller) -> list[ActivityEntry]:
    return controller.activity_log.entries()


@router.post("/devices/{device_id}/toggle")
async def toggle_device(device_id: str, controller: Controller, body: ToggleRequest | None = None) -> Device:
    should_sync = body.should_sync if body is not None else True
    return controller.router.toggle(device_id, should_sync=should_sync)


@router.post("/devices/{device_id}/intensity")
async def set_intensity(device_id: str, body: IntensityRequest, controller: Controller) -> Device:
    return controller.router.set_intensity(device_id, body.value)


@router.post("/climate/target")
async def set_climate_target(body: TemperatureRequest, controller: Controller) -> list[Device]:
    return controller.router.set_temperature_target(body.value)


@router.post("/assistant")
async def ask_assistant(body: AssistantRequest, controller: Controller) -> dict[str, Any]:
    reply: ChatMessage | None = await controller.chat.send(body.text)
    return {
        "reply": reply,
        "history": controller.chat.history[-CHAT_TAIL:],
    }


async def _device_not_found(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _invalid_value(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def create_app(controller: LuminaController) -> FastAPI:
    app = FastAPI(title="Lumina Home", version=LUMINA_VERSION)
    app.state.controller = controller
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DeviceNotFoundError, _device_not_found)
    app.add_exception_handler(InvalidDeviceValueError, _invalid_value)
    app.include_router(router)
    app.mount("/metrics", make_asgi_app())
    return app


class DashboardServer:
    """Manages the uvicorn server lifecycle for the dashboard API."""

    lp = "DashboardServer:"

    def __init__(self, app: FastAPI, host: str = LUMINA_SRV_HOST, port: int = LUMINA_API_PORT) -> None:
        self.app: FastAPI = app
        self.host: str = host
        self.port: int = port
        self.running: bool = False
        self.uvi_server: uvicorn.Server = uvicorn.Server(
            config=uvicorn.Config(
                app,
                host=host,
                port=port,
                log_config={
                    "version": 1,
                    "disable_existing_loggers": False,
                },
                log_level="info",
            )
        )

    async def start(self) -> None:
        """Serve until shut down; meant to run as a task."""
        lp = f"{self.lp}start:"
        logger.info("%s Starting dashboard API on %s:%s", lp, self.host, self.port)
        self.running = True
        try:
            await self.uvi_server.serve()
        except asyncio.CancelledError:
            logger.info("%s dashboard API stopped", lp)
            raise
        except Exception:
            logger.exception("%s Error running dashboard API", lp)
        else:
            logger.info("%s dashboard API lifecycle completed", lp)
        finally:
            self.running = False

    def stop(self) -> None:
        """Ask uvicorn to exit; the task running :meth:`start` returns once connections are closed."""
        lp = f"{self.lp}stop:"
        logger.info("%s Stopping dashboard API...", lp)
        self.uvi_server.should_exit = True
