"""HTTP API - thin mapping between FastAPI routes and the supervisor / reading store"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from device.supervisor import ConnectionSupervisor
from energy import energy_summary
from errors import (
    CommandError,
    ConfigurationError,
    NotConfiguredError,
    NotConnectedError,
)
from state import MonitorState

logger = logging.getLogger(__name__)


class DeviceParams(BaseModel):
    # Everything optional: missing fields are reported as 400 by the supervisor
    id: Optional[str | int] = None
    key: Optional[str | int] = None
    ip: Optional[str | int] = None
    version: Optional[str | float] = None


def create_app(state: MonitorState, supervisor: ConnectionSupervisor, lifespan=None) -> FastAPI:
    app = FastAPI(title="Power Monitor", lifespan=lifespan)

    # ---------------- ERROR MAPPING ----------------
    @app.exception_handler(NotConfiguredError)
    async def not_configured(request: Request, exc: NotConfiguredError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def bad_configuration(request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(NotConnectedError)
    async def not_connected(request: Request, exc: NotConnectedError):
        return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})

    @app.exception_handler(CommandError)
    async def command_failed(request: Request, exc: CommandError):
        logger.error(f"Toggle failed: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    # ---------------- DEVICE CONFIGURATION ----------------
    @app.get("/api/device")
    def get_device():
        if not state.configured:
            raise NotConfiguredError()
        return state.config.to_dict()

    @app.post("/api/device")
    async def add_device(params: DeviceParams):
        config = await supervisor.configure(params.model_dump())
        return {"success": True, "device": config.to_dict()}

    @app.delete("/api/device")
    async def remove_device():
        await supervisor.deconfigure()
        return {"success": True}

    # ---------------- LIVE STATUS ----------------
    @app.get("/api/status")
    def get_status():
        return {"connected": state.connected, **state.store.latest.to_dict()}

    @app.post("/api/toggle")
    async def toggle_power():
        power_on = await supervisor.toggle()
        return {"success": True, "power_on": power_on}

    # ---------------- HISTORY ----------------
    @app.get("/api/data")
    def get_data(
        range_name: Optional[str] = Query(None, alias="range"),
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ):
        readings = state.store.query(range_name, start, end)
        return [r.to_dict() for r in readings]

    @app.get("/api/energy")
    def get_energy(
        range_name: Optional[str] = Query(None, alias="range"),
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ):
        readings = state.store.query(range_name, start, end)
        return energy_summary(readings)

    return app
