"""
Read-only HTTP status API for a running monitor.

Handlers run on the monitor's event loop and only ever read registry
snapshots, never the live registry.
"""

import logging
from typing import Any, Dict, List

import uvicorn
from fastapi import FastAPI, HTTPException

from lanotify import __version__
from lanotify.change_monitor.service import PresenceMonitorService
from lanotify.inventory.models import DeviceRecord, normalize_mac

logger = logging.getLogger(__name__)


def create_app(service: PresenceMonitorService) -> FastAPI:
    """
    Build the status API for a monitor service.

    Args:
        service: Running (or about to run) monitor service

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="lanotify API",
        description="LAN presence monitor status API",
        version=__version__,
    )

    @app.get("/")
    async def root() -> Dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": "lanotify API",
            "version": __version__,
            "endpoints": {
                "status": "/status",
                "devices": "/devices",
                "docs": "/docs",
            },
        }

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy" if service.last_error is None else "degraded"}

    @app.get("/status")
    async def get_status() -> Dict[str, Any]:
        """Monitor loop state and device counts."""
        return service.status()

    @app.get("/devices", response_model=List[DeviceRecord])
    async def list_devices(present_only: bool = False) -> List[DeviceRecord]:
        """All known devices, ordered by MAC address."""
        snapshot = service.registry.snapshot()
        return snapshot.present() if present_only else snapshot.records()

    @app.get("/devices/{mac}", response_model=DeviceRecord)
    async def get_device(mac: str) -> DeviceRecord:
        """One device by MAC address."""
        canonical = normalize_mac(mac)
        if canonical is None:
            raise HTTPException(status_code=400, detail=f"Invalid MAC address: {mac}")

        record = service.registry.snapshot().get(canonical)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Unknown device: {canonical}")
        return record

    return app


def create_server(service: PresenceMonitorService, host: str, port: int) -> uvicorn.Server:
    """
    Create a uvicorn server for the status API, to be awaited with serve().

    Args:
        service: Monitor service to expose
        host: Bind address
        port: Bind port

    Returns:
        Configured uvicorn server
    """
    logger.info(f"Status API listening on http://{host}:{port}")
    config = uvicorn.Config(
        create_app(service),
        host=host,
        port=port,
        log_config=None,
        access_log=False,
    )
    return uvicorn.Server(config)


async def serve_api(server: uvicorn.Server) -> None:
    """
    Serve the status API until the server is told to exit.

    uvicorn raises SystemExit when it cannot start (for example when the
    port is taken). That only disables the API; the monitor keeps running.

    Args:
        server: Server from create_server()
    """
    try:
        await server.serve()
    except SystemExit as e:
        logger.error(
            f"Status API could not start on {server.config.host}:{server.config.port} "
            f"(uvicorn exit status {e.code}); continuing without it"
        )
