"""EV Dock Simulator: FastAPI backend."""
import logging

import uvicorn
from fastapi import FastAPI

from utils import config

# Show dock lifecycle, backend calls and charging progress (INFO level)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logging.getLogger("dock_core").setLevel(config.LOG_LEVEL.upper())
logging.getLogger("httpx").setLevel(logging.WARNING)
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from api.vehicle import router as vehicle_router
from dock_core.backend_client import BackendGateway
from dock_core.coordinator import SessionCoordinator
from dock_core.store import clear as store_clear, get_coordinator, set_coordinator
from schemas.health import HealthResponse

LOG = logging.getLogger(__name__)

app = FastAPI(
    title="EV Dock Simulator",
    description="Simulated EV charging dock: vehicle socket, backend sessions, realtime telemetry",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8080", "http://127.0.0.1:8080"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes under /api; the vehicle socket lives at /ws/vehicle
app.include_router(router, prefix="/api")
app.include_router(vehicle_router)


@app.get("/api/health", response_model=HealthResponse)
def api_health() -> HealthResponse:
    """Explicit health route so /api/health is always available."""
    return HealthResponse()


@app.on_event("startup")
async def startup() -> None:
    """Build the backend gateway and the dock's coordinator."""
    if get_coordinator() is not None:
        return
    backend = BackendGateway(
        config.BACKEND_URL,
        config.DOCK_ID,
        config.DOCK_SECRET,
        timeout_s=config.HTTP_TIMEOUT_S,
    )
    set_coordinator(SessionCoordinator(
        backend,
        power_tick_s=config.POWER_TICK_S,
        sim_seconds_per_tick=config.SIM_SECONDS_PER_TICK,
        log_tick_s=config.LOG_TICK_S,
        ping_interval_s=config.PING_INTERVAL_S,
        heartbeat_interval_s=config.HEARTBEAT_INTERVAL_S,
    ))
    LOG.info("Dock %s ready; backend %s", config.DOCK_ID or "(unset)", config.BACKEND_URL or "(unset)")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Finish any running charge and close the backend client."""
    coordinator = get_coordinator()
    if coordinator is None:
        return
    try:
        await coordinator.shutdown()
    finally:
        await coordinator.backend.aclose()
        store_clear()


@app.get("/")
def root() -> dict:
    """Root redirect/info."""
    return {
        "service": "ev-dock-simulator",
        "docs": "/docs",
        "health": "/api/health",
        "vehicle_socket": "/ws/vehicle",
    }


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT)
