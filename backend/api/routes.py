"""API route handlers."""
from fastapi import APIRouter, HTTPException, status

from dock_core.store import get_coordinator
from schemas.dock import DockStatus
from schemas.health import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse()


@router.get("/dock", response_model=DockStatus)
def dock_status() -> DockStatus:
    """Current dock phase and session figures."""
    coordinator = get_coordinator()
    if coordinator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Dock not started")
    return DockStatus(dock_id=coordinator.dock.dock_id, **coordinator.status())
