"""Dock status response schema."""
from typing import Optional

from pydantic import BaseModel


class DockStatus(BaseModel):
    """Response for GET /dock: phase, slot and live session figures."""

    dock_id: str
    phase: str
    connection_slot: int
    vehicle_connected: bool
    session_id: Optional[int] = None
    channel_id: Optional[str] = None
    is_charging: bool = False
    current_capacity_kwh: Optional[float] = None
    max_capacity_kwh: Optional[float] = None
    current_soc: Optional[float] = None
    target_soc: Optional[float] = None
    session_charged_kwh: Optional[float] = None
