"""Vehicle WebSocket: one connected car talks to the dock over /ws/vehicle."""
import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from dock_core.errors import SlotOccupiedError
from dock_core.store import get_coordinator
from dock_core.vehicle import VehicleConnection

LOG = logging.getLogger(__name__)

router = APIRouter(tags=["vehicle"])

# Try again later: the dock has not finished starting.
_CLOSE_NOT_READY = 1013


class WebSocketVehicle(VehicleConnection):
    """VehicleConnection over a Starlette WebSocket. Messages are {"event", "data"} JSON envelopes."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        client = websocket.client
        self.connection_id = f"{client.host}:{client.port}" if client else uuid.uuid4().hex[:8]
        self.closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self.closed
            and self._websocket.application_state == WebSocketState.CONNECTED
            and self._websocket.client_state == WebSocketState.CONNECTED
        )

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        await self._websocket.send_json({"event": event, "data": data})

    async def disconnect(self) -> None:
        self.closed = True
        if self._websocket.application_state == WebSocketState.CONNECTED:
            await self._websocket.close()


@router.websocket("/ws/vehicle")
async def vehicle_socket(websocket: WebSocket) -> None:
    """Admit the vehicle, relay its messages to the coordinator, clean up on disconnect."""
    await websocket.accept()
    coordinator = get_coordinator()
    if coordinator is None:
        await websocket.close(code=_CLOSE_NOT_READY)
        return

    vehicle = WebSocketVehicle(websocket)
    try:
        if not await coordinator.accept_connection(vehicle):
            return
    except SlotOccupiedError:
        return

    try:
        while not vehicle.closed:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except ValueError:
                LOG.warning("Ignoring non-JSON message from vehicle %s", vehicle.connection_id)
                continue
            await coordinator.handle_vehicle_message(vehicle, message)
    except WebSocketDisconnect:
        LOG.info("Vehicle %s closed the connection", vehicle.connection_id)
    finally:
        vehicle.closed = True
        await coordinator.on_disconnect(vehicle)
