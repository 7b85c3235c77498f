# Dock core: session coordinator, charging engine, backend gateway, realtime channel, store
from dock_core.coordinator import SessionCoordinator
from dock_core.dock import Dock, DockPhase
from dock_core.errors import BackendError, DockError, HandshakeError, SlotOccupiedError
from dock_core.store import clear, get_coordinator, set_coordinator

__all__ = [
    "BackendError",
    "Dock",
    "DockError",
    "DockPhase",
    "HandshakeError",
    "SessionCoordinator",
    "SlotOccupiedError",
    "clear",
    "get_coordinator",
    "set_coordinator",
]
