# Schemas package
from .backend import BackendCharger, HandshakeData, PingResponse
from .dock import DockStatus
from .events import CarConfigureMessage, LoadCarInformationEvent, SessionSpecsEvent, StartSessionEvent
from .health import HealthResponse

__all__ = [
    "BackendCharger",
    "CarConfigureMessage",
    "DockStatus",
    "HandshakeData",
    "HealthResponse",
    "LoadCarInformationEvent",
    "PingResponse",
    "SessionSpecsEvent",
    "StartSessionEvent",
]
