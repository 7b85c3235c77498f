# Set test environment before any application imports.
import os

os.environ["BACKEND_URL"] = "http://backend.test"
os.environ["DOCK_ID"] = "7"
os.environ["DOCK_SECRET"] = "dock-secret"

import asyncio
import time
from typing import Any, Callable, Optional
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from dock_core.backend_client import BackendGateway
from dock_core.coordinator import SessionCoordinator
from dock_core.realtime import RealtimeChannel
from dock_core.store import clear as store_clear, set_coordinator
from dock_core.vehicle import VehicleConnection
from main import app
from schemas.backend import BackendCharger, HandshakeData


class FakeVehicle(VehicleConnection):
    """In-memory vehicle connection that records every event it is sent."""

    def __init__(self, connection_id: str = "car-1") -> None:
        self.connection_id = connection_id
        self.open = True
        self.sent: list[tuple[str, dict[str, Any]]] = []

    @property
    def is_open(self) -> bool:
        return self.open

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        if not self.open:
            raise ConnectionError("vehicle socket closed")
        self.sent.append((event, data))

    async def disconnect(self) -> None:
        self.open = False

    def events(self) -> list[str]:
        return [event for event, _ in self.sent]

    def payloads(self, event: str) -> list[dict[str, Any]]:
        return [data for name, data in self.sent if name == event]


class FakeChannel(RealtimeChannel):
    """Realtime channel double; deliver() plays an inbound event to the subscriber."""

    def __init__(self, token: str, channel_id: str, fail_attach: bool = False) -> None:
        self.token = token
        self.channel_id = channel_id
        self.fail_attach = fail_attach
        self.attached = False
        self.disposed = False
        self.subscribed: list[str] = []
        self.published: list[tuple[str, Any]] = []
        self._listener = None

    async def attach(self) -> None:
        if self.fail_attach:
            raise ConnectionError("attach refused")
        self.attached = True

    async def subscribe(self, event_names, listener) -> None:
        self.subscribed.extend(event_names)
        self._listener = listener

    async def publish(self, event_name: str, data: Any) -> None:
        self.published.append((event_name, data))

    async def dispose(self) -> None:
        self.disposed = True

    async def deliver(self, name: str, data: Any) -> None:
        await self._listener(name, data)

    def payloads(self, event: str) -> list[Any]:
        return [data for name, data in self.published if name == event]


class ChannelRecorder:
    """Channel factory that keeps every channel it creates."""

    def __init__(self) -> None:
        self.channels: list[FakeChannel] = []
        self.fail_attach = False

    def __call__(self, token: str, channel_id: str) -> FakeChannel:
        channel = FakeChannel(token, channel_id, fail_attach=self.fail_attach)
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> Optional[FakeChannel]:
        return self.channels[-1] if self.channels else None


def handshake_data(**overrides: Any) -> HandshakeData:
    values: dict[str, Any] = {
        "session_id": 12,
        "channel_id": "dock-7-session-12",
        "dock_jwt": "dock-jwt",
        "ably_token": "ably-token",
        "join_code": "JOIN42",
        "charger": BackendCharger(power_kw=50.0, price_per_kwh=0.35),
    }
    values.update(overrides)
    return HandshakeData(**values)


def make_backend() -> MagicMock:
    """BackendGateway double; async methods become AsyncMocks via spec=BackendGateway."""
    backend = MagicMock(spec=BackendGateway)
    backend.dock_id = "7"
    backend.handshake.return_value = handshake_data()
    backend.ping.return_value = "2026-01-01T00:00:00Z"
    backend.send_log.return_value = None
    backend.start_session.return_value = None
    backend.complete_session.return_value = True
    return backend


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll predicate on the running loop until it holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def vehicle() -> FakeVehicle:
    return FakeVehicle()


@pytest.fixture
def make_vehicle():
    return FakeVehicle


@pytest.fixture
def make_handshake():
    return handshake_data


@pytest.fixture
def backend() -> MagicMock:
    return make_backend()


@pytest.fixture
def channels() -> ChannelRecorder:
    return ChannelRecorder()


@pytest.fixture
def eventually():
    return wait_until


@pytest.fixture
def coordinator(backend, channels) -> SessionCoordinator:
    """Coordinator with fast ticks: every 10ms power tick simulates one minute of charging."""
    return SessionCoordinator(
        backend,
        channel_factory=channels,
        power_tick_s=0.01,
        sim_seconds_per_tick=60.0,
        log_tick_s=0.05,
        ping_interval_s=10.0,
        heartbeat_interval_s=10.0,
    )


@pytest.fixture
def client(coordinator):
    """API test client bound to the test coordinator; store cleared on teardown."""
    set_coordinator(coordinator)
    try:
        with TestClient(app) as c:
            yield c
    finally:
        store_clear()
