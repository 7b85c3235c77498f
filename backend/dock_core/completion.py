"""Session completion: ordered reconciliation with backend, vehicle and channel, plus the single-flight guard."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Hashable, Optional

from dock_core.charging_engine import round2, state_of_charge
from dock_core.errors import BackendError
from dock_core.telemetry import STATE_PARKING
from dock_core.vehicle import iso_now
from schemas.events import CHARGING_COMPLETE

if TYPE_CHECKING:
    from dock_core.backend_client import BackendGateway
    from dock_core.realtime import RealtimeChannel
    from dock_core.vehicle import VehicleConnection

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionSnapshot:
    """Session values frozen at the moment completion starts."""

    session_id: int
    dock_token: Optional[str]
    capacity_kwh: float
    max_capacity_kwh: float
    target_soc: float
    charged_kwh: float
    started_at: Optional[datetime]
    price_per_kwh: Optional[float]


@dataclass(frozen=True)
class CompletionOutcome:
    reason: str
    final_soc: float
    duration_s: int
    log_sent: bool
    vehicle_notified: bool
    published: bool
    backend_completed: bool


def session_duration_s(started_at: Optional[datetime], now: datetime) -> int:
    if started_at is None:
        return 0
    return max(0, int((now - started_at).total_seconds()))


def completion_event_payload(snapshot: CompletionSnapshot, final_soc: float) -> dict[str, Any]:
    return {
        "status": "completed",
        "finalSOC": round2(final_soc),
        "finalCapacity": round2(snapshot.capacity_kwh),
        "targetSOC": snapshot.target_soc,
        "sessionChargedKwh": round2(snapshot.charged_kwh),
        "timestamp": iso_now(),
        "sessionId": snapshot.session_id,
    }


async def reconcile_completion(
    snapshot: CompletionSnapshot,
    reason: str,
    *,
    backend: "BackendGateway",
    channel: Optional["RealtimeChannel"],
    vehicle: Optional["VehicleConnection"],
    now: Optional[datetime] = None,
) -> CompletionOutcome:
    """
    Report a finished session everywhere it needs to go, in order:
    PARKING log, vehicle notification, channel event, backend completion.
    Each step is best-effort; none of them can stop the later ones.
    """
    now = now or datetime.now(timezone.utc)
    final_soc = state_of_charge(snapshot.capacity_kwh, snapshot.max_capacity_kwh)
    duration_s = session_duration_s(snapshot.started_at, now)
    LOG.info(
        "Completing session %s: %s (SOC %.2f%%, %.2f kWh, %ss)",
        snapshot.session_id, reason, final_soc, snapshot.charged_kwh, duration_s,
    )

    log_sent = False
    try:
        await backend.send_log(
            soc_pct=final_soc,
            state=STATE_PARKING,
            sampled_at=now,
            power_kw=0.0,
            session_energy_kwh=snapshot.charged_kwh,
        )
        log_sent = True
    except BackendError as e:
        LOG.warning("Failed to send final log to backend: %s", e)

    vehicle_notified = False
    if vehicle is not None and vehicle.is_open:
        try:
            await vehicle.emit(CHARGING_COMPLETE, {
                "message": reason,
                "finalCapacity": round2(snapshot.capacity_kwh),
                "maxCapacity": round2(snapshot.max_capacity_kwh),
                "finalSOC": round2(final_soc),
                "timestamp": iso_now(),
            })
            vehicle_notified = True
        except Exception as e:
            LOG.warning("Failed to notify vehicle of completion: %s", e)

    published = False
    if channel is None:
        LOG.info("Realtime channel already closed; skipping completion event")
    else:
        try:
            await channel.publish(CHARGING_COMPLETE, completion_event_payload(snapshot, final_soc))
            published = True
        except Exception as e:
            LOG.warning("Failed to publish charging completion: %s", e)

    backend_completed = await backend.complete_session(
        snapshot.session_id,
        token=snapshot.dock_token,
        energy_kwh=snapshot.charged_kwh,
        duration_s=duration_s,
        end_soc=final_soc,
        price_per_kwh=snapshot.price_per_kwh,
        reason=reason,
    )
    if backend_completed:
        LOG.info("Session %s completed with backend", snapshot.session_id)

    return CompletionOutcome(
        reason=reason,
        final_soc=final_soc,
        duration_s=duration_s,
        log_sent=log_sent,
        vehicle_notified=vehicle_notified,
        published=published,
        backend_completed=backend_completed,
    )


class SingleFlight:
    """
    At most one run per key. A second caller gets the task already started
    (running or finished) instead of starting another.
    """

    def __init__(self) -> None:
        self._tasks: dict[Hashable, asyncio.Task] = {}

    def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
        return task

    def pending(self, key: Hashable) -> Optional[asyncio.Task]:
        task = self._tasks.get(key)
        if task is None or task.done():
            return None
        return task

    def has_run(self, key: Hashable) -> bool:
        return key in self._tasks

    def forget(self, key: Hashable) -> None:
        self._tasks.pop(key, None)

    async def wait(self, key: Hashable) -> Any:
        """Wait for the run under key without letting the caller's cancellation cancel it."""
        task = self._tasks.get(key)
        if task is None:
            return None
        return await asyncio.shield(task)
