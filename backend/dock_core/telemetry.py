"""Telemetry sampling and publishing: backend log posts, SOC updates, heartbeat and keep-alive ping."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from dock_core.charging_engine import estimate_power, round2, session_energy_from_soc
from dock_core.errors import BackendError
from dock_core.session import PowerTrace
from dock_core.vehicle import iso_now
from schemas.events import CAR_INFO, DOCK_HEARTBEAT, SOC_UPDATE

if TYPE_CHECKING:
    from dock_core.backend_client import BackendGateway
    from dock_core.realtime import RealtimeChannel

LOG = logging.getLogger(__name__)

STATE_CHARGING = "CHARGING"
STATE_PARKING = "PARKING"


@dataclass(frozen=True)
class TelemetrySnapshot:
    """
    Read-only view of the session taken by the coordinator for one telemetry tick.
    engine_power_kw is None until the power tick has delivered energy.
    """

    session_id: int
    soc_pct: float
    session_energy_kwh: float
    engine_power_kw: Optional[float]
    cap_kw: float
    trace: PowerTrace
    initial_soc: Optional[float] = None
    battery_kwh: Optional[float] = None


@dataclass(frozen=True)
class TelemetrySample:
    sampled_at: datetime
    soc_pct: float
    power_kw: Optional[float] = None
    energy_kwh: Optional[float] = None


def build_sample(snapshot: TelemetrySnapshot, now: datetime) -> tuple[TelemetrySample, PowerTrace]:
    """
    Turn a snapshot into a sample. Uses the engine's figures when they exist;
    otherwise estimates energy and power from SOC (needs initial SOC and
    battery size), else reports SOC alone. Returns the trace to store back.
    """
    if snapshot.engine_power_kw is not None:
        sample = TelemetrySample(
            sampled_at=now,
            soc_pct=snapshot.soc_pct,
            power_kw=snapshot.engine_power_kw,
            energy_kwh=snapshot.session_energy_kwh,
        )
        return sample, snapshot.trace

    if snapshot.initial_soc is None or not snapshot.battery_kwh:
        return TelemetrySample(sampled_at=now, soc_pct=snapshot.soc_pct), snapshot.trace

    energy_kwh = session_energy_from_soc(snapshot.soc_pct, snapshot.initial_soc, snapshot.battery_kwh)
    power_kw, trace = estimate_power(snapshot.trace, energy_kwh, now, snapshot.cap_kw)
    sample = TelemetrySample(
        sampled_at=now,
        soc_pct=snapshot.soc_pct,
        power_kw=power_kw,
        energy_kwh=energy_kwh,
    )
    return sample, trace


def soc_update_payload(sample: TelemetrySample) -> dict[str, Any]:
    payload: dict[str, Any] = {"soc": round2(sample.soc_pct)}
    if sample.power_kw is not None:
        payload["powerKw"] = round2(sample.power_kw)
    if sample.energy_kwh is not None:
        payload["energyKwh"] = round2(sample.energy_kwh)
    payload["timestamp"] = sample.sampled_at.isoformat().replace("+00:00", "Z")
    return payload


class TelemetryPublisher:
    """Forwards samples to the backend and the realtime channel. Failures are logged, never raised."""

    def __init__(self, backend: "BackendGateway") -> None:
        self._backend = backend

    async def publish(self, sample: TelemetrySample, channel: Optional["RealtimeChannel"]) -> None:
        try:
            await self._backend.send_log(
                soc_pct=sample.soc_pct,
                state=STATE_CHARGING,
                sampled_at=sample.sampled_at,
                power_kw=sample.power_kw,
                session_energy_kwh=sample.energy_kwh,
            )
        except BackendError as e:
            LOG.warning("Failed to send log to backend: %s", e)

        if channel is None:
            return
        payload = soc_update_payload(sample)
        try:
            await channel.publish(SOC_UPDATE, payload)
            LOG.debug("Published SOC update: %s%%", payload["soc"])
        except Exception as e:
            LOG.warning("Failed to publish SOC update: %s", e)

    async def heartbeat(self, channel: Optional["RealtimeChannel"]) -> None:
        if channel is None:
            return
        try:
            await channel.publish(DOCK_HEARTBEAT, {"timestamp": iso_now()})
            LOG.debug("Published dock heartbeat")
        except Exception as e:
            LOG.warning("Failed to publish heartbeat: %s", e)

    async def ping(self) -> None:
        try:
            server_time = await self._backend.ping()
            LOG.debug("Ping successful. Server time: %s", server_time)
        except BackendError as e:
            LOG.warning("Ping request failed: %s", e)

    async def car_information(
        self,
        channel: Optional["RealtimeChannel"],
        current_capacity_kwh: float,
        max_capacity_kwh: float,
    ) -> None:
        if channel is None:
            return
        payload = {
            "currentCapacity": round2(current_capacity_kwh),
            "maxCapacity": round2(max_capacity_kwh),
            "timestamp": iso_now(),
        }
        try:
            await channel.publish(CAR_INFO, payload)
        except Exception as e:
            LOG.warning("Failed to publish car information: %s", e)
