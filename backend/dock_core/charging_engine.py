"""Charging simulation: tapered power curve, per-tick energy delivery, power estimation from SOC samples."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dock_core.session import ChargerSpec, PowerTrace, VehicleSpec

SECONDS_PER_HOUR = 3600.0

# Estimates are only trusted between these sample gaps (seconds).
MIN_SAMPLE_GAP_S = 0.2
MAX_SAMPLE_GAP_S = 5.0
# A positive estimate is reused for this long when no fresh one is available.
POWER_HOLD_S = 3.0


@dataclass(frozen=True)
class TickResult:
    """Outcome of one power tick. Values are unrounded."""

    power_kw: float
    delivered_kwh: float
    capacity_kwh: float
    soc_pct: float
    target_reached: bool


def round2(value: float) -> float:
    """Round for reporting (payloads, logs). Never used for stored counters."""
    return round(value, 2)


def state_of_charge(capacity_kwh: float, max_capacity_kwh: float) -> float:
    """SOC in percent; 0 when the maximum is unknown."""
    if max_capacity_kwh <= 0:
        return 0.0
    return (capacity_kwh / max_capacity_kwh) * 100.0


def power_cap_kw(charger_power_kw: float, vehicle_max_power_kw: Optional[float] = None) -> float:
    """Lower of charger and vehicle power when both are known, else the charger's."""
    if vehicle_max_power_kw is not None and vehicle_max_power_kw > 0:
        return min(vehicle_max_power_kw, charger_power_kw)
    return charger_power_kw


def taper_factor(soc_pct: float) -> float:
    """
    Fraction of the power cap delivered at this SOC.

    Full power below 80%, linear taper 1.0 -> 0.7 across 80-90%,
    then 0.4 up to 95% and 0.2 above.
    """
    if soc_pct >= 95.0:
        return 0.2
    if soc_pct >= 90.0:
        return 0.4
    if soc_pct >= 80.0:
        return 1.0 - ((soc_pct - 80.0) / 10.0) * 0.3
    return 1.0


def tapered_power_kw(cap_kw: float, soc_pct: float) -> float:
    return cap_kw * taper_factor(soc_pct)


def advance(
    charger: ChargerSpec,
    vehicle: VehicleSpec,
    target_soc: float,
    tick_s: float,
) -> TickResult:
    """
    Compute one tick of charging (does not mutate the specs).

    Power is tapered from the pre-tick SOC. Capacity is clamped at the
    battery maximum and delivered_kwh is the clamped delta. target_reached
    is true when the tick brings SOC to or beyond target_soc.
    """
    soc_before = vehicle.soc_pct
    cap_kw = power_cap_kw(charger.power_kw, vehicle.max_power_kw)
    power_kw = tapered_power_kw(cap_kw, soc_before)
    kwh = power_kw * (tick_s / SECONDS_PER_HOUR)

    capacity_kwh = min(vehicle.max_capacity_kwh, vehicle.current_capacity_kwh + kwh)
    delivered_kwh = capacity_kwh - vehicle.current_capacity_kwh
    soc_after = state_of_charge(capacity_kwh, vehicle.max_capacity_kwh)
    return TickResult(
        power_kw=power_kw,
        delivered_kwh=delivered_kwh,
        capacity_kwh=capacity_kwh,
        soc_pct=soc_after,
        target_reached=soc_after >= target_soc,
    )


def session_energy_from_soc(soc_pct: float, initial_soc: float, battery_kwh: float) -> float:
    """Energy implied by the SOC rise since session start (never negative)."""
    if battery_kwh <= 0:
        return 0.0
    return max(0.0, ((soc_pct - initial_soc) / 100.0) * battery_kwh)


def estimate_power(
    trace: PowerTrace,
    energy_kwh: float,
    now: datetime,
    cap_kw: float,
) -> tuple[Optional[float], PowerTrace]:
    """
    Estimate charging power from the energy change since the previous sample.

    Returns (power_kw or None, new trace). A sample is only used when the gap
    is within (MIN_SAMPLE_GAP_S, MAX_SAMPLE_GAP_S) and energy did not drop;
    the estimate is clamped to [0, cap_kw]. Without a fresh positive estimate,
    the last positive one is held for POWER_HOLD_S, then forgotten.
    """
    power_kw: Optional[float] = None
    last_power_kw = trace.last_power_kw
    last_power_at = trace.last_power_at

    if trace.sampled_at is not None and trace.energy_kwh is not None:
        dt_s = (now - trace.sampled_at).total_seconds()
        d_e = energy_kwh - trace.energy_kwh
        if MIN_SAMPLE_GAP_S < dt_s < MAX_SAMPLE_GAP_S and d_e >= 0:
            estimate = (d_e * SECONDS_PER_HOUR) / dt_s
            power_kw = max(0.0, min(estimate, max(0.0, cap_kw)))
            if power_kw > 0:
                last_power_kw = power_kw
                last_power_at = now

    if not power_kw and last_power_kw and last_power_at is not None:
        if (now - last_power_at).total_seconds() <= POWER_HOLD_S:
            power_kw = last_power_kw
        else:
            last_power_kw = None
            last_power_at = None

    new_trace = PowerTrace(
        energy_kwh=energy_kwh,
        sampled_at=now,
        last_power_kw=last_power_kw,
        last_power_at=last_power_at,
    )
    return power_kw, new_trace
