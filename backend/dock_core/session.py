"""Per-visit session data: identifiers, vehicle/charger specs, charging counters."""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

DEFAULT_TARGET_SOC = 100.0


@dataclass
class VehicleSpec:
    """Battery of the connected vehicle. max_power_kw comes from session specs when known."""

    current_capacity_kwh: float
    max_capacity_kwh: float
    max_power_kw: Optional[float] = None

    @property
    def soc_pct(self) -> float:
        if self.max_capacity_kwh <= 0:
            return 0.0
        return (self.current_capacity_kwh / self.max_capacity_kwh) * 100.0


@dataclass
class ChargerSpec:
    power_kw: float = 0.0
    price_per_kwh: Optional[float] = None


@dataclass(frozen=True)
class PowerTrace:
    """Smoothing state for power estimated from SOC samples."""

    energy_kwh: Optional[float] = None
    sampled_at: Optional[datetime] = None
    last_power_kw: Optional[float] = None
    last_power_at: Optional[datetime] = None


@dataclass
class DockSession:
    """
    One vehicle visit, created on a successful handshake.
    Identifiers are fixed for the session's lifetime; everything else is
    filled in by configuration, session specs and charging.
    """

    session_id: int
    channel_id: str
    join_code: Optional[str] = None
    dock_token: Optional[str] = None
    realtime_token: Optional[str] = None
    charger: ChargerSpec = field(default_factory=ChargerSpec)
    vehicle: Optional[VehicleSpec] = None
    target_soc: float = DEFAULT_TARGET_SOC
    session_charged_kwh: float = 0.0
    session_start_time: Optional[datetime] = None
    is_charging: bool = False
    last_tick_power_kw: Optional[float] = None
    trace: PowerTrace = field(default_factory=PowerTrace)
    # From session_specs; used for the power cap and when estimating power from SOC alone.
    vehicle_max_power_kw: Optional[float] = None
    initial_soc: Optional[float] = None
    specs_battery_kwh: Optional[float] = None

    @property
    def is_configured(self) -> bool:
        return self.vehicle is not None

    @property
    def current_soc(self) -> float:
        return self.vehicle.soc_pct if self.vehicle else 0.0

    def begin_charging(self, target_soc: float, started_at: datetime) -> None:
        """Reset counters for a fresh charge; only called after the backend acknowledged the start."""
        self.target_soc = target_soc
        self.session_charged_kwh = 0.0
        self.session_start_time = started_at
        self.last_tick_power_kw = None
        self.trace = PowerTrace()
        self.is_charging = True


def validate_vehicle_spec(current_capacity_kwh: float, max_capacity_kwh: float) -> Optional[str]:
    """Return an error message for an impossible battery configuration, else None."""
    if not (math.isfinite(current_capacity_kwh) and math.isfinite(max_capacity_kwh)):
        return "batteryCapacity and maxCapacity must be finite numbers"
    if max_capacity_kwh <= 0:
        return "maxCapacity must be greater than 0"
    if current_capacity_kwh < 0:
        return "batteryCapacity cannot be negative"
    if current_capacity_kwh > max_capacity_kwh:
        return "batteryCapacity cannot exceed maxCapacity"
    return None
