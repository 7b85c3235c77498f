"""Unit tests: charging_engine (taper curve, tick delivery, power estimation from SOC)."""
from datetime import datetime, timedelta, timezone

import pytest

from dock_core.charging_engine import (
    POWER_HOLD_S,
    advance,
    estimate_power,
    power_cap_kw,
    round2,
    session_energy_from_soc,
    state_of_charge,
    taper_factor,
    tapered_power_kw,
)
from dock_core.session import ChargerSpec, PowerTrace, VehicleSpec

pytestmark = pytest.mark.unit

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "soc,factor",
    [
        (0.0, 1.0),
        (79.99, 1.0),
        (80.0, 1.0),
        (85.0, 0.85),
        (89.99, 0.7003),
        (90.0, 0.4),
        (94.99, 0.4),
        (95.0, 0.2),
        (100.0, 0.2),
    ],
)
def test_taper_factor_boundaries(soc, factor):
    """Full power below 80%, linear 1.0 -> 0.7 up to 90%, then 0.4 and 0.2."""
    assert taper_factor(soc) == pytest.approx(factor, abs=1e-4)


def test_tapered_power_at_85_percent():
    """SOC 85 with a 50 kW cap gives 42.5 kW."""
    assert tapered_power_kw(50.0, 85.0) == pytest.approx(42.5)


def test_power_cap_uses_lower_of_vehicle_and_charger():
    assert power_cap_kw(50.0, 11.0) == 11.0
    assert power_cap_kw(7.4, 11.0) == 7.4
    assert power_cap_kw(50.0, None) == 50.0
    assert power_cap_kw(50.0, 0.0) == 50.0


def test_state_of_charge_unknown_max_is_zero():
    assert state_of_charge(10.0, 0.0) == 0.0
    assert state_of_charge(50.0, 200.0) == 25.0


def test_advance_one_second_at_full_power():
    """50 kW for one second delivers 50/3600 kWh and does not mutate the specs."""
    vehicle = VehicleSpec(current_capacity_kwh=100.0, max_capacity_kwh=200.0)
    result = advance(ChargerSpec(power_kw=50.0), vehicle, 80.0, 1.0)
    assert result.power_kw == 50.0
    assert result.delivered_kwh == pytest.approx(50.0 / 3600.0)
    assert result.capacity_kwh == pytest.approx(100.0 + 50.0 / 3600.0)
    assert result.target_reached is False
    assert vehicle.current_capacity_kwh == 100.0


def test_advance_clamps_at_max_capacity():
    """Delivered energy is the clamped delta, never more than the room left."""
    vehicle = VehicleSpec(current_capacity_kwh=199.99, max_capacity_kwh=200.0)
    result = advance(ChargerSpec(power_kw=350.0), vehicle, 100.0, 60.0)
    assert result.capacity_kwh == 200.0
    assert result.delivered_kwh == pytest.approx(0.01)
    assert result.soc_pct == 100.0
    assert result.target_reached is True


def test_advance_respects_vehicle_power_limit():
    vehicle = VehicleSpec(current_capacity_kwh=10.0, max_capacity_kwh=60.0, max_power_kw=11.0)
    result = advance(ChargerSpec(power_kw=150.0), vehicle, 100.0, 3600.0)
    assert result.power_kw == 11.0
    assert result.delivered_kwh == pytest.approx(11.0)


def test_advance_tapers_from_pre_tick_soc():
    """A tick starting at 79.9% is delivered at full power even if it crosses 80%."""
    vehicle = VehicleSpec(current_capacity_kwh=79.9, max_capacity_kwh=100.0)
    result = advance(ChargerSpec(power_kw=36.0), vehicle, 100.0, 60.0)
    assert result.power_kw == 36.0
    assert result.soc_pct == pytest.approx(80.5)


def test_capacity_is_monotonic_and_bounded():
    """Repeated ticks never decrease capacity nor exceed the maximum."""
    vehicle = VehicleSpec(current_capacity_kwh=30.0, max_capacity_kwh=75.0)
    charger = ChargerSpec(power_kw=120.0)
    previous = vehicle.current_capacity_kwh
    for _ in range(200):
        result = advance(charger, vehicle, 100.0, 30.0)
        assert previous <= result.capacity_kwh <= vehicle.max_capacity_kwh
        vehicle.current_capacity_kwh = previous = result.capacity_kwh
    assert vehicle.current_capacity_kwh == 75.0


def test_scenario_half_full_to_80_percent():
    """100/200 kWh at 50 kW to 80%: stops on the crossing tick with ~60 kWh delivered."""
    vehicle = VehicleSpec(current_capacity_kwh=100.0, max_capacity_kwh=200.0)
    charger = ChargerSpec(power_kw=50.0)
    charged = 0.0
    ticks = 0
    while True:
        result = advance(charger, vehicle, 80.0, 1.0)
        vehicle.current_capacity_kwh = result.capacity_kwh
        charged += result.delivered_kwh
        ticks += 1
        if result.target_reached:
            break
    assert round2(vehicle.soc_pct) == pytest.approx(80.0, abs=0.05)
    assert round2(charged) == pytest.approx(60.0, abs=0.02)
    assert ticks == pytest.approx(4320, abs=1)


def test_session_energy_from_soc():
    assert session_energy_from_soc(60.0, 50.0, 80.0) == pytest.approx(8.0)
    assert session_energy_from_soc(40.0, 50.0, 80.0) == 0.0
    assert session_energy_from_soc(60.0, 50.0, 0.0) == 0.0


def test_estimate_power_first_sample_has_no_estimate():
    power, trace = estimate_power(PowerTrace(), 1.0, T0, 50.0)
    assert power is None
    assert trace.energy_kwh == 1.0
    assert trace.sampled_at == T0


def test_estimate_power_within_gap_window():
    """0.01 kWh over one second is 36 kW."""
    trace = PowerTrace(energy_kwh=1.0, sampled_at=T0)
    power, trace = estimate_power(trace, 1.01, T0 + timedelta(seconds=1), 50.0)
    assert power == pytest.approx(36.0)
    assert trace.last_power_kw == pytest.approx(36.0)


def test_estimate_power_is_clamped_to_cap():
    trace = PowerTrace(energy_kwh=1.0, sampled_at=T0)
    power, _ = estimate_power(trace, 2.0, T0 + timedelta(seconds=1), 50.0)
    assert power == 50.0


@pytest.mark.parametrize("gap_s", [0.1, 0.2, 5.0, 8.0])
def test_estimate_power_ignores_gaps_outside_window(gap_s):
    trace = PowerTrace(energy_kwh=1.0, sampled_at=T0)
    power, _ = estimate_power(trace, 1.01, T0 + timedelta(seconds=gap_s), 50.0)
    assert power is None


def test_estimate_power_ignores_energy_drop():
    trace = PowerTrace(energy_kwh=1.0, sampled_at=T0)
    power, _ = estimate_power(trace, 0.9, T0 + timedelta(seconds=1), 50.0)
    assert power is None


def test_estimate_power_holds_last_positive_then_expires():
    """Without a fresh estimate the last one is reused for POWER_HOLD_S, then dropped."""
    trace = PowerTrace(
        energy_kwh=1.0,
        sampled_at=T0,
        last_power_kw=22.0,
        last_power_at=T0,
    )
    held, trace = estimate_power(trace, 1.0, T0 + timedelta(seconds=POWER_HOLD_S - 1), 50.0)
    assert held == 22.0

    expired, trace = estimate_power(trace, 1.0, T0 + timedelta(seconds=POWER_HOLD_S + 10), 50.0)
    assert expired is None
    assert trace.last_power_kw is None
    assert trace.last_power_at is None
