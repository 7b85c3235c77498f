"""Session coordinator: the dock's lifecycle state machine and the only writer of session state."""
import functools
import math
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError

from dock_core.charging_engine import advance, power_cap_kw, round2
from dock_core.completion import CompletionOutcome, CompletionSnapshot, SingleFlight, reconcile_completion
from dock_core.dock import Dock, DockPhase
from dock_core.errors import BackendError, HandshakeError, SlotOccupiedError
from dock_core.realtime import ChannelFactory, RealtimeChannel, ably_channel_factory
from dock_core.scheduler import TaskGroup
from dock_core.session import (
    DEFAULT_TARGET_SOC,
    ChargerSpec,
    DockSession,
    PowerTrace,
    VehicleSpec,
    validate_vehicle_spec,
)
from dock_core.telemetry import TelemetryPublisher, TelemetrySnapshot, build_sample
from dock_core.vehicle import VehicleConnection, iso_now
from schemas.events import (
    CAR_CONFIGURE,
    CONFIGURATION_COMPLETE,
    CONNECTION_REJECTED,
    HANDSHAKE_SUCCESS,
    INBOUND_CHANNEL_EVENTS,
    POWER_UPDATE,
    START_CHARGING,
    VALIDATION_ERROR,
    CarConfigureMessage,
    LoadCarInformationEvent,
    SessionSpecsEvent,
    StartSessionEvent,
    parse_channel_event,
)

if TYPE_CHECKING:
    from dock_core.backend_client import BackendGateway

LOG = logging.getLogger(__name__)

POWER_TASK = "power-tick"
TELEMETRY_TASK = "telemetry-tick"
PING_TASK = "backend-ping"
HEARTBEAT_TASK = "dock-heartbeat"

OCCUPIED_REASON = "Dock is already occupied by another vehicle"
HANDSHAKE_FAILED_REASON = "Failed to initialize dock session with backend"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionCoordinator:
    """
    Owns the Dock and its one DockSession. Vehicle messages, realtime events
    and periodic ticks all funnel through here; the charging engine and
    telemetry publisher only receive snapshots.

    Phases: IDLE -> HANDSHAKING -> READY -> CHARGING -> COMPLETING -> IDLE.
    """

    def __init__(
        self,
        backend: "BackendGateway",
        *,
        channel_factory: ChannelFactory = ably_channel_factory,
        telemetry: Optional[TelemetryPublisher] = None,
        power_tick_s: float = 1.0,
        sim_seconds_per_tick: Optional[float] = None,
        log_tick_s: float = 1.0,
        ping_interval_s: float = 10.0,
        heartbeat_interval_s: float = 10.0,
    ) -> None:
        self.dock = Dock(getattr(backend, "dock_id", ""))
        self._backend = backend
        self._channel_factory = channel_factory
        self._telemetry = telemetry or TelemetryPublisher(backend)
        self.power_tick_s = power_tick_s
        self.sim_seconds_per_tick = sim_seconds_per_tick if sim_seconds_per_tick is not None else power_tick_s
        self.log_tick_s = log_tick_s
        self.ping_interval_s = ping_interval_s
        self.heartbeat_interval_s = heartbeat_interval_s
        self._vehicle: Optional[VehicleConnection] = None
        self._channel: Optional[RealtimeChannel] = None
        self._tasks = TaskGroup()
        self._completions = SingleFlight()
        self._start_in_flight = False
        self.last_completion: Optional[CompletionOutcome] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def backend(self) -> "BackendGateway":
        return self._backend

    @property
    def phase(self) -> DockPhase:
        return self.dock.phase

    @property
    def session(self) -> Optional[DockSession]:
        return self.dock.session

    @property
    def vehicle_connected(self) -> bool:
        return self._vehicle is not None and self._vehicle.is_open

    @property
    def running_tasks(self) -> list[str]:
        return self._tasks.names()

    def status(self) -> dict[str, Any]:
        """Snapshot for the dock status endpoint."""
        session = self.dock.session
        vehicle = session.vehicle if session else None
        return {
            "phase": self.dock.phase.value,
            "connection_slot": self.dock.connection_slot,
            "vehicle_connected": self.vehicle_connected,
            "session_id": session.session_id if session else None,
            "channel_id": session.channel_id if session else None,
            "is_charging": bool(session and session.is_charging),
            "current_capacity_kwh": round2(vehicle.current_capacity_kwh) if vehicle else None,
            "max_capacity_kwh": round2(vehicle.max_capacity_kwh) if vehicle else None,
            "current_soc": round2(vehicle.soc_pct) if vehicle else None,
            "target_soc": session.target_soc if session else None,
            "session_charged_kwh": round2(session.session_charged_kwh) if session else None,
        }

    # ------------------------------------------------------------------
    # Connection and handshake
    # ------------------------------------------------------------------

    async def accept_connection(self, vehicle: VehicleConnection) -> bool:
        """
        Admit a vehicle into the single connection slot and open its session.
        Raises SlotOccupiedError (after rejecting and disconnecting the vehicle)
        when another vehicle holds the slot. Returns False if the handshake failed.
        """
        if not self.dock.occupy():
            LOG.info("Connection rejected: another vehicle is already connected")
            await self._notify(vehicle, CONNECTION_REJECTED, {"reason": OCCUPIED_REASON})
            await self._close(vehicle)
            raise SlotOccupiedError(OCCUPIED_REASON)
        self._vehicle = vehicle
        self._transition(DockPhase.HANDSHAKING)
        LOG.info("Vehicle %s connected; starting handshake", vehicle.connection_id)
        return await self.perform_handshake(vehicle)

    async def perform_handshake(self, vehicle: VehicleConnection) -> bool:
        """Obtain session credentials and attach the realtime channel. Any failure rejects the vehicle."""
        try:
            data = await self._backend.handshake()
            if not data.ably_token:
                raise HandshakeError("handshake response has no realtime token")
            if not data.channel_id:
                raise HandshakeError("handshake response has no channel id")
            try:
                channel = self._channel_factory(data.ably_token, data.channel_id)
            except Exception as e:
                raise HandshakeError(f"realtime client unavailable: {e}") from e
            try:
                await channel.attach()
                await channel.subscribe(INBOUND_CHANNEL_EVENTS, self._on_channel_event)
            except Exception as e:
                await channel.dispose()
                raise HandshakeError(f"realtime channel unavailable: {e}") from e
        except (BackendError, HandshakeError) as e:
            LOG.error("Dock handshake failed: %s", e)
            if self._vehicle is vehicle:
                await self._notify(vehicle, CONNECTION_REJECTED, {"reason": HANDSHAKE_FAILED_REASON})
                await self._release(vehicle)
            return False

        if self._vehicle is not vehicle:
            LOG.info("Vehicle left during handshake; discarding session %s", data.session_id)
            await channel.dispose()
            return False

        charger = data.charger
        session = DockSession(
            session_id=data.session_id,
            channel_id=data.channel_id,
            join_code=data.join_code,
            dock_token=data.dock_jwt,
            realtime_token=data.ably_token,
            charger=ChargerSpec(
                power_kw=charger.power_kw if charger else 0.0,
                price_per_kwh=charger.price_per_kwh if charger else None,
            ),
        )
        self.dock.session = session
        self._channel = channel
        self._tasks.start(PING_TASK, self.ping_interval_s, self._telemetry.ping)
        self._tasks.start(HEARTBEAT_TASK, self.heartbeat_interval_s, self._heartbeat_tick)
        self._transition(DockPhase.READY)
        await self._notify(vehicle, HANDSHAKE_SUCCESS, {
            "sessionId": session.session_id,
            "channelId": session.channel_id,
            "joinCode": session.join_code or "N/A",
            "message": "Successfully connected to dock. Please configure your vehicle.",
        })
        return True

    # ------------------------------------------------------------------
    # Vehicle messages
    # ------------------------------------------------------------------

    async def handle_vehicle_message(self, vehicle: VehicleConnection, message: Any) -> None:
        """Dispatch one {"event", "data"} envelope from the vehicle."""
        if not isinstance(message, dict):
            LOG.warning("Ignoring malformed vehicle message: %r", message)
            return
        event = message.get("event")
        data = message.get("data")
        if event == CAR_CONFIGURE:
            await self.configure_vehicle(vehicle, data if isinstance(data, dict) else {})
        else:
            LOG.info("Ignoring unknown vehicle event %r", event)

    async def configure_vehicle(self, vehicle: VehicleConnection, payload: dict[str, Any]) -> bool:
        """Store the vehicle's battery state. Only valid in READY; invalid input changes nothing."""
        if vehicle is not self._vehicle:
            return False
        session = self.dock.session
        if session is None or self.dock.phase != DockPhase.READY or self._start_in_flight:
            LOG.warning("car_configure ignored in phase %s", self.dock.phase.value)
            await self._reject(vehicle, CAR_CONFIGURE, "Dock is not ready for vehicle configuration")
            return False
        try:
            message = CarConfigureMessage.model_validate(payload)
        except ValidationError as e:
            LOG.error("Invalid configuration payload: %s", e)
            await self._reject(vehicle, CAR_CONFIGURE, "batteryCapacity and maxCapacity must be numbers")
            return False

        LOG.info(
            "Received configuration: Current: %s kWh, Max: %s kWh",
            message.battery_capacity, message.max_capacity,
        )
        error = validate_vehicle_spec(message.battery_capacity, message.max_capacity)
        if error:
            LOG.error("Invalid configuration: %s", error)
            await self._reject(vehicle, CAR_CONFIGURE, error)
            return False

        session.vehicle = VehicleSpec(
            current_capacity_kwh=message.battery_capacity,
            max_capacity_kwh=message.max_capacity,
            max_power_kw=session.vehicle_max_power_kw,
        )
        await self._notify(vehicle, CONFIGURATION_COMPLETE, {
            "message": "Vehicle configured. Waiting for charging to start.",
        })
        return True

    # ------------------------------------------------------------------
    # Realtime events
    # ------------------------------------------------------------------

    async def _on_channel_event(self, name: str, data: Any) -> None:
        event = parse_channel_event(name, data)
        if event is None:
            return
        if isinstance(event, StartSessionEvent):
            LOG.info("Start charging event received: target=%s", event.target_soc)
            await self.start_charging(event.target_soc)
        elif isinstance(event, SessionSpecsEvent):
            self.apply_session_specs(event)
        elif isinstance(event, LoadCarInformationEvent):
            session = self.dock.session
            if session is None or session.vehicle is None:
                LOG.info("Car information requested before configuration; ignoring")
                return
            await self._telemetry.car_information(
                self._channel,
                session.vehicle.current_capacity_kwh,
                session.vehicle.max_capacity_kwh,
            )

    def apply_session_specs(self, specs: SessionSpecsEvent) -> None:
        """Merge backend-published vehicle/charger specs into the live session."""
        session = self.dock.session
        if session is None:
            LOG.info("Session specs received with no live session; ignoring")
            return
        if specs.session_id is not None and specs.session_id != session.session_id:
            LOG.warning("Session specs for session %s ignored (live session %s)", specs.session_id, session.session_id)
            return
        LOG.info("Session specs received for session %s", session.session_id)
        if specs.charger.power_kw > 0:
            session.charger.power_kw = specs.charger.power_kw
        session.vehicle_max_power_kw = specs.vehicle.max_power_kw
        if session.vehicle is not None:
            session.vehicle.max_power_kw = specs.vehicle.max_power_kw
        session.specs_battery_kwh = specs.vehicle.battery_capacity_kwh
        session.initial_soc = specs.initial_soc
        session.trace = PowerTrace()

    # ------------------------------------------------------------------
    # Charging
    # ------------------------------------------------------------------

    def _start_error(self, session: DockSession, requested_target_soc: Optional[float]) -> Optional[str]:
        if not session.is_configured:
            return "Vehicle is not configured"
        if not math.isfinite(session.charger.power_kw) or session.charger.power_kw <= 0:
            return "Charger power is not available"
        current_soc = session.current_soc
        if requested_target_soc is None:
            if current_soc >= DEFAULT_TARGET_SOC:
                return "Battery is already full"
            return None
        if not math.isfinite(requested_target_soc):
            return "Invalid targetSOC: must be a finite number"
        if requested_target_soc < 0 or requested_target_soc > 100:
            return f"Invalid targetSOC: {requested_target_soc:g}. Must be between 0-100"
        if requested_target_soc <= current_soc:
            return (
                f"Invalid targetSOC: {requested_target_soc:g}% is not greater than "
                f"current SOC {current_soc:.1f}%"
            )
        return None

    async def start_charging(self, requested_target_soc: Optional[float] = None) -> bool:
        """
        Start the charging simulation once the backend acknowledges the session.
        Returns True if charging started.
        """
        session = self.dock.session
        vehicle = self._vehicle
        if self.dock.phase == DockPhase.CHARGING or (session is not None and session.is_charging):
            LOG.info("Charging already in progress, rejecting start request")
            return False
        if self._start_in_flight:
            LOG.info("Charging start already in progress, ignoring duplicate request")
            return False
        if session is None or vehicle is None or not vehicle.is_open:
            LOG.info("No car connected, cannot start charging")
            return False
        if not self.dock.can_transition_to(DockPhase.CHARGING):
            LOG.info("Cannot start charging in phase %s", self.dock.phase.value)
            return False

        error = self._start_error(session, requested_target_soc)
        if error:
            LOG.error("Start charging rejected: %s", error)
            await self._reject(vehicle, START_CHARGING, error)
            return False

        if requested_target_soc is None:
            LOG.info("Target SOC not specified, defaulting to %s%%", DEFAULT_TARGET_SOC)
            target_soc = DEFAULT_TARGET_SOC
        else:
            target_soc = float(requested_target_soc)

        self._start_in_flight = True
        try:
            await self._backend.start_session(session.session_id, target_soc, token=session.dock_token)
        except BackendError as e:
            LOG.error("Failed to start session with backend: %s", e)
            return False
        finally:
            self._start_in_flight = False

        if (
            self.dock.session is not session
            or self._vehicle is not vehicle
            or not self.dock.can_transition_to(DockPhase.CHARGING)
        ):
            LOG.warning("Session %s ended while starting; charging not started", session.session_id)
            return False

        session.begin_charging(target_soc, _utcnow())
        self._transition(DockPhase.CHARGING)
        self._tasks.start(POWER_TASK, self.power_tick_s, functools.partial(self._power_tick, session))
        self._tasks.start(TELEMETRY_TASK, self.log_tick_s, functools.partial(self._telemetry_tick, session))
        LOG.info(
            "Charging session %s started: SOC %.1f%% -> target %s%%",
            session.session_id, session.current_soc, target_soc,
        )
        return True

    async def _power_tick(self, session: DockSession) -> None:
        """Deliver one tick of energy; on reaching the target hand off to completion."""
        if session is not self.dock.session or not session.is_charging or session.vehicle is None:
            return
        vehicle = self._vehicle
        if vehicle is None or not vehicle.is_open:
            return

        result = advance(session.charger, session.vehicle, session.target_soc, self.sim_seconds_per_tick)
        session.vehicle.current_capacity_kwh = result.capacity_kwh
        session.session_charged_kwh += result.delivered_kwh
        session.last_tick_power_kw = result.power_kw
        if result.target_reached:
            session.is_charging = False
            self._tasks.cancel(POWER_TASK, TELEMETRY_TASK)

        await self._notify(vehicle, POWER_UPDATE, {
            "kwh": round2(result.delivered_kwh),
            "currentCapacity": round2(result.capacity_kwh),
            "maxCapacity": round2(session.vehicle.max_capacity_kwh),
            "currentSOC": round2(result.soc_pct),
            "chargingPowerKw": round2(result.power_kw),
        })
        LOG.debug(
            "Power update - SOC: %.1f%% | Capacity: %.3f kWh | Power: %.2f kW | Energy added: %.2f Wh",
            result.soc_pct, result.capacity_kwh, result.power_kw, result.delivered_kwh * 1000,
        )

        if result.target_reached:
            LOG.info("Target SOC %s%% reached. Stopping charging.", session.target_soc)
            self._begin_completion(session, f"Charging complete! Reached target SOC of {session.target_soc:g}%")

    async def _telemetry_tick(self, session: DockSession) -> None:
        if session is not self.dock.session or not session.is_charging or session.vehicle is None:
            return
        vehicle = session.vehicle
        snapshot = TelemetrySnapshot(
            session_id=session.session_id,
            soc_pct=vehicle.soc_pct,
            session_energy_kwh=session.session_charged_kwh,
            engine_power_kw=session.last_tick_power_kw,
            cap_kw=power_cap_kw(session.charger.power_kw, vehicle.max_power_kw),
            trace=session.trace,
            initial_soc=session.initial_soc,
            battery_kwh=session.specs_battery_kwh or vehicle.max_capacity_kwh,
        )
        sample, trace = build_sample(snapshot, _utcnow())
        session.trace = trace
        await self._telemetry.publish(sample, self._channel)

    async def _heartbeat_tick(self) -> None:
        await self._telemetry.heartbeat(self._channel)

    # ------------------------------------------------------------------
    # Completion and teardown
    # ------------------------------------------------------------------

    def _begin_completion(self, session: DockSession, reason: str):
        return self._completions.run(session.session_id, functools.partial(self._complete, session, reason))

    async def complete_session(self, reason: str) -> Optional[CompletionOutcome]:
        """
        Finish the live session. Only one completion runs per session; later
        callers wait for (or get the result of) the first one.
        """
        session = self.dock.session
        if session is None:
            return None
        if not self._completions.has_run(session.session_id) and self.dock.phase != DockPhase.CHARGING:
            LOG.warning("complete_session ignored in phase %s", self.dock.phase.value)
            return None
        self._begin_completion(session, reason)
        return await self._completions.wait(session.session_id)

    async def _complete(self, session: DockSession, reason: str) -> CompletionOutcome:
        session.is_charging = False
        self._tasks.cancel(POWER_TASK, TELEMETRY_TASK)
        self._transition(DockPhase.COMPLETING)
        vehicle = self._vehicle
        spec = session.vehicle
        snapshot = CompletionSnapshot(
            session_id=session.session_id,
            dock_token=session.dock_token,
            capacity_kwh=spec.current_capacity_kwh if spec else 0.0,
            max_capacity_kwh=spec.max_capacity_kwh if spec else 0.0,
            target_soc=session.target_soc,
            charged_kwh=session.session_charged_kwh,
            started_at=session.session_start_time,
            price_per_kwh=session.charger.price_per_kwh,
        )
        try:
            outcome = await reconcile_completion(
                snapshot,
                reason,
                backend=self._backend,
                channel=self._channel,
                vehicle=vehicle,
            )
            self.last_completion = outcome
            LOG.info("Charging completion finished for session %s", session.session_id)
            return outcome
        finally:
            if vehicle is not None:
                await self._release(vehicle)

    async def on_disconnect(self, vehicle: VehicleConnection) -> None:
        """
        Vehicle went away. A running charge is completed as interrupted; an
        in-flight completion is awaited. Then everything is released.
        Safe to call more than once.
        """
        if vehicle is not self._vehicle:
            LOG.debug("Disconnect from a vehicle that holds no slot; ignoring")
            return
        LOG.info("Vehicle %s disconnected in phase %s", vehicle.connection_id, self.dock.phase.value)
        session = self.dock.session
        if session is not None and self.dock.phase == DockPhase.CHARGING:
            session.is_charging = False
            self._tasks.cancel(POWER_TASK, TELEMETRY_TASK)
            LOG.info("Car disconnected during charging - triggering session completion")
            self._begin_completion(
                session,
                f"Charging interrupted! Vehicle disconnected at {session.current_soc:.1f}% SOC",
            )
        if session is not None and self._completions.pending(session.session_id) is not None:
            try:
                await self._completions.wait(session.session_id)
            except Exception:
                LOG.exception("Session completion failed during disconnect")
        await self._release(vehicle)

    async def _release(self, vehicle: VehicleConnection) -> None:
        """Tear down everything owned by this vehicle's visit. No-op if already released."""
        if vehicle is not self._vehicle:
            return
        self._tasks.cancel_all()
        channel, self._channel = self._channel, None
        session = self.dock.session
        self._vehicle = None
        self.dock.release()
        self.dock.reset()
        if session is not None:
            self._completions.forget(session.session_id)
        if channel is not None:
            await channel.dispose()
        if vehicle.is_open:
            await self._close(vehicle)
        LOG.info("Cleanup completed. Ready for next connection.")

    async def shutdown(self) -> None:
        """Stop the dock: finish a running charge, then release the vehicle."""
        await self._tasks.stop_all()
        vehicle = self._vehicle
        if vehicle is None:
            return
        session = self.dock.session
        if session is not None and (
            self.dock.phase == DockPhase.CHARGING or self._completions.pending(session.session_id)
        ):
            session.is_charging = False
            await self.complete_session("Charging stopped: dock is shutting down")
        await self._release(vehicle)

    # ------------------------------------------------------------------
    # Vehicle I/O helpers
    # ------------------------------------------------------------------

    def _transition(self, phase: DockPhase) -> bool:
        if not self.dock.transition_to(phase):
            LOG.warning("Refused phase transition %s -> %s", self.dock.phase.value, phase.value)
            return False
        return True

    async def _notify(self, vehicle: VehicleConnection, event: str, data: dict[str, Any]) -> None:
        payload = dict(data)
        payload.setdefault("timestamp", iso_now())
        try:
            await vehicle.emit(event, payload)
        except Exception as e:
            LOG.warning("Failed to send %s to vehicle: %s", event, e)

    async def _reject(self, vehicle: VehicleConnection, event: str, error: str) -> None:
        await self._notify(vehicle, VALIDATION_ERROR, {"event": event, "error": error})

    async def _close(self, vehicle: VehicleConnection) -> None:
        try:
            await vehicle.disconnect()
        except Exception as e:
            LOG.debug("Error while disconnecting vehicle: %s", e)
