"""Dock phase state machine and connection slot."""
from enum import Enum
from typing import Optional

from dock_core.session import DockSession


class DockPhase(str, Enum):
    """Lifecycle phases of the dock's single session."""
    IDLE = "IDLE"
    HANDSHAKING = "HANDSHAKING"
    READY = "READY"
    CHARGING = "CHARGING"
    COMPLETING = "COMPLETING"


# Valid phase transitions: from_phase -> set of allowed to_phases
_VALID_TRANSITIONS: dict[DockPhase, set[DockPhase]] = {
    DockPhase.IDLE: {DockPhase.HANDSHAKING},
    DockPhase.HANDSHAKING: {DockPhase.READY, DockPhase.IDLE},
    DockPhase.READY: {DockPhase.CHARGING, DockPhase.IDLE},
    DockPhase.CHARGING: {DockPhase.COMPLETING},
    DockPhase.COMPLETING: {DockPhase.IDLE},
}

MAX_CONNECTIONS = 1


class Dock:
    """
    The one physical charging point: phase, connection slot and live session.
    Only the session coordinator mutates it.
    """

    __slots__ = ("dock_id", "phase", "connection_slot", "session")

    def __init__(self, dock_id: str = "") -> None:
        self.dock_id = dock_id
        self.phase = DockPhase.IDLE
        self.connection_slot = 0
        self.session: Optional[DockSession] = None

    def transition_to(self, new_phase: DockPhase) -> bool:
        """Validate and perform phase transition. Returns True if applied."""
        allowed = _VALID_TRANSITIONS.get(self.phase)
        if allowed is None or new_phase not in allowed:
            return False
        self.phase = new_phase
        return True

    def can_transition_to(self, new_phase: DockPhase) -> bool:
        """Check if transition is allowed without applying."""
        allowed = _VALID_TRANSITIONS.get(self.phase)
        return allowed is not None and new_phase in allowed

    @property
    def is_occupied(self) -> bool:
        return self.connection_slot >= MAX_CONNECTIONS

    def occupy(self) -> bool:
        """Take the connection slot. Returns False if it is already taken."""
        if self.is_occupied:
            return False
        self.connection_slot += 1
        return True

    def release(self) -> None:
        """Free the connection slot; never goes below zero."""
        self.connection_slot = max(0, self.connection_slot - 1)

    def reset(self) -> None:
        """Drop the session and return to IDLE, whatever the current phase."""
        self.session = None
        self.phase = DockPhase.IDLE
