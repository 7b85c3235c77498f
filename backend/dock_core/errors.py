"""Dock error types."""
from typing import Optional


class DockError(Exception):
    """Base class for dock failures."""


class SlotOccupiedError(DockError):
    """A vehicle tried to connect while the dock already serves one."""


class HandshakeError(DockError):
    """The backend did not issue a usable session for this visit."""


class BackendError(DockError):
    """A backend HTTP call failed. status_code is None for transport errors."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
