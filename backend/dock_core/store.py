"""In-memory coordinator registry: the API layer's handle on the running dock."""
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from dock_core.coordinator import SessionCoordinator

_store: dict[str, "SessionCoordinator"] = {}

_KEY = "dock"


def get_coordinator() -> Optional["SessionCoordinator"]:
    """The registered coordinator or None before startup."""
    return _store.get(_KEY)


def set_coordinator(coordinator: "SessionCoordinator") -> None:
    """Register (or replace) the dock's coordinator."""
    _store[_KEY] = coordinator


def clear() -> None:
    """Drop the registered coordinator (shutdown, tests)."""
    _store.clear()
