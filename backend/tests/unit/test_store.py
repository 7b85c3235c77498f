"""Unit tests: dock_core store (in-memory coordinator registry)."""
import pytest

from dock_core.store import clear, get_coordinator, set_coordinator

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def clear_store():
    """Clear store before and after each test so tests don't leak state."""
    clear()
    yield
    clear()


def test_empty_store_has_no_coordinator():
    assert get_coordinator() is None


def test_set_then_get(coordinator):
    set_coordinator(coordinator)
    assert get_coordinator() is coordinator


def test_set_replaces(coordinator, backend):
    from dock_core.coordinator import SessionCoordinator

    set_coordinator(coordinator)
    other = SessionCoordinator(backend)
    set_coordinator(other)
    assert get_coordinator() is other


def test_clear(coordinator):
    set_coordinator(coordinator)
    clear()
    assert get_coordinator() is None
