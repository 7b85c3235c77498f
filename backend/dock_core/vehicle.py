"""Vehicle connection interface: outbound notifications to the connected car."""
from datetime import datetime, timezone
from typing import Any


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class VehicleConnection:
    """
    One inbound vehicle connection. emit() sends an event envelope,
    disconnect() closes the connection from the dock side.
    """

    connection_id: str = ""

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        raise NotImplementedError

    async def disconnect(self) -> None:
        raise NotImplementedError
