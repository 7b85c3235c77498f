"""Inbound event payloads: realtime channel events (tagged union) and vehicle messages."""
import logging
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

LOG = logging.getLogger(__name__)

# Realtime event names
SESSION_SPECS = "session_specs"
START_SESSION = "start_session"
START_CHARGING = "start_charging"
LOAD_CAR_INFO = "load_car_information"
DOCK_HEARTBEAT = "dock_heartbeat"
CAR_INFO = "car_information"
SOC_UPDATE = "soc_update"
CHARGING_COMPLETE = "charging_complete"

INBOUND_CHANNEL_EVENTS = (SESSION_SPECS, START_SESSION, START_CHARGING, LOAD_CAR_INFO)

# Vehicle socket event names
CAR_CONFIGURE = "car_configure"
HANDSHAKE_SUCCESS = "handshake_success"
CONNECTION_REJECTED = "connection_rejected"
VALIDATION_ERROR = "validation_error"
CONFIGURATION_COMPLETE = "configuration_complete"
POWER_UPDATE = "power_update"


class SpecsVehicle(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    battery_capacity_kwh: float = Field(alias="batteryCapacityKwh", allow_inf_nan=False)
    max_power_kw: float | None = Field(default=None, alias="maxPowerKw", allow_inf_nan=False)


class SpecsCharger(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    power_kw: float = Field(alias="powerKw", allow_inf_nan=False)


class SessionSpecsEvent(BaseModel):
    """Vehicle and charger specs for the session, published by the backend."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: Literal["session_specs"]
    session_id: int | None = Field(default=None, alias="sessionId")
    vehicle: SpecsVehicle
    charger: SpecsCharger
    initial_soc: float | None = Field(default=None, alias="initialSoc", allow_inf_nan=False)
    target_soc: float | None = Field(default=None, alias="targetSoc", allow_inf_nan=False)


class StartSessionEvent(BaseModel):
    """Request to start charging; the target SOC is optional."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: Literal["start_session", "start_charging"]
    target_soc: float | None = Field(
        default=None,
        validation_alias=AliasChoices("targetSOC", "TargetSOC", "target_soc", "targetSoc"),
        allow_inf_nan=False,
    )


class LoadCarInformationEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["load_car_information"]


ChannelEvent = Annotated[
    Union[SessionSpecsEvent, StartSessionEvent, LoadCarInformationEvent],
    Field(discriminator="kind"),
]

_channel_event_adapter: TypeAdapter[ChannelEvent] = TypeAdapter(ChannelEvent)


def parse_channel_event(name: str, data: Any) -> ChannelEvent | None:
    """
    Validate a realtime message into its event model.
    Returns None (and logs) for unknown names or invalid payloads.
    """
    if name not in INBOUND_CHANNEL_EVENTS:
        LOG.info("Ignoring unknown channel event %r", name)
        return None
    payload = dict(data) if isinstance(data, dict) else {}
    payload["kind"] = name
    try:
        return _channel_event_adapter.validate_python(payload)
    except ValidationError as e:
        LOG.warning("Invalid %s payload ignored: %s", name, e)
        return None


class CarConfigureMessage(BaseModel):
    """Battery state sent by the vehicle after connecting."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    battery_capacity: float = Field(alias="batteryCapacity", allow_inf_nan=False)
    max_capacity: float = Field(alias="maxCapacity", allow_inf_nan=False)
    timestamp: str | None = None
