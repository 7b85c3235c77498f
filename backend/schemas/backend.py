"""Pydantic schemas for backend authority responses."""
from pydantic import BaseModel, ConfigDict, Field


class BackendCharger(BaseModel):
    """Charger record returned with the handshake."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int | None = None
    code: str | None = None
    power_kw: float = Field(default=0.0, alias="powerKw", allow_inf_nan=False)
    price_per_kwh: float | None = Field(default=None, alias="pricePerKwh")


class HandshakeData(BaseModel):
    """Session credentials issued for one vehicle visit."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: int = Field(alias="sessionId")
    channel_id: str | None = Field(default=None, alias="channelId")
    dock_jwt: str | None = Field(default=None, alias="dockJwt")
    ably_token: str | None = Field(default=None, alias="ablyToken")
    join_code: str | None = Field(default=None, alias="joinCode")
    charger: BackendCharger | None = None


class HandshakeApiResponse(BaseModel):
    """Envelope around HandshakeData; channelId may sit on either level."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str | None = None
    ok: bool | None = None
    channel_id: str | None = Field(default=None, alias="channelId")
    data: HandshakeData


class PingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ok: bool | None = None
    server_time: str | None = Field(default=None, alias="serverTime")
