"""Async HTTP client for the backend authority: handshake, ping, telemetry log, session start/complete."""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from dock_core.errors import BackendError
from schemas.backend import HandshakeApiResponse, HandshakeData, PingResponse

LOG = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# Status codes meaning "this backend has no such completion endpoint".
_LEGACY_FALLBACK_STATUSES = frozenset({404, 405})


def format_http_error(error: Exception) -> str:
    """Short description of an httpx failure, including the response body when present."""
    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        body = response.text.strip()
        return f"status {response.status_code}: {body or response.reason_phrase}"
    return str(error) or error.__class__.__name__


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision and Z suffix."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class BackendGateway:
    """
    Thin wrapper over httpx.AsyncClient. Every method raises BackendError on
    non-2xx responses and transport errors, except complete_session which
    reports success as a bool.
    """

    def __init__(
        self,
        base_url: str,
        dock_id: str,
        secret_key: str,
        *,
        timeout_s: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.dock_id = dock_id
        self.secret_key = secret_key
        if not base_url:
            LOG.warning("BACKEND_URL is not set; backend requests will fail")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        *,
        token: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            response = await self._client.post(f"{API_PREFIX}{path}", json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendError(format_http_error(e), status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise BackendError(format_http_error(e)) from e
        return response

    def _dock_id_value(self) -> Any:
        return int(self.dock_id) if self.dock_id.isdigit() else self.dock_id

    async def handshake(self) -> HandshakeData:
        """Open a session for this visit. Requires dock id and secret."""
        if not self.dock_id:
            raise BackendError("DOCK_ID environment variable is not set")
        if not self.secret_key:
            raise BackendError("DOCK_SECRET environment variable is not set")
        response = await self._post(
            f"/docks/{self.dock_id}/handshake",
            {"secretKey": self.secret_key},
            token=self.secret_key,
        )
        try:
            parsed = HandshakeApiResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise BackendError(f"unexpected handshake response: {e}", status_code=response.status_code) from e
        data = parsed.data
        if not data.channel_id and parsed.channel_id:
            data = data.model_copy(update={"channel_id": parsed.channel_id})
        LOG.info("Dock handshake successful: session=%s channel=%s", data.session_id, data.channel_id)
        return data

    async def ping(self) -> Optional[str]:
        """Keep-alive; returns the server time when the backend reports one."""
        response = await self._post(
            "/docks/ping",
            {"dockId": self._dock_id_value(), "secretKey": self.secret_key},
        )
        try:
            return PingResponse.model_validate(response.json()).server_time
        except (ValueError, ValidationError):
            return None

    async def send_log(
        self,
        *,
        soc_pct: float,
        state: str,
        sampled_at: Optional[datetime] = None,
        power_kw: Optional[float] = None,
        session_energy_kwh: Optional[float] = None,
    ) -> None:
        """POST a dock telemetry sample. state is CHARGING or PARKING."""
        body: dict[str, Any] = {
            "dockId": self._dock_id_value(),
            "secretKey": self.secret_key,
            "sampleAt": utc_timestamp(sampled_at),
            "socPercent": int(round(max(0.0, min(100.0, soc_pct)))),
            "state": state,
        }
        if power_kw is not None:
            body["powerKw"] = round(power_kw, 2)
        if session_energy_kwh is not None:
            body["sessionEnergyKwh"] = round(session_energy_kwh, 2)
        await self._post("/docks/log", body)

    async def start_session(self, session_id: int, target_soc: float, *, token: Optional[str]) -> None:
        await self._post(
            "/sessions/start",
            {"sessionId": session_id, "targetSoc": target_soc},
            token=token,
        )

    async def complete_session(
        self,
        session_id: int,
        *,
        token: Optional[str],
        energy_kwh: float,
        duration_s: int,
        end_soc: float,
        price_per_kwh: Optional[float],
        reason: str,
    ) -> bool:
        """
        Report the finished session. When the backend has no completion
        endpoint (404/405) the legacy stop endpoint is tried once.
        Returns True if either call succeeded.
        """
        try:
            await self._post(
                f"/sessions/{session_id}/complete",
                {
                    "energyKwh": round(energy_kwh, 2),
                    "durationSeconds": duration_s,
                    "endSoc": int(round(end_soc)),
                    "pricePerKwhOverride": price_per_kwh,
                },
                token=token,
            )
            return True
        except BackendError as e:
            if e.status_code not in _LEGACY_FALLBACK_STATUSES:
                LOG.warning("Failed to complete session %s with backend: %s", session_id, e)
                return False
            LOG.info("Completion endpoint unavailable (%s); trying legacy stop", e.status_code)
        try:
            await self._post(
                f"/charging-sessions/{session_id}/stop",
                {"reason": reason, "finalSoc": round(end_soc, 2), "energyKwh": round(energy_kwh, 4)},
                token=token,
            )
            return True
        except BackendError as e:
            LOG.warning("Legacy stop also failed for session %s: %s", session_id, e)
            return False
