from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from chatqueue.core.config import Settings
from chatqueue.domain.enums import BotSessionStatus
from chatqueue.infra.gateway.protocol import GatewayError, UpstreamBotSession

logger = logging.getLogger(__name__)


class EvolutionGatewayClient:
    """HTTP client for the three gateway operations the routing engine needs."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"apikey": api_key, "Content-Type": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> EvolutionGatewayClient:
        return cls(
            base_url=settings.evolution_api_base_url,
            api_key=settings.evolution_api_key,
            timeout_seconds=settings.evolution_api_timeout_seconds,
        )

    async def send_text(self, instance: str, address: str, text: str) -> dict[str, Any]:
        body = await self._request(
            "POST",
            f"/message/sendText/{instance}",
            json={"number": address, "text": text},
        )
        return body if isinstance(body, dict) else {}

    async def change_bot_session_status(
        self,
        instance: str,
        remote_jid: str,
        status: BotSessionStatus,
    ) -> None:
        await self._request(
            "POST",
            f"/typebot/changeStatus/{instance}",
            json={"remoteJid": remote_jid, "status": status.value},
        )

    async def fetch_bot_sessions(self, instance: str, bot_id: str) -> list[UpstreamBotSession]:
        body = await self._request("GET", f"/typebot/fetchSessions/{bot_id}/{instance}")
        if isinstance(body, dict):
            body = body.get("sessions", [])
        if not isinstance(body, list):
            raise GatewayError(
                f"Unexpected bot session listing for instance '{instance}'",
                detail=type(body).__name__,
            )

        sessions: list[UpstreamBotSession] = []
        for item in body:
            try:
                sessions.append(UpstreamBotSession.model_validate(item))
            except ValidationError:
                logger.warning(
                    "Skipping malformed bot session from instance %s: %r", instance, item
                )
        return sessions

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise GatewayError(
                f"Gateway request {method} {path} failed", detail=str(exc)
            ) from exc

        if response.is_error:
            raise GatewayError(
                f"Gateway request {method} {path} returned {response.status_code}",
                status_code=response.status_code,
                detail=response.text[:500],
            )
        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(
                f"Gateway request {method} {path} returned invalid JSON",
                status_code=response.status_code,
            ) from exc
