from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from chatqueue.domain.enums import BotSessionStatus


class GatewayError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class UpstreamBotSession(BaseModel):
    """A bot session as reported by the gateway's session listing."""

    id: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")
    remote_jid: str = Field(alias="remoteJid")
    push_name: str | None = Field(default=None, alias="pushName")
    status: str | None = None
    bot_id: str | None = Field(default=None, alias="botId")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @property
    def is_opened(self) -> bool:
        return self.status == BotSessionStatus.OPENED.value


class ChatGateway(Protocol):
    async def send_text(self, instance: str, address: str, text: str) -> dict[str, Any]: ...

    async def change_bot_session_status(
        self,
        instance: str,
        remote_jid: str,
        status: BotSessionStatus,
    ) -> None: ...

    async def fetch_bot_sessions(self, instance: str, bot_id: str) -> list[UpstreamBotSession]: ...
