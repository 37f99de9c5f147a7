from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GatewayWebhookEnvelope(BaseModel):
    event: str = Field(min_length=1)
    instance: str | None = None
    data: Any = None
    date_time: str | None = None
    sender: str | None = None
    server_url: str | None = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class WebhookAckResponse(BaseModel):
    processed: bool
    event: str
    detail: str
    data: dict[str, Any] | None = None
