from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from chatqueue.domain.enums import Department, SessionDirection, SessionStatus


class ChatSessionResponse(BaseModel):
    id: UUID
    session_key: str
    customer_id: UUID | None
    customer_address: str
    instance: str
    status: SessionStatus
    direction: SessionDirection
    department: Department | None
    requested_operator_id: UUID | None
    assigned_operator_id: UUID | None
    supervisor_id: UUID | None
    metadata_json: dict[str, Any] | None
    bot_payload: dict[str, Any] | None
    bot_completed_at: datetime | None
    assigned_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatSessionListResponse(BaseModel):
    items: list[ChatSessionResponse]


class TabulationResponse(BaseModel):
    id: UUID
    session_id: UUID
    outcome_code: str
    notes: str | None
    tabulated_by: UUID | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransferSessionRequest(BaseModel):
    to_operator_id: UUID


class CompleteSessionRequest(BaseModel):
    outcome_code: str = Field(min_length=1, max_length=64)
    notes: str | None = Field(default=None, max_length=2000)


class CompleteSessionResponse(BaseModel):
    session: ChatSessionResponse
    tabulation: TabulationResponse


class StartOutboundRequest(BaseModel):
    address: str = Field(min_length=8, max_length=64)
    instance: str | None = None
    text: str | None = Field(default=None, max_length=4000)
    customer_name: str | None = Field(default=None, max_length=120)
