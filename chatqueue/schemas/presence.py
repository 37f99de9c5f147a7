from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from chatqueue.domain.enums import Department, OperatorProfile


class ConnectedOperatorResponse(BaseModel):
    connection_id: str
    operator_id: UUID
    operator_name: str
    department: Department | None
    profile: OperatorProfile
    available: bool
    current_session_id: UUID | None
    connected_at: datetime
    last_activity_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConnectedOperatorListResponse(BaseModel):
    items: list[ConnectedOperatorResponse]
    total: int


class DisconnectOperatorRequest(BaseModel):
    reason: str = Field(default="Disconnected by supervisor", max_length=255)


class DisconnectOperatorResponse(BaseModel):
    operator_id: UUID
    closed_connections: int
