from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from chatqueue.domain.enums import Department
from chatqueue.schemas.session import ChatSessionResponse
from chatqueue.services.assignment_service import AssignmentOutcome


class OperatorOptionResponse(BaseModel):
    position: int
    operator_id: UUID
    name: str
    is_supervisor: bool
    is_online: bool


class OperatorMenuResponse(BaseModel):
    department: Department
    options: list[OperatorOptionResponse]
    text: str


class ChooseOperatorRequest(BaseModel):
    address: str = Field(min_length=8, max_length=64)
    position: int = Field(ge=1)
    department: Department | None = None


class ChooseOperatorResponse(BaseModel):
    outcome: AssignmentOutcome
    message: str
    chosen_operator_id: UUID
    routed_operator_id: UUID | None
    session: ChatSessionResponse


class HandOffRequest(BaseModel):
    address: str = Field(min_length=8, max_length=64)
    department: Department | None = None
    bot_payload: dict[str, Any] = Field(default_factory=dict)


class ActiveSessionCheckResponse(BaseModel):
    address: str
    has_active_session: bool
    session: ChatSessionResponse | None = None
