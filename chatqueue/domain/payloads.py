"""Typed views over the free-form JSON maps stored on a session.

Both maps accept unknown keys so that data written by other tools survives a
round trip, but the well-known keys are validated every time they are written.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from chatqueue.domain.enums import BotSessionStatus, CancellationReason, Department


class BotStagePayload(BaseModel):
    bot_id: str | None = None
    session_url: str | None = None
    started_at: datetime | None = None
    last_status: BotSessionStatus | None = None
    last_status_change: datetime | None = None
    snapshot: dict[str, Any] | list[dict[str, Any]] | None = None

    model_config = ConfigDict(extra="allow")


class SessionMetadata(BaseModel):
    customer_name: str | None = None
    first_message_id: str | None = None
    first_message_timestamp: datetime | None = None
    last_message: str | None = None
    last_message_at: datetime | None = None
    cancellation_reason: CancellationReason | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    last_activity: datetime | None = None
    initiated_by: UUID | None = None
    initial_message: str | None = None
    completed_by: UUID | None = None
    transferred_from: UUID | None = None
    assignment_outcome: str | None = None
    routed_operator_id: UUID | None = None
    customer_operator_choice: UUID | None = None
    customer_department_choice: Department | None = None

    model_config = ConfigDict(extra="allow")


def merge_bot_payload(current: dict[str, Any] | None, **updates: Any) -> dict[str, Any]:
    merged = BotStagePayload.model_validate({**(current or {}), **updates})
    return merged.model_dump(mode="json", exclude_none=True)


def merge_metadata(current: dict[str, Any] | None, **updates: Any) -> dict[str, Any]:
    merged = SessionMetadata.model_validate({**(current or {}), **updates})
    return merged.model_dump(mode="json", exclude_none=True)
