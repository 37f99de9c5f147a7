from uuid import UUID

from fastapi import APIRouter, Depends, Query

from chatqueue.api.dependencies import (
    get_broadcaster,
    get_current_operator,
    get_presence,
    require_supervisor,
)
from chatqueue.domain.enums import Department
from chatqueue.infra.db.models import Operator
from chatqueue.infra.realtime import OperatorBroadcaster, PresenceRegistry
from chatqueue.schemas.presence import (
    ConnectedOperatorListResponse,
    ConnectedOperatorResponse,
    DisconnectOperatorRequest,
    DisconnectOperatorResponse,
)

router = APIRouter()


@router.get("/operators", response_model=ConnectedOperatorListResponse)
async def list_connected_operators(
    department: Department | None = Query(default=None),
    available_only: bool = Query(default=False),
    presence: PresenceRegistry = Depends(get_presence),
    _: Operator = Depends(get_current_operator),
) -> ConnectedOperatorListResponse:
    records = await presence.connected_operators(department, available_only=available_only)
    return ConnectedOperatorListResponse(
        items=[ConnectedOperatorResponse.model_validate(record) for record in records],
        total=len(records),
    )


@router.post(
    "/operators/{operator_id}/disconnect",
    response_model=DisconnectOperatorResponse,
)
async def disconnect_operator(
    operator_id: UUID,
    payload: DisconnectOperatorRequest,
    broadcaster: OperatorBroadcaster = Depends(get_broadcaster),
    supervisor: Operator = Depends(require_supervisor),
) -> DisconnectOperatorResponse:
    closed = await broadcaster.disconnect_operator(
        operator_id,
        reason=payload.reason,
        requested_by=supervisor.id,
    )
    return DisconnectOperatorResponse(operator_id=operator_id, closed_connections=closed)
