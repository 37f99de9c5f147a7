from fastapi import APIRouter, Depends, HTTPException, Query, status

from chatqueue.api.dependencies import (
    get_assignment_service,
    get_session_service,
    require_bot_token,
)
from chatqueue.api.errors import SERVICE_ERRORS, raise_for_service_error
from chatqueue.domain.enums import Department, SessionStatus
from chatqueue.infra.db.models import ChatSession
from chatqueue.schemas.bot import (
    ActiveSessionCheckResponse,
    ChooseOperatorRequest,
    ChooseOperatorResponse,
    HandOffRequest,
    OperatorMenuResponse,
    OperatorOptionResponse,
)
from chatqueue.schemas.session import ChatSessionResponse
from chatqueue.services.assignment_service import AssignmentService
from chatqueue.services.session_service import SessionService

router = APIRouter(dependencies=[Depends(require_bot_token)])


async def _require_active_session(service: SessionService, address: str) -> ChatSession:
    chat_session = await service.get_active_by_address(address)
    if chat_session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active session for address '{address}'",
        )
    return chat_session


@router.get("/operators", response_model=OperatorMenuResponse)
async def list_operator_options(
    department: Department = Query(...),
    address: str | None = Query(default=None),
    assignment: AssignmentService = Depends(get_assignment_service),
    sessions: SessionService = Depends(get_session_service),
) -> OperatorMenuResponse:
    try:
        if address:
            chat_session = await sessions.get_active_by_address(address)
            if chat_session is not None:
                await assignment.bind_department(chat_session.id, department)
        menu = await assignment.list_operator_options(department)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)

    return OperatorMenuResponse(
        department=menu.department,
        text=menu.text,
        options=[
            OperatorOptionResponse(
                position=option.position,
                operator_id=option.operator.id,
                name=option.operator.name,
                is_supervisor=option.is_supervisor,
                is_online=option.is_online,
            )
            for option in menu.options
        ],
    )


@router.post("/choose-operator", response_model=ChooseOperatorResponse)
async def choose_operator(
    payload: ChooseOperatorRequest,
    assignment: AssignmentService = Depends(get_assignment_service),
    sessions: SessionService = Depends(get_session_service),
) -> ChooseOperatorResponse:
    chat_session = await _require_active_session(sessions, payload.address)
    try:
        decision = await assignment.choose_operator(
            chat_session.id,
            payload.position,
            department=payload.department,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)

    return ChooseOperatorResponse(
        outcome=decision.outcome,
        message=decision.customer_message,
        chosen_operator_id=decision.chosen.id,
        routed_operator_id=decision.routed_operator.id if decision.routed_operator else None,
        session=ChatSessionResponse.model_validate(decision.session),
    )


@router.post("/handoff", response_model=ChatSessionResponse)
async def hand_off_to_operators(
    payload: HandOffRequest,
    sessions: SessionService = Depends(get_session_service),
) -> ChatSessionResponse:
    chat_session = await _require_active_session(sessions, payload.address)
    try:
        updated = await sessions.hand_off_to_waiting(
            chat_session.id,
            department=payload.department,
            bot_updates=payload.bot_payload,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ChatSessionResponse.model_validate(updated)


@router.get("/sessions/active", response_model=ActiveSessionCheckResponse)
async def check_active_session(
    address: str = Query(..., min_length=8),
    sessions: SessionService = Depends(get_session_service),
) -> ActiveSessionCheckResponse:
    chat_session = await sessions.get_active_by_address(address)
    in_queue = chat_session is not None and chat_session.status in (
        SessionStatus.WAITING,
        SessionStatus.SERVICE,
    )
    return ActiveSessionCheckResponse(
        address=address,
        has_active_session=in_queue,
        session=ChatSessionResponse.model_validate(chat_session) if in_queue else None,
    )
