from uuid import UUID

from fastapi import APIRouter, Depends, Query

from chatqueue.api.dependencies import get_current_operator, get_session_service
from chatqueue.api.errors import SERVICE_ERRORS, raise_for_service_error
from chatqueue.domain.enums import CancellationReason, Department
from chatqueue.infra.db.models import ChatSession, Operator
from chatqueue.schemas.session import (
    ChatSessionListResponse,
    ChatSessionResponse,
    CompleteSessionRequest,
    CompleteSessionResponse,
    StartOutboundRequest,
    TabulationResponse,
    TransferSessionRequest,
)
from chatqueue.services.session_service import SessionService

router = APIRouter()


def _to_session_response(chat_session: ChatSession) -> ChatSessionResponse:
    return ChatSessionResponse.model_validate(chat_session)


def _to_list_response(items: list[ChatSession]) -> ChatSessionListResponse:
    return ChatSessionListResponse(items=[_to_session_response(item) for item in items])


@router.get("/waiting", response_model=ChatSessionListResponse)
async def list_waiting_sessions(
    department: Department | None = Query(default=None),
    service: SessionService = Depends(get_session_service),
    _: Operator = Depends(get_current_operator),
) -> ChatSessionListResponse:
    return _to_list_response(await service.list_waiting(department))


@router.get("/mine/waiting", response_model=ChatSessionListResponse)
async def list_my_waiting_sessions(
    service: SessionService = Depends(get_session_service),
    operator: Operator = Depends(get_current_operator),
) -> ChatSessionListResponse:
    try:
        sessions = await service.list_waiting_for_operator(operator.id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_list_response(sessions)


@router.get("/mine/in-service", response_model=ChatSessionListResponse)
async def list_my_sessions_in_service(
    service: SessionService = Depends(get_session_service),
    operator: Operator = Depends(get_current_operator),
) -> ChatSessionListResponse:
    try:
        sessions = await service.list_in_service_for_operator(operator.id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_list_response(sessions)


@router.post("/claim-next", response_model=ChatSessionResponse)
async def claim_next_session(
    service: SessionService = Depends(get_session_service),
    operator: Operator = Depends(get_current_operator),
) -> ChatSessionResponse:
    try:
        chat_session = await service.claim_next(operator.id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_session_response(chat_session)


@router.post("/outbound", response_model=ChatSessionResponse, status_code=201)
async def start_outbound_session(
    payload: StartOutboundRequest,
    service: SessionService = Depends(get_session_service),
    operator: Operator = Depends(get_current_operator),
) -> ChatSessionResponse:
    try:
        chat_session = await service.start_outbound(
            operator.id,
            address=payload.address,
            instance=payload.instance,
            text=payload.text,
            customer_name=payload.customer_name,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_session_response(chat_session)


@router.get("/{session_id}", response_model=ChatSessionResponse)
async def get_session(
    session_id: UUID,
    service: SessionService = Depends(get_session_service),
    _: Operator = Depends(get_current_operator),
) -> ChatSessionResponse:
    try:
        chat_session = await service.get_session(session_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_session_response(chat_session)


@router.post("/{session_id}/claim", response_model=ChatSessionResponse)
async def claim_session(
    session_id: UUID,
    service: SessionService = Depends(get_session_service),
    operator: Operator = Depends(get_current_operator),
) -> ChatSessionResponse:
    try:
        chat_session = await service.claim(session_id, operator.id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_session_response(chat_session)


@router.post("/{session_id}/transfer", response_model=ChatSessionResponse)
async def transfer_session(
    session_id: UUID,
    payload: TransferSessionRequest,
    service: SessionService = Depends(get_session_service),
    operator: Operator = Depends(get_current_operator),
) -> ChatSessionResponse:
    try:
        chat_session = await service.transfer(
            session_id,
            from_operator_id=operator.id,
            to_operator_id=payload.to_operator_id,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_session_response(chat_session)


@router.post("/{session_id}/complete", response_model=CompleteSessionResponse)
async def complete_session(
    session_id: UUID,
    payload: CompleteSessionRequest,
    service: SessionService = Depends(get_session_service),
    operator: Operator = Depends(get_current_operator),
) -> CompleteSessionResponse:
    try:
        result = await service.complete(
            session_id,
            operator_id=operator.id,
            outcome_code=payload.outcome_code,
            notes=payload.notes,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return CompleteSessionResponse(
        session=_to_session_response(result.session),
        tabulation=TabulationResponse.model_validate(result.tabulation),
    )


@router.post("/{session_id}/cancel", response_model=ChatSessionResponse)
async def cancel_session(
    session_id: UUID,
    service: SessionService = Depends(get_session_service),
    operator: Operator = Depends(get_current_operator),
) -> ChatSessionResponse:
    try:
        chat_session = await service.cancel(
            session_id,
            CancellationReason.OPERATOR_CANCEL,
            cancelled_by=operator.id,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_session_response(chat_session)
