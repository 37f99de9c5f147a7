from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from chatqueue.core.config import get_settings
from chatqueue.core.db import get_db_session
from chatqueue.core.security import bot_token_matches, decode_operator_access_token
from chatqueue.domain.enums import OperatorProfile
from chatqueue.infra.db.models import Operator
from chatqueue.infra.db.repositories import OperatorRepository
from chatqueue.infra.gateway import ChatGateway
from chatqueue.infra.realtime import OperatorBroadcaster, PresenceRegistry
from chatqueue.infra.realtime.publisher import NoopOperatorNotifier, OperatorNotifier
from chatqueue.services.assignment_service import AssignmentService
from chatqueue.services.session_service import SessionService

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)


def get_presence(request: Request) -> PresenceRegistry:
    presence = getattr(request.app.state, "presence", None)
    if presence is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Presence registry not initialized",
        )
    return presence


def get_broadcaster(request: Request) -> OperatorBroadcaster:
    broadcaster = getattr(request.app.state, "broadcaster", None)
    if broadcaster is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Broadcaster not initialized",
        )
    return broadcaster


def get_notifier(request: Request) -> OperatorNotifier:
    return getattr(request.app.state, "broadcaster", None) or NoopOperatorNotifier()


def get_gateway(request: Request) -> ChatGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat gateway client not initialized",
        )
    return gateway


async def get_session_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> SessionService:
    return SessionService(
        session=session,
        gateway=get_gateway(request),
        notifier=get_notifier(request),
        presence=getattr(request.app.state, "presence", None),
        address_locks=getattr(request.app.state, "address_locks", None),
    )


async def get_assignment_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> AssignmentService:
    return AssignmentService(
        session=session,
        presence=get_presence(request),
        notifier=get_notifier(request),
    )


async def get_current_operator(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_db_session),
) -> Operator:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization credentials",
        )

    try:
        claims = decode_operator_access_token(
            credentials.credentials,
            settings.operator_auth_secret,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired operator session",
        ) from exc

    operator = await OperatorRepository(session).get_by_id(claims.operator_id)
    if operator is None or not operator.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired operator session",
        )
    return operator


async def require_supervisor(
    operator: Operator = Depends(get_current_operator),
) -> Operator:
    if operator.profile not in (OperatorProfile.SUPERVISOR, OperatorProfile.ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Supervisor profile required",
        )
    return operator


async def require_bot_token(
    x_bot_token: str | None = Header(default=None, alias="X-Bot-Token"),
) -> None:
    if not bot_token_matches(x_bot_token, settings.bot_api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bot token",
        )
