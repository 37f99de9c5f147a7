import logging
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from chatqueue.core.config import Settings, get_settings
from chatqueue.core.effects import best_effort
from chatqueue.domain.enums import Department, SessionStatus
from chatqueue.domain.payloads import merge_metadata
from chatqueue.infra.db.models import ChatSession, Operator
from chatqueue.infra.db.repositories import OperatorRepository, SessionRepository
from chatqueue.infra.realtime.events import OperatorEvent
from chatqueue.infra.realtime.presence import PresenceRegistry
from chatqueue.infra.realtime.publisher import NoopOperatorNotifier, OperatorNotifier
from chatqueue.services.errors import (
    InvalidOperatorChoiceError,
    SessionAlreadyAssignedError,
    SessionNotFoundError,
    SessionStateConflictError,
)
from chatqueue.services.serializers import operator_payload, session_payload

logger = logging.getLogger(__name__)


class AssignmentOutcome(str, Enum):
    ROUTED_TO_CHOSEN = "routed_to_chosen"
    ROUTED_TO_SUPERVISOR = "routed_to_supervisor"
    SUPERVISOR_OFFLINE = "supervisor_offline"
    UNASSIGNED = "unassigned"


@dataclass(slots=True)
class OperatorOption:
    position: int
    operator: Operator
    is_supervisor: bool
    is_online: bool


@dataclass(slots=True)
class OperatorMenu:
    department: Department
    options: list[OperatorOption]
    supervisor: Operator | None

    @property
    def text(self) -> str:
        return "\n".join(f"{option.position} - {option.operator.name}" for option in self.options)


@dataclass(slots=True)
class AssignmentDecision:
    outcome: AssignmentOutcome
    session: ChatSession
    chosen: Operator
    routed_operator: Operator | None
    customer_message: str


class AssignmentService:
    """Resolves a customer's operator choice into a routing decision.

    The decision only records who the waiting session is routed to
    (``requested_operator_id`` / ``supervisor_id``) and alerts that operator;
    the session becomes ``service`` when an operator claims it.
    """

    def __init__(
        self,
        session: AsyncSession,
        presence: PresenceRegistry,
        notifier: OperatorNotifier | None = None,
        sessions: SessionRepository | None = None,
        operators: OperatorRepository | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.presence = presence
        self.notifier = notifier or NoopOperatorNotifier()
        self.sessions = sessions or SessionRepository(session)
        self.operators = operators or OperatorRepository(session)
        self.settings = settings or get_settings()

    async def list_operator_options(self, department: Department) -> OperatorMenu:
        candidates = await self.operators.list_active_by_department(department)
        candidates.sort(key=lambda operator: operator.name.casefold())
        supervisor = await self.operators.get_department_supervisor(
            department, fallback_id=self._fallback_supervisor_id()
        )
        if supervisor is not None and all(op.id != supervisor.id for op in candidates):
            candidates.append(supervisor)

        options = [
            OperatorOption(
                position=index,
                operator=operator,
                is_supervisor=supervisor is not None and operator.id == supervisor.id,
                is_online=await self.presence.is_online(operator.id),
            )
            for index, operator in enumerate(candidates, start=1)
        ]
        return OperatorMenu(department=department, options=options, supervisor=supervisor)

    async def bind_department(self, session_id: UUID, department: Department) -> ChatSession:
        chat_session = await self.sessions.get_by_id(session_id)
        if chat_session is None:
            raise SessionNotFoundError(session_id)
        if chat_session.status not in (SessionStatus.BOT, SessionStatus.WAITING):
            raise SessionStateConflictError(chat_session.id, chat_session.status, "bind_department")
        if chat_session.department == department:
            return chat_session

        await self.sessions.update_fields(
            chat_session,
            department=department,
            metadata_json=merge_metadata(
                chat_session.metadata_json, customer_department_choice=department
            ),
        )
        await self.session.commit()
        logger.info("Session %s bound to department %s", chat_session.id, department.value)
        return chat_session

    async def choose_operator(
        self,
        session_id: UUID,
        position: int,
        department: Department | None = None,
    ) -> AssignmentDecision:
        chat_session = await self.sessions.get_by_id(session_id)
        if chat_session is None:
            raise SessionNotFoundError(session_id)
        if chat_session.assigned_operator_id is not None:
            raise SessionAlreadyAssignedError(chat_session.id, chat_session.assigned_operator_id)
        if chat_session.status not in (SessionStatus.BOT, SessionStatus.WAITING):
            raise SessionStateConflictError(chat_session.id, chat_session.status, "choose_operator")

        target_department = department or chat_session.department
        if target_department is None:
            raise InvalidOperatorChoiceError(position, 0)

        menu = await self.list_operator_options(target_department)
        if position < 1 or position > len(menu.options):
            raise InvalidOperatorChoiceError(position, len(menu.options))

        chosen = menu.options[position - 1]
        supervisor = menu.supervisor
        supervisor_online = supervisor is not None and await self.presence.is_online(supervisor.id)

        if chosen.is_online:
            outcome = AssignmentOutcome.ROUTED_TO_CHOSEN
            routed: Operator | None = chosen.operator
            message = self.settings.assignment_routed_text.format(operator=chosen.operator.name)
        elif chosen.is_supervisor:
            outcome = AssignmentOutcome.SUPERVISOR_OFFLINE
            routed = None
            message = self.settings.assignment_wait_text
        elif supervisor is not None and supervisor_online:
            outcome = AssignmentOutcome.ROUTED_TO_SUPERVISOR
            routed = supervisor
            message = self.settings.assignment_supervisor_text.format(operator=supervisor.name)
        else:
            outcome = AssignmentOutcome.UNASSIGNED
            routed = None
            message = self.settings.assignment_wait_text

        requested_operator_id = routed.id if routed is not None else chosen.operator.id
        await self.sessions.update_fields(
            chat_session,
            department=target_department,
            requested_operator_id=requested_operator_id,
            supervisor_id=supervisor.id if supervisor is not None else None,
            metadata_json=merge_metadata(
                chat_session.metadata_json,
                assignment_outcome=outcome.value,
                customer_operator_choice=chosen.operator.id,
                customer_department_choice=target_department,
                routed_operator_id=routed.id if routed is not None else None,
            ),
        )
        await self.session.commit()
        logger.info(
            "Session %s operator choice %d resolved as %s",
            chat_session.id,
            position,
            outcome.value,
        )

        alert_target = routed or chosen.operator
        await best_effort(
            "assignment alert",
            self.notifier.to_operator(
                alert_target.id,
                OperatorEvent.QUEUE_UPDATE,
                {
                    "action": "routed",
                    "outcome": outcome.value,
                    "session": session_payload(chat_session),
                    "chosen_operator": operator_payload(chosen.operator),
                },
            ),
            session_id=chat_session.id,
            operator_id=alert_target.id,
        )
        return AssignmentDecision(
            outcome=outcome,
            session=chat_session,
            chosen=chosen.operator,
            routed_operator=routed,
            customer_message=message,
        )

    def _fallback_supervisor_id(self) -> UUID | None:
        raw = self.settings.fallback_supervisor_id
        if not raw:
            return None
        try:
            return UUID(raw)
        except ValueError:
            logger.warning("Ignoring malformed FALLBACK_SUPERVISOR_ID %r", raw)
            return None
