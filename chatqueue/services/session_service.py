import logging
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from chatqueue.core.config import Settings, get_settings
from chatqueue.core.effects import best_effort
from chatqueue.core.locks import KeyedLocks
from chatqueue.domain.addressing import is_group_jid, normalize_address
from chatqueue.domain.enums import (
    BotSessionStatus,
    CancellationReason,
    Department,
    SessionDirection,
    SessionStatus,
    TransitionAction,
)
from chatqueue.domain.exceptions import InvalidSessionTransition
from chatqueue.domain.payloads import merge_bot_payload, merge_metadata
from chatqueue.domain.state_machine import SessionLifecycle
from chatqueue.infra.db.models import ChatSession, Customer, Operator, Tabulation
from chatqueue.infra.db.repositories import (
    CustomerRepository,
    OperatorRepository,
    SessionRepository,
    TabulationRepository,
)
from chatqueue.infra.gateway.protocol import ChatGateway, GatewayError
from chatqueue.infra.realtime.events import OperatorEvent
from chatqueue.infra.realtime.presence import PresenceRegistry
from chatqueue.infra.realtime.publisher import NoopOperatorNotifier, OperatorNotifier
from chatqueue.services.errors import (
    ActiveSessionExistsError,
    InvalidAddressError,
    InvalidTransferTargetError,
    MissingOutcomeCodeError,
    NoWaitingSessionError,
    NotAssignedOperatorError,
    OperatorNotFoundError,
    OutboundDeliveryError,
    SessionAlreadyAssignedError,
    SessionNotCancellableError,
    SessionNotFoundError,
    SessionNotInServiceError,
    SessionNotWaitingError,
    SessionStateConflictError,
)
from chatqueue.services.serializers import session_payload
from chatqueue.services.side_effects import (
    notify_customer,
    publish_queue_update,
    set_upstream_bot_status,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompletionResult:
    session: ChatSession
    tabulation: Tabulation


class SessionService:
    """State transitions of a customer session and their side effects.

    Every transition goes through a conditional update, so concurrent callers
    racing on the same session get a typed rejection instead of a mixed state.
    Side effects run only after commit and never undo the transition.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: ChatGateway,
        notifier: OperatorNotifier | None = None,
        presence: PresenceRegistry | None = None,
        address_locks: KeyedLocks | None = None,
        sessions: SessionRepository | None = None,
        customers: CustomerRepository | None = None,
        operators: OperatorRepository | None = None,
        tabulations: TabulationRepository | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.notifier = notifier or NoopOperatorNotifier()
        self.presence = presence
        self.address_locks = address_locks
        self.sessions = sessions or SessionRepository(session)
        self.customers = customers or CustomerRepository(session)
        self.operators = operators or OperatorRepository(session)
        self.tabulations = tabulations or TabulationRepository(session)
        self.settings = settings or get_settings()

    async def get_session(self, session_id: UUID) -> ChatSession:
        return await self._get_session_or_raise(session_id)

    async def get_active_by_address(self, address: str) -> ChatSession | None:
        return await self.sessions.get_active_by_address(normalize_address(address))

    async def list_waiting_for_operator(self, operator_id: UUID) -> list[ChatSession]:
        await self._get_operator_or_raise(operator_id)
        return await self.sessions.list_waiting_for_operator(operator_id)

    async def list_in_service_for_operator(self, operator_id: UUID) -> list[ChatSession]:
        await self._get_operator_or_raise(operator_id)
        return await self.sessions.list_in_service_for_operator(operator_id)

    async def list_waiting(self, department: Department | None = None) -> list[ChatSession]:
        return await self.sessions.list_by_status([SessionStatus.WAITING], department=department)

    async def open_inbound_session(
        self,
        customer: Customer,
        *,
        instance: str,
        metadata: dict[str, Any] | None = None,
        bot_payload: dict[str, Any] | None = None,
    ) -> ChatSession:
        """Create the bot-stage session for a customer; the caller commits."""
        return await self.sessions.create(
            session_key=f"{customer.address}-{uuid4().hex[:12]}",
            customer_id=customer.id,
            customer_address=customer.address,
            instance=instance,
            status=SessionStatus.BOT,
            direction=SessionDirection.INBOUND,
            metadata_json=merge_metadata(None, **(metadata or {})),
            bot_payload=merge_bot_payload(None, **(bot_payload or {})),
        )

    async def hand_off_to_waiting(
        self,
        session_id: UUID,
        *,
        department: Department | None = None,
        bot_updates: dict[str, Any] | None = None,
        pause_upstream: bool = True,
    ) -> ChatSession:
        current = await self._get_session_or_raise(session_id)
        self._check(current, TransitionAction.HAND_OFF)
        if current.status == SessionStatus.WAITING:
            return current

        values: dict[str, Any] = {
            "status": SessionStatus.WAITING,
            "bot_completed_at": datetime.now(UTC),
            "bot_payload": merge_bot_payload(current.bot_payload, **(bot_updates or {})),
        }
        if department is not None:
            values["department"] = department

        updated = await self.sessions.transition(
            session_id,
            expected_statuses=SessionLifecycle.sources(TransitionAction.HAND_OFF),
            values=values,
            require_unassigned=True,
        )
        if updated is None:
            latest = await self.sessions.get_by_id(session_id, refresh=True)
            if latest is not None and latest.status == SessionStatus.WAITING:
                return latest
            raise SessionStateConflictError(
                session_id,
                latest.status if latest is not None else current.status,
                TransitionAction.HAND_OFF.value,
            )

        await self.session.commit()
        logger.info("Session %s handed off to waiting", session_id)

        if pause_upstream:
            await set_upstream_bot_status(
                self.gateway, updated.instance, updated.customer_address, BotSessionStatus.PAUSED
            )
        await publish_queue_update(self.notifier, updated, "waiting")
        return updated

    async def reopen_bot_stage(
        self,
        session_id: UUID,
        *,
        bot_updates: dict[str, Any] | None = None,
    ) -> ChatSession:
        current = await self._get_session_or_raise(session_id)
        self._check(current, TransitionAction.REOPEN_BOT)
        if current.status == SessionStatus.BOT:
            return current

        updated = await self.sessions.transition(
            session_id,
            expected_statuses=SessionLifecycle.sources(TransitionAction.REOPEN_BOT),
            values={
                "status": SessionStatus.BOT,
                "bot_completed_at": None,
                "bot_payload": merge_bot_payload(current.bot_payload, **(bot_updates or {})),
            },
            require_unassigned=True,
        )
        if updated is None:
            latest = await self.sessions.get_by_id(session_id, refresh=True)
            if latest is not None and latest.status == SessionStatus.BOT:
                return latest
            raise SessionStateConflictError(
                session_id,
                latest.status if latest is not None else current.status,
                TransitionAction.REOPEN_BOT.value,
            )

        await self.session.commit()
        logger.info("Session %s returned to the bot stage", session_id)
        await publish_queue_update(self.notifier, updated, "bot")
        return updated

    async def claim(self, session_id: UUID, operator_id: UUID) -> ChatSession:
        operator = await self._get_operator_or_raise(operator_id)
        current = await self._get_session_or_raise(session_id)
        self._assert_claimable(current)

        now = datetime.now(UTC)
        updated = await self.sessions.transition(
            session_id,
            expected_statuses=SessionLifecycle.sources(TransitionAction.CLAIM),
            values={
                "status": SessionStatus.SERVICE,
                "assigned_operator_id": operator.id,
                "assigned_at": now,
                "metadata_json": merge_metadata(current.metadata_json, last_activity=now),
            },
            require_unassigned=True,
        )
        if updated is None:
            latest = await self.sessions.get_by_id(session_id, refresh=True)
            if latest is None:
                raise SessionNotFoundError(session_id)
            self._assert_claimable(latest)
            raise SessionNotWaitingError(session_id, latest.status)

        await self.session.commit()
        logger.info("Session %s claimed by operator %s", session_id, operator.id)

        await set_upstream_bot_status(
            self.gateway, updated.instance, updated.customer_address, BotSessionStatus.PAUSED
        )
        await notify_customer(
            self.gateway,
            updated,
            self.settings.service_started_text.format(operator=operator.name),
            "service started notice",
        )
        if self.presence is not None:
            await self.presence.set_current_session(operator.id, updated.id)
        await publish_queue_update(self.notifier, updated, "claimed", operator_id=str(operator.id))
        return updated

    async def claim_next(self, operator_id: UUID) -> ChatSession:
        await self._get_operator_or_raise(operator_id)
        candidate = await self.sessions.latest_waiting_for_operator(operator_id)
        if candidate is None:
            raise NoWaitingSessionError(operator_id)
        return await self.claim(candidate.id, operator_id)

    async def transfer(
        self,
        session_id: UUID,
        *,
        from_operator_id: UUID,
        to_operator_id: UUID,
    ) -> ChatSession:
        current = await self._get_session_or_raise(session_id)
        if to_operator_id == from_operator_id:
            raise InvalidTransferTargetError(session_id, to_operator_id, "already assigned")
        target = await self.operators.get_by_id(to_operator_id)
        if target is None or not target.is_active:
            raise InvalidTransferTargetError(session_id, to_operator_id, "operator unavailable")
        self._assert_owned_service(current, from_operator_id)

        now = datetime.now(UTC)
        updated = await self.sessions.transition(
            session_id,
            expected_statuses=SessionLifecycle.sources(TransitionAction.TRANSFER),
            values={
                "assigned_operator_id": target.id,
                "assigned_at": now,
                "department": target.department or current.department,
                "metadata_json": merge_metadata(
                    current.metadata_json,
                    transferred_from=from_operator_id,
                    last_activity=now,
                ),
            },
            expected_assignee=from_operator_id,
        )
        if updated is None:
            latest = await self.sessions.get_by_id(session_id, refresh=True)
            if latest is None:
                raise SessionNotFoundError(session_id)
            self._assert_owned_service(latest, from_operator_id)
            raise SessionStateConflictError(session_id, latest.status, TransitionAction.TRANSFER.value)

        await self.session.commit()
        logger.info(
            "Session %s transferred from operator %s to %s",
            session_id,
            from_operator_id,
            target.id,
        )

        await notify_customer(
            self.gateway,
            updated,
            self.settings.transfer_notice_text.format(operator=target.name),
            "transfer notice",
        )
        if self.presence is not None:
            await self.presence.set_current_session(from_operator_id, None)
            await self.presence.set_current_session(target.id, updated.id)
        await self._broadcast_transfer(updated, from_operator_id, target)
        return updated

    async def complete(
        self,
        session_id: UUID,
        *,
        operator_id: UUID,
        outcome_code: str,
        notes: str | None = None,
    ) -> CompletionResult:
        cleaned_outcome = outcome_code.strip()
        if not cleaned_outcome:
            raise MissingOutcomeCodeError()

        operator = await self._get_operator_or_raise(operator_id)
        current = await self._get_session_or_raise(session_id)
        self._assert_owned_service(current, operator_id)

        now = datetime.now(UTC)
        updated = await self.sessions.transition(
            session_id,
            expected_statuses=SessionLifecycle.sources(TransitionAction.COMPLETE),
            values={
                "status": SessionStatus.COMPLETED,
                "assigned_operator_id": None,
                "completed_at": now,
                "metadata_json": merge_metadata(
                    current.metadata_json, completed_by=operator_id, last_activity=now
                ),
            },
            expected_assignee=operator_id,
        )
        if updated is None:
            latest = await self.sessions.get_by_id(session_id, refresh=True)
            if latest is None:
                raise SessionNotFoundError(session_id)
            self._assert_owned_service(latest, operator_id)
            raise SessionStateConflictError(session_id, latest.status, TransitionAction.COMPLETE.value)

        tabulation = await self.tabulations.create(
            session_id=updated.id,
            outcome_code=cleaned_outcome,
            tabulated_by=operator_id,
            notes=notes,
        )
        await self.session.commit()
        logger.info(
            "Session %s completed by operator %s with outcome '%s'",
            session_id,
            operator_id,
            cleaned_outcome,
        )

        await notify_customer(
            self.gateway,
            updated,
            self.settings.service_completed_text.format(operator=operator.name),
            "service completed notice",
        )
        await set_upstream_bot_status(
            self.gateway, updated.instance, updated.customer_address, BotSessionStatus.CLOSED
        )
        if self.presence is not None:
            await self.presence.set_current_session(operator_id, None)
        await publish_queue_update(
            self.notifier, updated, "completed", operator_id=str(operator_id)
        )
        return CompletionResult(session=updated, tabulation=tabulation)

    async def cancel(
        self,
        session_id: UUID,
        reason: CancellationReason,
        *,
        cancelled_by: UUID | None = None,
        close_upstream: bool = True,
    ) -> ChatSession:
        current = await self._get_session_or_raise(session_id)
        if current.status not in SessionLifecycle.sources(TransitionAction.CANCEL):
            raise SessionNotCancellableError(session_id, current.status)

        now = datetime.now(UTC)
        updated = await self.sessions.transition(
            session_id,
            expected_statuses=SessionLifecycle.sources(TransitionAction.CANCEL),
            values={
                "status": SessionStatus.CANCELLED,
                "completed_at": now,
                "metadata_json": merge_metadata(
                    current.metadata_json,
                    cancellation_reason=reason,
                    cancelled_at=now,
                    cancelled_by=cancelled_by,
                ),
            },
            require_unassigned=True,
        )
        if updated is None:
            latest = await self.sessions.get_by_id(session_id, refresh=True)
            raise SessionNotCancellableError(
                session_id, latest.status if latest is not None else current.status
            )

        await self.session.commit()
        logger.info("Session %s cancelled (%s)", session_id, reason.value)

        if close_upstream:
            await set_upstream_bot_status(
                self.gateway, updated.instance, updated.customer_address, BotSessionStatus.CLOSED
            )
        await publish_queue_update(self.notifier, updated, "cancelled", reason=reason.value)
        return updated

    async def start_outbound(
        self,
        operator_id: UUID,
        *,
        address: str,
        instance: str | None = None,
        text: str | None = None,
        customer_name: str | None = None,
    ) -> ChatSession:
        operator = await self._get_operator_or_raise(operator_id)
        if is_group_jid(address):
            raise InvalidAddressError(address, "group conversations cannot be started")
        normalized = normalize_address(address)
        if not normalized:
            raise InvalidAddressError(address, "no digits found")

        async with self._address_lock(normalized):
            existing = await self.sessions.get_active_by_address(normalized)
            if existing is not None:
                raise ActiveSessionExistsError(normalized, existing.id)

            target_instance = instance or self.settings.evolution_instances[0]
            opening_text = text or self.settings.outbound_greeting_text.format(
                operator=operator.name,
                company=self.settings.company_name,
            )
            try:
                await self.gateway.send_text(target_instance, normalized, opening_text)
            except GatewayError as exc:
                raise OutboundDeliveryError(normalized, exc.detail or str(exc)) from exc

            now = datetime.now(UTC)
            customer = await self.customers.find_or_create_by_address(
                normalized, push_name=customer_name
            )
            created = await self.sessions.create(
                session_key=f"outbound-{normalized}-{uuid4().hex[:12]}",
                customer_id=customer.id,
                customer_address=normalized,
                instance=target_instance,
                status=SessionStatus.SERVICE,
                direction=SessionDirection.OUTBOUND,
                department=operator.department,
                assigned_operator_id=operator.id,
                assigned_at=now,
                metadata_json=merge_metadata(
                    None,
                    customer_name=customer_name or customer.push_name,
                    initiated_by=operator.id,
                    initial_message=opening_text,
                    last_activity=now,
                ),
            )
            await self.session.commit()

        logger.info("Outbound session %s started by operator %s", created.id, operator.id)
        if self.presence is not None:
            await self.presence.set_current_session(operator.id, created.id)
        await publish_queue_update(self.notifier, created, "outbound_started")
        return created

    async def _broadcast_transfer(
        self,
        chat_session: ChatSession,
        from_operator_id: UUID,
        target: Operator,
    ) -> None:
        await best_effort(
            "transfer broadcast",
            self.notifier.to_all(
                OperatorEvent.QUEUE_UPDATE,
                {
                    "action": "transferred",
                    "session": session_payload(chat_session),
                    "from_operator_id": str(from_operator_id),
                    "to_operator_id": str(target.id),
                    "to_operator_name": target.name,
                },
            ),
            session_id=chat_session.id,
        )

    def _address_lock(self, address: str) -> AbstractAsyncContextManager[Any]:
        if self.address_locks is None:
            return nullcontext()
        return self.address_locks.hold(address)

    async def _get_session_or_raise(self, session_id: UUID) -> ChatSession:
        chat_session = await self.sessions.get_by_id(session_id)
        if chat_session is None:
            raise SessionNotFoundError(session_id)
        return chat_session

    async def _get_operator_or_raise(self, operator_id: UUID) -> Operator:
        operator = await self.operators.get_by_id(operator_id)
        if operator is None or not operator.is_active:
            raise OperatorNotFoundError(operator_id)
        return operator

    @staticmethod
    def _check(chat_session: ChatSession, action: TransitionAction) -> None:
        try:
            SessionLifecycle.transition(chat_session.status, action)
        except InvalidSessionTransition as exc:
            raise SessionStateConflictError(chat_session.id, exc.current, action.value) from exc

    @staticmethod
    def _assert_claimable(chat_session: ChatSession) -> None:
        if chat_session.assigned_operator_id is not None:
            raise SessionAlreadyAssignedError(chat_session.id, chat_session.assigned_operator_id)
        if chat_session.status != SessionStatus.WAITING:
            raise SessionNotWaitingError(chat_session.id, chat_session.status)

    @staticmethod
    def _assert_owned_service(chat_session: ChatSession, operator_id: UUID) -> None:
        if chat_session.status != SessionStatus.SERVICE:
            raise SessionNotInServiceError(chat_session.id, chat_session.status)
        if chat_session.assigned_operator_id != operator_id:
            raise NotAssignedOperatorError(chat_session.id, operator_id)
