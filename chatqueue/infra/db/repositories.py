from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chatqueue.domain.enums import (
    Department,
    MessageStatus,
    OperatorProfile,
    SessionStatus,
)
from chatqueue.domain.state_machine import ACTIVE_STATUSES
from chatqueue.infra.db.models import ChatSession, Customer, Message, Operator, Tabulation


class SessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, session_id: UUID, refresh: bool = False) -> ChatSession | None:
        return await self.session.get(ChatSession, session_id, populate_existing=refresh)

    async def get_active_by_address(self, address: str) -> ChatSession | None:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(
                ChatSession.customer_address == address,
                ChatSession.status.in_(list(ACTIVE_STATUSES)),
            )
            .order_by(ChatSession.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> ChatSession:
        chat_session = ChatSession(**fields)
        self.session.add(chat_session)
        await self.session.flush()
        await self.session.refresh(chat_session)
        return chat_session

    async def transition(
        self,
        session_id: UUID,
        *,
        expected_statuses: Iterable[SessionStatus],
        values: dict[str, Any],
        require_unassigned: bool = False,
        expected_assignee: UUID | None = None,
    ) -> ChatSession | None:
        """Apply ``values`` only if the row still matches the expected prior state.

        Returns the updated row, or ``None`` when a concurrent writer got there
        first (or the session never matched).
        """
        stmt = update(ChatSession).where(
            ChatSession.id == session_id,
            ChatSession.status.in_(list(expected_statuses)),
        )
        if require_unassigned:
            stmt = stmt.where(ChatSession.assigned_operator_id.is_(None))
        if expected_assignee is not None:
            stmt = stmt.where(ChatSession.assigned_operator_id == expected_assignee)

        stmt = (
            stmt.values(**values)
            .returning(ChatSession)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_fields(self, chat_session: ChatSession, **values: Any) -> ChatSession:
        for key, value in values.items():
            setattr(chat_session, key, value)
        chat_session.updated_at = datetime.now(UTC)
        await self.session.flush()
        return chat_session

    async def list_by_status(
        self,
        statuses: Iterable[SessionStatus],
        department: Department | None = None,
        limit: int = 200,
    ) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = select(ChatSession).where(
            ChatSession.status.in_(list(statuses))
        )
        if department is not None:
            stmt = stmt.where(ChatSession.department == department)
        stmt = stmt.order_by(ChatSession.created_at.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_waiting_for_operator(self, operator_id: UUID) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(
                ChatSession.status == SessionStatus.WAITING,
                or_(
                    ChatSession.requested_operator_id == operator_id,
                    ChatSession.supervisor_id == operator_id,
                ),
            )
            .order_by(ChatSession.created_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest_waiting_for_operator(self, operator_id: UUID) -> ChatSession | None:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(
                ChatSession.status == SessionStatus.WAITING,
                ChatSession.assigned_operator_id.is_(None),
                or_(
                    ChatSession.requested_operator_id == operator_id,
                    ChatSession.supervisor_id == operator_id,
                ),
            )
            .order_by(ChatSession.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_in_service_for_operator(self, operator_id: UUID) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(
                ChatSession.status == SessionStatus.SERVICE,
                ChatSession.assigned_operator_id == operator_id,
            )
            .order_by(ChatSession.assigned_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_bot_stage_older_than(self, cutoff: datetime, limit: int = 500) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(
                ChatSession.status == SessionStatus.BOT,
                ChatSession.created_at < cutoff,
            )
            .order_by(ChatSession.created_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_waiting_older_than(self, cutoff: datetime, limit: int = 500) -> list[ChatSession]:
        waiting_since = func.coalesce(ChatSession.bot_completed_at, ChatSession.created_at)
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(
                ChatSession.status == SessionStatus.WAITING,
                waiting_since < cutoff,
            )
            .order_by(waiting_since.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class CustomerRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_address(self, address: str) -> Customer | None:
        stmt: Select[tuple[Customer]] = select(Customer).where(Customer.address == address)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_or_create_by_address(
        self,
        address: str,
        push_name: str | None = None,
        is_group: bool = False,
    ) -> Customer:
        stmt = (
            pg_insert(Customer)
            .values(address=address, push_name=push_name, is_group=is_group)
            .on_conflict_do_nothing(index_elements=[Customer.address])
        )
        await self.session.execute(stmt)

        customer = await self.get_by_address(address)
        if customer is None:
            raise LookupError(f"Customer '{address}' could not be resolved")
        if push_name and customer.push_name != push_name:
            customer.push_name = push_name
            await self.session.flush()
        return customer


class OperatorRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, operator_id: UUID) -> Operator | None:
        return await self.session.get(Operator, operator_id)

    async def list_active_by_department(self, department: Department) -> list[Operator]:
        stmt: Select[tuple[Operator]] = (
            select(Operator)
            .where(
                Operator.department == department,
                Operator.is_active.is_(True),
                Operator.profile != OperatorProfile.ADMIN,
            )
            .order_by(func.lower(Operator.name).asc(), Operator.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_department_supervisor(
        self,
        department: Department,
        fallback_id: UUID | None = None,
    ) -> Operator | None:
        stmt: Select[tuple[Operator]] = (
            select(Operator)
            .where(
                Operator.department == department,
                Operator.profile == OperatorProfile.SUPERVISOR,
                Operator.is_active.is_(True),
            )
            .order_by(Operator.created_at.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        supervisor = result.scalar_one_or_none()
        if supervisor is not None or fallback_id is None:
            return supervisor

        fallback = await self.get_by_id(fallback_id)
        if fallback is None or not fallback.is_active:
            return None
        return fallback


class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_gateway_id(self, gateway_message_id: str) -> Message | None:
        stmt: Select[tuple[Message]] = select(Message).where(
            Message.gateway_message_id == gateway_message_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def record(self, **fields: Any) -> tuple[Message, bool]:
        """Insert a message keyed by its gateway id; replays are ignored.

        Returns the stored row and whether this call created it.
        """
        stmt = (
            pg_insert(Message)
            .values(**fields)
            .on_conflict_do_nothing(index_elements=[Message.gateway_message_id])
            .returning(Message.id)
        )
        result = await self.session.execute(stmt)
        created = result.scalar_one_or_none() is not None

        message = await self.get_by_gateway_id(fields["gateway_message_id"])
        if message is None:
            raise LookupError(f"Message '{fields['gateway_message_id']}' could not be resolved")
        return message, created

    async def update_status_by_gateway_id(
        self,
        gateway_message_id: str,
        status: MessageStatus,
    ) -> Message | None:
        stmt = (
            update(Message)
            .where(Message.gateway_message_id == gateway_message_id)
            .values(status=status)
            .returning(Message)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_deleted(self, gateway_message_id: str) -> Message | None:
        stmt = (
            update(Message)
            .where(
                Message.gateway_message_id == gateway_message_id,
                Message.deleted_at.is_(None),
            )
            .values(deleted_at=datetime.now(UTC))
            .returning(Message)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class TabulationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        session_id: UUID,
        outcome_code: str,
        tabulated_by: UUID | None,
        notes: str | None = None,
    ) -> Tabulation:
        tabulation = Tabulation(
            session_id=session_id,
            outcome_code=outcome_code,
            tabulated_by=tabulated_by,
            notes=notes,
        )
        self.session.add(tabulation)
        await self.session.flush()
        await self.session.refresh(tabulation)
        return tabulation
