"""In-memory collaborators for the service, router and reaper tests."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from chatqueue.domain.enums import (
    BotSessionStatus,
    Department,
    MessageDirection,
    MessageStatus,
    OperatorProfile,
    SessionDirection,
    SessionStatus,
)
from chatqueue.domain.state_machine import ACTIVE_STATUSES
from chatqueue.infra.gateway.protocol import GatewayError, UpstreamBotSession
from chatqueue.infra.realtime.events import OperatorEvent


def _now() -> datetime:
    return datetime.now(UTC)


class DummySession:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def refresh(self, _: object) -> None:
        return None

    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, *_: object) -> None:
        return None


@dataclass(slots=True)
class FakeOperator:
    id: UUID
    name: str
    department: Department | None
    profile: OperatorProfile = OperatorProfile.OPERATOR
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)


@dataclass(slots=True)
class FakeCustomer:
    id: UUID
    address: str
    push_name: str | None = None
    is_group: bool = False


@dataclass(slots=True)
class FakeChatSession:
    id: UUID
    session_key: str
    customer_address: str
    instance: str = "default"
    customer_id: UUID | None = None
    status: SessionStatus = SessionStatus.BOT
    direction: SessionDirection = SessionDirection.INBOUND
    department: Department | None = None
    requested_operator_id: UUID | None = None
    assigned_operator_id: UUID | None = None
    supervisor_id: UUID | None = None
    bot_payload: dict | None = None
    metadata_json: dict | None = None
    bot_completed_at: datetime | None = None
    assigned_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass(slots=True)
class FakeMessage:
    id: UUID
    gateway_message_id: str
    session_id: UUID | None
    address: str
    remote_jid: str
    instance: str
    from_me: bool
    push_name: str | None
    message_type: str
    direction: MessageDirection
    status: MessageStatus
    content: str
    payload: dict | None = None
    message_timestamp: datetime | None = None
    created_at: datetime = field(default_factory=_now)
    deleted_at: datetime | None = None


@dataclass(slots=True)
class FakeTabulation:
    id: UUID
    session_id: UUID
    outcome_code: str
    tabulated_by: UUID | None
    notes: str | None = None
    created_at: datetime = field(default_factory=_now)


class FakeSessionRepository:
    """Dictionary-backed registry honouring the conditional-update contract."""

    def __init__(self) -> None:
        self.sessions: dict[UUID, FakeChatSession] = {}
        self.before_transition = None

    def add(self, **fields: Any) -> FakeChatSession:
        fields.setdefault("id", uuid4())
        fields.setdefault("session_key", f"{fields.get('customer_address', 'x')}-{uuid4().hex[:8]}")
        chat_session = FakeChatSession(**fields)
        self.sessions[chat_session.id] = chat_session
        return chat_session

    async def get_by_id(self, session_id: UUID, refresh: bool = False) -> FakeChatSession | None:
        return self.sessions.get(session_id)

    async def get_active_by_address(self, address: str) -> FakeChatSession | None:
        candidates = [
            item
            for item in self.sessions.values()
            if item.customer_address == address and item.status in ACTIVE_STATUSES
        ]
        candidates.sort(key=lambda item: item.created_at, reverse=True)
        return candidates[0] if candidates else None

    async def create(self, **fields: Any) -> FakeChatSession:
        return self.add(**fields)

    async def transition(
        self,
        session_id: UUID,
        *,
        expected_statuses,
        values: dict[str, Any],
        require_unassigned: bool = False,
        expected_assignee: UUID | None = None,
    ) -> FakeChatSession | None:
        if self.before_transition is not None:
            hook, self.before_transition = self.before_transition, None
            hook(self.sessions.get(session_id))

        chat_session = self.sessions.get(session_id)
        if chat_session is None or chat_session.status not in set(expected_statuses):
            return None
        if require_unassigned and chat_session.assigned_operator_id is not None:
            return None
        if expected_assignee is not None and chat_session.assigned_operator_id != expected_assignee:
            return None

        for key, value in values.items():
            setattr(chat_session, key, value)
        chat_session.updated_at = _now()
        return chat_session

    async def update_fields(self, chat_session: FakeChatSession, **values: Any) -> FakeChatSession:
        for key, value in values.items():
            setattr(chat_session, key, value)
        chat_session.updated_at = _now()
        return chat_session

    async def list_by_status(self, statuses, department=None, limit: int = 200):
        wanted = set(statuses)
        items = [
            item
            for item in self.sessions.values()
            if item.status in wanted and (department is None or item.department == department)
        ]
        return sorted(items, key=lambda item: item.created_at)[:limit]

    async def list_waiting_for_operator(self, operator_id: UUID) -> list[FakeChatSession]:
        items = [
            item
            for item in self.sessions.values()
            if item.status == SessionStatus.WAITING
            and operator_id in (item.requested_operator_id, item.supervisor_id)
        ]
        return sorted(items, key=lambda item: item.created_at)

    async def latest_waiting_for_operator(self, operator_id: UUID) -> FakeChatSession | None:
        items = [
            item
            for item in await self.list_waiting_for_operator(operator_id)
            if item.assigned_operator_id is None
        ]
        return items[-1] if items else None

    async def list_in_service_for_operator(self, operator_id: UUID) -> list[FakeChatSession]:
        return [
            item
            for item in self.sessions.values()
            if item.status == SessionStatus.SERVICE and item.assigned_operator_id == operator_id
        ]

    async def list_bot_stage_older_than(self, cutoff: datetime, limit: int = 500):
        return [
            item
            for item in self.sessions.values()
            if item.status == SessionStatus.BOT and item.created_at < cutoff
        ][:limit]

    async def list_waiting_older_than(self, cutoff: datetime, limit: int = 500):
        return [
            item
            for item in self.sessions.values()
            if item.status == SessionStatus.WAITING
            and (item.bot_completed_at or item.created_at) < cutoff
        ][:limit]


class FakeCustomerRepository:
    def __init__(self) -> None:
        self.customers: dict[str, FakeCustomer] = {}

    async def get_by_address(self, address: str) -> FakeCustomer | None:
        return self.customers.get(address)

    async def find_or_create_by_address(
        self,
        address: str,
        push_name: str | None = None,
        is_group: bool = False,
    ) -> FakeCustomer:
        customer = self.customers.get(address)
        if customer is None:
            customer = FakeCustomer(id=uuid4(), address=address, push_name=push_name, is_group=is_group)
            self.customers[address] = customer
        elif push_name:
            customer.push_name = push_name
        return customer


class FakeOperatorRepository:
    def __init__(self) -> None:
        self.operators: dict[UUID, FakeOperator] = {}

    def add(
        self,
        name: str,
        department: Department | None,
        profile: OperatorProfile = OperatorProfile.OPERATOR,
        is_active: bool = True,
    ) -> FakeOperator:
        operator = FakeOperator(
            id=uuid4(),
            name=name,
            department=department,
            profile=profile,
            is_active=is_active,
        )
        self.operators[operator.id] = operator
        return operator

    async def get_by_id(self, operator_id: UUID) -> FakeOperator | None:
        return self.operators.get(operator_id)

    async def list_active_by_department(self, department: Department) -> list[FakeOperator]:
        return [
            operator
            for operator in self.operators.values()
            if operator.department == department
            and operator.is_active
            and operator.profile != OperatorProfile.ADMIN
        ]

    async def get_department_supervisor(
        self,
        department: Department,
        fallback_id: UUID | None = None,
    ) -> FakeOperator | None:
        for operator in self.operators.values():
            if (
                operator.department == department
                and operator.profile == OperatorProfile.SUPERVISOR
                and operator.is_active
            ):
                return operator
        if fallback_id is None:
            return None
        fallback = self.operators.get(fallback_id)
        return fallback if fallback is not None and fallback.is_active else None


class FakeMessageRepository:
    def __init__(self) -> None:
        self.messages: dict[str, FakeMessage] = {}

    async def get_by_gateway_id(self, gateway_message_id: str) -> FakeMessage | None:
        return self.messages.get(gateway_message_id)

    async def record(self, **fields: Any) -> tuple[FakeMessage, bool]:
        existing = self.messages.get(fields["gateway_message_id"])
        if existing is not None:
            return existing, False
        message = FakeMessage(id=uuid4(), **fields)
        self.messages[message.gateway_message_id] = message
        return message, True

    async def update_status_by_gateway_id(
        self,
        gateway_message_id: str,
        status: MessageStatus,
    ) -> FakeMessage | None:
        message = self.messages.get(gateway_message_id)
        if message is not None:
            message.status = status
        return message

    async def mark_deleted(self, gateway_message_id: str) -> FakeMessage | None:
        message = self.messages.get(gateway_message_id)
        if message is None or message.deleted_at is not None:
            return None
        message.deleted_at = _now()
        return message


class FakeTabulationRepository:
    def __init__(self) -> None:
        self.tabulations: list[FakeTabulation] = []

    async def create(
        self,
        session_id: UUID,
        outcome_code: str,
        tabulated_by: UUID | None,
        notes: str | None = None,
    ) -> FakeTabulation:
        tabulation = FakeTabulation(
            id=uuid4(),
            session_id=session_id,
            outcome_code=outcome_code,
            tabulated_by=tabulated_by,
            notes=notes,
        )
        self.tabulations.append(tabulation)
        return tabulation


class RecordingGateway:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.status_changes: list[tuple[str, str, BotSessionStatus]] = []
        self.bot_sessions: dict[tuple[str, str], list[UpstreamBotSession]] = {}
        self.fail_send = False
        self.fail_status_change = False
        self.fail_fetch = False

    async def send_text(self, instance: str, address: str, text: str) -> dict[str, Any]:
        if self.fail_send:
            raise GatewayError("send failed", status_code=500, detail="gateway down")
        self.sent.append((instance, address, text))
        return {"key": {"id": uuid4().hex}}

    async def change_bot_session_status(
        self,
        instance: str,
        remote_jid: str,
        status: BotSessionStatus,
    ) -> None:
        if self.fail_status_change:
            raise GatewayError("status change failed", status_code=500)
        self.status_changes.append((instance, remote_jid, status))

    async def fetch_bot_sessions(self, instance: str, bot_id: str) -> list[UpstreamBotSession]:
        if self.fail_fetch:
            raise GatewayError("fetch failed", status_code=502)
        return list(self.bot_sessions.get((instance, bot_id), []))


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, Any, OperatorEvent, dict[str, Any]]] = []

    async def to_operator(self, operator_id: UUID, event: OperatorEvent, payload) -> None:
        self.events.append(("operator", operator_id, event, dict(payload)))

    async def to_department(self, department: Department, event: OperatorEvent, payload) -> None:
        self.events.append(("department", department, event, dict(payload)))

    async def to_all(self, event: OperatorEvent, payload) -> None:
        self.events.append(("all", None, event, dict(payload)))

    def of(self, event: OperatorEvent) -> list[tuple[str, Any, OperatorEvent, dict[str, Any]]]:
        return [item for item in self.events if item[2] == event]


class FakeConnection:
    def __init__(self, fail_with: BaseException | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str | None] | None = None
        self.fail_with = fail_with

    async def send_json(self, data: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)


@dataclass(slots=True)
class FakeStore:
    db: DummySession
    sessions: FakeSessionRepository
    customers: FakeCustomerRepository
    operators: FakeOperatorRepository
    messages: FakeMessageRepository
    tabulations: FakeTabulationRepository
