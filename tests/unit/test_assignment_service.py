from dataclasses import dataclass
from uuid import uuid4

import pytest

from chatqueue.domain.enums import Department, OperatorProfile, SessionStatus
from chatqueue.infra.realtime.events import OperatorEvent
from chatqueue.infra.realtime.presence import PresenceRegistry
from chatqueue.services.assignment_service import AssignmentOutcome, AssignmentService
from chatqueue.services.errors import (
    InvalidOperatorChoiceError,
    SessionAlreadyAssignedError,
    SessionNotFoundError,
    SessionStateConflictError,
)
from tests.unit.fakes import (
    FakeChatSession,
    FakeConnection,
    FakeOperator,
    FakeStore,
    RecordingNotifier,
)


@dataclass(slots=True)
class FixtureState:
    service: AssignmentService
    store: FakeStore
    presence: PresenceRegistry
    notifier: RecordingNotifier
    alice: FakeOperator
    bruno: FakeOperator
    supervisor: FakeOperator
    chat_session: FakeChatSession


@pytest.fixture
def fixture_state(store, notifier, settings) -> FixtureState:
    # Inserted out of order so the menu has to sort them.
    supervisor = store.operators.add("sofia", Department.FISCAL, OperatorProfile.SUPERVISOR)
    bruno = store.operators.add("Bruno", Department.FISCAL)
    alice = store.operators.add("Alice", Department.FISCAL)
    store.operators.add("Paulo", Department.PERSONAL)
    store.operators.add("Inactive", Department.FISCAL, is_active=False)

    chat_session = store.sessions.add(
        customer_address="5511999990001",
        status=SessionStatus.BOT,
        department=Department.FISCAL,
    )
    presence = PresenceRegistry()
    service = AssignmentService(
        session=store.db,
        presence=presence,
        notifier=notifier,
        sessions=store.sessions,
        operators=store.operators,
        settings=settings,
    )
    return FixtureState(
        service=service,
        store=store,
        presence=presence,
        notifier=notifier,
        alice=alice,
        bruno=bruno,
        supervisor=supervisor,
        chat_session=chat_session,
    )


async def _connect(state: FixtureState, operator: FakeOperator) -> None:
    await state.presence.register(
        f"conn-{operator.id}",
        FakeConnection(),
        operator_id=operator.id,
        operator_name=operator.name,
        department=operator.department,
        profile=operator.profile,
    )


@pytest.mark.asyncio
async def test_menu_is_alphabetical_with_online_flags(fixture_state: FixtureState) -> None:
    await _connect(fixture_state, fixture_state.bruno)

    menu = await fixture_state.service.list_operator_options(Department.FISCAL)

    assert [option.operator.name for option in menu.options] == ["Alice", "Bruno", "sofia"]
    assert [option.position for option in menu.options] == [1, 2, 3]
    assert [option.is_online for option in menu.options] == [False, True, False]
    assert [option.is_supervisor for option in menu.options] == [False, False, True]
    assert menu.supervisor is fixture_state.supervisor
    assert menu.text == "1 - Alice\n2 - Bruno\n3 - sofia"


@pytest.mark.asyncio
async def test_menu_appends_fallback_supervisor(store, notifier, settings) -> None:
    admin = store.operators.add("Admin", None, OperatorProfile.ADMIN)
    operator = store.operators.add("Rita", Department.ACCOUNTING)
    settings.fallback_supervisor_id = str(admin.id)
    service = AssignmentService(
        session=store.db,
        presence=PresenceRegistry(),
        notifier=notifier,
        sessions=store.sessions,
        operators=store.operators,
        settings=settings,
    )

    menu = await service.list_operator_options(Department.ACCOUNTING)

    assert [option.operator.id for option in menu.options] == [operator.id, admin.id]
    assert menu.options[-1].is_supervisor


@pytest.mark.asyncio
async def test_online_choice_is_routed_to_chosen(fixture_state: FixtureState) -> None:
    await _connect(fixture_state, fixture_state.alice)

    decision = await fixture_state.service.choose_operator(fixture_state.chat_session.id, 1)

    assert decision.outcome == AssignmentOutcome.ROUTED_TO_CHOSEN
    assert decision.routed_operator is fixture_state.alice
    assert decision.customer_message == (
        "Please wait a moment, we are transferring you to Alice."
    )
    chat_session = fixture_state.chat_session
    assert chat_session.requested_operator_id == fixture_state.alice.id
    assert chat_session.supervisor_id == fixture_state.supervisor.id
    assert chat_session.assigned_operator_id is None
    assert chat_session.status == SessionStatus.BOT
    assert chat_session.metadata_json["assignment_outcome"] == "routed_to_chosen"
    assert chat_session.metadata_json["customer_operator_choice"] == str(fixture_state.alice.id)

    alerts = fixture_state.notifier.of(OperatorEvent.QUEUE_UPDATE)
    assert alerts[0][:2] == ("operator", fixture_state.alice.id)
    assert alerts[0][3]["outcome"] == "routed_to_chosen"


@pytest.mark.asyncio
async def test_offline_choice_falls_back_to_online_supervisor(
    fixture_state: FixtureState,
) -> None:
    await _connect(fixture_state, fixture_state.supervisor)

    decision = await fixture_state.service.choose_operator(fixture_state.chat_session.id, 2)

    assert decision.outcome == AssignmentOutcome.ROUTED_TO_SUPERVISOR
    assert decision.chosen is fixture_state.bruno
    assert decision.routed_operator is fixture_state.supervisor
    assert "supervisor sofia" in decision.customer_message
    assert fixture_state.chat_session.requested_operator_id == fixture_state.supervisor.id
    assert fixture_state.notifier.events[0][1] == fixture_state.supervisor.id


@pytest.mark.asyncio
async def test_offline_supervisor_choice_waits(fixture_state: FixtureState) -> None:
    decision = await fixture_state.service.choose_operator(fixture_state.chat_session.id, 3)

    assert decision.outcome == AssignmentOutcome.SUPERVISOR_OFFLINE
    assert decision.routed_operator is None
    assert decision.customer_message == "The selected operator is not online. Please wait a moment."


@pytest.mark.asyncio
async def test_everyone_offline_keeps_chosen_as_requested(fixture_state: FixtureState) -> None:
    decision = await fixture_state.service.choose_operator(fixture_state.chat_session.id, 1)

    assert decision.outcome == AssignmentOutcome.UNASSIGNED
    assert fixture_state.chat_session.requested_operator_id == fixture_state.alice.id
    assert "routed_operator_id" not in fixture_state.chat_session.metadata_json
    assert fixture_state.notifier.events[0][1] == fixture_state.alice.id


@pytest.mark.asyncio
async def test_choose_operator_uses_explicit_department(fixture_state: FixtureState) -> None:
    chat_session = fixture_state.store.sessions.add(
        customer_address="5511999990002", status=SessionStatus.WAITING
    )

    decision = await fixture_state.service.choose_operator(
        chat_session.id, 1, department=Department.PERSONAL
    )

    assert decision.chosen.name == "Paulo"
    assert chat_session.department == Department.PERSONAL
    assert chat_session.metadata_json["customer_department_choice"] == "personal"


@pytest.mark.asyncio
@pytest.mark.parametrize("position", [0, 4])
async def test_out_of_range_position_is_rejected(
    fixture_state: FixtureState, position: int
) -> None:
    with pytest.raises(InvalidOperatorChoiceError) as exc_info:
        await fixture_state.service.choose_operator(fixture_state.chat_session.id, position)

    assert exc_info.value.option_count == 3
    assert fixture_state.chat_session.requested_operator_id is None


@pytest.mark.asyncio
async def test_choice_without_department_is_rejected(fixture_state: FixtureState) -> None:
    chat_session = fixture_state.store.sessions.add(customer_address="5511999990003")

    with pytest.raises(InvalidOperatorChoiceError) as exc_info:
        await fixture_state.service.choose_operator(chat_session.id, 1)

    assert exc_info.value.option_count == 0


@pytest.mark.asyncio
async def test_choice_rejects_assigned_and_terminal_sessions(fixture_state: FixtureState) -> None:
    assigned = fixture_state.store.sessions.add(
        customer_address="5511999990004",
        status=SessionStatus.SERVICE,
        department=Department.FISCAL,
        assigned_operator_id=fixture_state.alice.id,
    )
    completed = fixture_state.store.sessions.add(
        customer_address="5511999990005",
        status=SessionStatus.COMPLETED,
        department=Department.FISCAL,
    )

    with pytest.raises(SessionAlreadyAssignedError):
        await fixture_state.service.choose_operator(assigned.id, 1)
    with pytest.raises(SessionStateConflictError):
        await fixture_state.service.choose_operator(completed.id, 1)
    with pytest.raises(SessionNotFoundError):
        await fixture_state.service.choose_operator(uuid4(), 1)


@pytest.mark.asyncio
async def test_bind_department_records_choice(fixture_state: FixtureState) -> None:
    chat_session = fixture_state.store.sessions.add(customer_address="5511999990006")

    await fixture_state.service.bind_department(chat_session.id, Department.FINANCIAL)

    assert chat_session.department == Department.FINANCIAL
    assert chat_session.metadata_json == {"customer_department_choice": "financial"}
    assert fixture_state.store.db.commits == 1


@pytest.mark.asyncio
async def test_bind_department_is_noop_when_unchanged(fixture_state: FixtureState) -> None:
    await fixture_state.service.bind_department(fixture_state.chat_session.id, Department.FISCAL)

    assert fixture_state.store.db.commits == 0
    assert fixture_state.chat_session.metadata_json is None


@pytest.mark.asyncio
async def test_bind_department_rejects_session_in_service(fixture_state: FixtureState) -> None:
    chat_session = fixture_state.store.sessions.add(
        customer_address="5511999990007",
        status=SessionStatus.SERVICE,
        assigned_operator_id=fixture_state.alice.id,
    )

    with pytest.raises(SessionStateConflictError):
        await fixture_state.service.bind_department(chat_session.id, Department.FISCAL)
