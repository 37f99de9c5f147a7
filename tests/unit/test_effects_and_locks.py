import asyncio
import logging
from uuid import uuid4

import pytest

from chatqueue.core.effects import best_effort
from chatqueue.core.locks import KeyedLocks
from chatqueue.domain.enums import Department, SessionStatus
from chatqueue.infra.realtime.events import OperatorEvent
from chatqueue.services.side_effects import publish_queue_update
from tests.unit.fakes import FakeChatSession, RecordingNotifier


async def _succeed() -> str:
    return "done"


async def _fail() -> str:
    raise RuntimeError("gateway timeout")


@pytest.mark.asyncio
async def test_best_effort_returns_result() -> None:
    assert await best_effort("notify", _succeed()) == "done"


@pytest.mark.asyncio
async def test_best_effort_logs_and_swallows_failure(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="chatqueue.core.effects"):
        result = await best_effort("close upstream", _fail(), address="5511", session_id=7)

    assert result is None
    record = caplog.records[0]
    assert "close upstream" in record.getMessage()
    assert "address=5511, session_id=7" in record.getMessage()
    assert record.exc_info is not None


@pytest.mark.asyncio
async def test_best_effort_does_not_swallow_cancellation() -> None:
    async def cancelled() -> None:
        raise asyncio.CancelledError

    with pytest.raises(asyncio.CancelledError):
        await best_effort("broadcast", cancelled())


@pytest.mark.asyncio
async def test_best_effort_accepts_context_named_like_its_parameters(
    caplog: pytest.LogCaptureFixture,
) -> None:
    assert await best_effort("notify", _succeed(), action="claimed", awaitable="x") == "done"

    with caplog.at_level(logging.WARNING, logger="chatqueue.core.effects"):
        result = await best_effort("notify", _fail(), action="claimed")

    assert result is None
    assert "action=claimed" in caplog.records[0].getMessage()


@pytest.mark.asyncio
async def test_queue_update_reaches_department_and_involved_operators() -> None:
    notifier = RecordingNotifier()
    operator_id = uuid4()
    chat_session = FakeChatSession(
        id=uuid4(),
        session_key="default:5511999990001:1",
        customer_address="5511999990001",
        status=SessionStatus.WAITING,
        department=Department.FISCAL,
        requested_operator_id=operator_id,
        supervisor_id=operator_id,
    )

    await publish_queue_update(notifier, chat_session, "assigned", reason="routed")

    assert [(scope, target) for scope, target, _, _ in notifier.events] == [
        ("department", Department.FISCAL),
        ("operator", operator_id),
    ]
    payload = notifier.events[0][3]
    assert payload["action"] == "assigned"
    assert payload["reason"] == "routed"
    assert payload["session"]["status"] == "waiting"


@pytest.mark.asyncio
async def test_queue_update_without_department_goes_to_everyone() -> None:
    notifier = RecordingNotifier()
    chat_session = FakeChatSession(
        id=uuid4(), session_key="default:5511999990001:1", customer_address="5511999990001"
    )

    await publish_queue_update(notifier, chat_session, "created")

    assert [(scope, event) for scope, _, event, _ in notifier.events] == [
        ("all", OperatorEvent.QUEUE_UPDATE)
    ]


@pytest.mark.asyncio
async def test_same_key_is_serialized() -> None:
    locks = KeyedLocks()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("5511999990001"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_do_not_wait_on_each_other() -> None:
    locks = KeyedLocks()
    release = asyncio.Event()
    entered: list[str] = []

    async def holder() -> None:
        async with locks.hold("first"):
            entered.append("first")
            await release.wait()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)

    async with locks.hold("second"):
        entered.append("second")
        assert len(locks) == 2

    release.set()
    await task

    assert entered == ["first", "second"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_is_released_when_body_raises() -> None:
    locks = KeyedLocks()

    with pytest.raises(ValueError):
        async with locks.hold("key"):
            raise ValueError("boom")

    async with locks.hold("key"):
        pass
    assert len(locks) == 0
