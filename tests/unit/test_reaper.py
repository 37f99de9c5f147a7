import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest

from chatqueue.domain.enums import BotSessionStatus, Department, SessionStatus
from chatqueue.infra.gateway.protocol import UpstreamBotSession
from chatqueue.services.reaper import InactivityReaper
from chatqueue.services.session_service import SessionService
from tests.unit.fakes import FakeSessionRepository, FakeStore, RecordingGateway

NOW = datetime(2026, 10, 18, 15, 0, tzinfo=UTC)


class BrokenListingRepository(FakeSessionRepository):
    async def list_bot_stage_older_than(self, cutoff, limit: int = 500):
        raise RuntimeError("listing failed")


@dataclass(slots=True)
class FixtureState:
    reaper: InactivityReaper
    store: FakeStore
    gateway: RecordingGateway


def _build(store, gateway, notifier, settings) -> InactivityReaper:
    def service_factory(db) -> SessionService:
        return SessionService(
            session=db,
            gateway=gateway,
            notifier=notifier,
            sessions=store.sessions,
            customers=store.customers,
            operators=store.operators,
            tabulations=store.tabulations,
            settings=settings,
        )

    return InactivityReaper(
        lambda: store.db,
        gateway,
        notifier=notifier,
        settings=settings,
        service_factory=service_factory,
    )


@pytest.fixture
def fixture_state(store, gateway, notifier, settings) -> FixtureState:
    return FixtureState(
        reaper=_build(store, gateway, notifier, settings),
        store=store,
        gateway=gateway,
    )


def _upstream(address: str, minutes_ago: int, status: str = "opened", naive: bool = False):
    updated = NOW - timedelta(minutes=minutes_ago)
    if naive:
        updated = updated.replace(tzinfo=None)
    return UpstreamBotSession(
        remoteJid=f"{address}@s.whatsapp.net",
        status=status,
        botId="bot-1",
        updatedAt=updated,
    )


@pytest.mark.asyncio
async def test_bot_session_without_upstream_is_cancelled_once(
    fixture_state: FixtureState, settings
) -> None:
    stale = fixture_state.store.sessions.add(
        customer_address="5511999990001", created_at=NOW - timedelta(minutes=10)
    )
    fresh = fixture_state.store.sessions.add(
        customer_address="5511999990002", created_at=NOW - timedelta(minutes=1)
    )

    report = await fixture_state.reaper.sweep_bot_without_session(now=NOW)

    assert (report.examined, report.cancelled) == (1, 1)
    assert stale.status == SessionStatus.CANCELLED
    assert stale.completed_at is not None
    assert stale.metadata_json["cancellation_reason"] == "inactivity_no_session"
    assert fresh.status == SessionStatus.BOT
    assert fixture_state.gateway.status_changes == [
        ("default", "5511999990001@s.whatsapp.net", BotSessionStatus.CLOSED)
    ]
    assert fixture_state.gateway.sent == [
        ("default", "5511999990001", settings.inactivity_notice_text)
    ]

    again = await fixture_state.reaper.sweep_bot_without_session(now=NOW)

    assert again.examined == 0
    assert len(fixture_state.gateway.sent) == 1


@pytest.mark.asyncio
async def test_bot_session_with_live_upstream_is_kept(fixture_state: FixtureState) -> None:
    chat_session = fixture_state.store.sessions.add(
        customer_address="5511999990001", created_at=NOW - timedelta(minutes=10)
    )
    fixture_state.gateway.bot_sessions[("default", "bot-1")] = [_upstream("5511999990001", 1)]

    report = await fixture_state.reaper.sweep_bot_without_session(now=NOW)

    assert (report.examined, report.skipped, report.cancelled) == (1, 1, 0)
    assert chat_session.status == SessionStatus.BOT


@pytest.mark.asyncio
async def test_closed_upstream_session_does_not_count_as_live(
    fixture_state: FixtureState,
) -> None:
    chat_session = fixture_state.store.sessions.add(
        customer_address="5511999990001", created_at=NOW - timedelta(minutes=10)
    )
    fixture_state.gateway.bot_sessions[("default", "bot-1")] = [
        _upstream("5511999990001", 1, status="closed")
    ]

    await fixture_state.reaper.sweep_bot_without_session(now=NOW)

    assert chat_session.status == SessionStatus.CANCELLED


@pytest.mark.asyncio
async def test_unreachable_gateway_skips_no_session_sweep(fixture_state: FixtureState) -> None:
    chat_session = fixture_state.store.sessions.add(
        customer_address="5511999990001", created_at=NOW - timedelta(minutes=10)
    )
    fixture_state.gateway.fail_fetch = True

    report = await fixture_state.reaper.sweep_bot_without_session(now=NOW)

    assert report.skipped == 1
    assert chat_session.status == SessionStatus.BOT


@pytest.mark.asyncio
async def test_idle_upstream_sessions_are_reaped(fixture_state: FixtureState, settings) -> None:
    operator = fixture_state.store.operators.add("Alice", Department.FISCAL)
    in_bot = fixture_state.store.sessions.add(customer_address="5511999990001")
    in_service = fixture_state.store.sessions.add(
        customer_address="5511999990002",
        status=SessionStatus.SERVICE,
        assigned_operator_id=operator.id,
    )
    fixture_state.gateway.bot_sessions[("default", "bot-1")] = [
        _upstream("5511999990001", 10),
        _upstream("5511999990002", 10),
        _upstream("5511999990003", 10, naive=True),
        _upstream("5511999990004", 1),
        _upstream("5511999990005", 10, status="paused"),
        UpstreamBotSession(
            remoteJid="120363000000000000@g.us",
            status="opened",
            updatedAt=NOW - timedelta(minutes=10),
        ),
    ]

    report = await fixture_state.reaper.sweep_idle_bot_sessions(now=NOW)

    assert report.examined == 3
    assert report.cancelled == 1
    assert report.skipped == 1
    assert report.closed_upstream == 1
    assert in_bot.status == SessionStatus.CANCELLED
    assert in_bot.metadata_json["cancellation_reason"] == "inactivity"
    assert in_service.status == SessionStatus.SERVICE
    closed = {jid for _, jid, status in fixture_state.gateway.status_changes}
    assert closed == {"5511999990001@s.whatsapp.net", "5511999990003@s.whatsapp.net"}
    assert ("default", "5511999990003", settings.inactivity_notice_text) in (
        fixture_state.gateway.sent
    )


@pytest.mark.asyncio
async def test_waiting_timeout_notice_survives_failed_upstream_close(
    fixture_state: FixtureState, settings
) -> None:
    expired = fixture_state.store.sessions.add(
        customer_address="5511999990001",
        status=SessionStatus.WAITING,
        created_at=NOW - timedelta(hours=2),
        bot_completed_at=NOW - timedelta(minutes=30),
    )
    recently_handed_off = fixture_state.store.sessions.add(
        customer_address="5511999990002",
        status=SessionStatus.WAITING,
        created_at=NOW - timedelta(hours=2),
        bot_completed_at=NOW - timedelta(minutes=5),
    )
    fixture_state.gateway.fail_status_change = True

    report = await fixture_state.reaper.sweep_waiting_timeouts(now=NOW)

    assert (report.examined, report.cancelled) == (1, 1)
    assert expired.status == SessionStatus.CANCELLED
    assert expired.metadata_json["cancellation_reason"] == "waiting_timeout"
    assert recently_handed_off.status == SessionStatus.WAITING
    assert fixture_state.gateway.sent == [
        ("default", "5511999990001", settings.waiting_timeout_notice_text)
    ]


@pytest.mark.asyncio
async def test_claim_racing_the_reaper_is_counted_and_sweep_continues(
    fixture_state: FixtureState,
) -> None:
    operator = fixture_state.store.operators.add("Alice", Department.FISCAL)
    claimed = fixture_state.store.sessions.add(
        customer_address="5511999990001",
        status=SessionStatus.WAITING,
        created_at=NOW - timedelta(hours=2),
    )
    other = fixture_state.store.sessions.add(
        customer_address="5511999990002",
        status=SessionStatus.WAITING,
        created_at=NOW - timedelta(hours=1),
    )

    def operator_claims(row) -> None:
        row.status = SessionStatus.SERVICE
        row.assigned_operator_id = operator.id

    fixture_state.store.sessions.before_transition = operator_claims

    report = await fixture_state.reaper.sweep_waiting_timeouts(now=NOW)

    assert report.failed == 1
    assert report.cancelled == 1
    assert str(claimed.id) in report.errors[0]
    assert claimed.status == SessionStatus.SERVICE
    assert claimed.assigned_operator_id == operator.id
    assert other.status == SessionStatus.CANCELLED
    assert fixture_state.store.db.rollbacks == 1


@pytest.mark.asyncio
async def test_run_once_contains_a_failing_sweep(store, gateway, notifier, settings) -> None:
    store.sessions = BrokenListingRepository()
    reaper = _build(store, gateway, notifier, settings)

    reports = await reaper.run_once()

    assert [report.sweep for report in reports] == ["idle_bot_sessions", "waiting_timeouts"]


@pytest.mark.asyncio
async def test_run_forever_stops_when_signalled(fixture_state: FixtureState) -> None:
    stop = asyncio.Event()
    calls = []

    async def run_once():
        calls.append(1)
        stop.set()
        return []

    fixture_state.reaper.run_once = run_once

    await asyncio.wait_for(fixture_state.reaper.run_forever(stop), timeout=1)

    assert calls == [1]
