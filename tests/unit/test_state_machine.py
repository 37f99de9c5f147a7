import pytest

from chatqueue.domain.enums import SessionStatus, TransitionAction
from chatqueue.domain.exceptions import InvalidSessionTransition
from chatqueue.domain.state_machine import SessionLifecycle


def test_bot_hand_off_moves_to_waiting() -> None:
    next_state = SessionLifecycle.transition(SessionStatus.BOT, TransitionAction.HAND_OFF)
    assert next_state == SessionStatus.WAITING


def test_waiting_claim_moves_to_service() -> None:
    next_state = SessionLifecycle.transition(SessionStatus.WAITING, TransitionAction.CLAIM)
    assert next_state == SessionStatus.SERVICE


def test_transfer_keeps_service() -> None:
    next_state = SessionLifecycle.transition(SessionStatus.SERVICE, TransitionAction.TRANSFER)
    assert next_state == SessionStatus.SERVICE


def test_service_complete_moves_to_completed() -> None:
    next_state = SessionLifecycle.transition(SessionStatus.SERVICE, TransitionAction.COMPLETE)
    assert next_state == SessionStatus.COMPLETED


def test_repeated_hand_off_is_idempotent() -> None:
    next_state = SessionLifecycle.transition(SessionStatus.WAITING, TransitionAction.HAND_OFF)
    assert next_state == SessionStatus.WAITING


def test_reopen_bot_from_waiting_and_bot() -> None:
    assert (
        SessionLifecycle.transition(SessionStatus.WAITING, TransitionAction.REOPEN_BOT)
        == SessionStatus.BOT
    )
    assert (
        SessionLifecycle.transition(SessionStatus.BOT, TransitionAction.REOPEN_BOT)
        == SessionStatus.BOT
    )


@pytest.mark.parametrize("status", [SessionStatus.BOT, SessionStatus.WAITING])
def test_bot_and_waiting_can_be_cancelled(status: SessionStatus) -> None:
    assert SessionLifecycle.transition(status, TransitionAction.CANCEL) == SessionStatus.CANCELLED


def test_service_cannot_be_cancelled() -> None:
    with pytest.raises(InvalidSessionTransition) as exc_info:
        SessionLifecycle.transition(SessionStatus.SERVICE, TransitionAction.CANCEL)
    assert exc_info.value.current == SessionStatus.SERVICE
    assert exc_info.value.action == TransitionAction.CANCEL


def test_bot_cannot_be_claimed_directly() -> None:
    with pytest.raises(InvalidSessionTransition):
        SessionLifecycle.transition(SessionStatus.BOT, TransitionAction.CLAIM)


@pytest.mark.parametrize("status", [SessionStatus.COMPLETED, SessionStatus.CANCELLED])
@pytest.mark.parametrize("action", list(TransitionAction))
def test_terminal_states_have_no_outgoing_transitions(
    status: SessionStatus, action: TransitionAction
) -> None:
    assert SessionLifecycle.is_terminal(status)
    with pytest.raises(InvalidSessionTransition):
        SessionLifecycle.transition(status, action)


def test_sources_for_conditional_updates() -> None:
    assert SessionLifecycle.sources(TransitionAction.CLAIM) == frozenset({SessionStatus.WAITING})
    assert SessionLifecycle.sources(TransitionAction.CANCEL) == frozenset(
        {SessionStatus.BOT, SessionStatus.WAITING}
    )
    assert SessionLifecycle.sources(TransitionAction.HAND_OFF) == frozenset({SessionStatus.BOT})


def test_only_service_requires_assignee() -> None:
    assert SessionLifecycle.requires_assignee(SessionStatus.SERVICE)
    assert not SessionLifecycle.requires_assignee(SessionStatus.WAITING)
    assert not SessionLifecycle.requires_assignee(SessionStatus.COMPLETED)
