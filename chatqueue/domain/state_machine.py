from chatqueue.domain.enums import SessionStatus, TransitionAction
from chatqueue.domain.exceptions import InvalidSessionTransition

ACTIVE_STATUSES: frozenset[SessionStatus] = frozenset(
    {SessionStatus.BOT, SessionStatus.WAITING, SessionStatus.SERVICE}
)
TERMINAL_STATUSES: frozenset[SessionStatus] = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.CANCELLED}
)


class SessionLifecycle:
    """State machine for a customer session: bot -> waiting -> service -> completed.

    Bot and waiting sessions can also be cancelled; terminal states have no
    outgoing transitions.
    """

    _allowed_transitions: dict[tuple[SessionStatus, TransitionAction], SessionStatus] = {
        (SessionStatus.BOT, TransitionAction.HAND_OFF): SessionStatus.WAITING,
        (SessionStatus.WAITING, TransitionAction.REOPEN_BOT): SessionStatus.BOT,
        (SessionStatus.WAITING, TransitionAction.CLAIM): SessionStatus.SERVICE,
        (SessionStatus.SERVICE, TransitionAction.TRANSFER): SessionStatus.SERVICE,
        (SessionStatus.SERVICE, TransitionAction.COMPLETE): SessionStatus.COMPLETED,
        (SessionStatus.BOT, TransitionAction.CANCEL): SessionStatus.CANCELLED,
        (SessionStatus.WAITING, TransitionAction.CANCEL): SessionStatus.CANCELLED,
    }

    @classmethod
    def transition(cls, current: SessionStatus, action: TransitionAction) -> SessionStatus:
        # Repeated bot-platform callbacks are no-ops.
        if current == SessionStatus.WAITING and action == TransitionAction.HAND_OFF:
            return SessionStatus.WAITING
        if current == SessionStatus.BOT and action == TransitionAction.REOPEN_BOT:
            return SessionStatus.BOT

        next_state = cls._allowed_transitions.get((current, action))
        if not next_state:
            raise InvalidSessionTransition(current=current, action=action)
        return next_state

    @classmethod
    def sources(cls, action: TransitionAction) -> frozenset[SessionStatus]:
        return frozenset(
            current for current, candidate in cls._allowed_transitions if candidate == action
        )

    @staticmethod
    def is_terminal(status: SessionStatus) -> bool:
        return status in TERMINAL_STATUSES

    @staticmethod
    def requires_assignee(status: SessionStatus) -> bool:
        return status == SessionStatus.SERVICE
