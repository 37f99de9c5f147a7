from uuid import UUID

from chatqueue.domain.enums import SessionStatus


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: UUID | str) -> None:
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id


class NoWaitingSessionError(LookupError):
    def __init__(self, operator_id: UUID) -> None:
        super().__init__(f"No waiting session is routed to operator '{operator_id}'")
        self.operator_id = operator_id


class OperatorNotFoundError(LookupError):
    def __init__(self, operator_id: UUID) -> None:
        super().__init__(f"Operator '{operator_id}' not found or inactive")
        self.operator_id = operator_id


class SessionTransitionError(ValueError):
    """Base for every rejected state change; ``reason`` is a stable code."""

    reason = "invalid_transition"

    def __init__(self, session_id: UUID | None, message: str) -> None:
        super().__init__(message)
        self.session_id = session_id


class SessionNotWaitingError(SessionTransitionError):
    reason = "not_waiting"

    def __init__(self, session_id: UUID, status: SessionStatus) -> None:
        super().__init__(
            session_id,
            f"Session '{session_id}' is '{status.value}', only waiting sessions can be claimed",
        )
        self.status = status


class SessionAlreadyAssignedError(SessionTransitionError):
    reason = "already_assigned"

    def __init__(self, session_id: UUID, assigned_operator_id: UUID | None) -> None:
        super().__init__(
            session_id,
            f"Session '{session_id}' is already assigned to operator '{assigned_operator_id}'",
        )
        self.assigned_operator_id = assigned_operator_id


class SessionNotInServiceError(SessionTransitionError):
    reason = "not_in_service"

    def __init__(self, session_id: UUID, status: SessionStatus) -> None:
        super().__init__(
            session_id,
            f"Session '{session_id}' is '{status.value}', the action requires 'service'",
        )
        self.status = status


class NotAssignedOperatorError(SessionTransitionError):
    reason = "not_assigned_operator"

    def __init__(self, session_id: UUID, operator_id: UUID) -> None:
        super().__init__(
            session_id,
            f"Operator '{operator_id}' is not the assigned operator of session '{session_id}'",
        )
        self.operator_id = operator_id


class SessionNotCancellableError(SessionTransitionError):
    reason = "not_cancellable"

    def __init__(self, session_id: UUID, status: SessionStatus) -> None:
        super().__init__(
            session_id,
            f"Session '{session_id}' is '{status.value}' and cannot be cancelled",
        )
        self.status = status


class SessionStateConflictError(SessionTransitionError):
    reason = "state_conflict"

    def __init__(self, session_id: UUID, status: SessionStatus, action: str) -> None:
        super().__init__(
            session_id,
            f"Cannot apply '{action}' to session '{session_id}' in state '{status.value}'",
        )
        self.status = status
        self.action = action


class ActiveSessionExistsError(SessionTransitionError):
    reason = "active_session_exists"

    def __init__(self, address: str, session_id: UUID) -> None:
        super().__init__(
            session_id,
            f"Address '{address}' already has an active session '{session_id}'",
        )
        self.address = address


class InvalidTransferTargetError(SessionTransitionError):
    reason = "invalid_transfer_target"

    def __init__(self, session_id: UUID, target_operator_id: UUID, detail: str) -> None:
        super().__init__(
            session_id,
            f"Cannot transfer session '{session_id}' to operator '{target_operator_id}': {detail}",
        )
        self.target_operator_id = target_operator_id


class InvalidOperatorChoiceError(ValueError):
    def __init__(self, position: int, option_count: int) -> None:
        super().__init__(
            f"Operator choice {position} is out of range (1-{option_count})"
            if option_count
            else "No operators are available for this department"
        )
        self.position = position
        self.option_count = option_count


class MissingOutcomeCodeError(ValueError):
    def __init__(self) -> None:
        super().__init__("An outcome code is required to complete a session")


class InvalidAddressError(ValueError):
    def __init__(self, address: str, detail: str) -> None:
        super().__init__(f"Invalid address '{address}': {detail}")
        self.address = address


class OutboundDeliveryError(RuntimeError):
    def __init__(self, address: str, detail: str | None) -> None:
        super().__init__(f"Could not deliver the opening message to '{address}'")
        self.address = address
        self.detail = detail


class MalformedWebhookEventError(ValueError):
    def __init__(self, event: str, detail: str) -> None:
        super().__init__(f"Malformed '{event}' event: {detail}")
        self.event = event
        self.detail = detail
