from chatqueue.domain.enums import SessionStatus, TransitionAction


class InvalidSessionTransition(ValueError):
    def __init__(self, current: SessionStatus, action: TransitionAction) -> None:
        super().__init__(
            f"Cannot apply action '{action.value}' from state '{current.value}'."
        )
        self.current = current
        self.action = action
