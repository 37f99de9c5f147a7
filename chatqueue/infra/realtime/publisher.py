from collections.abc import Mapping
from typing import Any, Protocol
from uuid import UUID

from chatqueue.domain.enums import Department
from chatqueue.infra.realtime.events import OperatorEvent


class OperatorNotifier(Protocol):
    async def to_operator(
        self,
        operator_id: UUID,
        event: OperatorEvent,
        payload: Mapping[str, Any],
    ) -> Any: ...

    async def to_department(
        self,
        department: Department,
        event: OperatorEvent,
        payload: Mapping[str, Any],
    ) -> Any: ...

    async def to_all(self, event: OperatorEvent, payload: Mapping[str, Any]) -> Any: ...


class NoopOperatorNotifier:
    async def to_operator(
        self,
        operator_id: UUID,
        event: OperatorEvent,
        payload: Mapping[str, Any],
    ) -> None:
        _ = operator_id
        _ = event
        _ = payload
        return None

    async def to_department(
        self,
        department: Department,
        event: OperatorEvent,
        payload: Mapping[str, Any],
    ) -> None:
        _ = department
        _ = event
        _ = payload
        return None

    async def to_all(self, event: OperatorEvent, payload: Mapping[str, Any]) -> None:
        _ = event
        _ = payload
        return None
