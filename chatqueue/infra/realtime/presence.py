import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from chatqueue.core.effects import best_effort
from chatqueue.domain.enums import Department, OperatorProfile
from chatqueue.infra.realtime.channels import (
    GLOBAL_CHANNEL,
    department_channel,
    operator_channel,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class OperatorConnection(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(slots=True)
class PresenceRecord:
    connection_id: str
    connection: OperatorConnection
    operator_id: UUID
    operator_name: str
    department: Department | None
    profile: OperatorProfile
    available: bool = True
    current_session_id: UUID | None = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def channels(self) -> list[str]:
        channels = [operator_channel(self.operator_id), GLOBAL_CHANNEL]
        if self.department is not None:
            channels.insert(1, department_channel(self.department))
        return channels

    def snapshot(self) -> dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "operator_id": str(self.operator_id),
            "operator_name": self.operator_name,
            "department": self.department.value if self.department else None,
            "profile": self.profile.value,
            "available": self.available,
            "current_session_id": (
                str(self.current_session_id) if self.current_session_id else None
            ),
            "connected_at": self.connected_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
        }


class PresenceChangeKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    STATUS = "status"


@dataclass(frozen=True, slots=True)
class PresenceChange:
    kind: PresenceChangeKind
    record: PresenceRecord


PresenceListener = Callable[[PresenceChange], Awaitable[Any]]


class PresenceRegistry:
    """Process-local table of connected operators.

    The lock only guards the in-memory maps; nothing is awaited while it is
    held. Readers get copies so broadcasts can iterate without the lock.
    Change listeners run after the lock is released.
    """

    def __init__(self) -> None:
        self._records: dict[str, PresenceRecord] = {}
        self._by_operator: dict[UUID, set[str]] = defaultdict(set)
        self._by_department: dict[Department, set[str]] = defaultdict(set)
        self._listeners: list[PresenceListener] = []
        self._lock = asyncio.Lock()

    def add_listener(self, listener: PresenceListener) -> None:
        self._listeners.append(listener)

    async def register(
        self,
        connection_id: str,
        connection: OperatorConnection,
        *,
        operator_id: UUID,
        operator_name: str,
        department: Department | None,
        profile: OperatorProfile = OperatorProfile.OPERATOR,
    ) -> PresenceRecord:
        record = PresenceRecord(
            connection_id=connection_id,
            connection=connection,
            operator_id=operator_id,
            operator_name=operator_name,
            department=department,
            profile=profile,
        )
        async with self._lock:
            previous = self._records.get(connection_id)
            if previous is not None:
                self._unindex(previous)
            self._records[connection_id] = record
            self._by_operator[operator_id].add(connection_id)
            if department is not None:
                self._by_department[department].add(connection_id)

        logger.info(
            "Operator %s connected (connection=%s, department=%s)",
            operator_id,
            connection_id,
            department.value if department else None,
        )
        await self._notify(PresenceChange(PresenceChangeKind.CONNECTED, replace(record)))
        return record

    async def remove(self, connection_id: str) -> PresenceRecord | None:
        async with self._lock:
            record = self._records.pop(connection_id, None)
            if record is not None:
                self._unindex(record)

        if record is None:
            return None

        logger.info("Operator %s disconnected (connection=%s)", record.operator_id, connection_id)
        await self._notify(PresenceChange(PresenceChangeKind.DISCONNECTED, record))
        return record

    async def update_status(
        self,
        connection_id: str,
        *,
        current_session_id: UUID | None = _UNSET,
        available: bool | None = None,
    ) -> PresenceRecord | None:
        async with self._lock:
            record = self._records.get(connection_id)
            if record is None:
                return None
            if current_session_id is not _UNSET:
                record.current_session_id = current_session_id
            if available is not None:
                record.available = available
            record.last_activity_at = datetime.now(UTC)
            snapshot = replace(record)

        await self._notify(PresenceChange(PresenceChangeKind.STATUS, snapshot))
        return snapshot

    async def set_current_session(self, operator_id: UUID, session_id: UUID | None) -> int:
        """Point every connection of ``operator_id`` at ``session_id``."""
        async with self._lock:
            connection_ids = list(self._by_operator.get(operator_id, ()))

        updated = 0
        for connection_id in connection_ids:
            if await self.update_status(connection_id, current_session_id=session_id):
                updated += 1
        return updated

    async def touch(self, connection_id: str) -> None:
        async with self._lock:
            record = self._records.get(connection_id)
            if record is not None:
                record.last_activity_at = datetime.now(UTC)

    async def get(self, connection_id: str) -> PresenceRecord | None:
        async with self._lock:
            record = self._records.get(connection_id)
            return replace(record) if record is not None else None

    async def is_online(self, operator_id: UUID) -> bool:
        async with self._lock:
            return bool(self._by_operator.get(operator_id))

    async def records_for_operator(self, operator_id: UUID) -> list[PresenceRecord]:
        async with self._lock:
            return self._copy(self._by_operator.get(operator_id, ()))

    async def records_for_department(self, department: Department) -> list[PresenceRecord]:
        async with self._lock:
            return self._copy(self._by_department.get(department, ()))

    async def all_records(self) -> list[PresenceRecord]:
        async with self._lock:
            return self._copy(self._records.keys())

    async def connected_operators(
        self,
        department: Department | None = None,
        available_only: bool = False,
    ) -> list[PresenceRecord]:
        """One record per operator (their most recent connection)."""
        if department is None:
            records = await self.all_records()
        else:
            records = await self.records_for_department(department)

        latest: dict[UUID, PresenceRecord] = {}
        for record in records:
            if available_only and not record.available:
                continue
            current = latest.get(record.operator_id)
            if current is None or record.connected_at > current.connected_at:
                latest[record.operator_id] = record
        return sorted(latest.values(), key=lambda item: item.operator_name.casefold())

    async def clear(self) -> list[PresenceRecord]:
        async with self._lock:
            records = list(self._records.values())
            self._records.clear()
            self._by_operator.clear()
            self._by_department.clear()
        return records

    def __len__(self) -> int:
        return len(self._records)

    def _copy(self, connection_ids) -> list[PresenceRecord]:
        return [
            replace(self._records[connection_id])
            for connection_id in list(connection_ids)
            if connection_id in self._records
        ]

    def _unindex(self, record: PresenceRecord) -> None:
        operator_connections = self._by_operator.get(record.operator_id)
        if operator_connections is not None:
            operator_connections.discard(record.connection_id)
            if not operator_connections:
                self._by_operator.pop(record.operator_id, None)

        if record.department is not None:
            department_connections = self._by_department.get(record.department)
            if department_connections is not None:
                department_connections.discard(record.connection_id)
                if not department_connections:
                    self._by_department.pop(record.department, None)

    async def _notify(self, change: PresenceChange) -> None:
        for listener in list(self._listeners):
            await best_effort(
                "presence listener",
                listener(change),
                kind=change.kind.value,
                operator_id=change.record.operator_id,
            )
