import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from starlette.websockets import WebSocketDisconnect

from chatqueue.domain.enums import Department
from chatqueue.infra.realtime.channels import (
    GLOBAL_CHANNEL,
    department_channel,
    operator_channel,
)
from chatqueue.infra.realtime.events import OperatorEvent
from chatqueue.infra.realtime.presence import (
    PresenceChange,
    PresenceRecord,
    PresenceRegistry,
)

logger = logging.getLogger(__name__)

STALE_CONNECTION_ERRORS = (RuntimeError, WebSocketDisconnect, TimeoutError)


@dataclass(slots=True)
class DeliveryReport:
    channel: str
    targeted: int = 0
    delivered: int = 0
    failed: int = 0


class OperatorBroadcaster:
    """Fans operator events out to the connections held by a PresenceRegistry.

    Sends run concurrently; one failing connection never blocks the others.
    Connections that fail with a transport error are dropped from presence.
    """

    def __init__(
        self,
        presence: PresenceRegistry,
        send_timeout_seconds: float = 5.0,
    ) -> None:
        self.presence = presence
        self.send_timeout_seconds = send_timeout_seconds

    async def to_operator(
        self,
        operator_id: UUID,
        event: OperatorEvent,
        payload: Mapping[str, Any],
    ) -> DeliveryReport:
        channel = operator_channel(operator_id)
        records = await self.presence.records_for_operator(operator_id)
        if not records:
            logger.info(
                "Operator %s is not connected; '%s' event not delivered",
                operator_id,
                event.value,
            )
            return DeliveryReport(channel=channel)
        return await self._deliver(records, channel, event, payload)

    async def to_department(
        self,
        department: Department,
        event: OperatorEvent,
        payload: Mapping[str, Any],
    ) -> DeliveryReport:
        records = await self.presence.records_for_department(department)
        return await self._deliver(records, department_channel(department), event, payload)

    async def to_all(self, event: OperatorEvent, payload: Mapping[str, Any]) -> DeliveryReport:
        records = await self.presence.all_records()
        return await self._deliver(records, GLOBAL_CHANNEL, event, payload)

    async def disconnect_operator(
        self,
        operator_id: UUID,
        reason: str = "Disconnected by supervisor",
        requested_by: UUID | None = None,
    ) -> int:
        records = await self.presence.records_for_operator(operator_id)
        if not records:
            return 0

        await self._deliver(
            records,
            operator_channel(operator_id),
            OperatorEvent.DISCONNECT,
            {
                "operator_id": str(operator_id),
                "reason": reason,
                "requested_by": str(requested_by) if requested_by else None,
            },
        )
        for record in records:
            try:
                await record.connection.close(code=1000, reason=reason)
            except STALE_CONNECTION_ERRORS:
                logger.debug("Connection %s already closed", record.connection_id)
            await self.presence.remove(record.connection_id)

        logger.info("Operator %s force-disconnected (%d connections)", operator_id, len(records))
        return len(records)

    async def on_presence_change(self, change: PresenceChange) -> None:
        await self.to_all(
            OperatorEvent.OPERATOR_STATUS,
            {"change": change.kind.value, "operator": change.record.snapshot()},
        )

    async def _deliver(
        self,
        records: list[PresenceRecord],
        channel: str,
        event: OperatorEvent,
        payload: Mapping[str, Any],
    ) -> DeliveryReport:
        report = DeliveryReport(channel=channel, targeted=len(records))
        if not records:
            return report

        envelope = {
            "event": event.value,
            "channel": channel,
            "payload": dict(payload),
            "sent_at": datetime.now(UTC).isoformat(),
        }
        results = await asyncio.gather(
            *(self._send(record, envelope) for record in records),
            return_exceptions=True,
        )

        stale: list[PresenceRecord] = []
        for record, result in zip(records, results):
            if not isinstance(result, BaseException):
                report.delivered += 1
                continue

            report.failed += 1
            logger.warning(
                "Delivery of '%s' to operator %s (connection=%s) failed: %r",
                event.value,
                record.operator_id,
                record.connection_id,
                result,
            )
            if isinstance(result, STALE_CONNECTION_ERRORS):
                stale.append(record)

        for record in stale:
            await self.presence.remove(record.connection_id)
        return report

    async def _send(self, record: PresenceRecord, envelope: dict[str, Any]) -> None:
        await asyncio.wait_for(
            record.connection.send_json(envelope),
            timeout=self.send_timeout_seconds,
        )
