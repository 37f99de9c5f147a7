import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from chatqueue.core.config import get_settings
from chatqueue.core.db import get_session_factory
from chatqueue.core.security import decode_operator_access_token
from chatqueue.domain.enums import Department
from chatqueue.infra.db.repositories import OperatorRepository
from chatqueue.infra.realtime.presence import PresenceRegistry

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


def _frame(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"event": event, "payload": payload, "sent_at": datetime.now(UTC).isoformat()}


def _parse_uuid(raw: Any) -> UUID | None:
    if raw in (None, ""):
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        return None


def _parse_department(raw: Any) -> Department | None:
    if raw in (None, ""):
        return None
    try:
        return Department(str(raw).lower())
    except ValueError:
        return None


def status_changes_from_frame(message: dict[str, Any]) -> dict[str, Any]:
    """Keyword arguments for ``PresenceRegistry.update_status`` from a client frame.

    Keys missing from the frame are not passed, so the record keeps its value.
    """
    changes: dict[str, Any] = {}
    if "current_session_id" in message:
        raw_session_id = message["current_session_id"]
        session_id = _parse_uuid(raw_session_id)
        if raw_session_id not in (None, "") and session_id is None:
            raise ValueError("Invalid current_session_id")
        changes["current_session_id"] = session_id
    available = message.get("available")
    if isinstance(available, bool):
        changes["available"] = available
    return changes


@router.websocket("/ws")
async def operator_ws(websocket: WebSocket) -> None:
    presence: PresenceRegistry | None = getattr(websocket.app.state, "presence", None)
    if presence is None:
        await websocket.close(code=1011, reason="Presence registry not initialized")
        return

    try:
        session_factory = get_session_factory()
    except RuntimeError:
        await websocket.close(code=1011, reason="Database session is not initialized")
        return

    access_token = websocket.query_params.get("access_token", "").strip()
    if not access_token:
        await websocket.close(code=1008, reason="Operator websocket requires access_token")
        return

    try:
        claims = decode_operator_access_token(access_token, settings.operator_auth_secret)
    except ValueError:
        await websocket.close(code=1008, reason="Invalid or expired operator session")
        return

    async with session_factory() as session:
        operator = await OperatorRepository(session).get_by_id(claims.operator_id)
    if operator is None or not operator.is_active:
        await websocket.close(code=1008, reason="Invalid or expired operator session")
        return

    await websocket.accept()
    connection_id = uuid4().hex
    await presence.register(
        connection_id,
        websocket,
        operator_id=operator.id,
        operator_name=operator.name,
        department=operator.department,
        profile=operator.profile,
    )
    record = await presence.get(connection_id)
    await websocket.send_json(
        _frame(
            "connected",
            {
                "connection_id": connection_id,
                "operator_id": str(operator.id),
                "operator_name": operator.name,
                "department": operator.department.value if operator.department else None,
                "channels": record.channels if record is not None else [],
            },
        )
    )

    try:
        while True:
            raw_message = await websocket.receive_text()
            await presence.touch(connection_id)
            if raw_message.strip().lower() == "ping":
                await websocket.send_json(_frame("pong", {}))
                continue

            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError:
                await websocket.send_json(_frame("error", {"detail": "Expected JSON payload"}))
                continue
            if not isinstance(message, dict):
                await websocket.send_json(_frame("error", {"detail": "Expected JSON object"}))
                continue

            action = message.get("action")
            if action == "ping":
                await websocket.send_json(_frame("pong", {}))
                continue

            if action == "update_status":
                try:
                    changes = status_changes_from_frame(message)
                except ValueError as exc:
                    await websocket.send_json(_frame("error", {"detail": str(exc)}))
                    continue
                updated = await presence.update_status(connection_id, **changes)
                await websocket.send_json(
                    _frame("status_updated", updated.snapshot() if updated else {})
                )
                continue

            if action == "get_connected_operators":
                operators = await presence.connected_operators()
                await websocket.send_json(
                    _frame(
                        "connected_operators",
                        {"operators": [item.snapshot() for item in operators]},
                    )
                )
                continue

            if action == "get_available_operators":
                department = _parse_department(message.get("department"))
                operators = await presence.connected_operators(department, available_only=True)
                await websocket.send_json(
                    _frame(
                        "available_operators",
                        {
                            "department": department.value if department else None,
                            "operators": [item.snapshot() for item in operators],
                        },
                    )
                )
                continue

            await websocket.send_json(_frame("error", {"detail": "Unsupported action"}))
    except WebSocketDisconnect:
        return
    finally:
        await presence.remove(connection_id)
