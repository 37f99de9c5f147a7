from datetime import datetime
from typing import Any
from uuid import UUID

from chatqueue.infra.db.models import ChatSession, Message, Operator


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


def session_payload(chat_session: ChatSession) -> dict[str, Any]:
    return {
        "id": str(chat_session.id),
        "session_key": chat_session.session_key,
        "customer_id": _str(chat_session.customer_id),
        "customer_address": chat_session.customer_address,
        "instance": chat_session.instance,
        "status": chat_session.status.value,
        "direction": chat_session.direction.value,
        "department": chat_session.department.value if chat_session.department else None,
        "requested_operator_id": _str(chat_session.requested_operator_id),
        "assigned_operator_id": _str(chat_session.assigned_operator_id),
        "supervisor_id": _str(chat_session.supervisor_id),
        "metadata": chat_session.metadata_json or {},
        "bot_completed_at": _iso(chat_session.bot_completed_at),
        "assigned_at": _iso(chat_session.assigned_at),
        "completed_at": _iso(chat_session.completed_at),
        "created_at": _iso(chat_session.created_at),
        "updated_at": _iso(chat_session.updated_at),
    }


def message_payload(message: Message) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "gateway_message_id": message.gateway_message_id,
        "session_id": _str(message.session_id),
        "address": message.address,
        "remote_jid": message.remote_jid,
        "instance": message.instance,
        "from_me": message.from_me,
        "push_name": message.push_name,
        "message_type": message.message_type,
        "direction": message.direction.value,
        "status": message.status.value,
        "content": message.content,
        "message_timestamp": _iso(message.message_timestamp),
        "created_at": _iso(message.created_at),
        "deleted_at": _iso(message.deleted_at),
    }


def operator_payload(operator: Operator) -> dict[str, Any]:
    return {
        "id": str(operator.id),
        "name": operator.name,
        "department": operator.department.value if operator.department else None,
        "profile": operator.profile.value,
    }
