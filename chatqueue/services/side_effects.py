"""Best-effort effects shared by the session, assignment, router and reaper flows.

Every helper here swallows and logs its own failures; callers invoke them
only after the state change they describe has been committed.
"""

from typing import Any

from chatqueue.core.effects import best_effort
from chatqueue.domain.addressing import jid_from_address
from chatqueue.domain.enums import BotSessionStatus, SessionStatus
from chatqueue.infra.db.models import ChatSession, Message
from chatqueue.infra.gateway.protocol import ChatGateway
from chatqueue.infra.realtime.events import OperatorEvent
from chatqueue.infra.realtime.publisher import OperatorNotifier
from chatqueue.services.serializers import message_payload, session_payload


async def publish_queue_update(
    notifier: OperatorNotifier,
    chat_session: ChatSession,
    action: str,
    **extra: Any,
) -> None:
    payload = {"action": action, "session": session_payload(chat_session), **extra}

    if chat_session.department is not None:
        await best_effort(
            "queue_update to department",
            notifier.to_department(chat_session.department, OperatorEvent.QUEUE_UPDATE, payload),
            session_id=chat_session.id,
            queue_action=action,
        )
    else:
        await best_effort(
            "queue_update to all",
            notifier.to_all(OperatorEvent.QUEUE_UPDATE, payload),
            session_id=chat_session.id,
            queue_action=action,
        )

    involved = dict.fromkeys(
        operator_id
        for operator_id in (
            chat_session.assigned_operator_id,
            chat_session.requested_operator_id,
            chat_session.supervisor_id,
        )
        if operator_id is not None
    )
    for operator_id in involved:
        await best_effort(
            "queue_update to operator",
            notifier.to_operator(operator_id, OperatorEvent.QUEUE_UPDATE, payload),
            session_id=chat_session.id,
            operator_id=operator_id,
        )


async def publish_message(
    notifier: OperatorNotifier,
    message: Message,
    chat_session: ChatSession | None,
    *,
    is_group: bool = False,
) -> str:
    """Route a stored message to operators and return the audience used."""
    payload: dict[str, Any] = {
        "message": message_payload(message),
        "session": session_payload(chat_session) if chat_session is not None else None,
        "is_group": is_group,
    }

    if is_group or chat_session is None:
        audience = "all"
        effect = notifier.to_all(OperatorEvent.MESSAGE, payload)
    elif (
        chat_session.status == SessionStatus.SERVICE
        and chat_session.assigned_operator_id is not None
    ):
        audience = "operator"
        effect = notifier.to_operator(
            chat_session.assigned_operator_id, OperatorEvent.MESSAGE, payload
        )
    elif chat_session.department is not None:
        audience = "department"
        effect = notifier.to_department(chat_session.department, OperatorEvent.MESSAGE, payload)
    else:
        audience = "all"
        effect = notifier.to_all(OperatorEvent.MESSAGE, payload)

    await best_effort(
        "message broadcast",
        effect,
        gateway_message_id=message.gateway_message_id,
        audience=audience,
    )
    return audience


async def notify_customer(
    gateway: ChatGateway,
    chat_session: ChatSession,
    text: str,
    action: str,
) -> bool:
    result = await best_effort(
        action,
        _send_text(gateway, chat_session.instance, chat_session.customer_address, text),
        session_id=chat_session.id,
        address=chat_session.customer_address,
    )
    return result is not None


async def set_upstream_bot_status(
    gateway: ChatGateway,
    instance: str,
    address: str,
    status: BotSessionStatus,
) -> bool:
    result = await best_effort(
        f"{status.value} upstream bot session",
        _change_status(gateway, instance, address, status),
        instance=instance,
        address=address,
    )
    return result is not None


async def _send_text(gateway: ChatGateway, instance: str, address: str, text: str) -> bool:
    await gateway.send_text(instance, address, text)
    return True


async def _change_status(
    gateway: ChatGateway,
    instance: str,
    address: str,
    status: BotSessionStatus,
) -> bool:
    await gateway.change_bot_session_status(instance, jid_from_address(address), status)
    return True
