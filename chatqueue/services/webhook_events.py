"""Parsed gateway webhook events.

``parse_event`` validates a raw envelope once and returns one variant per
event kind, so handlers receive guaranteed fields instead of re-checking
optional keys.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from chatqueue.domain.addressing import address_from_jid, is_group_jid
from chatqueue.domain.enums import BotSessionStatus, GatewayEventKind, MessageStatus
from chatqueue.schemas.webhook import GatewayWebhookEnvelope
from chatqueue.services.errors import MalformedWebhookEventError

DEFAULT_INSTANCE = "default"

GATEWAY_STATUS_MAP: dict[str, MessageStatus] = {
    "delivery_ack": MessageStatus.DELIVERED,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "played": MessageStatus.READ,
    "server_ack": MessageStatus.SENT,
    "sent": MessageStatus.SENT,
    "failed": MessageStatus.FAILED,
    "error": MessageStatus.FAILED,
}

CAPTIONED_MESSAGE_TYPES = ("imageMessage", "videoMessage", "audioMessage", "documentMessage")

GROUP_EVENT_KINDS = frozenset(
    {
        GatewayEventKind.GROUP_PARTICIPANTS_UPDATE,
        GatewayEventKind.GROUP_UPDATE,
        GatewayEventKind.GROUPS_UPSERT,
    }
)


@dataclass(frozen=True, slots=True)
class NewMessageEvent:
    instance: str
    message_id: str
    remote_jid: str
    address: str
    from_me: bool
    is_group: bool
    push_name: str | None
    message_type: str
    content: str
    timestamp: datetime | None
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class MessageStatusEvent:
    instance: str
    message_id: str
    raw_status: str
    status: MessageStatus
    remote_jid: str | None = None


@dataclass(frozen=True, slots=True)
class MessageDeleteEvent:
    instance: str
    message_id: str
    remote_jid: str | None = None


@dataclass(frozen=True, slots=True)
class ConnectionEvent:
    instance: str
    state: str
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class GroupEvent:
    instance: str
    kind: GatewayEventKind
    group_jid: str | None
    raw: Any = field(repr=False)


@dataclass(frozen=True, slots=True)
class BotSessionEvent:
    instance: str
    kind: GatewayEventKind
    remote_jid: str
    address: str
    status: BotSessionStatus | None
    bot_id: str | None
    session_url: str | None
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class SendMessageEvent:
    instance: str
    message_id: str
    remote_jid: str
    address: str
    is_group: bool
    message_type: str
    content: str
    timestamp: datetime | None
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    instance: str
    name: str


ParsedEvent = (
    NewMessageEvent
    | MessageStatusEvent
    | MessageDeleteEvent
    | ConnectionEvent
    | GroupEvent
    | BotSessionEvent
    | SendMessageEvent
    | UnknownEvent
)


def _normalize_event_name(name: str) -> str:
    return name.strip().lower().replace("_", ".").replace("-", ".")


_KIND_BY_NORMALIZED_NAME = {
    _normalize_event_name(kind.value): kind for kind in GatewayEventKind
}


def resolve_kind(name: str) -> GatewayEventKind | None:
    return _KIND_BY_NORMALIZED_NAME.get(_normalize_event_name(name))


def map_gateway_status(raw_status: Any) -> MessageStatus:
    return GATEWAY_STATUS_MAP.get(str(raw_status).strip().lower(), MessageStatus.PENDING)


def extract_message_content(message_type: str, message: dict[str, Any] | None) -> str:
    if not isinstance(message, dict) or not message:
        return ""
    if message_type == "conversation":
        return str(message.get("conversation") or "")
    if message_type == "extendedTextMessage":
        return _body_text(message.get("extendedTextMessage"), "text")
    if message_type in CAPTIONED_MESSAGE_TYPES:
        return _body_text(message.get(message_type), "caption")
    return ""


def _body_text(body: Any, name: str) -> str:
    if not isinstance(body, dict):
        return ""
    return str(body.get(name) or "")


def parse_event(envelope: GatewayWebhookEnvelope) -> ParsedEvent:
    instance = envelope.instance or DEFAULT_INSTANCE
    kind = resolve_kind(envelope.event)
    if kind is None:
        return UnknownEvent(instance=instance, name=envelope.event)

    if kind in GROUP_EVENT_KINDS:
        return _parse_group_event(kind, instance, envelope.data)

    data = _first_record(kind, envelope.data)
    if kind == GatewayEventKind.MESSAGES_UPSERT:
        return _parse_new_message(kind, instance, data)
    if kind == GatewayEventKind.MESSAGES_UPDATE:
        return _parse_status_update(kind, instance, data)
    if kind == GatewayEventKind.MESSAGES_DELETE:
        return _parse_delete(kind, instance, data)
    if kind == GatewayEventKind.CONNECTION_UPDATE:
        return ConnectionEvent(
            instance=instance,
            state=str(data.get("state") or "unknown"),
            raw=data,
        )
    if kind == GatewayEventKind.SEND_MESSAGE:
        return _parse_send_message(kind, instance, data)
    return _parse_bot_session(kind, instance, data)


def _first_record(kind: GatewayEventKind, data: Any) -> dict[str, Any]:
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict) and isinstance(data.get("messages"), list):
        messages = data["messages"]
        data = messages[0] if messages else None
    if not isinstance(data, dict):
        raise MalformedWebhookEventError(kind.value, "data must be an object")
    return data


def _require_str(kind: GatewayEventKind, value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MalformedWebhookEventError(kind.value, f"missing '{name}'")
    return value.strip()


def _parse_timestamp(raw: Any) -> datetime | None:
    if raw in (None, ""):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    # Some gateway versions report milliseconds.
    if value > 1e12:
        value /= 1000
    try:
        return datetime.fromtimestamp(value, UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _message_type(data: dict[str, Any]) -> str:
    message_type = data.get("messageType")
    if isinstance(message_type, str) and message_type:
        return message_type
    message = data.get("message")
    if isinstance(message, dict) and message:
        return next(iter(message))
    return "conversation"


def _parse_new_message(kind: GatewayEventKind, instance: str, data: dict[str, Any]) -> NewMessageEvent:
    key = data.get("key")
    if not isinstance(key, dict):
        raise MalformedWebhookEventError(kind.value, "missing 'key'")
    remote_jid = _require_str(kind, key.get("remoteJid"), "key.remoteJid")
    message_id = _require_str(kind, key.get("id"), "key.id")
    message_type = _message_type(data)
    message = data.get("message") if isinstance(data.get("message"), dict) else None
    push_name = data.get("pushName")

    return NewMessageEvent(
        instance=instance,
        message_id=message_id,
        remote_jid=remote_jid,
        address=address_from_jid(remote_jid),
        from_me=bool(key.get("fromMe", False)),
        is_group=is_group_jid(remote_jid),
        push_name=push_name if isinstance(push_name, str) and push_name else None,
        message_type=message_type,
        content=extract_message_content(message_type, message),
        timestamp=_parse_timestamp(data.get("messageTimestamp")),
        raw=data,
    )


def _parse_status_update(kind: GatewayEventKind, instance: str, data: dict[str, Any]) -> MessageStatusEvent:
    key = data.get("key") if isinstance(data.get("key"), dict) else {}
    update = data.get("update") if isinstance(data.get("update"), dict) else {}
    message_id = data.get("keyId") or key.get("id") or data.get("messageId")
    raw_status = data.get("status") or data.get("updateStatus") or update.get("status")

    message_id = _require_str(kind, message_id, "keyId")
    if raw_status in (None, ""):
        raise MalformedWebhookEventError(kind.value, "missing 'status'")

    return MessageStatusEvent(
        instance=instance,
        message_id=message_id,
        raw_status=str(raw_status),
        status=map_gateway_status(raw_status),
        remote_jid=data.get("remoteJid") or key.get("remoteJid"),
    )


def _parse_delete(kind: GatewayEventKind, instance: str, data: dict[str, Any]) -> MessageDeleteEvent:
    key = data.get("key") if isinstance(data.get("key"), dict) else data
    message_id = _require_str(kind, key.get("id") or data.get("keyId"), "key.id")
    return MessageDeleteEvent(
        instance=instance,
        message_id=message_id,
        remote_jid=key.get("remoteJid"),
    )


def _parse_group_event(kind: GatewayEventKind, instance: str, data: Any) -> GroupEvent:
    if isinstance(data, list):
        first = data[0] if data else {}
    else:
        first = data
    if not isinstance(first, dict):
        raise MalformedWebhookEventError(kind.value, "data must be an object or list")
    group_jid = first.get("id") or first.get("groupJid") or first.get("remoteJid")
    return GroupEvent(instance=instance, kind=kind, group_jid=group_jid, raw=data)


def _parse_send_message(kind: GatewayEventKind, instance: str, data: dict[str, Any]) -> SendMessageEvent:
    key = data.get("key") if isinstance(data.get("key"), dict) else {}
    remote_jid = _require_str(kind, key.get("remoteJid") or data.get("remoteJid"), "key.remoteJid")
    message_id = _require_str(kind, key.get("id") or data.get("messageId"), "key.id")
    message_type = _message_type(data)
    message = data.get("message") if isinstance(data.get("message"), dict) else None

    return SendMessageEvent(
        instance=instance,
        message_id=message_id,
        remote_jid=remote_jid,
        address=address_from_jid(remote_jid),
        is_group=is_group_jid(remote_jid),
        message_type=message_type,
        content=extract_message_content(message_type, message),
        timestamp=_parse_timestamp(data.get("messageTimestamp")),
        raw=data,
    )


def _parse_bot_session(kind: GatewayEventKind, instance: str, data: dict[str, Any]) -> BotSessionEvent:
    remote_jid = _require_str(kind, data.get("remoteJid"), "remoteJid")
    raw_status = data.get("status")
    status: BotSessionStatus | None = None
    if kind == GatewayEventKind.TYPEBOT_CHANGE_STATUS:
        raw_status = _require_str(kind, raw_status, "status")
        try:
            status = BotSessionStatus(raw_status.lower())
        except ValueError as exc:
            raise MalformedWebhookEventError(kind.value, f"unknown status {raw_status!r}") from exc
    elif kind == GatewayEventKind.TYPEBOT_START:
        status = BotSessionStatus.OPENED

    bot_id = data.get("typebotId") or data.get("botId")
    return BotSessionEvent(
        instance=instance,
        kind=kind,
        remote_jid=remote_jid,
        address=address_from_jid(remote_jid),
        status=status,
        bot_id=str(bot_id) if bot_id else None,
        session_url=data.get("url"),
        raw=data,
    )
