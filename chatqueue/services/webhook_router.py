import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from chatqueue.core.business_hours import BusinessHours
from chatqueue.core.config import Settings, get_settings
from chatqueue.core.effects import best_effort
from chatqueue.core.locks import KeyedLocks
from chatqueue.domain.addressing import jid_from_address
from chatqueue.domain.enums import (
    BotSessionStatus,
    GatewayEventKind,
    MessageDirection,
    MessageStatus,
    SessionStatus,
)
from chatqueue.domain.payloads import merge_bot_payload, merge_metadata
from chatqueue.infra.db.models import ChatSession
from chatqueue.infra.db.repositories import (
    CustomerRepository,
    MessageRepository,
    OperatorRepository,
    SessionRepository,
    TabulationRepository,
)
from chatqueue.infra.gateway.protocol import ChatGateway, UpstreamBotSession
from chatqueue.infra.realtime.events import OperatorEvent
from chatqueue.infra.realtime.presence import PresenceRegistry
from chatqueue.infra.realtime.publisher import NoopOperatorNotifier, OperatorNotifier
from chatqueue.schemas.webhook import GatewayWebhookEnvelope
from chatqueue.services.errors import MalformedWebhookEventError, SessionTransitionError
from chatqueue.services.serializers import message_payload
from chatqueue.services.session_service import SessionService
from chatqueue.services.side_effects import publish_message, publish_queue_update
from chatqueue.services.webhook_events import (
    BotSessionEvent,
    ConnectionEvent,
    GroupEvent,
    MessageDeleteEvent,
    MessageStatusEvent,
    NewMessageEvent,
    ParsedEvent,
    SendMessageEvent,
    UnknownEvent,
    parse_event,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WebhookResult:
    processed: bool
    event: str
    detail: str
    data: dict[str, Any] | None = None


class WebhookEventRouter:
    """Turns gateway webhook deliveries into session transitions and broadcasts.

    Deliveries are at-least-once, so every handler is idempotent. New-message
    handling for one address is serialized through ``address_locks``; other
    addresses proceed concurrently.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: ChatGateway,
        notifier: OperatorNotifier | None = None,
        presence: PresenceRegistry | None = None,
        address_locks: KeyedLocks | None = None,
        business_hours: BusinessHours | None = None,
        sessions: SessionRepository | None = None,
        customers: CustomerRepository | None = None,
        messages: MessageRepository | None = None,
        operators: OperatorRepository | None = None,
        tabulations: TabulationRepository | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.notifier = notifier or NoopOperatorNotifier()
        self.address_locks = address_locks
        self.business_hours = business_hours
        self.sessions = sessions or SessionRepository(session)
        self.customers = customers or CustomerRepository(session)
        self.messages = messages or MessageRepository(session)
        self.settings = settings or get_settings()
        self.session_service = SessionService(
            session=session,
            gateway=gateway,
            notifier=self.notifier,
            presence=presence,
            address_locks=address_locks,
            sessions=self.sessions,
            customers=self.customers,
            operators=operators,
            tabulations=tabulations,
            settings=self.settings,
        )
        self._handlers: dict[type, Callable[[Any], Awaitable[WebhookResult]]] = {
            NewMessageEvent: self._handle_new_message,
            MessageStatusEvent: self._handle_status_update,
            MessageDeleteEvent: self._handle_delete,
            ConnectionEvent: self._handle_connection,
            GroupEvent: self._handle_group_event,
            BotSessionEvent: self._handle_bot_session,
            SendMessageEvent: self._handle_send_confirmation,
            UnknownEvent: self._handle_unknown,
        }

    async def handle(self, envelope: GatewayWebhookEnvelope) -> WebhookResult:
        try:
            event = parse_event(envelope)
        except MalformedWebhookEventError as exc:
            logger.warning("Dropping malformed webhook from instance %s: %s", envelope.instance, exc)
            return WebhookResult(processed=False, event=envelope.event, detail=str(exc))
        except Exception:
            logger.exception(
                "Webhook '%s' from instance %s could not be parsed",
                envelope.event,
                envelope.instance,
            )
            return WebhookResult(
                processed=False,
                event=envelope.event,
                detail="Event could not be parsed",
            )

        handler = self._handlers[type(event)]
        try:
            return await handler(event)
        except Exception:
            logger.exception(
                "Webhook '%s' from instance %s could not be processed",
                envelope.event,
                envelope.instance,
            )
            await self.session.rollback()
            return WebhookResult(
                processed=False,
                event=envelope.event,
                detail="Event could not be processed",
            )

    async def _handle_new_message(self, event: NewMessageEvent) -> WebhookResult:
        kind = GatewayEventKind.MESSAGES_UPSERT.value
        if event.is_group:
            return await self._handle_group_message(event)

        async with self._address_lock(event.address):
            if await self.messages.get_by_gateway_id(event.message_id) is not None:
                return self._duplicate(kind, event.message_id)

            customer = await self.customers.find_or_create_by_address(
                event.address,
                push_name=None if event.from_me else event.push_name,
            )

            chat_session = await self.sessions.get_active_by_address(event.address)
            session_created = False
            if chat_session is None and not event.from_me:
                if self._is_open():
                    chat_session = await self.session_service.open_inbound_session(
                        customer,
                        instance=event.instance,
                        metadata={
                            "customer_name": event.push_name,
                            "first_message_id": event.message_id,
                            "first_message_timestamp": event.timestamp,
                        },
                    )
                    session_created = True
                else:
                    logger.info("Outside business hours; %s stored without a session", event.address)

            message, created = await self.messages.record(
                gateway_message_id=event.message_id,
                session_id=chat_session.id if chat_session is not None else None,
                address=event.address,
                remote_jid=event.remote_jid,
                instance=event.instance,
                from_me=event.from_me,
                push_name=event.push_name,
                message_type=event.message_type,
                direction=MessageDirection.OUTBOUND if event.from_me else MessageDirection.INBOUND,
                status=MessageStatus.SENT if event.from_me else MessageStatus.DELIVERED,
                content=event.content,
                payload=event.raw,
                message_timestamp=event.timestamp,
            )
            if not created:
                await self.session.rollback()
                return self._duplicate(kind, event.message_id)

            if chat_session is not None and not event.from_me:
                await self.sessions.update_fields(
                    chat_session,
                    metadata_json=merge_metadata(
                        chat_session.metadata_json,
                        customer_name=event.push_name,
                        last_message=event.content,
                        last_message_at=event.timestamp or datetime.now(UTC),
                    ),
                )
            await self.session.commit()

        if (
            chat_session is not None
            and not event.from_me
            and chat_session.status == SessionStatus.BOT
        ):
            await self._attach_bot_snapshot(chat_session)
        if session_created and chat_session is not None:
            logger.info("Opened session %s for %s", chat_session.id, event.address)
            await publish_queue_update(self.notifier, chat_session, "created")

        audience = await publish_message(self.notifier, message, chat_session)
        return WebhookResult(
            processed=True,
            event=kind,
            detail="Message stored",
            data={
                "message_id": str(message.id),
                "session_id": str(chat_session.id) if chat_session is not None else None,
                "session_created": session_created,
                "audience": audience,
            },
        )

    async def _handle_group_message(self, event: NewMessageEvent) -> WebhookResult:
        kind = GatewayEventKind.MESSAGES_UPSERT.value
        message, created = await self.messages.record(
            gateway_message_id=event.message_id,
            session_id=None,
            address=event.address,
            remote_jid=event.remote_jid,
            instance=event.instance,
            from_me=event.from_me,
            push_name=event.push_name,
            message_type=event.message_type,
            direction=MessageDirection.OUTBOUND if event.from_me else MessageDirection.INBOUND,
            status=MessageStatus.SENT if event.from_me else MessageStatus.DELIVERED,
            content=event.content,
            payload=event.raw,
            message_timestamp=event.timestamp,
        )
        await self.session.commit()
        if not created:
            return self._duplicate(kind, event.message_id)

        await publish_message(self.notifier, message, None, is_group=True)
        return WebhookResult(
            processed=True,
            event=kind,
            detail="Group message broadcast",
            data={"message_id": str(message.id), "audience": "all"},
        )

    async def _handle_status_update(self, event: MessageStatusEvent) -> WebhookResult:
        kind = GatewayEventKind.MESSAGES_UPDATE.value
        message = await self.messages.update_status_by_gateway_id(event.message_id, event.status)
        await self.session.commit()
        if message is None:
            return WebhookResult(processed=True, event=kind, detail="Message not stored; nothing to update")

        await best_effort(
            "message status broadcast",
            self.notifier.to_all(
                OperatorEvent.WEBHOOK_EVENT,
                {
                    "event": kind,
                    "message_id": event.message_id,
                    "status": event.status.value,
                    "raw_status": event.raw_status,
                    "message": message_payload(message),
                },
            ),
            gateway_message_id=event.message_id,
        )
        return WebhookResult(
            processed=True,
            event=kind,
            detail="Message status updated",
            data={"message_id": event.message_id, "status": event.status.value},
        )

    async def _handle_delete(self, event: MessageDeleteEvent) -> WebhookResult:
        kind = GatewayEventKind.MESSAGES_DELETE.value
        message = await self.messages.mark_deleted(event.message_id)
        await self.session.commit()
        if message is None:
            return WebhookResult(processed=True, event=kind, detail="Message already deleted or unknown")

        await best_effort(
            "message delete broadcast",
            self.notifier.to_all(
                OperatorEvent.WEBHOOK_EVENT,
                {"event": kind, "message": message_payload(message)},
            ),
            gateway_message_id=event.message_id,
        )
        return WebhookResult(
            processed=True,
            event=kind,
            detail="Message marked deleted",
            data={"message_id": event.message_id},
        )

    async def _handle_connection(self, event: ConnectionEvent) -> WebhookResult:
        kind = GatewayEventKind.CONNECTION_UPDATE.value
        logger.info("Gateway instance %s connection state: %s", event.instance, event.state)
        await best_effort(
            "connection notification",
            self.notifier.to_all(
                OperatorEvent.SYSTEM_NOTIFICATION,
                {"event": kind, "instance": event.instance, "state": event.state},
            ),
            instance=event.instance,
        )
        return WebhookResult(
            processed=True,
            event=kind,
            detail="Connection state broadcast",
            data={"instance": event.instance, "state": event.state},
        )

    async def _handle_group_event(self, event: GroupEvent) -> WebhookResult:
        await best_effort(
            "group event broadcast",
            self.notifier.to_all(
                OperatorEvent.WEBHOOK_EVENT,
                {
                    "event": event.kind.value,
                    "instance": event.instance,
                    "group_jid": event.group_jid,
                    "data": event.raw,
                },
            ),
            group_jid=event.group_jid,
        )
        return WebhookResult(processed=True, event=event.kind.value, detail="Group event broadcast")

    async def _handle_bot_session(self, event: BotSessionEvent) -> WebhookResult:
        kind = event.kind.value
        async with self._address_lock(event.address):
            chat_session = await self.sessions.get_active_by_address(event.address)
            if chat_session is None:
                return WebhookResult(processed=True, event=kind, detail="No active session for address")

            now = datetime.now(UTC)
            snapshot = await self._fetch_bot_snapshot(event.instance, event.address, event.bot_id)
            bot_updates: dict[str, Any] = {
                "bot_id": event.bot_id,
                "session_url": event.session_url,
                "last_status": event.status,
                "last_status_change": now,
            }
            if snapshot is not None:
                bot_updates["snapshot"] = snapshot.model_dump(mode="json", by_alias=True)
            if event.kind == GatewayEventKind.TYPEBOT_START:
                bot_updates["started_at"] = now

            try:
                updated, detail = await self._apply_bot_status(chat_session, event.status, bot_updates)
            except SessionTransitionError as exc:
                logger.info("Bot status %s ignored for session %s: %s", event.status, chat_session.id, exc)
                await self.session.rollback()
                return WebhookResult(processed=True, event=kind, detail=str(exc))

        return WebhookResult(
            processed=True,
            event=kind,
            detail=detail,
            data={"session_id": str(updated.id), "status": updated.status.value},
        )

    async def _apply_bot_status(
        self,
        chat_session: ChatSession,
        status: BotSessionStatus | None,
        bot_updates: dict[str, Any],
    ) -> tuple[ChatSession, str]:
        if chat_session.status == SessionStatus.BOT and status in (
            BotSessionStatus.CLOSED,
            BotSessionStatus.PAUSED,
        ):
            updated = await self.session_service.hand_off_to_waiting(
                chat_session.id, bot_updates=bot_updates, pause_upstream=False
            )
            return updated, "Session moved to waiting"

        if chat_session.status == SessionStatus.WAITING and status == BotSessionStatus.OPENED:
            updated = await self.session_service.reopen_bot_stage(chat_session.id, bot_updates=bot_updates)
            return updated, "Session returned to bot stage"

        await self.sessions.update_fields(
            chat_session,
            bot_payload=merge_bot_payload(chat_session.bot_payload, **bot_updates),
        )
        await self.session.commit()
        return chat_session, "Bot payload refreshed"

    async def _handle_send_confirmation(self, event: SendMessageEvent) -> WebhookResult:
        kind = GatewayEventKind.SEND_MESSAGE.value
        chat_session = None
        if not event.is_group:
            chat_session = await self.sessions.get_active_by_address(event.address)

        message, created = await self.messages.record(
            gateway_message_id=event.message_id,
            session_id=chat_session.id if chat_session is not None else None,
            address=event.address,
            remote_jid=event.remote_jid,
            instance=event.instance,
            from_me=True,
            push_name=None,
            message_type=event.message_type,
            direction=MessageDirection.OUTBOUND,
            status=MessageStatus.SENT,
            content=event.content,
            payload=event.raw,
            message_timestamp=event.timestamp,
        )
        if not created and message.status == MessageStatus.PENDING:
            message = (
                await self.messages.update_status_by_gateway_id(event.message_id, MessageStatus.SENT)
                or message
            )
        await self.session.commit()

        if created:
            await publish_message(self.notifier, message, chat_session, is_group=event.is_group)
        return WebhookResult(
            processed=True,
            event=kind,
            detail="Outgoing message recorded" if created else "Outgoing message already recorded",
            data={"message_id": str(message.id), "status": message.status.value},
        )

    async def _handle_unknown(self, event: UnknownEvent) -> WebhookResult:
        logger.info("Ignoring unsupported webhook event '%s' from %s", event.name, event.instance)
        return WebhookResult(processed=False, event=event.name, detail="Unsupported event ignored")

    async def _attach_bot_snapshot(self, chat_session: ChatSession) -> None:
        snapshot = await self._fetch_bot_snapshot(chat_session.instance, chat_session.customer_address)
        if snapshot is None:
            return
        await self.sessions.update_fields(
            chat_session,
            bot_payload=merge_bot_payload(
                chat_session.bot_payload,
                bot_id=snapshot.bot_id,
                started_at=snapshot.created_at,
                last_status=_known_bot_status(snapshot.status),
                snapshot=snapshot.model_dump(mode="json", by_alias=True),
            ),
        )
        await best_effort("store bot snapshot", self.session.commit(), session_id=chat_session.id)

    async def _fetch_bot_snapshot(
        self,
        instance: str,
        address: str,
        bot_id: str | None = None,
    ) -> UpstreamBotSession | None:
        bot_ids = [bot_id] if bot_id else self.settings.evolution_bot_ids
        remote_jid = jid_from_address(address)
        for candidate in bot_ids:
            sessions = await best_effort(
                "fetch bot sessions",
                self.gateway.fetch_bot_sessions(instance, candidate),
                instance=instance,
                bot_id=candidate,
            )
            if not sessions:
                continue
            matches = [item for item in sessions if item.remote_jid == remote_jid]
            if matches:
                opened = [item for item in matches if item.is_opened]
                return (opened or matches)[0]
        return None

    def _is_open(self) -> bool:
        return self.business_hours is None or self.business_hours.is_open()

    def _address_lock(self, address: str) -> AbstractAsyncContextManager[Any]:
        if self.address_locks is None:
            return nullcontext()
        return self.address_locks.hold(address)

    @staticmethod
    def _duplicate(kind: str, message_id: str) -> WebhookResult:
        logger.debug("Duplicate delivery of message %s ignored", message_id)
        return WebhookResult(
            processed=True,
            event=kind,
            detail="Duplicate delivery ignored",
            data={"message_id": message_id, "duplicate": True},
        )


def _known_bot_status(raw: str | None) -> BotSessionStatus | None:
    try:
        return BotSessionStatus(raw) if raw else None
    except ValueError:
        return None
