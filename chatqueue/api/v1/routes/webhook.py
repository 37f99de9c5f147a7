import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from chatqueue.api.dependencies import get_gateway, get_notifier
from chatqueue.core.db import get_db_session
from chatqueue.schemas.webhook import GatewayWebhookEnvelope, WebhookAckResponse
from chatqueue.services.webhook_router import WebhookEventRouter

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_webhook_router(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> WebhookEventRouter:
    state = request.app.state
    return WebhookEventRouter(
        session=session,
        gateway=get_gateway(request),
        notifier=get_notifier(request),
        presence=getattr(state, "presence", None),
        address_locks=getattr(state, "address_locks", None),
        business_hours=getattr(state, "business_hours", None),
    )


@router.post("/evolution", response_model=WebhookAckResponse)
async def receive_gateway_event(
    envelope: GatewayWebhookEnvelope,
    router_service: WebhookEventRouter = Depends(get_webhook_router),
) -> WebhookAckResponse:
    logger.info("Webhook '%s' received from instance %s", envelope.event, envelope.instance)
    result = await router_service.handle(envelope)
    return WebhookAckResponse(
        processed=result.processed,
        event=result.event,
        detail=result.detail,
        data=result.data,
    )


@router.post("/evolution/{event_path}", response_model=WebhookAckResponse)
async def receive_gateway_event_by_path(
    event_path: str,
    envelope: GatewayWebhookEnvelope,
    router_service: WebhookEventRouter = Depends(get_webhook_router),
) -> WebhookAckResponse:
    _ = event_path
    return await receive_gateway_event(envelope, router_service)
