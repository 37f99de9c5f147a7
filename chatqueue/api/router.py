from fastapi import APIRouter

from chatqueue.api.v1.routes import bot, health, presence, realtime, sessions, webhook

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(webhook.router, prefix="/v1/webhook", tags=["webhook"])
api_router.include_router(sessions.router, prefix="/v1/sessions", tags=["sessions"])
api_router.include_router(bot.router, prefix="/v1/bot", tags=["bot"])
api_router.include_router(presence.router, prefix="/v1/presence", tags=["presence"])
api_router.include_router(realtime.router, prefix="/v1/realtime", tags=["realtime"])
