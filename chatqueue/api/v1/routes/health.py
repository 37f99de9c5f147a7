from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from chatqueue.core.db import get_db_session

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/db")
async def db_health(session: AsyncSession = Depends(get_db_session)):
    await session.execute(text("SELECT 1"))
    return {"db": "ok"}


@router.get("/health/presence")
async def presence_health(request: Request) -> dict[str, int]:
    presence = getattr(request.app.state, "presence", None)
    return {"connections": len(presence) if presence is not None else 0}
