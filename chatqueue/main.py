import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from chatqueue.api.router import api_router
from chatqueue.core.business_hours import BusinessHours
from chatqueue.core.config import get_settings
from chatqueue.core.db import close_engine, get_session_factory, init_engine, initialize_database
from chatqueue.core.locks import KeyedLocks
from chatqueue.core.logging import configure_logging
from chatqueue.infra.gateway import EvolutionGatewayClient
from chatqueue.infra.realtime import OperatorBroadcaster, PresenceRegistry
from chatqueue.services.reaper import InactivityReaper

settings = get_settings()
settings.validate_security_settings()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)

    # Initialize infrastructure
    engine = init_engine()
    await initialize_database(engine)
    app.state.db_engine = engine

    presence = PresenceRegistry()
    broadcaster = OperatorBroadcaster(
        presence, send_timeout_seconds=settings.broadcast_send_timeout_seconds
    )
    presence.add_listener(broadcaster.on_presence_change)
    gateway = EvolutionGatewayClient.from_settings(settings)

    app.state.presence = presence
    app.state.broadcaster = broadcaster
    app.state.gateway = gateway
    app.state.address_locks = KeyedLocks()
    app.state.business_hours = BusinessHours.from_settings(settings)

    stop = asyncio.Event()
    tasks: list[asyncio.Task] = []
    if settings.reaper_enabled:
        reaper = InactivityReaper(
            get_session_factory(),
            gateway,
            notifier=broadcaster,
            settings=settings,
        )
        tasks.append(asyncio.create_task(reaper.run_forever(stop), name="inactivity-reaper"))

    logger.info("Queue routing engine started (env=%s)", settings.app_env)

    yield

    # Graceful shutdown
    stop.set()
    for task in tasks:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    for record in await presence.clear():
        with contextlib.suppress(Exception):
            await record.connection.close(code=1001, reason="Server shutting down")

    await gateway.aclose()
    await close_engine(engine)
    logger.info("Queue routing engine stopped")


app = FastAPI(
    title="Chat Queue Routing API",
    version="0.1.0",
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
    lifespan=lifespan,
)

if settings.trusted_hosts:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.trusted_hosts,
    )

if settings.force_https:
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Bot-Token"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault(
        "Referrer-Policy",
        "strict-origin-when-cross-origin",
    )
    if settings.force_https:
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=31536000; includeSubDomains",
        )
    return response


app.include_router(api_router, prefix="/api")


@app.get("/", tags=["meta"])
async def root() -> dict[str, str]:
    return {"service": "chatqueue", "status": "ok"}
