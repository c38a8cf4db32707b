"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance around an AppContainer. Lifespan manages startup/shutdown of the
optional Redis relay. Middleware, CORS, and routers all registered here.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orderpulse import __version__
from orderpulse.api import api_router
from orderpulse.container import AppContainer, build_container

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Redis is optional — if it's disabled or unreachable the app
    still serves clients connected to this process.
    """
    container: AppContainer = app.state.container
    settings = container.settings
    logger.info(
        "orderpulse.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    relay_task: Optional[asyncio.Task] = None
    if settings.redis_enabled:
        from orderpulse.realtime.pubsub import RedisEventRelay, connect_redis
        try:
            redis = await connect_redis(settings.redis_url)
        except Exception as e:
            logger.warning("orderpulse.redis_unavailable", error=str(e))
        else:
            container.attach_relay(
                RedisEventRelay(redis, settings.redis_channel, container.broadcaster)
            )
            relay_task = asyncio.create_task(container.relay.run())
            logger.info("orderpulse.redis_connected", url=settings.redis_url)

    yield

    # Shutdown
    logger.info("orderpulse.shutdown", connections=len(container.registry))

    if container.relay is not None:
        container.relay.stop()
        if relay_task is not None:
            relay_task.cancel()
            try:
                await relay_task
            except asyncio.CancelledError:
                pass
        await container.relay.redis.aclose()


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    container = container or build_container()
    settings = container.settings

    app = FastAPI(
        title="OrderPulse",
        description="Order management API with real-time order updates over WebSockets",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → CORS → handler

    from orderpulse.middleware.request_id import RequestIdMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route (real-time order events)
    from orderpulse.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: orderpulse.main:app)
app = create_app()
