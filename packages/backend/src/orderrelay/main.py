"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan owns the realtime relay: it is built and started
before the app serves traffic, kept on app.state (no module globals),
and stopped on shutdown before the database engine is disposed.

Run with:
    uvicorn orderrelay.main:app --port 3000
or the console script:
    orderrelay
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from orderrelay import __version__
from orderrelay.api import api_router
from orderrelay.config import settings
from orderrelay.realtime.relay import RealtimeRelay

logger = structlog.get_logger()


def create_app(relay: Optional[RealtimeRelay] = None) -> FastAPI:
    """Build and return the FastAPI application.

    Pass a relay to use it instead of one built from settings (tests
    inject a relay with a fake upstream connection).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "orderrelay.starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
            channel=settings.listen_channel,
        )

        app.state.relay = relay if relay is not None else RealtimeRelay.from_settings(settings)
        # Never raises: a failed first connect just schedules a retry
        await app.state.relay.start()

        yield

        logger.info("orderrelay.shutdown")
        await app.state.relay.stop()

        from orderrelay.db.engine import engine
        await engine.dispose()

    app = FastAPI(
        title="Order Relay",
        description="Order management API with real-time change notifications",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    from orderrelay.middleware.request_log import RequestLoggingMiddleware

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from orderrelay.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    # Static frontend last, so it never shadows API or WebSocket routes
    if settings.static_dir:
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")

    return app


# Default app instance (used by uvicorn: orderrelay.main:app)
app = create_app()


def main():
    """CLI entry point."""
    import uvicorn

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run(
        "orderrelay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
