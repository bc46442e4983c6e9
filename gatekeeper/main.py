from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response
from starlette.types import ASGIApp

from gatekeeper.api.godmode import router as godmode_router
from gatekeeper.api.webhooks import router as webhooks_router
from gatekeeper.config import settings, validate_settings
from gatekeeper.context import AppContext, build_context
from gatekeeper.db import SessionLocal, engine
from gatekeeper.errors import register_error_handlers
from gatekeeper.logging import configure_logging
from gatekeeper.middleware.gatekeeper import GatekeeperMiddleware
from gatekeeper.observability import ObservabilityMiddleware
from gatekeeper.telemetry import setup_otel

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[arg-type]
    # ── Startup ──────────────────────────────────────────
    if app.state.context is None:
        app.state.context = build_context(settings, SessionLocal)
    context: AppContext = app.state.context
    for w in validate_settings(context.settings):
        logger.warning("Config warning: %s", w)
    await context.start()
    logger.info("Application started (pid=%s)", os.getpid())
    yield

    # ── Shutdown ─────────────────────────────────────────
    logger.info("Application shutting down")
    await context.close()


def create_app(
    context: AppContext | None = None, downstream: ASGIApp | None = None
) -> FastAPI:
    """Build the application.

    Without a context one is built from the environment at startup. Requests
    that pass the gatekeeper and match no route here fall through to
    ``downstream`` when one is given.
    """
    app = FastAPI(title="Gatekeeper", lifespan=lifespan)
    app.state.context = context
    setup_otel(app, engine)

    # ── Middleware (order matters: last added = first executed) ──
    register_error_handlers(app)
    app.add_middleware(GatekeeperMiddleware)
    app.add_middleware(ObservabilityMiddleware)

    app.include_router(webhooks_router)
    app.include_router(godmode_router)

    @app.get("/health")
    def health_check() -> dict[str, str]:
        """Liveness probe; ok whenever the process is serving."""
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Response:
        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    if downstream is not None:
        app.mount("/", downstream)
    return app


configure_logging()
app = create_app()
