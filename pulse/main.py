from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI, Request
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from pulse.api.v1.router import api_router
from pulse.core.errors import add_exception_handlers, success_response
from pulse.core.logging import configure_logging
from pulse.core.settings import get_settings
from pulse.db.session import init_db, open_session
from pulse.realtime import ConnectionManager, RealtimeDispatcher, RealtimePublisher
from pulse.services import notification_service

settings = get_settings()
configure_logging(debug=settings.debug)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup started")
    init_db()
    with open_session() as db:
        notification_service.purge_expired_notifications(db)

    app.state.connection_manager = ConnectionManager(queue_size=settings.ws_outgoing_queue_size)
    app.state.realtime_publisher = RealtimePublisher(app.state.connection_manager)
    app.state.realtime_dispatcher = RealtimeDispatcher(
        publisher=app.state.realtime_publisher,
        session_factory=open_session,
        poll_interval_sec=settings.realtime_dispatcher_poll_ms / 1000.0,
        batch_size=settings.realtime_dispatcher_batch_size,
        max_attempts=settings.realtime_max_attempts,
    )
    if settings.realtime_dispatcher_enabled:
        await app.state.realtime_dispatcher.start()
    logger.info("Application startup completed")
    yield
    await app.state.realtime_dispatcher.stop()
    logger.info("Application shutdown completed")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=settings.cors_origins,
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )
        ],
    )

    if settings.debug:
        @app.middleware("http")
        async def request_debug_logger(request: Request, call_next) -> Response:
            start = perf_counter()
            response = await call_next(request)
            logger.debug(
                "HTTP request completed method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                response.status_code,
                (perf_counter() - start) * 1000,
            )
            return response

    add_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/health")
    def health_check():
        return success_response({"ok": True})

    return app


app = create_app()
