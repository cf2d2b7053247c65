from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI, Request
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from cadence.api.v1.router import api_router
from cadence.core.errors import add_exception_handlers, success_response
from cadence.core.logging import configure_logging
from cadence.core.settings import get_settings
from cadence.db.session import init_db, open_session
from cadence.events import EventBus
from cadence.events.listeners import register_all_listeners
from cadence.jobs import JobQueues, create_redis_client
from cadence.jobs.runner import build_workers
from cadence.realtime import RealtimeGateway
from cadence.services.push_service import build_push_sender

settings = get_settings()
configure_logging(debug=settings.debug)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup started")
    logger.debug("Initializing database schema")
    init_db()

    bus = EventBus(max_listeners=settings.event_bus_max_listeners)
    bus.bind_loop(asyncio.get_running_loop())
    queues = JobQueues(create_redis_client(settings), prefix=settings.queue_prefix)
    register_all_listeners(bus, queues=queues, session_factory=open_session)

    app.state.event_bus = bus
    app.state.job_queues = queues
    app.state.push_sender = build_push_sender(settings.firebase_project_id)
    app.state.gateway = RealtimeGateway.from_settings(settings, session_factory=open_session, bus=bus)
    await app.state.gateway.start()

    workers = []
    if settings.workers_enabled:
        workers = build_workers(settings, queues, session_factory=open_session, bus=bus)
        for worker in workers:
            await worker.start()
    logger.info("Application startup completed workers=%s", len(workers))
    yield

    for worker in workers:
        await worker.stop()
    await app.state.gateway.stop()
    await bus.drain()
    await queues.close()
    logger.info("Application shutdown completed")


async def _log_request(request: Request, call_next) -> Response:
    start = perf_counter()
    response = await call_next(request)
    logger.debug(
        "HTTP %s %s status=%s duration_ms=%.2f client_ip=%s",
        request.method,
        request.url.path,
        response.status_code,
        (perf_counter() - start) * 1000,
        request.client.host if request.client else "unknown",
    )
    return response


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
        app.middleware("http")(_log_request)

    add_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_v1_prefix)
    logger.debug("App created api_prefix=%s cors_origins=%s", settings.api_v1_prefix, settings.cors_origins)

    @app.get("/health")
    async def health_check(request: Request):
        queues_up = await request.app.state.job_queues.ping()
        connections = await request.app.state.gateway.connections.connection_count()
        body = {"ok": queues_up, "queues": "up" if queues_up else "down", "connections": connections}
        return success_response(body, status_code=200 if queues_up else 503)

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn; websocket liveness uses uvicorn's transport pings."""
    import uvicorn

    uvicorn.run(
        "cadence.main:app",
        host=settings.host,
        port=settings.port,
        ws_ping_interval=settings.ws_heartbeat_sec,
        ws_ping_timeout=settings.ws_heartbeat_sec,
        access_log=settings.debug,
    )


if __name__ == "__main__":
    run()
