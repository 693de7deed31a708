from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payment_service.api.middleware.correlation_id import CorrelationIdMiddleware
from payment_service.api.middleware.metrics import RequestTimingMiddleware
from payment_service.api.v1.routers import health, queues, webhooks
from payment_service.application.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from payment_service.config import settings
from payment_service.infrastructure.db.uow import uow_scope
from payment_service.logging_setup import configure_logging
from payment_service.wiring import build_http_client, build_queue_registry, build_webhook_context

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    app.state.http = build_http_client(settings)
    app.state.webhook_context = build_webhook_context(settings, app.state.http)
    app.state.queue_registry = build_queue_registry(
        settings, app.state.http, app.state.webhook_context, uow_scope,
    )
    logger.info("Redis pool and HTTP client created")

    yield

    await app.state.http.aclose()
    await app.state.redis.aclose()
    logger.info("Redis pool and HTTP client closed")


def create_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)
    app = FastAPI(
        title="Payment Event Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(queues.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthenticationError)
    async def _unauthenticated(_req: Request, exc: AuthenticationError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"detail": exc.detail})

    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(ConflictError)
    async def _conflict(_req: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": exc.detail})

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})
