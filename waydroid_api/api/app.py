"""FastAPI control-plane application."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from waydroid_api import __version__
from waydroid_api.api.auth_middleware import AuthMiddleware
from waydroid_api.api.context import VERSION_PREFIXES, RequestContextMiddleware
from waydroid_api.api.rate_limit_middleware import RateLimitMiddleware
from waydroid_api.api.routes import create_runtime_router
from waydroid_api.api.webhook_routes import create_webhook_router
from waydroid_api.auth.token import TokenStore
from waydroid_api.config import Settings, configure_logging
from waydroid_api.errors import ApiError, error_response
from waydroid_api.metrics.collector import MetricsCollector
from waydroid_api.models import ErrorCode
from waydroid_api.ratelimit.limiter import RateLimiter, load_policy
from waydroid_api.runtime.adapter import CommandAdapter, SubprocessAdapter
from waydroid_api.runtime.controller import RuntimeController
from waydroid_api.webhook.dispatcher import WebhookDispatcher
from waydroid_api.webhook.store import WebhookStore

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 5.0


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)
    return create_app_from_settings(settings)


def create_app_from_settings(
    settings: Settings,
    adapter: CommandAdapter | None = None,
) -> FastAPI:
    token_store = TokenStore(settings.token_file)
    if not token_store.exists():
        logger.warning(
            "No token file at %s: authentication is DISABLED (insecure, dev only)",
            settings.token_file,
        )
    controller = RuntimeController(
        adapter or SubprocessAdapter(),
        waydroid_bin=settings.waydroid_bin,
        adb_bin=settings.adb_bin,
        adb_serial=settings.adb_serial,
    )
    return create_app(
        token_store=token_store,
        controller=controller,
        webhook_store=WebhookStore(settings.webhooks_file),
        limiter=RateLimiter(load_policy(settings.rate_limits_file)),
        allowed_clients=settings.allowed_clients,
        trust_forwarded_for=settings.trust_forwarded_for,
    )


def create_app(
    token_store: TokenStore,
    controller: RuntimeController,
    webhook_store: WebhookStore,
    limiter: RateLimiter | None = None,
    metrics: MetricsCollector | None = None,
    dispatcher: WebhookDispatcher | None = None,
    allowed_clients: tuple[str, ...] = (),
    trust_forwarded_for: bool = False,
) -> FastAPI:
    """Create the control-plane app with auth, rate limiting and metrics."""
    limiter = limiter if limiter is not None else RateLimiter()
    metrics = metrics if metrics is not None else MetricsCollector()
    dispatcher = dispatcher if dispatcher is not None else WebhookDispatcher(webhook_store)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info("Waydroid API %s starting", __version__)
        yield
        await dispatcher.aclose(SHUTDOWN_GRACE_SECONDS)
        logger.info("Waydroid API shut down")

    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None, lifespan=lifespan)
    app.state.metrics = metrics
    app.state.limiter = limiter
    app.state.dispatcher = dispatcher
    app.state.webhook_store = webhook_store

    runtime_router = create_runtime_router(controller, dispatcher, metrics)
    webhook_router = create_webhook_router(webhook_store)
    for prefix in VERSION_PREFIXES:
        app.include_router(runtime_router, prefix=prefix)
        app.include_router(webhook_router, prefix=prefix)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return exc.to_response()

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError,
    ) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {"loc": (), "msg": "Invalid input"}
        field = ".".join(str(p) for p in first["loc"])
        return error_response(ErrorCode.INVALID_INPUT, first["msg"], {"field": field})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException,
    ) -> JSONResponse:
        if exc.status_code in (404, 405):
            return error_response(
                ErrorCode.NOT_FOUND,
                "Not found",
                details={"method": request.method, "path": request.url.path},
                status_code=exc.status_code,
            )
        return error_response(ErrorCode.INTERNAL_ERROR, str(exc.detail), status_code=exc.status_code)

    # Last added runs first: context -> auth -> rate limit -> routes
    app.add_middleware(RateLimitMiddleware, limiter=limiter)
    app.add_middleware(AuthMiddleware, token_store=token_store, allowed_clients=allowed_clients)
    app.add_middleware(
        RequestContextMiddleware, metrics=metrics, trust_forwarded_for=trust_forwarded_for,
    )

    return app
