"""Per-request context, version prefixes and the outermost pipeline middleware."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from starlette.datastructures import MutableHeaders
from starlette.routing import Match
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from waydroid_api import API_VERSION
from waydroid_api.errors import error_response
from waydroid_api.models import ErrorCode, RequestContext

if TYPE_CHECKING:
    from waydroid_api.metrics.collector import MetricsCollector

logger = logging.getLogger(__name__)

# "" is the legacy unversioned surface
VERSION_PREFIXES = ("", "/v3")
UNMATCHED_ENDPOINT = "unmatched"
_CONTEXT_KEY = "request_context"


def strip_version(path: str) -> str:
    for prefix in VERSION_PREFIXES:
        if prefix and (path == prefix or path.startswith(prefix + "/")):
            return path[len(prefix):] or "/"
    return path


def get_context(scope: Scope) -> RequestContext:
    return scope.setdefault("state", {})[_CONTEXT_KEY]


def client_id_for(scope: Scope, trust_forwarded_for: bool) -> str:
    if trust_forwarded_for:
        for name, value in scope.get("headers", []):
            if name == b"x-forwarded-for":
                first = value.decode("latin-1").split(",")[0].strip()
                if first:
                    return first
    client = scope.get("client")
    return client[0] if client else "unknown"


def resolve_endpoint(scope: Scope) -> str:
    """Route template for metrics labels, without the version prefix."""
    app = scope.get("app")
    router = getattr(app, "router", None)
    if router is None:
        return UNMATCHED_ENDPOINT
    partial: str | None = None
    for route in router.routes:
        match, _ = route.matches(scope)
        path = getattr(route, "path", None)
        if path is None:
            continue
        if match == Match.FULL:
            return strip_version(path)
        if match == Match.PARTIAL and partial is None:
            partial = strip_version(path)
    return partial or UNMATCHED_ENDPOINT


class RequestContextMiddleware:
    """Outermost stage of the request pipeline.

    Builds the request context, stamps the API version header, records the
    outcome in the metrics collector and turns any uncaught exception into
    an INTERNAL_ERROR envelope.
    """

    def __init__(
        self,
        app: ASGIApp,
        metrics: MetricsCollector,
        trust_forwarded_for: bool = False,
    ) -> None:
        self.app = app
        self._metrics = metrics
        self._trust_forwarded_for = trust_forwarded_for

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        ctx = RequestContext(
            client_id=client_id_for(scope, self._trust_forwarded_for),
            started_at=time.perf_counter(),
            endpoint=resolve_endpoint(scope),
        )
        scope.setdefault("state", {})[_CONTEXT_KEY] = ctx
        status_code = 500
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, response_started
            if message["type"] == "http.response.start":
                response_started = True
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers["X-API-Version"] = API_VERSION
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            logger.exception("Unhandled error processing %s %s", scope["method"], scope["path"])
            if not response_started:
                response = error_response(ErrorCode.INTERNAL_ERROR, "Internal server error")
                await response(scope, receive, send_wrapper)
        finally:
            self._metrics.record(ctx.endpoint, status_code, time.perf_counter() - ctx.started_at)
