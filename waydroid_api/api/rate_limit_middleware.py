"""ASGI middleware applying per-client sliding window admission control."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.types import ASGIApp, Receive, Scope, Send

from waydroid_api.api.context import get_context
from waydroid_api.errors import error_response
from waydroid_api.models import ErrorCode

if TYPE_CHECKING:
    from waydroid_api.ratelimit.limiter import RateLimiter

logger = logging.getLogger(__name__)


class RateLimitMiddleware:
    def __init__(self, app: ASGIApp, limiter: RateLimiter) -> None:
        self.app = app
        self._limiter = limiter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        ctx = get_context(scope)
        admission = self._limiter.admit(ctx.client_id, ctx.authenticated)
        if not admission.allowed:
            logger.warning(
                "Rate limit exceeded for %s on %s (retry after %ss)",
                ctx.client_id, ctx.endpoint, admission.retry_after_seconds,
            )
            response = error_response(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                "Too many requests",
                details={"retry_after": admission.retry_after_seconds},
                headers={"Retry-After": str(admission.retry_after_seconds)},
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
