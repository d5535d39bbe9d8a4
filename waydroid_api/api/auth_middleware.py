"""ASGI middleware for client allowlisting and Bearer token authentication."""

from __future__ import annotations

import ipaddress
import logging
from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from waydroid_api.api.context import get_context, strip_version
from waydroid_api.errors import error_response
from waydroid_api.models import ErrorCode

if TYPE_CHECKING:
    from waydroid_api.auth.token import TokenStore

logger = logging.getLogger(__name__)

# Paths that bypass authentication, compared after removing the version prefix
PUBLIC_PATHS = {"/health"}


class AuthMiddleware:
    """Rejects requests from outside the allowlist, then checks the Bearer token.

    Runs before the rate limiter, so rejected probes never consume quota.
    """

    def __init__(
        self,
        app: ASGIApp,
        token_store: TokenStore,
        allowed_clients: tuple[str, ...] = (),
    ) -> None:
        self.app = app
        self._tokens = token_store
        self._networks = [ipaddress.ip_network(n, strict=False) for n in allowed_clients]

    def _client_allowed(self, client_id: str) -> bool:
        if not self._networks:
            return True
        try:
            address = ipaddress.ip_address(client_id)
        except ValueError:
            return False
        return any(address in network for network in self._networks)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        ctx = get_context(scope)

        if not self._client_allowed(ctx.client_id):
            logger.warning("Forbidden client %s for %s", ctx.client_id, request.url.path)
            response = error_response(ErrorCode.FORBIDDEN, "Client not allowed")
            await response(scope, receive, send)
            return

        if strip_version(request.url.path) in PUBLIC_PATHS:
            await self.app(scope, receive, send)
            return

        if not self._tokens.authenticate(request.headers.get("authorization")):
            logger.warning(
                "Unauthorized access attempt from %s to %s %s",
                ctx.client_id, request.method, request.url.path,
            )
            response = error_response(ErrorCode.UNAUTHORIZED, "Authentication required")
            await response(scope, receive, send)
            return

        ctx.authenticated = True
        await self.app(scope, receive, send)
