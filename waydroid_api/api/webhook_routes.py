"""Webhook administration endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from waydroid_api.api.routes import read_json_body
from waydroid_api.errors import InvalidInputError, NotFoundError
from waydroid_api.models import WebhookCreate, WebhookUpdate

if TYPE_CHECKING:
    from waydroid_api.webhook.store import WebhookStore


def _invalid(exc: ValidationError) -> InvalidInputError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "body"
    return InvalidInputError(field, first["msg"])


def create_webhook_router(store: WebhookStore) -> APIRouter:
    """Create the router for registering, listing and removing webhooks."""
    router = APIRouter(prefix="/webhooks")

    @router.get("")
    async def list_webhooks() -> dict[str, Any]:
        hooks = [h.redacted() for h in store.list()]
        return {"webhooks": hooks, "count": len(hooks)}

    @router.post("")
    async def register_webhook(request: Request) -> JSONResponse:
        body = await read_json_body(request)
        try:
            payload = WebhookCreate.model_validate(body)
        except ValidationError as exc:
            raise _invalid(exc) from exc
        webhook_id = store.register(
            payload.url, payload.events, secret=payload.secret, enabled=payload.enabled,
        )
        return JSONResponse({"id": webhook_id}, status_code=201)

    @router.get("/{webhook_id}")
    async def get_webhook(webhook_id: str) -> dict[str, Any]:
        webhook = store.get(webhook_id)
        if webhook is None:
            raise NotFoundError("Webhook not found", {"id": webhook_id})
        return webhook.redacted()

    @router.patch("/{webhook_id}")
    async def update_webhook(webhook_id: str, request: Request) -> dict[str, Any]:
        body = await read_json_body(request)
        try:
            payload = WebhookUpdate.model_validate(body)
        except ValidationError as exc:
            raise _invalid(exc) from exc
        webhook = store.set_enabled(webhook_id, payload.enabled)
        if webhook is None:
            raise NotFoundError("Webhook not found", {"id": webhook_id})
        return webhook.redacted()

    @router.delete("/{webhook_id}")
    async def delete_webhook(webhook_id: str) -> dict[str, Any]:
        if not store.remove(webhook_id):
            raise NotFoundError("Webhook not found", {"id": webhook_id})
        return {"deleted": True, "id": webhook_id}

    return router
