"""Fire-and-forget webhook delivery.

Each subscribed webhook gets its own detached asyncio task per event. A
delivery is attempted once: failures are logged and dropped, there is no
retry queue. The triggering request never waits for, or fails because of,
a delivery.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from waydroid_api.models import Event, EventType

if TYPE_CHECKING:
    from waydroid_api.models import Webhook
    from waydroid_api.webhook.store import WebhookStore

logger = logging.getLogger(__name__)

DELIVERY_TIMEOUT_SECONDS = 10.0
SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"


def sign_body(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature header value for a serialized payload."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign_body(secret, body), signature)


class WebhookDispatcher:
    """Fans events out to subscribed webhooks on detached tasks."""

    def __init__(
        self,
        store: WebhookStore,
        timeout: float = DELIVERY_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._transport = transport
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def trigger(self, event_type: EventType, payload: dict[str, Any]) -> int:
        """Schedule deliveries for ``event_type`` and return how many were started.

        Must be called from the running event loop.
        """
        event = Event(type=event_type, payload=payload)
        targets = self._store.subscribers(event_type)
        if not targets:
            return 0
        body = json.dumps(event.body(), separators=(",", ":")).encode()
        loop = asyncio.get_running_loop()
        for webhook in targets:
            task = loop.create_task(self._deliver(webhook, event, body))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        logger.debug("Dispatched %s to %d webhook(s)", event_type.value, len(targets))
        return len(targets)

    async def _deliver(self, webhook: Webhook, event: Event, body: bytes) -> None:
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: event.type.value,
        }
        if webhook.secret:
            headers[SIGNATURE_HEADER] = sign_body(webhook.secret, body)
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    webhook.url, content=body, headers=headers, timeout=self._timeout,
                )
            if resp.is_success:
                logger.info(
                    "Webhook %s delivered %s (HTTP %d)",
                    webhook.id, event.type.value, resp.status_code,
                )
            else:
                logger.warning(
                    "Webhook %s rejected %s (HTTP %d)",
                    webhook.id, event.type.value, resp.status_code,
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "Webhook %s delivery of %s failed: %s", webhook.id, event.type.value, exc,
            )
        except Exception:
            logger.exception("Unexpected error delivering webhook %s", webhook.id)

    async def wait_idle(self) -> None:
        """Wait for every in-flight delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self, grace_seconds: float = 5.0) -> None:
        """Let deliveries finish within ``grace_seconds``, then cancel the rest."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Abandoned %d webhook delivery task(s) at shutdown", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
