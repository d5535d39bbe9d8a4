"""Persisted registry of outbound webhook targets."""

from __future__ import annotations

import json
import logging
import os
import secrets
import tempfile
import threading
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import ValidationError

from waydroid_api.errors import InvalidInputError, StorageError
from waydroid_api.models import EventType, Webhook

logger = logging.getLogger(__name__)

_KNOWN_EVENTS = {e.value for e in EventType}


def _parse_events(events: object) -> set[EventType]:
    if not isinstance(events, (list, tuple, set)) or not events:
        raise InvalidInputError("events", "events must be a non-empty list of event types")
    unknown = sorted(str(e) for e in events if e not in _KNOWN_EVENTS)
    if unknown:
        raise InvalidInputError(
            "events",
            f"Unknown event types: {', '.join(unknown)}; "
            f"expected one of {', '.join(sorted(_KNOWN_EVENTS))}",
        )
    return {EventType(e) for e in events}


def _check_url(url: object) -> str:
    if not isinstance(url, str) or not url.strip():
        raise InvalidInputError("url", "url is required")
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError as exc:
        raise InvalidInputError("url", f"url is malformed: {exc}") from None
    if parts.scheme not in ("http", "https") or not hostname:
        raise InvalidInputError("url", "url must be an absolute http(s) URL with a host")
    return url.strip()


class WebhookStore:
    """Thread-safe webhook list mirrored to a JSON file.

    Every mutation rewrites the whole file through a temp file and an
    atomic rename, so a failed write leaves the previous file untouched.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._webhooks: list[Webhook] = self._load()

    def _load(self) -> list[Webhook]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text())
            hooks = [Webhook.model_validate(item) for item in raw]
        except (OSError, json.JSONDecodeError, TypeError, ValidationError) as exc:
            # Refuse to start over a corrupt registry rather than overwrite it
            raise StorageError(f"Cannot load webhook registry {self.path}: {exc}") from exc
        logger.info("Loaded %d webhook(s) from %s", len(hooks), self.path)
        return hooks

    def _persist(self, hooks: list[Webhook]) -> None:
        data = [h.model_dump(mode="json") for h in hooks]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f, indent=2)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            logger.error("Failed to persist webhook registry %s: %s", self.path, exc)
            raise StorageError("Failed to persist webhook registry") from exc

    def register(
        self,
        url: object,
        events: object,
        secret: str | None = None,
        enabled: bool = True,
    ) -> str:
        """Validate and add a webhook, returning its server-generated id."""
        clean_url = _check_url(url)
        event_set = _parse_events(events)
        if secret is not None and not isinstance(secret, str):
            raise InvalidInputError("secret", "secret must be a string")

        webhook = Webhook(
            id=secrets.token_hex(16),
            url=clean_url,
            events=event_set,
            secret=secret or None,
            enabled=enabled,
        )
        with self._lock:
            updated = [*self._webhooks, webhook]
            self._persist(updated)
            self._webhooks = updated
        logger.info("Registered webhook %s -> %s", webhook.id, clean_url)
        return webhook.id

    def remove(self, webhook_id: str) -> bool:
        with self._lock:
            updated = [h for h in self._webhooks if h.id != webhook_id]
            if len(updated) == len(self._webhooks):
                return False
            self._persist(updated)
            self._webhooks = updated
        logger.info("Removed webhook %s", webhook_id)
        return True

    def set_enabled(self, webhook_id: str, enabled: bool) -> Webhook | None:
        with self._lock:
            target = next((h for h in self._webhooks if h.id == webhook_id), None)
            if target is None:
                return None
            changed = target.model_copy(update={"enabled": enabled})
            updated = [changed if h.id == webhook_id else h for h in self._webhooks]
            self._persist(updated)
            self._webhooks = updated
        logger.info("Webhook %s %s", webhook_id, "enabled" if enabled else "disabled")
        return changed

    def get(self, webhook_id: str) -> Webhook | None:
        with self._lock:
            return next((h for h in self._webhooks if h.id == webhook_id), None)

    def list(self) -> list[Webhook]:
        with self._lock:
            return list(self._webhooks)

    def subscribers(self, event_type: EventType) -> list[Webhook]:
        with self._lock:
            return [h for h in self._webhooks if h.subscribed_to(event_type)]
