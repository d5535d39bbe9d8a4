"""Shared Pydantic data models for waydroid-api."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Enums ---


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_JSON = "INVALID_JSON"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    COMMAND_FAILED = "COMMAND_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class EventType(str, Enum):
    APP_LAUNCHED = "app_launched"
    APP_STOPPED = "app_stopped"
    INTENT_SENT = "intent_sent"
    CONTAINER_RESTARTED = "container_restarted"
    PROPERTIES_CHANGED = "properties_changed"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# --- Rate limit models ---


class RateLimitTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_requests: int = Field(ge=0)
    window_seconds: float

    @field_validator("window_seconds")
    @classmethod
    def _positive_window(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("window_seconds must be greater than zero")
        return value


class RateLimitPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    default: RateLimitTier = RateLimitTier(max_requests=60, window_seconds=60)
    authenticated: RateLimitTier = RateLimitTier(max_requests=100, window_seconds=60)

    def tier(self, authenticated: bool) -> RateLimitTier:
        return self.authenticated if authenticated else self.default


# --- Webhook models ---


class Webhook(BaseModel):
    """A registered outbound notification target."""

    id: str
    url: str
    events: set[EventType] = Field(min_length=1)
    secret: str | None = None
    enabled: bool = True
    created_at: str = Field(default_factory=_now_iso)

    def subscribed_to(self, event_type: EventType) -> bool:
        return self.enabled and event_type in self.events

    def redacted(self) -> dict[str, Any]:
        """Public view with the signing secret replaced by a flag."""
        data = self.model_dump(mode="json", exclude={"secret"})
        data["events"] = sorted(data["events"])
        data["has_secret"] = self.secret is not None
        return data


class WebhookCreate(BaseModel):
    """Registration request body for POST /webhooks."""

    url: str
    events: list[str]
    secret: str | None = None
    enabled: bool = True


class WebhookUpdate(BaseModel):
    enabled: bool


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType
    timestamp: str = Field(default_factory=_now_iso)
    payload: dict[str, Any] = Field(default_factory=dict)

    def body(self) -> dict[str, Any]:
        """Wire format delivered to webhook targets."""
        return {"event": self.type.value, "timestamp": self.timestamp, "data": self.payload}


# --- Request context ---


class RequestContext(BaseModel):
    """Per-request data threaded through the middleware stack."""

    client_id: str
    started_at: float
    authenticated: bool = False
    endpoint: str = "unmatched"
