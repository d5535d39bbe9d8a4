"""Shared test fixtures for waydroid-api."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from waydroid_api.api.app import create_app
from waydroid_api.auth.token import TokenStore
from waydroid_api.metrics.collector import MetricsCollector
from waydroid_api.models import RateLimitPolicy, RateLimitTier
from waydroid_api.ratelimit.limiter import RateLimiter
from waydroid_api.runtime.adapter import CommandResult, CommandTimeout
from waydroid_api.runtime.controller import RuntimeController
from waydroid_api.webhook.dispatcher import WebhookDispatcher
from waydroid_api.webhook.store import WebhookStore

TOKEN = "test-secret-token-12345"


class FakeAdapter:
    """Command adapter returning canned results keyed by argument prefix."""

    def __init__(self) -> None:
        self.calls: list[tuple[list[str], float]] = []
        self._outcomes: dict[tuple[str, ...], CommandResult | Exception] = {}

    def set(self, *prefix: str, result: CommandResult | None = None,
            raises: Exception | None = None) -> None:
        self._outcomes[prefix] = raises if raises is not None else (result or CommandResult(0))

    def execute(self, args: list[str], timeout: float) -> CommandResult:
        self.calls.append((list(args), timeout))
        for prefix in sorted(self._outcomes, key=len, reverse=True):
            if tuple(args[: len(prefix)]) == prefix:
                outcome = self._outcomes[prefix]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return CommandResult(0)

    def commands(self) -> list[list[str]]:
        return [args for args, _ in self.calls]


def timeout_for(*args: str) -> CommandTimeout:
    return CommandTimeout(list(args), 1.0)


class WebhookReceiver:
    """httpx MockTransport handler capturing outbound webhook POSTs."""

    def __init__(self, status_code: int = 200) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def token_store(tmp_path: Path) -> TokenStore:
    store = TokenStore(tmp_path / "token")
    store.write(TOKEN)
    return store


@pytest.fixture
def webhook_store(tmp_path: Path) -> WebhookStore:
    return WebhookStore(tmp_path / "webhooks.json")


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TOKEN}"}


def make_policy(
    authenticated: tuple[int, float] = (1000, 60),
    default: tuple[int, float] = (1000, 60),
) -> RateLimitPolicy:
    return RateLimitPolicy(
        default=RateLimitTier(max_requests=default[0], window_seconds=default[1]),
        authenticated=RateLimitTier(
            max_requests=authenticated[0], window_seconds=authenticated[1],
        ),
    )


@pytest.fixture
def make_app(
    token_store: TokenStore,
    webhook_store: WebhookStore,
    fake_adapter: FakeAdapter,
    receiver: WebhookReceiver,
) -> Callable[..., FastAPI]:
    """Build an app wired to fakes; keyword arguments override create_app inputs."""

    def _create(**kwargs: Any) -> FastAPI:
        defaults: dict[str, Any] = {
            "token_store": token_store,
            "controller": RuntimeController(fake_adapter, adb_serial="emulator-5554"),
            "webhook_store": webhook_store,
            "limiter": RateLimiter(make_policy()),
            "metrics": MetricsCollector(),
            "dispatcher": WebhookDispatcher(
                webhook_store, transport=httpx.MockTransport(receiver),
            ),
        }
        defaults.update(kwargs)
        return create_app(**defaults)

    return _create


def client_for(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
