"""Integration tests for runtime endpoints, error envelopes and versioned routes."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import AsyncIterator, Callable
from unittest.mock import patch

import pytest
from fastapi import FastAPI

from tests.conftest import FakeAdapter, client_for, timeout_for
from waydroid_api.metrics.collector import MetricsCollector
from waydroid_api.runtime.adapter import CommandResult
from waydroid_api.runtime.controller import RuntimeController


@pytest.mark.asyncio
@pytest.mark.parametrize("prefix", ["", "/v3"])
async def test_versioned_and_legacy_paths_share_handlers(
    make_app: Callable[..., FastAPI],
    fake_adapter: FakeAdapter,
    auth_headers: dict[str, str],
    prefix: str,
) -> None:
    fake_adapter.set("waydroid", "status", result=CommandResult(0, b"RUNNING"))
    async with client_for(make_app()) as client:
        resp = await client.get(f"{prefix}/status", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "running"
    assert resp.headers["X-API-Version"] == "3.0"


@pytest.mark.asyncio
async def test_version_endpoint(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    fake_adapter.set("waydroid", "--version", result=CommandResult(0, b"1.4.2\n"))
    async with client_for(make_app()) as client:
        resp = await client.get("/version", headers=auth_headers)
    body = resp.json()
    assert body["runtime_version"] == "1.4.2"
    assert body["api_version"] == "3.0"
    assert body["supported_versions"] == ["1.0", "2.0", "3.0"]
    assert body["unversioned_only"] == ["1.0", "2.0"]


@pytest.mark.asyncio
async def test_apps_endpoint(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    fake_adapter.set(
        "waydroid", "app", "list",
        result=CommandResult(0, b"Name: Settings\npackageName: com.android.settings\n"),
    )
    async with client_for(make_app()) as client:
        resp = await client.get("/apps", headers=auth_headers)
    assert resp.json()["count"] == 1
    assert resp.json()["apps"][0]["package"] == "com.android.settings"


@pytest.mark.asyncio
async def test_logs_lines_are_capped(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    fake_adapter.set("adb", result=CommandResult(0, b"a\nb\n"))
    async with client_for(make_app()) as client:
        resp = await client.get("/logs?lines=5000", headers=auth_headers)
        bad = await client.get("/logs?lines=abc", headers=auth_headers)
    assert resp.json() == {"logs": ["a", "b"], "count": 2}
    assert fake_adapter.commands()[0][-1] == "1000"
    assert bad.status_code == 400
    assert bad.json()["error"]["details"]["field"] == "lines"


@pytest.mark.asyncio
async def test_properties_get_and_set(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    fake_adapter.set(
        "waydroid", "shell", "getprop", result=CommandResult(0, b"[ro.x]: [1]\n"),
    )
    fake_adapter.set(
        "waydroid", "prop", "set", "persist.bad", result=CommandResult(1, b"", b"denied"),
    )
    async with client_for(make_app()) as client:
        got = await client.get("/properties", headers=auth_headers)
        resp = await client.post(
            "/properties/set",
            json={"properties": {"persist.waydroid.width": 1080, "persist.bad": "x"}},
            headers=auth_headers,
        )
    assert got.json() == {"properties": {"ro.x": "1"}}
    results = resp.json()["results"]
    assert results["persist.waydroid.width"] == {"success": True}
    assert results["persist.bad"]["success"] is False
    assert ["waydroid", "prop", "set", "persist.waydroid.width", "1080"] in fake_adapter.commands()


@pytest.mark.asyncio
async def test_property_validation_happens_before_any_command(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    async with client_for(make_app()) as client:
        resp = await client.post(
            "/properties/set",
            json={"properties": {"good.key": "1", "bad key": "2"}},
            headers=auth_headers,
        )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_INPUT"
    assert fake_adapter.commands() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("path, body", [
    ("/properties/set", {"properties": {"--help": "x"}}),
    ("/properties/set", {"properties": {"persist.x": "--reset"}}),
    ("/app/intent", {"intent": "--help"}),
])
async def test_option_like_arguments_never_reach_commands(
    make_app: Callable[..., FastAPI],
    fake_adapter: FakeAdapter,
    auth_headers: dict[str, str],
    path: str,
    body: dict[str, object],
) -> None:
    async with client_for(make_app()) as client:
        resp = await client.post(path, json=body, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_INPUT"
    assert fake_adapter.commands() == []


@pytest.mark.asyncio
async def test_launch_success(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    async with client_for(make_app()) as client:
        resp = await client.post(
            "/app/launch", json={"package": "com.android.settings"}, headers=auth_headers,
        )
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["package"] == "com.android.settings"


@pytest.mark.asyncio
@pytest.mark.parametrize("package", ["com.example;reboot", "com.example|id", "settings"])
async def test_launch_rejects_invalid_package(
    make_app: Callable[..., FastAPI],
    fake_adapter: FakeAdapter,
    auth_headers: dict[str, str],
    package: str,
) -> None:
    async with client_for(make_app()) as client:
        resp = await client.post("/app/launch", json={"package": package}, headers=auth_headers)
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "INVALID_INPUT"
    assert error["details"]["field"] == "package"
    assert "timestamp" in error
    assert fake_adapter.commands() == []


@pytest.mark.asyncio
async def test_launch_command_failure(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    fake_adapter.set("waydroid", "app", "launch", result=CommandResult(1, b"", b"not installed"))
    async with client_for(make_app()) as client:
        resp = await client.post(
            "/app/launch", json={"package": "com.missing.app"}, headers=auth_headers,
        )
    assert resp.status_code == 502
    error = resp.json()["error"]
    assert error["code"] == "COMMAND_FAILED"
    assert error["details"] == {"exit_code": 1, "stderr": "not installed"}


@pytest.mark.asyncio
async def test_restart_timeout(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    fake_adapter.set("waydroid", "container", raises=timeout_for("waydroid"))
    async with client_for(make_app()) as client:
        resp = await client.post("/container/restart", headers=auth_headers)
    assert resp.status_code == 504
    assert resp.json()["error"]["code"] == "TIMEOUT"


@pytest.mark.asyncio
async def test_intent_and_stop(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    fake_adapter.set("waydroid", "app", "intent", result=CommandResult(0, b"Starting: Intent\n"))
    async with client_for(make_app()) as client:
        intent = await client.post(
            "/app/intent",
            json={"intent": "android.intent.action.VIEW"},
            headers=auth_headers,
        )
        bad = await client.post(
            "/app/intent", json={"intent": "x; reboot"}, headers=auth_headers,
        )
        stop = await client.post(
            "/app/stop", json={"package": "com.example.app"}, headers=auth_headers,
        )
    assert intent.json()["output"] == "Starting: Intent"
    assert bad.status_code == 400
    assert stop.json()["success"] is True


@pytest.mark.asyncio
async def test_screenshot(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    fake_adapter.set("adb", result=CommandResult(0, b"\x89PNGdata"))
    async with client_for(make_app()) as client:
        resp = await client.post("/screenshot", headers=auth_headers)
    body = resp.json()
    assert body["format"] == "png"
    assert base64.b64decode(body["screenshot"]) == b"\x89PNGdata"


@pytest.mark.asyncio
async def test_malformed_json_rejected(
    make_app: Callable[..., FastAPI], auth_headers: dict[str, str],
) -> None:
    async with client_for(make_app()) as client:
        resp = await client.post(
            "/app/launch",
            content=b"{not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )
        array = await client.post("/app/launch", json=["a"], headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_JSON"
    assert array.json()["error"]["code"] == "INVALID_JSON"


@pytest.mark.asyncio
async def test_oversized_body_rejected(
    make_app: Callable[..., FastAPI], auth_headers: dict[str, str],
) -> None:
    async with client_for(make_app()) as client:
        resp = await client.post(
            "/app/launch", json={"package": "a" * 20000}, headers=auth_headers,
        )
    assert resp.status_code == 413
    assert resp.json()["error"]["code"] == "REQUEST_TOO_LARGE"


@pytest.mark.asyncio
async def test_chunked_body_over_cap_rejected_while_streaming(
    make_app: Callable[..., FastAPI], fake_adapter: FakeAdapter, auth_headers: dict[str, str],
) -> None:
    sent: list[int] = []

    async def chunks() -> AsyncIterator[bytes]:
        yield b'{"package": "'
        for i in range(100):
            sent.append(i)
            yield b"a" * 1024
        yield b'"}'

    async with client_for(make_app()) as client:
        resp = await client.post(
            "/app/launch",
            content=chunks(),
            headers={**auth_headers, "Content-Type": "application/json"},
        )
    assert resp.status_code == 413
    assert resp.json()["error"]["code"] == "REQUEST_TOO_LARGE"
    assert len(sent) < 100
    assert fake_adapter.commands() == []


@pytest.mark.asyncio
async def test_unknown_path_and_method(
    make_app: Callable[..., FastAPI], auth_headers: dict[str, str],
) -> None:
    async with client_for(make_app()) as client:
        missing = await client.get("/nope", headers=auth_headers)
        wrong_method = await client.get("/app/launch", headers=auth_headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"
    assert wrong_method.status_code == 405
    assert wrong_method.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_internal_error(
    make_app: Callable[..., FastAPI], auth_headers: dict[str, str],
) -> None:
    with patch.object(RuntimeController, "status", side_effect=RuntimeError("boom /secret/path")):
        async with client_for(make_app()) as client:
            resp = await client.get("/status", headers=auth_headers)
            health = await client.get("/health")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "INTERNAL_ERROR"
    assert "boom" not in resp.text
    assert resp.headers["X-API-Version"] == "3.0"
    assert health.status_code == 200


@pytest.mark.asyncio
async def test_metrics_count_concurrent_requests_exactly(
    make_app: Callable[..., FastAPI], auth_headers: dict[str, str],
) -> None:
    metrics = MetricsCollector()
    async with client_for(make_app(metrics=metrics)) as client:
        responses = await asyncio.gather(
            *[client.get("/status", headers=auth_headers) for _ in range(40)],
        )
        await client.get("/v3/status", headers=auth_headers)
        await client.get("/status")
        text = (await client.get("/metrics", headers=auth_headers)).text

    assert all(r.status_code == 200 for r in responses)
    snap = metrics.snapshot()["/status"]
    assert snap["requests"] == 42
    assert snap["errors"] == 1
    assert 'waydroid_api_requests_total{endpoint="/status"} 42' in text
