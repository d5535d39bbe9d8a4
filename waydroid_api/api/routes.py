"""Runtime control endpoints.

Every handler is registered once on an APIRouter which the app mounts
under each supported version prefix.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from waydroid_api import API_VERSION, SUPPORTED_VERSIONS, UNVERSIONED_ONLY
from waydroid_api.api.validators import (
    validate_intent,
    validate_log_lines,
    validate_package_name,
    validate_property_key,
    validate_property_value,
)
from waydroid_api.errors import InvalidInputError, InvalidJSONError, RequestTooLargeError
from waydroid_api.models import EventType

if TYPE_CHECKING:
    from waydroid_api.metrics.collector import MetricsCollector
    from waydroid_api.runtime.controller import RuntimeController
    from waydroid_api.webhook.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 10 * 1024  # 10KB
PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


async def read_json_body(request: Request, required: bool = True) -> dict[str, Any]:
    """Read a size-capped JSON object body.

    An empty body is ``{}`` when ``required`` is False.
    """
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        raise RequestTooLargeError(
            "Request too large", {"max_bytes": MAX_BODY_BYTES},
        )
    # Chunked uploads carry no Content-Length, so enforce the cap while streaming
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > MAX_BODY_BYTES:
            raise RequestTooLargeError("Request too large", {"max_bytes": MAX_BODY_BYTES})
        chunks.append(chunk)
    body = b"".join(chunks)
    if not body.strip():
        if required:
            raise InvalidJSONError("Request body must be a JSON object")
        return {}
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Invalid JSON from %s: %s", request.client.host if request.client else "?", exc)
        raise InvalidJSONError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidJSONError("Request body must be a JSON object")
    return data


def create_runtime_router(
    controller: RuntimeController,
    dispatcher: WebhookDispatcher,
    metrics: MetricsCollector,
) -> APIRouter:
    """Create the router for health, runtime queries and runtime actions."""
    router = APIRouter()

    @router.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy", "version": API_VERSION, "timestamp": _now_iso()}

    @router.get("/status")
    async def status() -> dict[str, Any]:
        result = await controller.status()
        return {**result, "timestamp": _now_iso()}

    @router.get("/apps")
    async def apps() -> dict[str, Any]:
        app_list = await controller.list_apps()
        return {"apps": app_list, "count": len(app_list), "timestamp": _now_iso()}

    @router.get("/version")
    async def version() -> dict[str, Any]:
        return {
            "runtime_version": await controller.version(),
            "api_version": API_VERSION,
            "supported_versions": list(SUPPORTED_VERSIONS),
            "unversioned_only": list(UNVERSIONED_ONLY),
            "timestamp": _now_iso(),
        }

    @router.get("/logs")
    async def logs(request: Request) -> dict[str, Any]:
        lines = validate_log_lines(request.query_params.get("lines"))
        entries = await controller.logs(lines)
        return {"logs": entries, "count": len(entries)}

    @router.get("/properties")
    async def properties() -> dict[str, Any]:
        return {"properties": await controller.properties()}

    @router.post("/properties/set")
    async def set_properties(request: Request) -> dict[str, Any]:
        body = await read_json_body(request)
        props = body.get("properties")
        if not isinstance(props, dict) or not props:
            raise InvalidInputError("properties", "properties must be a non-empty object")
        # Validate everything before touching the runtime
        cleaned = {
            validate_property_key(key, field=f"properties.{key}"): validate_property_value(
                value, field=f"properties.{key}",
            )
            for key, value in props.items()
        }

        results: dict[str, Any] = {}
        for key, value in cleaned.items():
            results[key] = await controller.set_property(key, value)

        changed = {k: cleaned[k] for k, r in results.items() if r["success"]}
        if changed:
            dispatcher.trigger(EventType.PROPERTIES_CHANGED, {"properties": changed})
        return {"results": results, "timestamp": _now_iso()}

    @router.get("/metrics")
    async def metrics_text() -> PlainTextResponse:
        return PlainTextResponse(
            metrics.render_prometheus_text(), media_type=PROMETHEUS_CONTENT_TYPE,
        )

    @router.post("/app/launch")
    async def launch(request: Request) -> dict[str, Any]:
        body = await read_json_body(request)
        package = validate_package_name(body.get("package"))
        await controller.launch_app(package)
        dispatcher.trigger(EventType.APP_LAUNCHED, {"package": package})
        return {"success": True, "package": package, "timestamp": _now_iso()}

    @router.post("/app/stop")
    async def stop(request: Request) -> dict[str, Any]:
        body = await read_json_body(request)
        package = validate_package_name(body.get("package"))
        await controller.stop_app(package)
        dispatcher.trigger(EventType.APP_STOPPED, {"package": package})
        return {"success": True, "package": package, "timestamp": _now_iso()}

    @router.post("/app/intent")
    async def intent(request: Request) -> dict[str, Any]:
        body = await read_json_body(request)
        intent_value = validate_intent(body.get("intent"))
        output = await controller.send_intent(intent_value)
        dispatcher.trigger(EventType.INTENT_SENT, {"intent": intent_value})
        return {"success": True, "output": output, "timestamp": _now_iso()}

    @router.post("/container/restart")
    async def restart(request: Request) -> dict[str, Any]:
        await read_json_body(request, required=False)
        await controller.restart_container()
        dispatcher.trigger(EventType.CONTAINER_RESTARTED, {})
        return {
            "success": True,
            "message": "Container restart initiated",
            "timestamp": _now_iso(),
        }

    @router.post("/screenshot")
    async def screenshot(request: Request) -> JSONResponse:
        await read_json_body(request, required=False)
        image = await controller.screenshot()
        return JSONResponse({"success": True, "screenshot": image, "format": "png"})

    return router
