"""Runtime operations expressed as waydroid/adb invocations.

Callers pass already-validated values. Blocking commands run in the
Starlette threadpool so the event loop keeps serving other requests.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any

from starlette.concurrency import run_in_threadpool

from waydroid_api.errors import CommandFailedError, CommandTimeoutError
from waydroid_api.runtime.adapter import CommandAdapter, CommandResult, CommandTimeout

logger = logging.getLogger(__name__)

STATUS_TIMEOUT = 5.0
QUERY_TIMEOUT = 10.0
ACTION_TIMEOUT = 15.0
RESTART_TIMEOUT = 30.0

_GETPROP_LINE = re.compile(r"^\[(?P<key>[^\]]+)\]:\s*\[(?P<value>.*)\]$")
_MAX_STDERR = 2000


def parse_app_list(output: str) -> list[dict[str, str]]:
    """Parse ``waydroid app list`` blocks of ``Name:``/``packageName:`` lines."""
    apps: list[dict[str, str]] = []
    name: str | None = None
    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith("Name:"):
            name = line[len("Name:"):].strip()
        elif line.startswith("packageName:"):
            package = line[len("packageName:"):].strip()
            apps.append({"name": name or package, "package": package})
            name = None
    return apps


def parse_getprop(output: str) -> dict[str, str]:
    props: dict[str, str] = {}
    for raw in output.splitlines():
        match = _GETPROP_LINE.match(raw.strip())
        if match:
            props[match.group("key")] = match.group("value")
    return props


class RuntimeController:
    """Maps API operations onto the command adapter and normalizes failures."""

    def __init__(
        self,
        adapter: CommandAdapter,
        waydroid_bin: str = "waydroid",
        adb_bin: str = "adb",
        adb_serial: str | None = None,
    ) -> None:
        self._adapter = adapter
        self._waydroid = waydroid_bin
        self._adb = adb_bin
        self._adb_serial = adb_serial

    async def _run(self, args: list[str], timeout: float) -> CommandResult:
        try:
            return await run_in_threadpool(self._adapter.execute, args, timeout)
        except CommandTimeout as exc:
            logger.error("Command timed out: %s", " ".join(args))
            raise CommandTimeoutError(str(exc), {"timeout_seconds": timeout}) from exc

    async def _run_checked(self, args: list[str], timeout: float, action: str) -> CommandResult:
        result = await self._run(args, timeout)
        if not result.ok:
            detail = (result.error or result.output)[:_MAX_STDERR]
            logger.error("Failed to %s (exit %d): %s", action, result.exit_code, detail)
            raise CommandFailedError(
                f"Failed to {action}",
                {"exit_code": result.exit_code, "stderr": detail},
            )
        return result

    def _adb_args(self, *args: str) -> list[str]:
        base = [self._adb]
        if self._adb_serial:
            base += ["-s", self._adb_serial]
        return [*base, *args]

    async def status(self) -> dict[str, Any]:
        result = await self._run([self._waydroid, "status"], STATUS_TIMEOUT)
        status = "running" if result.ok else "stopped"
        logger.info("Status check: %s", status)
        return {"status": status, "output": result.output}

    async def list_apps(self) -> list[dict[str, str]]:
        result = await self._run_checked(
            [self._waydroid, "app", "list"], QUERY_TIMEOUT, "list apps",
        )
        apps = parse_app_list(result.output)
        logger.info("App list retrieved: %d apps", len(apps))
        return apps

    async def version(self) -> str:
        result = await self._run_checked(
            [self._waydroid, "--version"], STATUS_TIMEOUT, "read runtime version",
        )
        return result.output

    async def logs(self, lines: int) -> list[str]:
        result = await self._run_checked(
            self._adb_args("logcat", "-d", "-t", str(lines)), QUERY_TIMEOUT, "read logs",
        )
        return result.output.splitlines()[-lines:]

    async def properties(self) -> dict[str, str]:
        result = await self._run_checked(
            [self._waydroid, "shell", "getprop"], QUERY_TIMEOUT, "read properties",
        )
        return parse_getprop(result.output)

    async def set_property(self, key: str, value: str) -> dict[str, Any]:
        """Set one property, reporting failure in the result instead of raising."""
        try:
            result = await self._run([self._waydroid, "prop", "set", key, value], QUERY_TIMEOUT)
        except CommandTimeoutError as exc:
            return {"success": False, "error": exc.message}
        if not result.ok:
            logger.error("Failed to set property %s: %s", key, result.error)
            return {"success": False, "error": result.error or result.output or "command failed"}
        logger.info("Set property %s", key)
        return {"success": True}

    async def launch_app(self, package: str) -> None:
        logger.info("Launching app: %s", package)
        await self._run_checked(
            [self._waydroid, "app", "launch", package], ACTION_TIMEOUT, f"launch {package}",
        )

    async def stop_app(self, package: str) -> None:
        logger.info("Stopping app: %s", package)
        await self._run_checked(
            [self._waydroid, "shell", "am", "force-stop", package],
            QUERY_TIMEOUT,
            f"stop {package}",
        )

    async def send_intent(self, intent: str) -> str:
        logger.info("Sending intent: %s", intent[:100])
        result = await self._run_checked(
            [self._waydroid, "app", "intent", intent], ACTION_TIMEOUT, "send intent",
        )
        return result.output

    async def restart_container(self) -> None:
        logger.warning("Container restart requested")
        await self._run_checked(
            [self._waydroid, "container", "restart"], RESTART_TIMEOUT, "restart container",
        )

    async def screenshot(self) -> str:
        """Capture the screen as base64-encoded PNG."""
        result = await self._run_checked(
            self._adb_args("exec-out", "screencap", "-p"), ACTION_TIMEOUT, "capture screenshot",
        )
        if not result.stdout:
            raise CommandFailedError("Screenshot capture returned no data", {"exit_code": 0})
        return base64.b64encode(result.stdout).decode()
