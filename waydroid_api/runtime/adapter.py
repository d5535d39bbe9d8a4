"""Boundary to the external ``waydroid`` and ``adb`` command line tools."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class CommandTimeout(Exception):
    def __init__(self, args: list[str], timeout: float) -> None:
        super().__init__(f"{args[0]} timed out after {timeout:g}s")
        self.args_list = args
        self.timeout = timeout


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return self.stdout.decode(errors="replace").strip()

    @property
    def error(self) -> str:
        return self.stderr.decode(errors="replace").strip()


class CommandAdapter(Protocol):
    def execute(self, args: list[str], timeout: float) -> CommandResult:
        """Run ``args`` without a shell; raise CommandTimeout on expiry."""
        ...


class SubprocessAdapter:
    """Runs commands with ``subprocess.run`` and an argument vector, never a shell."""

    def execute(self, args: list[str], timeout: float) -> CommandResult:
        logger.debug("Executing %s (timeout %gs)", args, timeout)
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeout(args, timeout) from exc
        except FileNotFoundError:
            logger.error("Command not found: %s", args[0])
            return CommandResult(exit_code=127, stderr=f"{args[0]}: command not found".encode())
        return CommandResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
