"""Service configuration from environment variables, and logging setup."""

from __future__ import annotations

import ipaddress
import logging
import os

from pydantic import BaseModel, ConfigDict, field_validator

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_TRUE = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_file: str = "/etc/waydroid-api/token"
    webhooks_file: str = "/etc/waydroid-api/webhooks.json"
    rate_limits_file: str = "config/rate-limits.json"
    allowed_clients: tuple[str, ...] = ()
    trust_forwarded_for: bool = False
    log_level: str = "INFO"
    log_file: str | None = None
    waydroid_bin: str = "waydroid"
    adb_bin: str = "adb"
    adb_serial: str | None = "192.168.250.112:5555"

    @field_validator("allowed_clients")
    @classmethod
    def _valid_networks(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for network in value:
            ipaddress.ip_network(network, strict=False)
        return value

    @classmethod
    def from_env(cls) -> Settings:
        env = os.environ
        allowed = env.get("WAYDROID_API_ALLOWED_CLIENTS", "")
        return cls(
            token_file=env.get("WAYDROID_API_TOKEN_FILE", cls.model_fields["token_file"].default),
            webhooks_file=env.get(
                "WAYDROID_API_WEBHOOKS_FILE", cls.model_fields["webhooks_file"].default,
            ),
            rate_limits_file=env.get(
                "WAYDROID_API_RATE_LIMITS", cls.model_fields["rate_limits_file"].default,
            ),
            allowed_clients=tuple(n.strip() for n in allowed.split(",") if n.strip()),
            trust_forwarded_for=env.get("WAYDROID_API_TRUST_FORWARDED_FOR", "").lower() in _TRUE,
            log_level=env.get("WAYDROID_API_LOG_LEVEL", "INFO").upper(),
            log_file=env.get("WAYDROID_API_LOG_FILE") or None,
            waydroid_bin=env.get("WAYDROID_BIN", "waydroid"),
            adb_bin=env.get("ADB_BIN", "adb"),
            adb_serial=env.get("WAYDROID_ADB_SERIAL", cls.model_fields["adb_serial"].default)
            or None,
        )


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
