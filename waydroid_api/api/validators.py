"""Input validation for values that end up on an external command line."""

from __future__ import annotations

import re

from waydroid_api.errors import InvalidInputError

MAX_PACKAGE_NAME_LENGTH = 200
MAX_INTENT_LENGTH = 500
MAX_PROPERTY_KEY_LENGTH = 128
MAX_PROPERTY_VALUE_LENGTH = 256
MAX_LOG_LINES = 1000
DEFAULT_LOG_LINES = 100

PACKAGE_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*)+$")
PROPERTY_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
SHELL_METACHARACTERS = frozenset(";|&$`\n\r<>")


def _require_string(field: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(field, f"{field} is required")
    return value.strip()


def validate_package_name(value: object, field: str = "package") -> str:
    package = _require_string(field, value)
    if len(package) > MAX_PACKAGE_NAME_LENGTH:
        raise InvalidInputError(field, f"{field} exceeds {MAX_PACKAGE_NAME_LENGTH} characters")
    if not PACKAGE_PATTERN.match(package):
        raise InvalidInputError(field, "Invalid package name format")
    return package


def _reject_unsafe(field: str, value: str) -> None:
    found = sorted(SHELL_METACHARACTERS.intersection(value))
    if found:
        raise InvalidInputError(field, f"{field} contains forbidden characters: {found!r}")
    # A leading dash would be parsed as an option by waydroid or adb
    if value.startswith("-"):
        raise InvalidInputError(field, f"{field} must not start with '-'")


def validate_intent(value: object, field: str = "intent") -> str:
    intent = _require_string(field, value)
    if len(intent) > MAX_INTENT_LENGTH:
        raise InvalidInputError(field, f"{field} exceeds {MAX_INTENT_LENGTH} characters")
    _reject_unsafe(field, intent)
    return intent


def validate_property_key(value: object, field: str = "key") -> str:
    if not isinstance(value, str) or not value:
        raise InvalidInputError(field, "Property key is required")
    if len(value) > MAX_PROPERTY_KEY_LENGTH or not PROPERTY_KEY_PATTERN.match(value):
        raise InvalidInputError(field, f"Invalid property key: {value[:64]!r}")
    _reject_unsafe(field, value)
    return value


def validate_property_value(value: object, field: str = "value") -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    elif isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        raise InvalidInputError(field, "Property value must be a string, number or boolean")
    if len(value) > MAX_PROPERTY_VALUE_LENGTH:
        raise InvalidInputError(field, f"Property value exceeds {MAX_PROPERTY_VALUE_LENGTH} characters")
    _reject_unsafe(field, value)
    return value


def validate_log_lines(value: str | None) -> int:
    if value is None or value == "":
        return DEFAULT_LOG_LINES
    try:
        lines = int(value)
    except ValueError:
        raise InvalidInputError("lines", "lines must be an integer") from None
    if lines < 1:
        raise InvalidInputError("lines", "lines must be a positive integer")
    return min(lines, MAX_LOG_LINES)
