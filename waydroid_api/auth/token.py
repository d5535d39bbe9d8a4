"""Shared-secret API token stored on local disk."""

from __future__ import annotations

import hmac
import logging
import os
import secrets
import tempfile
from pathlib import Path

from waydroid_api.errors import StorageError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def generate_token() -> str:
    return secrets.token_urlsafe(32)


class TokenStore:
    """Reads and writes the bearer token file.

    With no token file every request is treated as authenticated. That mode
    is insecure and exists only for bootstrap and development.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            return self.path.read_text().strip()
        except OSError as exc:
            logger.error("Failed to read token file %s: %s", self.path, exc)
            return ""

    def write(self, token: str) -> None:
        """Atomically replace the token file with owner-only permissions."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                os.chmod(tmp_name, 0o600)
                with os.fdopen(fd, "w") as f:
                    f.write(token)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to write token file {self.path}") from exc

    def ensure(self) -> tuple[str, bool]:
        """Return the token, generating and persisting one if absent.

        The boolean is True when a new token was created.
        """
        existing = self.read()
        if existing:
            return existing, False
        token = generate_token()
        self.write(token)
        logger.info("Generated new API token and saved to %s", self.path)
        return token, True

    def rotate(self) -> str:
        token = generate_token()
        self.write(token)
        logger.warning("API token in %s was rotated", self.path)
        return token

    def authenticate(self, authorization: str | None) -> bool:
        """Check an ``Authorization`` header value in constant time."""
        expected = self.read()
        if expected is None:
            return True
        if not expected or not authorization or not authorization.startswith(BEARER_PREFIX):
            return False
        provided = authorization[len(BEARER_PREFIX):].strip()
        return hmac.compare_digest(provided.encode(), expected.encode())
