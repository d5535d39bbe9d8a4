"""In-memory sliding window rate limiter keyed by client identifier."""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from waydroid_api.models import RateLimitPolicy

logger = logging.getLogger(__name__)


class PolicyError(Exception):
    """The rate limit policy file is unreadable or invalid."""


def load_policy(path: str | Path) -> RateLimitPolicy:
    """Load the tier policy, failing fast on malformed files.

    A missing file yields the built-in defaults.
    """
    policy_path = Path(path)
    if not policy_path.exists():
        logger.info("Rate limit policy %s not found, using defaults", policy_path)
        return RateLimitPolicy()
    try:
        raw = json.loads(policy_path.read_text())
        return RateLimitPolicy.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise PolicyError(f"Invalid rate limit policy {policy_path}: {exc}") from exc


@dataclass(frozen=True)
class Admission:
    allowed: bool
    retry_after_seconds: int | None = None


class RateLimiter:
    """Sliding window rate limiter per client.

    Authenticated and anonymous traffic use separate tiers but share one
    timestamp map. Idle clients are never evicted.
    """

    def __init__(self, policy: RateLimitPolicy | None = None) -> None:
        self._policy = policy or RateLimitPolicy()
        self._lock = threading.Lock()
        self._windows: dict[str, list[float]] = {}

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def admit(self, client_id: str, authenticated: bool) -> Admission:
        tier = self._policy.tier(authenticated)
        now = time.time()
        cutoff = now - tier.window_seconds

        with self._lock:
            timestamps = [t for t in self._windows.get(client_id, []) if t > cutoff]

            if len(timestamps) >= tier.max_requests:
                self._windows[client_id] = timestamps
                if timestamps:
                    wait = timestamps[0] + tier.window_seconds - now
                else:
                    # max_requests == 0: nothing will ever expire
                    wait = tier.window_seconds
                return Admission(allowed=False, retry_after_seconds=max(1, math.ceil(wait)))

            timestamps.append(now)
            self._windows[client_id] = timestamps
            return Admission(allowed=True)

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._windows)
