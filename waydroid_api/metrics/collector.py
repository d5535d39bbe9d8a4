"""Per-endpoint request metrics with Prometheus text exposition."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field

LATENCY_BUFFER_SIZE = 1000
QUANTILES = (0.5, 0.95)

_PREFIX = "waydroid_api"


@dataclass
class EndpointStats:
    requests: int = 0
    errors: int = 0
    latencies: deque[float] = field(
        default_factory=lambda: deque(maxlen=LATENCY_BUFFER_SIZE),
    )


def _quantile(ordered: list[float], q: float) -> float:
    """Nearest-rank quantile of an already sorted list."""
    if not ordered:
        return 0.0
    index = min(len(ordered) - 1, max(0, int(round(q * (len(ordered) - 1)))))
    return ordered[index]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class MetricsCollector:
    """Thread-safe request counters and rolling latency samples.

    Counters never decrease; they reset only when the process restarts.
    Rendering copies the tables under the lock and formats outside it.
    """

    def __init__(self, buffer_size: int = LATENCY_BUFFER_SIZE) -> None:
        self._buffer_size = buffer_size
        self._lock = threading.Lock()
        self._endpoints: dict[str, EndpointStats] = {}
        self._started_at = time.time()

    def record(self, endpoint: str, status_code: int, duration_seconds: float) -> None:
        with self._lock:
            stats = self._endpoints.get(endpoint)
            if stats is None:
                stats = EndpointStats(latencies=deque(maxlen=self._buffer_size))
                self._endpoints[endpoint] = stats
            stats.requests += 1
            if status_code >= 400:
                stats.errors += 1
            stats.latencies.append(duration_seconds)

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            copied = {
                name: (stats.requests, stats.errors, list(stats.latencies))
                for name, stats in self._endpoints.items()
            }
        result: dict[str, dict[str, object]] = {}
        for name, (requests, errors, latencies) in copied.items():
            result[name] = {
                "requests": requests,
                "errors": errors,
                "samples": len(latencies),
                "mean_seconds": sum(latencies) / len(latencies) if latencies else 0.0,
            }
        return result

    def render_prometheus_text(self) -> str:
        with self._lock:
            copied = {
                name: (stats.requests, stats.errors, list(stats.latencies))
                for name, stats in self._endpoints.items()
            }

        names = sorted(copied)
        lines = [
            f"# HELP {_PREFIX}_requests_total Total HTTP requests by endpoint.",
            f"# TYPE {_PREFIX}_requests_total counter",
        ]
        for name in names:
            lines.append(f'{_PREFIX}_requests_total{{endpoint="{_escape(name)}"}} {copied[name][0]}')

        lines += [
            f"# HELP {_PREFIX}_errors_total HTTP responses with status >= 400 by endpoint.",
            f"# TYPE {_PREFIX}_errors_total counter",
        ]
        for name in names:
            lines.append(f'{_PREFIX}_errors_total{{endpoint="{_escape(name)}"}} {copied[name][1]}')

        lines += [
            f"# HELP {_PREFIX}_request_duration_seconds Recent request latency by endpoint.",
            f"# TYPE {_PREFIX}_request_duration_seconds summary",
        ]
        for name in names:
            label = _escape(name)
            samples = sorted(copied[name][2])
            for q in QUANTILES:
                lines.append(
                    f'{_PREFIX}_request_duration_seconds{{endpoint="{label}",quantile="{q}"}} '
                    f"{_quantile(samples, q):.6f}"
                )
            lines.append(
                f'{_PREFIX}_request_duration_seconds_sum{{endpoint="{label}"}} {sum(samples):.6f}'
            )
            lines.append(
                f'{_PREFIX}_request_duration_seconds_count{{endpoint="{label}"}} {len(samples)}'
            )

        lines += [
            f"# HELP {_PREFIX}_uptime_seconds Seconds since the service started.",
            f"# TYPE {_PREFIX}_uptime_seconds gauge",
            f"{_PREFIX}_uptime_seconds {time.time() - self._started_at:.3f}",
        ]
        return "\n".join(lines) + "\n"
