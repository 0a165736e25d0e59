"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .registry import Registry


class StatsManager:
    """
    Lifetime counters for the operator /stats report.

    Tracks:
    - Accepted connections, joins, rejected handshakes, parts
    - Records received, undecodable records, checksum failures
    - Broadcasts and private messages forwarded
    - System notices and error replies sent
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "joins": 0,
            "joins_rejected": 0,
            "parts": 0,
            "records_in": 0,
            "records_bad": 0,
            "records_corrupt": 0,
            "msgs_forwarded": 0,
            "pms_forwarded": 0,
            "system_sent": 0,
            "errors_sent": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def format_stats(self, registry: Registry | None = None) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        with self._lock:
            c = dict(self._counters)

        lines: list[str] = []
        lines.append(f"chatrelay {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        if registry is not None:
            lines.append(f"clients_connected={len(registry)}")
        lines.append(
            "sessions: connections={} joins={} joins_rejected={} parts={}".format(
                c.get("connections", 0),
                c.get("joins", 0),
                c.get("joins_rejected", 0),
                c.get("parts", 0),
            )
        )
        lines.append(
            "io: records_in={} records_bad={} records_corrupt={}".format(
                c.get("records_in", 0),
                c.get("records_bad", 0),
                c.get("records_corrupt", 0),
            )
        )
        lines.append(
            "events: msgs_fwd={} pms_fwd={} system_sent={} errors_sent={}".format(
                c.get("msgs_forwarded", 0),
                c.get("pms_forwarded", 0),
                c.get("system_sent", 0),
                c.get("errors_sent", 0),
            )
        )

        return "\n".join(lines)
