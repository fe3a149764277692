import logging
import math
from collections import defaultdict
from datetime import datetime
from threading import RLock

logger = logging.getLogger(__name__)


class StatsCollector:
    """Thread-safe counters and metadata for one crawl.

    Counters are namespaced by component (`engine/...`, `downloader/...`); the crawler
    wires signal handlers that update them.
    """

    def __init__(self) -> None:
        self._stats: dict[str, int | float | str] = defaultdict(int)
        self._lock = RLock()
        self._start_time: datetime | None = None
        self._finish_time: datetime | None = None

    def inc_value(self, key: str, count: int | float = 1) -> None:
        """Increment a counter. A non-numeric current value restarts from 0."""
        with self._lock:
            current = self._stats[key]
            if not isinstance(current, (int, float)):
                current = 0
            self._stats[key] = current + count

    def set_counter(self, key: str, value: int | float) -> None:
        if not isinstance(value, (int, float)):
            raise TypeError("set_counter accepts only int or float")
        with self._lock:
            self._stats[key] = value

    def set_meta(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("set_meta accepts only str")
        with self._lock:
            self._stats[key] = value

    def get_value(
        self, key: str, default: int | float | str | None = None
    ) -> int | float | str | None:
        with self._lock:
            return self._stats.get(key, default)

    def get_stats(self) -> dict[str, int | float | str]:
        """Snapshot of all values."""
        with self._lock:
            return dict(self._stats)

    def open_provider(self, provider: object) -> None:
        with self._lock:
            self._start_time = datetime.now()
            self.set_meta("start_time", self._start_time.isoformat())
            self.set_meta("provider_name", str(getattr(provider, "name", "unknown")))

    def close_provider(self, provider: object, reason: str = "finished") -> None:
        with self._lock:
            self._finish_time = datetime.now()
            self.set_meta("finish_time", self._finish_time.isoformat())
            self.set_meta("finish_reason", reason)
            if self._start_time is not None:
                elapsed = (self._finish_time - self._start_time).total_seconds()
                self.set_counter("elapsed_time_seconds", elapsed)

    def format_stats(self) -> str:
        """Render all values as sorted `key: value` lines."""
        stats = self.get_stats()
        lines = []
        for key in sorted(stats):
            value = stats[key]
            if isinstance(value, float):
                text = f"{value:.6g}" if math.isfinite(value) else str(value)
            elif isinstance(value, int):
                text = f"{value:,}"
            else:
                text = value
            lines.append(f"  {key}: {text}")
        return "\n".join(lines)


__all__ = ["StatsCollector"]
