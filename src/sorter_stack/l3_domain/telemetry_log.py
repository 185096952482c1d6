from __future__ import annotations

from collections import deque
import threading

DEFAULT_CAPACITY = 500


class TelemetryLog:
    """
    Bounded in-memory log of recent telemetry fragments and queue notes.
    Appended from the dispatcher thread; snapshot() may be called from any thread.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._lines: deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def snapshot(self, last: int | None = None) -> list[str]:
        with self._lock:
            lines = list(self._lines)
        return lines[-last:] if last else lines

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
