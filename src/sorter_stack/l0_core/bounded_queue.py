from __future__ import annotations

from dataclasses import dataclass
from queue import Empty, Full, Queue
import threading
from typing import Any, Callable, Literal, Tuple


@dataclass(frozen=True, slots=True)
class QueueStats:
    """Point-in-time view of a BoundedQueue, for status pages and the dev shell."""
    name: str
    size: int
    capacity: int
    dropped: int


class BoundedQueue:
    """
    Fixed-capacity, thread-safe hand-off between producer and consumer threads.

    Used by the EventBus (reader/TX threads → dispatcher) and by the inventory
    writer. put() is drop-newest: a put that cannot complete within its
    timeout returns False and the item is counted as dropped. put_until()
    waits instead, for producers that must not lose items.
    """

    def __init__(self, maxsize: int, name: str,
                 on_overflow: Literal["drop_newest"] = "drop_newest") -> None:
        if not isinstance(maxsize, int) or maxsize <= 0:
            raise ValueError("maxsize must be a positive integer")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name must be a non-empty string")
        if on_overflow != "drop_newest":
            raise ValueError("on_overflow must be 'drop_newest'")
        self._name = name
        self._maxsize = maxsize
        self._q: Queue = Queue(maxsize=maxsize)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    def put(self, item: Any, timeout: float) -> bool:
        """Enqueue, waiting up to ``timeout`` seconds (0 = don't wait). False when dropped."""
        try:
            if timeout <= 0:
                self._q.put_nowait(item)
            else:
                self._q.put(item, timeout=timeout)
        except Full:
            with self._dropped_lock:
                self._dropped += 1
            return False
        return True

    def put_until(self, item: Any, cancelled: Callable[[], bool], poll_s: float = 0.1) -> bool:
        """
        Enqueue, waiting for room for as long as it takes.

        ``cancelled`` is checked every ``poll_s``; once it returns True the item
        is given up (and counted as dropped). Lossless producers use this to
        push back on their source instead of discarding.
        """
        while not cancelled():
            try:
                self._q.put(item, timeout=poll_s)
                return True
            except Full:
                continue
        with self._dropped_lock:
            self._dropped += 1
        return False

    def get(self, timeout: float) -> Tuple[bool, Any]:
        """(True, item), or (False, None) once ``timeout`` expires."""
        try:
            return True, self._q.get(timeout=timeout)
        except Empty:
            return False, None

    def qsize(self) -> int:
        return self._q.qsize()  # approximate under concurrency

    def maxsize(self) -> int:
        return self._maxsize

    def name(self) -> str:
        return self._name

    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def stats(self) -> QueueStats:
        return QueueStats(self._name, self.qsize(), self._maxsize, self.dropped())
