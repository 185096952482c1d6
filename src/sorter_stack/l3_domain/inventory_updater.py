from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Union

from sorter_stack.l0_core.bounded_queue import BoundedQueue, QueueStats
from sorter_stack.l0_core.events import (
    AdjustCountCmd,
    CountChanged,
    Fault,
    InventoryDelta,
    Severity,
    now_ms,
)
from sorter_stack.l3_domain.inventory_store import InventoryStore

WRITE_QUEUE_MAX = 256
Q_PUT_TIMEOUT = 0.01
DELTA_PUT_TIMEOUT = 1.0         # placements wait longer than manual corrections
Q_GET_TIMEOUT = 0.10
SENTINEL = object()              # wakes the writer during shutdown

log = logging.getLogger(__name__)

Change = Union[InventoryDelta, AdjustCountCmd]


class InventoryUpdater:
    """
    Single writer that owns inventory updates.

    Placements (InventoryDelta from the router) and manual corrections
    (AdjustCountCmd) are queued and applied in submission order on one worker
    thread, so database latency never stalls the EventBus dispatcher.

    Results are reported through ``on_changed`` (CountChanged) and failures
    through ``on_fault``; the worker keeps running after a failed update. A
    change that cannot be queued is reported there too, never dropped silently.
    """

    def __init__(self,
                 store: InventoryStore,
                 on_changed: Optional[Callable[[CountChanged], None]] = None,
                 on_fault: Optional[Callable[[Fault], None]] = None,
                 capacity: int = WRITE_QUEUE_MAX) -> None:
        self._store = store
        self._on_changed = on_changed
        self._on_fault = on_fault
        self._queue = BoundedQueue(capacity, "InventoryWriteQueue")
        self._alive = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ---- lifecycle ----
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._alive.set()
        self._thread = threading.Thread(
            target=self._writer_loop, name="inventory-writer", daemon=True
        )
        self._thread.start()

    def close(self, timeout: float = 1.0) -> None:
        """Apply what is already queued (within ``timeout``), then stop."""
        t = self._thread
        self._queue.put(SENTINEL, timeout=Q_PUT_TIMEOUT)
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=timeout)
        self._alive.clear()
        self._thread = None

    # ---- input ----
    def submit(self, change: Change, timeout: float = Q_PUT_TIMEOUT) -> bool:
        """
        Queue a change. False if the queue stayed full for ``timeout``; the
        change is then lost and reported as an INVENTORY_CHANGE_DROPPED fault.
        """
        if self._queue.put(change, timeout=timeout):
            return True
        log.error("[%s] overflow: dropped %r", self._queue.name(), change)
        self._report_fault(
            "INVENTORY_CHANGE_DROPPED",
            f"Inventory queue full, {change.color.value} {change.delta:+d} not applied",
            change,
        )
        return False

    def submit_delta(self, delta: InventoryDelta) -> bool:
        """Router entry point for placements; waits up to DELTA_PUT_TIMEOUT for room."""
        return self.submit(delta, timeout=DELTA_PUT_TIMEOUT)

    def handle_adjust(self, cmd: AdjustCountCmd) -> bool:
        """CommandBus handler for manual corrections."""
        return self.submit(cmd)

    def stats(self) -> QueueStats:
        return self._queue.stats()

    # ---- worker ----
    def _writer_loop(self) -> None:
        log.info("Inventory writer started")
        while True:
            ok, item = self._queue.get(timeout=Q_GET_TIMEOUT)
            if not ok:
                if not self._alive.is_set():
                    break
                continue
            if item is SENTINEL:
                break
            self._apply(item)
        log.info("Inventory writer exiting")

    def _apply(self, change: Change) -> None:
        try:
            count = self._store.change_count(change.color, change.delta)
        except Exception as e:
            log.exception("Inventory update failed for %s", change)
            self._report_fault("INVENTORY_UPDATE_FAILED", f"Auto count failed: {e}", change)
            return
        log.info("inventory %s %+d -> %d", change.color.value, change.delta, count)
        if self._on_changed:
            try:
                self._on_changed(CountChanged(change.color, count))
            except Exception:
                log.exception("on_changed callback error")

    def _report_fault(self, code: str, message: str, change: Change) -> None:
        if self._on_fault is None:
            return
        self._on_fault(
            Fault(
                timestamp_millis=now_ms(),
                severity=Severity.ERROR,
                code=code,
                message=message,
                context={"color": change.color.value, "delta": change.delta},
            )
        )
