from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

from sorter_stack.l0_core.bounded_queue import BoundedQueue, QueueStats

C = TypeVar("C")
Subscriber = Callable[[Any], None]

log = logging.getLogger(__name__)

_STOP = "__stop__"
_FLUSH = "__flush__"
_GET_POLL_S = 0.1


class CommandBus:
    """
    Routes operator commands (StartSequenceCmd, SendScriptCmd, AdjustCountCmd, ...)
    to their single owner.

    Handlers run synchronously on whichever thread calls ``call`` (HTTP request
    threads, the dev shell). A handler whose target lives on the dispatcher
    thread, like the sequencer, must re-publish the command on the EventBus
    instead of acting on it directly.
    """

    def __init__(self) -> None:
        self._routes: Dict[Type[Any], Callable[[Any], Any]] = {}

    def register(self, command_type: Type[C], handler: Callable[[C], Any]) -> None:
        """
        Make ``handler`` the owner of ``command_type``.

        Raises
        ------
        ValueError
            ``command_type`` already has an owner.
        """
        if command_type in self._routes:
            raise ValueError(f"{command_type.__name__} is already routed")
        self._routes[command_type] = handler

    def call(self, command: Any) -> Any:
        """
        Run the owner of ``type(command)`` and return its result.

        Raises
        ------
        LookupError
            Nothing was registered for this command type.
        """
        handler = self._routes.get(type(command))
        if handler is None:
            raise LookupError(f"no route for {type(command).__name__}")
        return handler(command)


class EventBus:
    """
    Topic-based hand-off from producer threads to one dispatcher thread.

    Telemetry readers, TX threads and the inventory writer publish from their
    own threads; every subscriber runs on the dispatcher, one event at a time,
    in publish order. That is what lets the count aggregator and the sequencer
    hold plain unlocked state.

    The queue is bounded. publish() drops (and counts) an event that cannot be
    queued within ``publish_timeout_ms``; status and fault notifications use it.
    publish_wait() blocks the producer instead and is used for telemetry lines,
    which must all reach the dispatcher.
    """

    def __init__(self, capacity: int = 1024, publish_timeout_ms: int = 10) -> None:
        self._queue = BoundedQueue(maxsize=capacity, name="EventBus")
        self._publish_timeout_s = publish_timeout_ms / 1000.0
        self._topics: Dict[str, Tuple[Subscriber, ...]] = {}
        self._topics_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._dispatch_loop, name="EventBus-Dispatcher", daemon=True)
        self._thread.start()

    # ---- subscriptions ----
    def subscribe(self, topic: str, callback: Subscriber) -> None:
        """Add ``callback`` for ``topic``; it will run on the dispatcher thread."""
        with self._topics_lock:
            self._topics[topic] = self._topics.get(topic, ()) + (callback,)

    def unsubscribe(self, topic: str, callback: Subscriber) -> None:
        with self._topics_lock:
            current = self._topics.get(topic, ())
            self._topics[topic] = tuple(cb for cb in current if cb != callback)

    # ---- producers (any thread) ----
    def publish(self, topic: str, event: object) -> bool:
        """Queue ``event`` for ``topic``. False when the queue stayed full (event dropped)."""
        if self._queue.put((topic, event), timeout=self._publish_timeout_s):
            return True
        log.warning("EventBus full, dropped %s event on '%s'", type(event).__name__, topic)
        return False

    def publish_wait(self, topic: str, event: object,
                     cancel: Optional[threading.Event] = None) -> bool:
        """
        Queue ``event`` without ever dropping it for lack of room.

        Blocks the calling producer while the queue is full, which is how
        telemetry readers push back on the robot (they stop reading, TCP does
        the rest). Gives up only when ``cancel`` is set or the bus is closed.
        Must not be called from a subscriber.
        """
        if threading.current_thread() is self._thread:
            raise RuntimeError("publish_wait() called from the dispatcher thread")

        def cancelled() -> bool:
            return self._stop.is_set() or (cancel is not None and cancel.is_set())

        if self._queue.put_until((topic, event), cancelled, poll_s=_GET_POLL_S):
            return True
        log.info("gave up queuing %s event on '%s' (shutting down)", type(event).__name__, topic)
        return False

    def flush(self, timeout: float = 1.0) -> bool:
        """
        Wait until everything published before this call has been dispatched.

        Returns False on timeout. Must not be called from a subscriber.
        """
        if threading.current_thread() is self._thread:
            raise RuntimeError("flush() called from the dispatcher thread")
        marker = threading.Event()
        if not self._queue.put((_FLUSH, marker), timeout=timeout):
            return False
        return marker.wait(timeout)

    def stats(self) -> QueueStats:
        """Size, capacity and drop count of the dispatcher queue."""
        return self._queue.stats()

    # ---- lifecycle ----
    def close(self) -> None:
        self._stop.set()
        # wake the dispatcher early if there is room; otherwise it notices the flag
        self._queue.put((_STOP, None), timeout=0.0)
        self._thread.join(timeout=1.0)

    # ---- dispatcher ----
    def _dispatch_loop(self) -> None:
        while not self._stop.is_set():
            ok, item = self._queue.get(timeout=_GET_POLL_S)
            if not ok:
                continue
            topic, event = item
            if topic == _STOP:
                return
            if topic == _FLUSH:
                event.set()
                continue
            with self._topics_lock:
                subscribers = self._topics.get(topic, ())
            for callback in subscribers:
                try:
                    callback(event)
                except Exception:
                    log.exception("subscriber %r failed on '%s'", callback, topic)
