"""
robot_service.py
================
High-level service layer for the robot network link.

This class wraps:
- L1 TcpCommandChannel for outbound scripts (TX).
- L1 TcpTelemetryListener for inbound status lines (RX).

Design:
- RX lines are published on EventBus topic "telemetry.line"; nothing is parsed
  on the reader threads. Classification happens on the dispatcher thread.
  Lines are never dropped: a reader waits for room on the bus (and so stops
  reading its socket) until the dispatcher catches up or the link closes.
- Each script send runs on its own short-lived thread so a slow robot never
  stalls the dispatcher or the telemetry readers.
- Send failures are published as TransmissionFailed on "command.failed" (the
  sequencer listens there) and as a Fault on "faults".

Usage:
    svc = RobotLinkService(channel, listener, eventbus, telemetry_port=45123)
    if svc.open():
        svc.send_script("blaa_26.script")
"""

import logging
import threading
from typing import Optional

from sorter_stack.l0_core import EventBus
from sorter_stack.l0_core.events import (
    Fault,
    SendScriptCmd,
    Severity,
    TaskState,
    TaskStatus,
    TelemetryLine,
    TransmissionFailed,
    now_ms,
)
from sorter_stack.l1_drivers.command_channel import TcpCommandChannel
from sorter_stack.l1_drivers.link import TransmissionError
from sorter_stack.l1_drivers.telemetry_listener import TcpTelemetryListener

TOPIC_TELEMETRY_LINE = "telemetry.line"
TOPIC_COMMAND_FAILED = "command.failed"
TOPIC_FAULTS = "faults"
TOPIC_TASK_STATUS = "task.status"

TX_JOIN_TIMEOUT_S = 1.0

log = logging.getLogger(__name__)


class RobotLinkService:
    """
    Owns both robot connections and bridges them onto the EventBus.
    """

    def __init__(
        self,
        channel: TcpCommandChannel,
        listener: TcpTelemetryListener,
        eventbus: EventBus,
        telemetry_port: int,
    ) -> None:
        self._channel = channel
        self._listener = listener
        self._eventbus = eventbus
        self._telemetry_port = telemetry_port

        self._tx_lock = threading.Lock()
        self._tx_threads: set[threading.Thread] = set()
        self._closing = threading.Event()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def open(self) -> bool:
        """
        Start the telemetry listener.

        Returns True once the port is bound. The outcome is also published as a
        TaskStatus("telemetry_listener") so anything gating on it (e.g. the
        "sort all" control) can observe it.
        """
        self._closing.clear()
        self._listener.set_reader(self._on_line)
        ok = self._listener.start(self._telemetry_port)
        port = self._listener.port if ok else self._telemetry_port
        state = TaskState.STARTED if ok else TaskState.FAILED
        self._eventbus.publish(
            TOPIC_TASK_STATUS,
            TaskStatus(now_ms(), "telemetry_listener", state, {"port": port}),
        )
        if not ok:
            self._eventbus.publish(
                TOPIC_FAULTS,
                Fault(
                    timestamp_millis=now_ms(),
                    severity=Severity.ERROR,
                    code="TELEMETRY_BIND_FAILED",
                    message=f"telemetry listener could not bind port {port}",
                    context={"port": port},
                ),
            )
        return ok

    def close(self) -> None:
        """
        Stop the listener and wait briefly for in-flight sends.

        Sends are not aborted; a send still running after the join timeout is
        left to finish on its own (daemon thread).
        """
        # release readers waiting for room on the bus before joining them
        self._closing.set()
        self._listener.stop()
        self._listener.set_reader(None)
        with self._tx_lock:
            threads = list(self._tx_threads)
        for t in threads:
            if t.is_alive() and t is not threading.current_thread():
                t.join(timeout=TX_JOIN_TIMEOUT_S)
        log.info("Robot link closed")

    @property
    def listening(self) -> bool:
        return self._listener.is_listening()

    @property
    def telemetry_port(self) -> Optional[int]:
        return self._listener.port

    # -------------------------------------------------------------------------
    # TX
    # -------------------------------------------------------------------------
    def send_script(self, script_id: str, tag: Optional[str] = None) -> threading.Thread:
        """
        Transmit ``script_id`` on a background thread and return that thread.

        ``tag`` is copied into the TransmissionFailed published if the send fails.
        """
        t = threading.Thread(
            target=self._transmit, args=(script_id, tag), name=f"tx-{script_id}", daemon=True
        )
        with self._tx_lock:
            self._tx_threads.add(t)
        t.start()
        return t

    def handle_send_script(self, cmd: SendScriptCmd) -> bool:
        """CommandBus handler for manual sends."""
        if not cmd.script_id.strip():
            return False
        self.send_script(cmd.script_id)
        return True

    def _transmit(self, script_id: str, tag: Optional[str]) -> None:
        try:
            log.info("Sending script %s", script_id)
            self._channel.send_script(script_id)
            log.info("Script %s sent", script_id)
        except TransmissionError as e:
            log.error("Sending %s failed (%s): %s", script_id, e.reason.value, e)
            self._eventbus.publish(
                TOPIC_COMMAND_FAILED,
                TransmissionFailed(now_ms(), script_id, e.reason.value, str(e), tag),
            )
            self._eventbus.publish(
                TOPIC_FAULTS,
                Fault(
                    timestamp_millis=now_ms(),
                    severity=Severity.ERROR,
                    code="SCRIPT_SEND_FAILED",
                    message=str(e),
                    context={"script_id": script_id, "reason": e.reason.value},
                ),
            )
        finally:
            with self._tx_lock:
                self._tx_threads.discard(threading.current_thread())

    # -------------------------------------------------------------------------
    # RX
    # -------------------------------------------------------------------------
    def _on_line(self, line: TelemetryLine) -> None:
        """Reader callback from the listener: enqueue only, waiting for room."""
        self._eventbus.publish_wait(TOPIC_TELEMETRY_LINE, line, cancel=self._closing)
