from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, Optional, Sequence

from sorter_stack.l0_core.events import (
    CancelSequenceCmd,
    SequenceStepAcknowledged,
    StartSequenceCmd,
    TaskState,
    TaskStatus,
    TelemetryEvent,
    TransmissionFailed,
    now_ms,
)

TASK_NAME = "sort_all"

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SequenceStep:
    """One script of the run and the name its "RUN <name> END" line carries."""
    script_id: str
    ack_name: str


class SequenceState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"   # behaves exactly like IDLE
    FINISHED = "finished"     # behaves exactly like IDLE


class Sequencer:
    """
    Purpose:
        Drive the "sort all" run: send step i, wait for its acknowledgement,
        then send step i+1, until every step has been acknowledged.

    Inputs:
        - StartSequenceCmd / CancelSequenceCmd on topic "sequence.control".
        - SequenceStepAcknowledged events from the telemetry router.
        - TransmissionFailed on topic "command.failed".

    Collaborators:
        - transmit: injected callable that sends one step's script, given the
          step and a tag unique to this run and step. It must not block for
          long; in production it hands off to a TX thread and reports failures
          back as TransmissionFailed carrying that tag.
        - emit_status: injected callable receiving TaskStatus reports.

    Threading:
        Not thread-safe. Every entry point is called from the EventBus
        dispatcher thread.

    Cancellation only stops the local sequence from advancing; the script
    already running on the robot is left alone.
    """

    def __init__(self,
                 steps: Sequence[SequenceStep],
                 transmit: Callable[[SequenceStep, str], None],
                 emit_status: Optional[Callable[[TaskStatus], None]] = None,
                 note: Optional[Callable[[str], None]] = None) -> None:
        if not steps:
            raise ValueError("a sequence needs at least one step")
        self._steps = tuple(steps)
        self._transmit = transmit
        self._emit_status = emit_status
        self._note = note
        self._state = SequenceState.IDLE
        self._index = 0
        self._run = 0
        self._pending_tag: Optional[str] = None

    # ---- queries ----
    @property
    def state(self) -> SequenceState:
        return self._state

    @property
    def index(self) -> int:
        return self._index

    @property
    def running(self) -> bool:
        return self._state is SequenceState.RUNNING

    @property
    def steps(self) -> tuple[SequenceStep, ...]:
        return self._steps

    def current_step(self) -> Optional[SequenceStep]:
        return self._steps[self._index] if self.running else None

    # ---- operator input ----
    def start(self) -> bool:
        if self.running:
            log.info("Sort all already running (step %d)", self._index)
            self._report(TaskState.REJECTED, {"message": "already running", "index": self._index})
            return False
        self._state = SequenceState.RUNNING
        self._index = 0
        self._run += 1
        self._report(TaskState.STARTED, {"steps": len(self._steps)})
        self._send_current()
        return True

    def cancel(self) -> None:
        was_running = self.running
        self._state = SequenceState.CANCELLED
        self._index = 0
        if was_running:
            log.info("Sort all cancelled")
        self._report(TaskState.CANCELLED, {})

    def on_control(self, cmd: object) -> None:
        """EventBus subscriber for topic "sequence.control"."""
        if isinstance(cmd, StartSequenceCmd):
            self.start()
        elif isinstance(cmd, CancelSequenceCmd):
            self.cancel()
        else:
            log.warning("unknown sequence control message: %r", cmd)

    # ---- robot input ----
    def on_telemetry(self, evt: TelemetryEvent) -> None:
        if isinstance(evt, SequenceStepAcknowledged):
            self.on_acknowledged(evt)

    def on_acknowledged(self, evt: SequenceStepAcknowledged) -> None:
        if not self.running:
            return

        expected = self._steps[self._index].ack_name
        if evt.name.casefold() != expected.casefold():
            msg = f"QUEUE: END ignored (got '{evt.name}', expected '{expected}')"
            log.info(msg)
            self._emit_note(msg)
            return

        self._index += 1
        if self._index >= len(self._steps):
            self._state = SequenceState.FINISHED
            self._index = 0
            log.info("Sort all finished")
            self._report(TaskState.COMPLETED, {"steps": len(self._steps)})
            return

        self._emit_note(f"QUEUE: {evt.name} END detected → sending next")
        self._send_current()

    def on_transmission_failed(self, evt: TransmissionFailed) -> None:
        """EventBus subscriber for topic "command.failed"."""
        if not self.running or evt.tag != self._pending_tag:
            return  # not the send we are waiting on
        self._state = SequenceState.IDLE
        self._index = 0
        log.error("Sort all failed sending %s: %s", evt.script_id, evt.message)
        self._emit_note(f"QUEUE ERROR: {evt.script_id}: {evt.message}")
        self._report(
            TaskState.FAILED,
            {"script_id": evt.script_id, "reason": evt.reason, "message": evt.message},
        )

    # ---- internals ----
    def _send_current(self) -> None:
        step = self._steps[self._index]
        self._pending_tag = f"{TASK_NAME}#{self._run}:{self._index}"
        self._report(
            TaskState.RUNNING,
            {"index": self._index, "script_id": step.script_id, "ack_name": step.ack_name},
        )
        self._transmit(step, self._pending_tag)

    def _report(self, state: TaskState, details: dict) -> None:
        if self._emit_status is None:
            return
        self._emit_status(TaskStatus(now_ms(), TASK_NAME, state, details))

    def _emit_note(self, text: str) -> None:
        if self._note is not None:
            self._note(text)
