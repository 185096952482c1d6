from __future__ import annotations

from enum import Enum
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Union

Number = Union[int, float]
Value = Union[Number, bool, str]


class Severity(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    CRITICAL = "critical"


def now_ms() -> int:
    """Gives a steady (monotonic) clock for event timing in milliseconds
        for timestamps in logs/events (steady, not wall-clock).
    """
    return time.monotonic_ns() // 1_000_000


class Color(str, Enum):
    """Sorting bins known to the robot and the inventory."""
    RED = "RED"
    GREEN = "GREEN"
    BLUE = "BLUE"

    @classmethod
    def parse(cls, text: str) -> "Color | None":
        """Case-insensitive lookup; None when ``text`` names no known color."""
        try:
            return cls(text.strip().upper())
        except ValueError:
            return None


class QuantitySource(str, Enum):
    PREFERRED = "preferred"   # "STEP EyesLocate DONE cnt=<n>"
    FALLBACK = "fallback"     # "DATA EyesWorkpCount=<n>"


# ---------------------------------------------------------------------------
# Telemetry (RX path)
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class TelemetryLine:
    """
    One raw text line delivered by the telemetry listener.

    Fields:
      - timestamp_millis: monotonic timestamp in milliseconds (use now_ms())
      - peer: "host:port" of the robot connection, or "listener" for diagnostics
      - text: decoded line without its trailing line break
      - diagnostic: True when the listener itself produced the line (bind or
        read failures); diagnostic lines are logged but never classified
    """
    timestamp_millis: int
    peer: str
    text: str
    diagnostic: bool = False


@dataclass(frozen=True, slots=True)
class QuantityObserved:
    source: QuantitySource
    value: int


@dataclass(frozen=True, slots=True)
class PlacementCompleted:
    color: Color
    raw_line: str


@dataclass(frozen=True, slots=True)
class SequenceStepAcknowledged:
    name: str


@dataclass(frozen=True, slots=True)
class Unclassified:
    raw_line: str


TelemetryEvent = Union[QuantityObserved, PlacementCompleted, SequenceStepAcknowledged, Unclassified]


@dataclass(frozen=True, slots=True)
class InventoryDelta:
    """Change the inventory store must apply for one accepted placement."""
    color: Color
    delta: int


@dataclass(frozen=True, slots=True)
class CountChanged:
    """Published after the inventory store applied a change."""
    color: Color
    count: int


@dataclass(frozen=True, slots=True)
class TransmissionFailed:
    """
    A script could not be delivered to the robot.

    script_id : str
        Identifier handed to the script source (e.g. "blaa_26.script").
    reason : str
        One of the TransmissionReason values ("connect_failed", ...).
    tag : str | None
        Opaque token the sender attached to the send (the sequencer uses it
        to recognise its own steps); None for manual sends.
    """
    timestamp_millis: int
    script_id: str
    reason: str
    message: str
    tag: Optional[str] = None


# ---------------------------------------------------------------------------
# Status / faults
# ---------------------------------------------------------------------------

class TaskState(str, Enum):
    STARTED = "started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class TaskStatus:
    """
    Immutable notification about the lifecycle of a task/job.
    Examples: "sort_all", "telemetry_listener"
    """
    timestamp_millis: int
    task_name: str
    state: TaskState
    details: Mapping[str, Value]  # small, scalar-only payload


@dataclass(frozen=True, slots=True)
class Fault:
    """
    Immutable fault record used for reporting errors with a severity level.
    Example:
      Fault(timestamp_millis=..., severity=Severity.ERROR, code="TELEMETRY_BIND_FAILED",
            message="port 45123 already in use", context={"port": 45123})
    """
    timestamp_millis: int
    severity: Severity
    code: str               # stable programmatic code (e.g., "SCRIPT_SEND_FAILED")
    message: str            # human-readable explanation
    context: Mapping[str, Value]  # small scalar extras (never mutate)


# ---------------------------------------------------------------------------
# Commands (routed through the CommandBus)
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SendScriptCmd:
    """
    Manual single-script send, outside of any sequencing run.

    script_id : str
        Identifier resolved by the script source.
    """
    script_id: str


@dataclass(frozen=True, slots=True)
class StartSequenceCmd:
    """Start the "sort all" run from its first step."""
    reason: str = "user"


@dataclass(frozen=True, slots=True)
class CancelSequenceCmd:
    """
    Stop advancing the local sequence. The script already running on the
    robot is not interrupted.
    """
    reason: str = "user"


@dataclass(frozen=True, slots=True)
class AdjustCountCmd:
    """Manual inventory correction (+/- buttons on the operator surface)."""
    color: Color
    delta: int
