"""
sorter_stack.l0_core
Foundational Core layer (contracts & buses) for the color sorter stack.

Public API:
- now_ms, Severity, Color, QuantitySource
- TelemetryLine and the telemetry events
- InventoryDelta, CountChanged, TransmissionFailed, TaskStatus, Fault
- SendScriptCmd, StartSequenceCmd, CancelSequenceCmd, AdjustCountCmd
- EventBus, CommandBus, BoundedQueue, QueueStats
"""

from .events import (  # noqa: F401
    now_ms, Severity, Color, QuantitySource,
    TelemetryLine, QuantityObserved, PlacementCompleted, SequenceStepAcknowledged,
    Unclassified, TelemetryEvent,
    InventoryDelta, CountChanged, TransmissionFailed,
    TaskState, TaskStatus, Fault,
    SendScriptCmd, StartSequenceCmd, CancelSequenceCmd, AdjustCountCmd,
)
from .bounded_queue import BoundedQueue, QueueStats  # noqa: F401
from .bus import EventBus, CommandBus  # noqa: F401

__all__ = [
    "now_ms", "Severity", "Color", "QuantitySource",
    "TelemetryLine", "QuantityObserved", "PlacementCompleted", "SequenceStepAcknowledged",
    "Unclassified", "TelemetryEvent",
    "InventoryDelta", "CountChanged", "TransmissionFailed",
    "TaskState", "TaskStatus", "Fault",
    "SendScriptCmd", "StartSequenceCmd", "CancelSequenceCmd", "AdjustCountCmd",
    "EventBus", "CommandBus", "BoundedQueue", "QueueStats",
]
