"""
link.py
=======
Shared contracts for the robot network drivers.

- Error taxonomy raised by the drivers (higher layers never see raw OSError).
- Callback types used to hand received lines upward.
"""
from __future__ import annotations

from enum import Enum
from typing import Callable, Protocol

from sorter_stack.l0_core.events import TelemetryLine

LineCallback = Callable[[TelemetryLine], None]


class TransmissionReason(str, Enum):
    CONNECT_FAILED = "connect_failed"
    WRITE_FAILED = "write_failed"
    SOURCE_UNAVAILABLE = "source_unavailable"


class LinkError(Exception):
    """Base class for robot link failures."""


class TransmissionError(LinkError):
    """
    A script could not be delivered over the command channel.

    Attributes
    ----------
    reason : TransmissionReason
        Which stage failed.
    script_id : str | None
        Identifier of the script being sent, when known.
    """

    def __init__(self, reason: TransmissionReason, message: str, script_id: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.script_id = script_id


class BindError(LinkError):
    """The telemetry listener could not bind its local port."""

    def __init__(self, port: int, message: str) -> None:
        super().__init__(message)
        self.port = port


class ScriptSourceUnavailable(LinkError):
    """The script body for an identifier could not be obtained."""

    def __init__(self, script_id: str, message: str) -> None:
        super().__init__(message)
        self.script_id = script_id


class ScriptSource(Protocol):
    """Resolves a script identifier to the bytes sent to the robot."""

    def load(self, script_id: str) -> bytes: ...
