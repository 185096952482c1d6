from __future__ import annotations

import logging
from typing import Callable, Optional

from sorter_stack.l0_core.events import InventoryDelta, TelemetryLine, Unclassified
from sorter_stack.l2_link.telemetry_decode import iter_events
from sorter_stack.l3_domain.count_aggregator import CountAggregator
from sorter_stack.l3_domain.sequencer import Sequencer
from sorter_stack.l3_domain.telemetry_log import TelemetryLog

log = logging.getLogger(__name__)


class TelemetryRouter:
    """
    Single consumer of "telemetry.line".

    For every delivered line: split into fragments, record each in the
    diagnostic log, classify it, then hand the event to a fixed list of
    consumers in order (aggregator, then sequencer). Because the whole line is
    processed before the next one, a quantity observed earlier in a line is
    visible to a placement later in the same line.

    Threading:
        Subscribe on_line to the EventBus; it then runs on the dispatcher
        thread, which is what makes the aggregator and sequencer lock-free.
    """

    def __init__(self,
                 aggregator: CountAggregator,
                 sequencer: Optional[Sequencer],
                 telemetry_log: TelemetryLog,
                 emit_delta: Callable[[InventoryDelta], bool]) -> None:
        self._aggregator = aggregator
        self._sequencer = sequencer
        self._log = telemetry_log
        self._emit_delta = emit_delta

    def on_line(self, line: TelemetryLine) -> None:
        if line.diagnostic:
            self._log.append(line.text)
            log.warning("listener: %s", line.text)
            return

        for fragment, evt in iter_events(line.text):
            self._log.append(fragment)
            if evt is None:
                log.debug("dropped unparseable quantity: %s", fragment)
                continue
            if isinstance(evt, Unclassified):
                continue

            delta = self._aggregator.apply(evt)
            if delta is not None and not self._emit_delta(delta):
                # the inventory writer has already raised a fault for it
                self._log.append(f"INVENTORY: {delta.color.value} {delta.delta:+d} not recorded")
            if self._sequencer is not None:
                self._sequencer.on_telemetry(evt)
