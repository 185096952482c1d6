from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from sorter_stack.l0_core.events import (
    InventoryDelta,
    PlacementCompleted,
    QuantityObserved,
    QuantitySource,
    TelemetryEvent,
)
from sorter_stack.l2_link.telemetry_protocol import QUANTITY_DEFAULT, QUANTITY_MAX, QUANTITY_MIN

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CountSnapshot:
    """Immutable copy of the aggregator state, for display and tests."""
    preferred_quantity: int = QUANTITY_DEFAULT
    fallback_quantity: int = QUANTITY_DEFAULT
    last_placement_line: str | None = None


class CountAggregator:
    """
    Turns quantity observations and placement events into inventory deltas.

    A placement consumes the most recent quantity observation: the delta is
    the preferred count, and both counts drop back to 1 afterwards so a later
    placement without a fresh observation never inherits a stale large count.
    Repeated delivery of the exact same placement line is ignored.

    Threading:
        Not thread-safe. Driven only from the EventBus dispatcher thread.
    """

    def __init__(self) -> None:
        self._preferred = QUANTITY_DEFAULT
        self._fallback = QUANTITY_DEFAULT
        self._last_placement_line: Optional[str] = None

    def apply(self, evt: TelemetryEvent) -> Optional[InventoryDelta]:
        """Feed one classified event; returns a delta for accepted placements."""
        if isinstance(evt, QuantityObserved):
            self._observe(evt)
            return None
        if isinstance(evt, PlacementCompleted):
            return self._place(evt)
        return None

    def snapshot(self) -> CountSnapshot:
        return CountSnapshot(self._preferred, self._fallback, self._last_placement_line)

    @property
    def preferred_quantity(self) -> int:
        return self._preferred

    @property
    def fallback_quantity(self) -> int:
        return self._fallback

    # ---- internals ----
    def _observe(self, evt: QuantityObserved) -> None:
        if not QUANTITY_MIN <= evt.value <= QUANTITY_MAX:
            # the decoder clamps, so this only guards hand-built events
            log.warning("ignoring out-of-range quantity %d from %s", evt.value, evt.source.value)
            return
        if evt.source is QuantitySource.PREFERRED:
            self._preferred = evt.value
        else:
            self._fallback = evt.value

    def _place(self, evt: PlacementCompleted) -> Optional[InventoryDelta]:
        if evt.raw_line == self._last_placement_line:
            log.info("duplicate placement line ignored: %s", evt.raw_line)
            return None
        self._last_placement_line = evt.raw_line

        # preferred is always >= 1 here; fallback only matters if that changes
        delta = self._preferred if self._preferred > 0 else self._fallback

        self._preferred = QUANTITY_DEFAULT
        self._fallback = QUANTITY_DEFAULT

        log.info("placement %s accepted, delta=%d", evt.color.value, delta)
        return InventoryDelta(evt.color, delta)
