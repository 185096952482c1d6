"""
telemetry_decode.py
===================
RX helpers for the robot text protocol.

This module focuses ONLY on the receive path:
- Splitting a delivered line into logical fragments.
- Classifying each fragment into a typed telemetry event.
- Clamping reported quantities into the accepted range.

It holds no state; the count aggregator and the sequencer own that.
"""

from typing import Iterator, List, Optional

from sorter_stack.l0_core.events import (
    Color,
    PlacementCompleted,
    QuantityObserved,
    QuantitySource,
    SequenceStepAcknowledged,
    TelemetryEvent,
    Unclassified,
)
from .telemetry_protocol import (
    FRAGMENT_SPLIT_RE,
    INT32_MAX,
    INT32_MIN,
    INTEGER_RE,
    PREFIX_EYES_LOCATE,
    PREFIX_EYES_WORKP_COUNT,
    PREFIX_PLACE_DONE,
    QUANTITY_MAX,
    QUANTITY_MIN,
    RUN_END_RE,
)


def split_fragments(raw_line: str) -> List[str]:
    """
    Split one delivered line into trimmed, non-empty fragments.

    Both real line breaks and the literal two-character escape backslash-n
    separate fragments:

        "STEP EyesLocate DONE cnt=2\\nSTEP Place DONE color=GREEN "
        → ['STEP EyesLocate DONE cnt=2', 'STEP Place DONE color=GREEN']
    """
    parts = (p.strip() for p in FRAGMENT_SPLIT_RE.split(raw_line))
    return [p for p in parts if p]


def clamp_quantity(text: str) -> Optional[int]:
    """
    Parse a reported count and clamp it into [QUANTITY_MIN, QUANTITY_MAX].

    Returns None when ``text`` is not a 32-bit signed integer; the observation
    is dropped.
    """
    s = text.strip()
    if not INTEGER_RE.match(s):
        return None
    n = int(s)
    if not INT32_MIN <= n <= INT32_MAX:
        return None
    if n < QUANTITY_MIN:
        return QUANTITY_MIN
    if n > QUANTITY_MAX:
        return QUANTITY_MAX
    return n


def _strip_prefix(fragment: str, prefix: str) -> Optional[str]:
    if fragment[:len(prefix)].lower() == prefix.lower():
        return fragment[len(prefix):]
    return None


def classify_fragment(fragment: str) -> Optional[TelemetryEvent]:
    """
    Classify one trimmed fragment.

    Returns:
        QuantityObserved / PlacementCompleted / SequenceStepAcknowledged for
        recognised lines, Unclassified for anything else, or None when a
        quantity line carries an unparseable number.
    """
    rest = _strip_prefix(fragment, PREFIX_EYES_LOCATE)
    if rest is not None:
        value = clamp_quantity(rest)
        return QuantityObserved(QuantitySource.PREFERRED, value) if value is not None else None

    rest = _strip_prefix(fragment, PREFIX_EYES_WORKP_COUNT)
    if rest is not None:
        value = clamp_quantity(rest)
        return QuantityObserved(QuantitySource.FALLBACK, value) if value is not None else None

    rest = _strip_prefix(fragment, PREFIX_PLACE_DONE)
    if rest is not None:
        color = Color.parse(rest)
        if color is None:
            return Unclassified(fragment)
        return PlacementCompleted(color, fragment)

    m = RUN_END_RE.match(fragment)
    if m:
        return SequenceStepAcknowledged(m.group("name").strip())

    return Unclassified(fragment)


def iter_events(raw_line: str) -> Iterator[tuple[str, Optional[TelemetryEvent]]]:
    """Yield (fragment, event-or-None) pairs in arrival order."""
    for fragment in split_fragments(raw_line):
        yield fragment, classify_fragment(fragment)


def classify(raw_line: str) -> List[TelemetryEvent]:
    """All events carried by one delivered line, in order."""
    return [evt for _, evt in iter_events(raw_line) if evt is not None]
