from sorter_stack.l0_core.events import (
    Color,
    InventoryDelta,
    PlacementCompleted,
    QuantityObserved,
    QuantitySource,
    SequenceStepAcknowledged,
    Unclassified,
)
from sorter_stack.l3_domain.count_aggregator import CountAggregator, CountSnapshot


def _place(color, line=None):
    return PlacementCompleted(color, line or f"STEP Place DONE color={color.value}")


def test_defaults_to_one_item():
    agg = CountAggregator()
    assert agg.snapshot() == CountSnapshot(1, 1, None)
    assert agg.apply(_place(Color.RED)) == InventoryDelta(Color.RED, 1)


def test_placement_uses_preferred_count_then_resets():
    agg = CountAggregator()
    agg.apply(QuantityObserved(QuantitySource.FALLBACK, 9))
    agg.apply(QuantityObserved(QuantitySource.PREFERRED, 4))

    assert agg.apply(_place(Color.BLUE)) == InventoryDelta(Color.BLUE, 4)
    assert agg.preferred_quantity == 1
    assert agg.fallback_quantity == 1

    # a later placement without a fresh observation counts a single item
    assert agg.apply(_place(Color.GREEN)) == InventoryDelta(Color.GREEN, 1)


def test_fallback_alone_does_not_change_the_delta():
    agg = CountAggregator()
    agg.apply(QuantityObserved(QuantitySource.FALLBACK, 7))
    assert agg.apply(_place(Color.RED)) == InventoryDelta(Color.RED, 1)


def test_latest_observation_wins():
    agg = CountAggregator()
    agg.apply(QuantityObserved(QuantitySource.PREFERRED, 3))
    agg.apply(QuantityObserved(QuantitySource.PREFERRED, 8))
    assert agg.apply(_place(Color.RED)).delta == 8


def test_identical_placement_line_is_ignored():
    agg = CountAggregator()
    agg.apply(QuantityObserved(QuantitySource.PREFERRED, 5))
    first = agg.apply(_place(Color.RED))
    agg.apply(QuantityObserved(QuantitySource.PREFERRED, 6))
    again = agg.apply(_place(Color.RED))

    assert first == InventoryDelta(Color.RED, 5)
    assert again is None
    # the duplicate did not consume the pending observation
    assert agg.preferred_quantity == 6

    # a different line (even for the same color) is counted
    assert agg.apply(_place(Color.RED, "step place done color=red")) == InventoryDelta(Color.RED, 6)
    assert agg.snapshot().last_placement_line == "step place done color=red"


def test_out_of_range_observation_is_ignored():
    agg = CountAggregator()
    agg.apply(QuantityObserved(QuantitySource.PREFERRED, 0))
    agg.apply(QuantityObserved(QuantitySource.PREFERRED, 500))
    assert agg.preferred_quantity == 1


def test_other_events_produce_no_delta():
    agg = CountAggregator()
    assert agg.apply(SequenceStepAcknowledged("blaa_26")) is None
    assert agg.apply(Unclassified("hello")) is None
