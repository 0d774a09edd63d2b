"""Tests for slot selection and block partitioning."""

from courtbook_mcp.models import AvailableSlot
from courtbook_mcp.selection import (
    ContiguityPolicy,
    Selection,
    ToggleOutcome,
    is_contiguous,
    partition_blocks,
)


def slot(start: str, end: str, available: bool = True, price: float = 10.0) -> AvailableSlot:
    return AvailableSlot(start_time=start, end_time=end, is_available=available, price=price)


NINE = slot("09:00", "09:30")
NINE_THIRTY = slot("09:30", "10:00")
TEN = slot("10:00", "10:30")
TEN_THIRTY = slot("10:30", "11:00")


class TestToggle:
    """Toggle semantics shared by both policies."""

    def test_add_and_remove(self):
        selection = Selection(ContiguityPolicy.PARTITION)

        assert selection.toggle(NINE) == ToggleOutcome.ADDED
        assert NINE.label in selection
        assert selection.toggle(NINE) == ToggleOutcome.REMOVED
        assert selection.is_empty

    def test_unavailable_slot_ignored(self):
        selection = Selection(ContiguityPolicy.PARTITION)

        outcome = selection.toggle(slot("09:00", "09:30", available=False))

        assert outcome == ToggleOutcome.UNAVAILABLE
        assert selection.is_empty

    def test_kept_in_start_order(self):
        selection = Selection(ContiguityPolicy.PARTITION)
        for s in (TEN, NINE, NINE_THIRTY):
            selection.toggle(s)

        assert selection.labels() == [NINE.label, NINE_THIRTY.label, TEN.label]

    def test_total_price(self):
        selection = Selection(ContiguityPolicy.PARTITION)
        selection.toggle(NINE)
        selection.toggle(NINE_THIRTY)

        assert selection.total_price() == 20.0
        assert selection.to_dict()["total_price"] == 20.0


class TestStrictPolicy:
    """Selections must stay one continuous run."""

    def test_gap_rejected(self):
        selection = Selection(ContiguityPolicy.STRICT)
        selection.toggle(NINE)

        assert selection.toggle(TEN) == ToggleOutcome.REJECTED
        assert selection.labels() == [NINE.label]

    def test_adjacent_accepted_on_either_side(self):
        selection = Selection("strict")
        selection.toggle(NINE_THIRTY)

        assert selection.toggle(NINE) == ToggleOutcome.ADDED
        assert selection.toggle(TEN) == ToggleOutcome.ADDED
        assert len(selection.blocks()) == 1


class TestPartitionPolicy:
    """Gaps are allowed and split into blocks."""

    def test_gap_accepted_and_partitioned(self):
        selection = Selection(ContiguityPolicy.PARTITION)
        for s in (NINE, NINE_THIRTY, TEN_THIRTY):
            selection.toggle(s)

        blocks = selection.blocks()

        assert [(b.start_time, b.end_time) for b in blocks] == [
            ("09:00:00", "10:00:00"),
            ("10:30:00", "11:00:00"),
        ]
        assert [b.price for b in blocks] == [20.0, 10.0]
        assert blocks[0].slots == [NINE.label, NINE_THIRTY.label]


def test_partition_union_is_selection():
    slots = [TEN_THIRTY, NINE, TEN]

    blocks = partition_blocks(slots)

    labels = [label for b in blocks for label in b.slots]
    assert sorted(labels) == sorted(s.label for s in slots)
    assert all(is_contiguous([s for s in slots if s.label in b.slots]) for b in blocks)


def test_partition_uses_selection_prices():
    blocks = partition_blocks([NINE], {NINE.label: 7.5})
    assert blocks[0].price == 7.5


def test_is_contiguous():
    assert is_contiguous([])
    assert is_contiguous([NINE_THIRTY, NINE])
    assert not is_contiguous([NINE, TEN])


def test_evict_unavailable():
    selection = Selection(ContiguityPolicy.PARTITION)
    for s in (NINE, NINE_THIRTY, TEN):
        selection.toggle(s)
    fresh = [NINE, slot("09:30", "10:00", available=False)]

    evicted = selection.evict_unavailable(fresh)

    assert [s.label for s in evicted] == [NINE_THIRTY.label, TEN.label]
    assert selection.labels() == [NINE.label]
    assert selection.prices() == {NINE.label: 10.0}
