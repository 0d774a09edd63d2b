"""In-progress multi-slot selection and contiguous block partitioning."""

import logging
from enum import StrEnum

from .config import config
from .models import AvailableSlot, BookingBlock
from .utils import time_to_seconds

logger = logging.getLogger(__name__)


class ContiguityPolicy(StrEnum):
    """How non-contiguous selections are treated."""

    # Accept any slot; submission splits the selection into contiguous blocks
    PARTITION = "partition"
    # Reject a toggle that would leave a gap
    STRICT = "strict"


class ToggleOutcome(StrEnum):
    """Result of a toggle call."""

    ADDED = "added"
    REMOVED = "removed"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"


def _sort_key(slot: AvailableSlot) -> int:
    return time_to_seconds(slot.start_time)


def is_contiguous(slots: list[AvailableSlot]) -> bool:
    """Check that every adjacent pair in start order touches end to start."""
    ordered = sorted(slots, key=_sort_key)
    return all(
        earlier.end_time == later.start_time
        for earlier, later in zip(ordered, ordered[1:])
    )


def partition_blocks(
    slots: list[AvailableSlot], prices: dict[str, float] | None = None
) -> list[BookingBlock]:
    """Group slots into maximal contiguous blocks in ascending time order.

    Args:
        slots: Selected slots, any order
        prices: Price per slot display key, defaults to each slot's own price

    Returns:
        Blocks whose union is exactly the given slots
    """
    prices = prices or {}
    blocks: list[BookingBlock] = []
    run: list[AvailableSlot] = []

    def close_run() -> None:
        if run:
            blocks.append(
                BookingBlock(
                    start_time=run[0].start_time,
                    end_time=run[-1].end_time,
                    slots=[s.label for s in run],
                    price=sum(prices.get(s.label, s.price) for s in run),
                )
            )

    for slot in sorted(slots, key=_sort_key):
        if run and run[-1].end_time != slot.start_time:
            close_run()
            run = []
        run.append(slot)
    close_run()
    return blocks


class Selection:
    """User's in-progress slot selection for one court and date."""

    def __init__(self, policy: ContiguityPolicy | str | None = None):
        """Initialize an empty selection.

        Args:
            policy: Contiguity policy, defaults to configuration
        """
        self.policy = ContiguityPolicy(policy or config.contiguity_policy)
        self._slots: list[AvailableSlot] = []
        self._prices: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, label: object) -> bool:
        return label in self._prices

    @property
    def is_empty(self) -> bool:
        return not self._slots

    def toggle(self, slot: AvailableSlot) -> ToggleOutcome:
        """Add or remove a slot.

        Unavailable slots are ignored. Under the strict policy a slot that
        would break contiguity is rejected and the selection is unchanged.
        """
        if not slot.is_available:
            return ToggleOutcome.UNAVAILABLE

        label = slot.label
        if label in self._prices:
            self._slots = [s for s in self._slots if s.label != label]
            del self._prices[label]
            return ToggleOutcome.REMOVED

        candidate = sorted([*self._slots, slot], key=_sort_key)
        if self.policy == ContiguityPolicy.STRICT and not is_contiguous(candidate):
            logger.debug(f"Rejected non-contiguous slot {label}")
            return ToggleOutcome.REJECTED

        self._slots = candidate
        self._prices[label] = slot.price
        return ToggleOutcome.ADDED

    def current_selection(self) -> list[AvailableSlot]:
        """Selected slots in ascending start order."""
        return list(self._slots)

    def labels(self) -> list[str]:
        return [s.label for s in self._slots]

    def prices(self) -> dict[str, float]:
        return dict(self._prices)

    def total_price(self) -> float:
        return sum(self._prices.values())

    def clear(self) -> None:
        self._slots = []
        self._prices = {}

    def discard(self, labels) -> None:
        """Remove the slots with the given labels, if selected."""
        drop = set(labels)
        self._slots = [s for s in self._slots if s.label not in drop]
        for label in drop:
            self._prices.pop(label, None)

    def evict_unavailable(self, fresh: list[AvailableSlot]) -> list[AvailableSlot]:
        """Drop entries that are not available in a fresh aggregation.

        Membership is an exact (start, end) match against the available
        fresh slots.

        Returns:
            Evicted slots in ascending start order
        """
        still_available = {
            (s.start_time, s.end_time) for s in fresh if s.is_available
        }
        kept, evicted = [], []
        for slot in self._slots:
            if (slot.start_time, slot.end_time) in still_available:
                kept.append(slot)
            else:
                evicted.append(slot)
                self._prices.pop(slot.label, None)
        self._slots = kept
        return evicted

    def blocks(self) -> list[BookingBlock]:
        """Partition the selection into contiguous booking blocks."""
        return partition_blocks(self._slots, self._prices)

    def to_dict(self) -> dict:
        return {
            "policy": self.policy.value,
            "slots": [
                {
                    "label": s.label,
                    "start_time": s.start_time,
                    "end_time": s.end_time,
                    "price": self._prices[s.label],
                }
                for s in self._slots
            ],
            "total_price": self.total_price(),
            "blocks": [b.model_dump() for b in self.blocks()],
        }
