# src/orderkeeper/engine/slots.py
"""Slot bookkeeping and the publish decision.

Every submitted input gets a slot. Results may arrive in any order; the
SlotTable decides which slots can be published right now and in what
order:

- completion order: a slot is published as soon as its output arrives
- submission order: a cursor sweeps left to right over contiguous
  completed slots, stopping at the first slot still pending

Slots are append-only and kept for the lifetime of the table so the full
history (with timing metadata) stays available for inspection.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from concurrent.futures import Future
from dataclasses import dataclass

from orderkeeper.contracts.enums import FailurePolicy, SlotState
from orderkeeper.contracts.errors import SlotStateError


@dataclass
class Slot[I, O]:
    """Bookkeeping record for one submitted input.

    Attributes:
        index: Submission order (0-indexed, dense)
        item: The input as given to submit()
        submitted_at: time.perf_counter() when the slot was created
        state: Current lifecycle state
        output: Processing result, set on PENDING -> COMPLETED
        error: Failure delivered to observers, set on PENDING -> FAILED
        complete_index: Order in which this slot completed (may differ from index)
        completed_at: time.perf_counter() when the output arrived
        published_at: time.perf_counter() when the slot was published
        future: Handle to the running processing operation
    """

    index: int
    item: I
    submitted_at: float
    state: SlotState = SlotState.PENDING
    output: O | None = None
    error: Exception | None = None
    complete_index: int | None = None
    completed_at: float | None = None
    published_at: float | None = None
    future: Future[O] | None = None

    @property
    def buffer_wait_ms(self) -> float | None:
        """Time between completion and publication, None until published."""
        if self.completed_at is None or self.published_at is None:
            return None
        return (self.published_at - self.completed_at) * 1000


class SlotTable[I, O]:
    """Append-only slot collection with the publish-decision logic.

    Thread Safety:
        NOT thread-safe. The owning OrderedAsyncProcessor holds its lock
        around every call, which is what makes each publish decision
        atomic with respect to concurrent completions.

    Invariants:
        - indices are 0..len-1 in submission order
        - each slot leaves PENDING at most once and is published at most once
        - in submission order, slot i is published only after slot i-1
          (or after i-1 failed, when the failure policy is SKIP)

    Usage:
        table = SlotTable[str, int](maintain_order=True)
        a = table.append("a")
        b = table.append("b")

        table.record_output(b.index, 2)  # [] - waiting for slot 0
        table.record_output(a.index, 1)  # [slot 0, slot 1]
    """

    def __init__(
        self,
        maintain_order: bool = False,
        failure_policy: FailurePolicy = FailurePolicy.STALL,
    ) -> None:
        self._maintain_order = maintain_order
        self._failure_policy = failure_policy
        self._slots: list[Slot[I, O]] = []
        self._next_publish = 0
        self._completed_count = 0
        self._published_count = 0
        self._failed_count = 0
        self._total_buffer_wait_ms = 0.0

    def __len__(self) -> int:
        return len(self._slots)

    def __getitem__(self, index: int) -> Slot[I, O]:
        return self._slots[index]

    def __iter__(self) -> Iterator[Slot[I, O]]:
        return iter(self._slots)

    @property
    def maintain_order(self) -> bool:
        return self._maintain_order

    @property
    def failure_policy(self) -> FailurePolicy:
        return self._failure_policy

    @property
    def submitted_count(self) -> int:
        return len(self._slots)

    @property
    def completed_count(self) -> int:
        """Slots whose output has arrived (published or not)."""
        return self._completed_count

    @property
    def published_count(self) -> int:
        return self._published_count

    @property
    def failed_count(self) -> int:
        return self._failed_count

    @property
    def next_publish_index(self) -> int:
        """Sweep cursor. Only advances in submission-order mode."""
        return self._next_publish

    @property
    def pending_count(self) -> int:
        """Slots still waiting for their processing to finish."""
        return len(self._slots) - self._completed_count - self._failed_count

    @property
    def total_buffer_wait_ms(self) -> float:
        return self._total_buffer_wait_ms

    @property
    def all_settled(self) -> bool:
        """True when no slot needs further publication work.

        Under STALL a failed slot is never settled, so a single failure
        keeps this False for good.
        """
        settled = self._published_count
        if self._failure_policy is FailurePolicy.SKIP:
            settled += self._failed_count
        return settled == len(self._slots)

    def append(self, item: I) -> Slot[I, O]:
        """Create the next slot for a newly submitted input."""
        slot: Slot[I, O] = Slot(
            index=len(self._slots),
            item=item,
            submitted_at=time.perf_counter(),
        )
        self._slots.append(slot)
        return slot

    def record_output(self, index: int, output: O) -> list[Slot[I, O]]:
        """Mark a slot COMPLETED and publish whatever became publishable.

        Args:
            index: Slot index returned by append()
            output: Result of processing the slot's input

        Returns:
            Slots published by this call, in publish order (may be empty)

        Raises:
            IndexError: If index was never appended
            SlotStateError: If the slot already completed or failed
        """
        slot = self._slots[index]
        if slot.state is not SlotState.PENDING:
            raise SlotStateError(f"Slot {index} cannot complete from state {slot.state}")

        slot.output = output
        slot.state = SlotState.COMPLETED
        slot.completed_at = time.perf_counter()
        slot.complete_index = self._completed_count
        self._completed_count += 1

        if self._maintain_order:
            return self._sweep()

        self._publish(slot)
        return [slot]

    def record_failure(self, index: int, error: Exception) -> list[Slot[I, O]]:
        """Mark a slot FAILED.

        Under SKIP in submission-order mode this can unblock the sweep, so
        later slots that were already completed get published here.

        Returns:
            Slots published by this call, in publish order (may be empty)

        Raises:
            IndexError: If index was never appended
            SlotStateError: If the slot already completed or failed
        """
        slot = self._slots[index]
        if slot.state is not SlotState.PENDING:
            raise SlotStateError(f"Slot {index} cannot fail from state {slot.state}")

        slot.error = error
        slot.state = SlotState.FAILED
        slot.completed_at = time.perf_counter()
        self._failed_count += 1

        if self._maintain_order and self._failure_policy is FailurePolicy.SKIP:
            return self._sweep()
        return []

    def _sweep(self) -> list[Slot[I, O]]:
        """Publish contiguous completed slots starting at the cursor."""
        released: list[Slot[I, O]] = []
        while self._next_publish < len(self._slots):
            slot = self._slots[self._next_publish]
            if slot.state is SlotState.COMPLETED:
                self._publish(slot)
                released.append(slot)
            elif slot.state is not SlotState.FAILED or self._failure_policy is not FailurePolicy.SKIP:
                # Pending, or failed under STALL
                break
            self._next_publish += 1
        return released

    def _publish(self, slot: Slot[I, O]) -> None:
        if slot.state is not SlotState.COMPLETED:
            raise SlotStateError(f"Slot {slot.index} cannot be published from state {slot.state}")

        slot.state = SlotState.PUBLISHED
        slot.published_at = time.perf_counter()
        self._published_count += 1
        # completed_at is always set for a COMPLETED slot
        self._total_buffer_wait_ms += (slot.published_at - slot.completed_at) * 1000  # type: ignore[operator]
