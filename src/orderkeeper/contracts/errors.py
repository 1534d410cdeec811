"""Exception hierarchy for the ordered processor.

Usage errors are raised synchronously to the caller that broke the
contract. Processing errors never reach the caller of submit(); they are
delivered to observers through on_error(), one per failed slot.
"""

from typing import Any


class OrderkeeperError(Exception):
    """Base class for all orderkeeper errors."""


class UsageError(OrderkeeperError):
    """Raised when the processor is driven in a way its contract forbids.

    Examples: submitting after complete() was called, or after shutdown.
    """


class ProcessingError(OrderkeeperError):
    """The processing operation failed for one slot.

    The original exception is chained as __cause__.

    Attributes:
        slot_index: Index of the slot whose processing failed
        item: The input that was being processed
    """

    def __init__(self, slot_index: int, item: Any, message: str | None = None) -> None:
        super().__init__(message or f"Processing failed for slot {slot_index}")
        self.slot_index = slot_index
        self.item = item


class ProcessingCancelledError(ProcessingError):
    """The slot's processing was cancelled before it ran (e.g. on shutdown)."""

    def __init__(self, slot_index: int, item: Any) -> None:
        super().__init__(slot_index, item, f"Processing cancelled for slot {slot_index}")


class SlotStateError(OrderkeeperError):
    """Illegal slot transition.

    Indicates a bug in the engine: every slot changes state at most twice
    and the lock guarantees only one thread decides each transition.
    """
