"""Status codes and policies shared between the engine and its callers."""

from enum import StrEnum


class SlotState(StrEnum):
    """Lifecycle state of one submitted input.

    Transitions are linear: PENDING -> COMPLETED -> PUBLISHED.
    FAILED is absorbing and only reachable from PENDING.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    PUBLISHED = "published"
    FAILED = "failed"


class FailurePolicy(StrEnum):
    """How a failed slot affects publication and stream completion.

    STALL: The failed slot never completes. In submission-order mode the
        sweep stops at it permanently, and the completion notification is
        never sent because not every slot is published.
    SKIP: The failed slot is settled. The sweep passes over it and it counts
        toward stream completion.
    """

    STALL = "stall"
    SKIP = "skip"


class NotificationKind(StrEnum):
    """Kind of notification queued for observers."""

    NEXT = "next"
    ERROR = "error"
    COMPLETED = "completed"
