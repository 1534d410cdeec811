"""Shared contracts: enums, errors, and the observer protocol.

This package is a leaf module with no dependencies on core/engine.
"""

from orderkeeper.contracts.enums import FailurePolicy, NotificationKind, SlotState
from orderkeeper.contracts.errors import (
    OrderkeeperError,
    ProcessingCancelledError,
    ProcessingError,
    SlotStateError,
    UsageError,
)
from orderkeeper.contracts.observer import CallbackObserver, Observer

__all__ = [
    "CallbackObserver",
    "FailurePolicy",
    "NotificationKind",
    "Observer",
    "OrderkeeperError",
    "ProcessingCancelledError",
    "ProcessingError",
    "SlotState",
    "SlotStateError",
    "UsageError",
]
