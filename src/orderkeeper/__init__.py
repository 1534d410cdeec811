"""
Orderkeeper: concurrent processing with ordered, exactly-once delivery.

Inputs are processed in parallel and their outputs are published to
subscribers either as they complete or in the order the inputs arrived.
"""

__version__ = "0.1.0"

from orderkeeper.contracts import (
    CallbackObserver,
    FailurePolicy,
    Observer,
    OrderkeeperError,
    ProcessingCancelledError,
    ProcessingError,
    UsageError,
)
from orderkeeper.engine import OrderedAsyncProcessor, Subscription

__all__ = [
    "CallbackObserver",
    "FailurePolicy",
    "Observer",
    "OrderedAsyncProcessor",
    "OrderkeeperError",
    "ProcessingCancelledError",
    "ProcessingError",
    "Subscription",
    "UsageError",
    "__version__",
]
