"""Ordering engine: slot bookkeeping, subscriptions, and the processor."""

from orderkeeper.engine.processor import OrderedAsyncProcessor
from orderkeeper.engine.slots import Slot, SlotTable
from orderkeeper.engine.subscriptions import SubscriberTable, Subscription

__all__ = [
    "OrderedAsyncProcessor",
    "Slot",
    "SlotTable",
    "SubscriberTable",
    "Subscription",
]
