"""Subscriber table and disposable subscription handles."""

from __future__ import annotations

import itertools
from collections.abc import Callable
from types import TracebackType

from orderkeeper.contracts.observer import Observer


class SubscriberTable[T]:
    """Mapping from subscription id to observer.

    The same observer may be subscribed more than once; each subscription
    gets its own id and receives its own copy of every notification.

    Thread Safety:
        NOT thread-safe. The processor serializes access with its lock.
    """

    def __init__(self) -> None:
        self._observers: dict[int, Observer[T]] = {}
        self._ids = itertools.count()

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self._observers

    def add(self, observer: Observer[T]) -> int:
        """Register an observer and return its subscription id."""
        subscription_id = next(self._ids)
        self._observers[subscription_id] = observer
        return subscription_id

    def remove(self, subscription_id: int) -> bool:
        """Remove a subscription. Returns False if it was already gone."""
        return self._observers.pop(subscription_id, None) is not None

    def snapshot(self) -> list[tuple[int, Observer[T]]]:
        """Copy of the current subscriptions, safe to iterate without the lock."""
        return list(self._observers.items())


class Subscription:
    """Handle returned by subscribe().

    dispose() removes the observer from future notifications. It is
    idempotent and never affects notifications already dispatched.

    Usage:
        with processor.subscribe(observer):
            ...  # observer receives outputs here
        # observer is unsubscribed
    """

    def __init__(self, subscription_id: int, unsubscribe: Callable[[int], None]) -> None:
        self._id = subscription_id
        self._unsubscribe = unsubscribe
        self._closed = False

    @property
    def id(self) -> int:
        return self._id

    @property
    def closed(self) -> bool:
        return self._closed

    def dispose(self) -> None:
        """Unsubscribe the observer. Repeated calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe(self._id)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return f"Subscription(id={self._id}, closed={self._closed})"
