"""Observer protocol for receiving published outputs.

An observer is anything with on_next/on_error/on_completed. The processor
never inherits from or registers a base class; structural typing is enough.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class Observer[T](Protocol):
    """Receiver of published outputs.

    Call discipline:
        - on_next() once per published output, in publish order
        - on_error() once per failed slot (or forwarded upstream error)
        - on_completed() at most once, always as the last notification

    Callbacks run on whichever thread dispatches the notification and must
    not assume they run on the thread that called submit().
    """

    def on_next(self, value: T) -> None:
        """Receive one published output."""
        ...

    def on_error(self, error: Exception) -> None:
        """Receive a processing failure."""
        ...

    def on_completed(self) -> None:
        """Receive the terminal completion notification."""
        ...


@dataclass(frozen=True)
class CallbackObserver[T]:
    """Observer built from plain callables.

    Missing on_error/on_completed callbacks are ignored.

    Example:
        processor.subscribe(CallbackObserver(next_fn=results.append))
    """

    next_fn: Callable[[T], None]
    error_fn: Callable[[Exception], None] | None = None
    completed_fn: Callable[[], None] | None = None

    def on_next(self, value: T) -> None:
        self.next_fn(value)

    def on_error(self, error: Exception) -> None:
        if self.error_fn is not None:
            self.error_fn(error)

    def on_completed(self) -> None:
        if self.completed_fn is not None:
            self.completed_fn()
