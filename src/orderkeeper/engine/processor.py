# src/orderkeeper/engine/processor.py
"""Concurrent processor that publishes outputs in completion or submission order.

Each submitted input is processed on an executor. When its future
finishes, the processor records the result, decides under its lock which
slots can be published, and queues the resulting notifications in an
outbox. Observer callbacks run outside the lock; only one thread drains
the outbox at a time, so observers see notifications in exactly the order
they were decided.

Thread Safety:
    One lock covers slot append (submit), completion recording and the
    publish decision (worker threads), subscriber add/remove, and the
    outbox. Observer callbacks never run while the lock is held. Each
    notification carries the subscriber set captured when it was queued,
    so a subscribe or dispose during delivery only affects later publishes.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from functools import partial
from threading import Event, Lock
from types import TracebackType
from typing import Any

from orderkeeper.contracts.enums import FailurePolicy, NotificationKind
from orderkeeper.contracts.errors import ProcessingCancelledError, ProcessingError, UsageError
from orderkeeper.contracts.observer import CallbackObserver, Observer
from orderkeeper.core.config import ProcessorSettings
from orderkeeper.core.logging import get_logger
from orderkeeper.engine.slots import SlotTable
from orderkeeper.engine.subscriptions import SubscriberTable, Subscription


@dataclass(frozen=True)
class _Notification:
    """One decided notification waiting in the outbox.

    observers is the subscriber set at the moment the notification was
    decided; later subscribe/dispose calls do not change who receives it.
    """

    kind: NotificationKind
    value: Any = None
    slot_index: int | None = None
    observers: tuple[tuple[int, Observer[Any]], ...] = ()


class OrderedAsyncProcessor[I, O]:
    """Processes inputs concurrently and publishes outputs to observers.

    Outputs are published either as soon as each one completes
    (maintain_order=False) or in the order the inputs were submitted
    (maintain_order=True). Every output is delivered at most once per
    subscription, and the completion notification is delivered exactly
    once, after complete() was called and every slot is settled.

    A processing failure is reported to observers as a ProcessingError.
    With FailurePolicy.STALL (the default) the failed slot blocks the
    submission-order sweep forever and the stream never completes; with
    FailurePolicy.SKIP the failed slot is passed over.

    The processor is itself an Observer of its inputs, so processors can
    be chained: upstream.subscribe(downstream).

    The processor never limits how many slots are in flight; submit()
    hands every input to the executor at once. How many process_fn calls
    actually run at the same time is the executor's worker count. The
    ThreadPoolExecutor created when no executor is passed defaults to
    min(32, os.cpu_count() + 4) workers; pass max_workers (or an executor
    of your own) when more inputs should run concurrently.

    Usage:
        processor = OrderedAsyncProcessor(fetch_page, maintain_order=True)
        processor.subscribe(CallbackObserver(next_fn=print))

        for url in urls:
            processor.submit(url)  # never waits for processing
        processor.complete()

        processor.wait_for_completion(timeout=30)
        processor.shutdown()
    """

    def __init__(
        self,
        process_fn: Callable[[I], O],
        maintain_order: bool = False,
        *,
        failure_policy: FailurePolicy = FailurePolicy.STALL,
        executor: Executor | None = None,
        max_workers: int | None = None,
        name: str = "ordered-processor",
    ) -> None:
        """Initialize processor.

        Args:
            process_fn: Processing operation, called once per input on the executor
            maintain_order: Publish in submission order instead of completion order
            failure_policy: What a failed slot does to the sweep and to completion
            executor: Executor to run process_fn on. If None, the processor
                creates (and owns) a ThreadPoolExecutor.
            max_workers: Worker count for the owned executor
            name: Name used in logs and worker thread names

        Raises:
            ValueError: If max_workers is given together with an executor
        """
        if executor is not None and max_workers is not None:
            raise ValueError("max_workers only applies when the processor creates its own executor")

        self._process_fn = process_fn
        self._maintain_order = maintain_order
        self._failure_policy = FailurePolicy(failure_policy)
        self._name = name

        if executor is None:
            self._executor: Executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
            self._owns_executor = True
        else:
            self._executor = executor
            self._owns_executor = False

        # Single lock protects all state below
        self._lock = Lock()
        self._slots: SlotTable[I, O] = SlotTable(maintain_order, self._failure_policy)
        self._subscribers: SubscriberTable[O] = SubscriberTable()
        self._outbox: deque[_Notification] = deque()
        self._dispatching = False
        self._input_completed = False
        self._completion_queued = False
        self._shutdown = False
        self._observer_failures = 0

        # Set after the completion notification has been delivered
        self._finished = Event()

        self._log = get_logger(__name__, processor=name)

    @classmethod
    def from_settings(
        cls,
        process_fn: Callable[[I], O],
        settings: ProcessorSettings,
        executor: Executor | None = None,
    ) -> OrderedAsyncProcessor[I, O]:
        """Build a processor from validated settings.

        settings.max_workers is ignored when an executor is supplied.
        """
        return cls(
            process_fn,
            settings.maintain_order,
            failure_policy=settings.failure_policy,
            executor=executor,
            max_workers=settings.max_workers if executor is None else None,
            name=settings.name,
        )

    # --- Configuration (immutable) ---

    @property
    def process_fn(self) -> Callable[[I], O]:
        return self._process_fn

    @property
    def maintain_order(self) -> bool:
        return self._maintain_order

    @property
    def failure_policy(self) -> FailurePolicy:
        return self._failure_policy

    @property
    def name(self) -> str:
        return self._name

    # --- Submission ---

    def submit(self, item: I) -> int:
        """Submit an input for processing.

        Assigns the next slot index and launches processing without
        waiting for it.

        Args:
            item: Input passed unchanged to process_fn

        Returns:
            The slot index assigned to this input

        Raises:
            UsageError: If complete() was already called or the processor is shut down
        """
        with self._lock:
            if self._input_completed:
                raise UsageError("submission after stream completion")
            if self._shutdown:
                raise UsageError(f"Processor '{self._name}' is shut down")
            slot = self._slots.append(item)

        index = slot.index
        try:
            future = self._executor.submit(self._process_fn, item)
        except RuntimeError as e:
            # Executor refused the task (e.g. it was shut down externally)
            self._record_failure(index, e)
            raise

        with self._lock:
            slot.future = future

        # Runs immediately in this thread if the future is already done
        future.add_done_callback(partial(self._on_processing_finished, index))
        self._log.debug("Slot submitted", slot_index=index)
        return index

    def complete(self) -> None:
        """Signal that no more inputs will be submitted.

        The completion notification is sent once every submitted slot is
        settled, which may be right here. Calling complete() again is a no-op.
        """
        with self._lock:
            repeated = self._input_completed
            self._input_completed = True
            should_dispatch = not repeated and self._enqueue(self._completion_notifications())

        if repeated:
            self._log.debug("complete() called again, ignoring")
        elif should_dispatch:
            self._dispatch()

    # --- Observer of upstream inputs ---

    def on_next(self, value: I) -> None:
        """Upstream input; same as submit()."""
        self.submit(value)

    def on_error(self, error: Exception) -> None:
        """Forward an upstream error to every subscriber unchanged.

        Dropped once the completion notification has been queued, since
        completion is always the last notification an observer sees.
        """
        with self._lock:
            dropped = self._completion_queued
            should_dispatch = not dropped and self._enqueue([_Notification(NotificationKind.ERROR, error)])

        if dropped:
            self._log.debug("Upstream error after stream completion, dropping", error=str(error), error_type=type(error).__name__)
        elif should_dispatch:
            self._dispatch()

    def on_completed(self) -> None:
        """Upstream end of input; same as complete()."""
        self.complete()

    # --- Subscription ---

    def subscribe(self, observer: Observer[O]) -> Subscription:
        """Register an observer for future outputs and the completion notification.

        Outputs published before this call are not replayed.

        Returns:
            Subscription whose dispose() removes the observer
        """
        with self._lock:
            subscription_id = self._subscribers.add(observer)
        return Subscription(subscription_id, self._unsubscribe)

    def subscribe_callbacks(
        self,
        on_next: Callable[[O], None],
        on_error: Callable[[Exception], None] | None = None,
        on_completed: Callable[[], None] | None = None,
    ) -> Subscription:
        """Subscribe plain callables instead of an Observer object."""
        return self.subscribe(CallbackObserver(on_next, on_error, on_completed))

    def _unsubscribe(self, subscription_id: int) -> None:
        with self._lock:
            self._subscribers.remove(subscription_id)

    # --- Completion handling (worker threads) ---

    def _on_processing_finished(self, index: int, future: Future[O]) -> None:
        """Done callback for one slot's future. Runs once per slot."""
        if future.cancelled():
            self._record_failure(index, None)
            return
        error = future.exception()
        if error is not None:
            self._record_failure(index, error)
            return
        self._record_output(index, future.result())

    def _record_output(self, index: int, output: O) -> None:
        with self._lock:
            released = self._slots.record_output(index, output)
            notifications = [_Notification(NotificationKind.NEXT, slot.output, slot.index) for slot in released]
            notifications.extend(self._completion_notifications())
            should_dispatch = self._enqueue(notifications)

        if should_dispatch:
            self._dispatch()

    def _record_failure(self, index: int, cause: BaseException | None) -> None:
        """Fail a slot. cause=None means the slot's future was cancelled."""
        with self._lock:
            slot = self._slots[index]
            error: ProcessingError
            if cause is None:
                error = ProcessingCancelledError(index, slot.item)
            else:
                error = ProcessingError(index, slot.item)
                error.__cause__ = cause
            released = self._slots.record_failure(index, error)

            notifications = [_Notification(NotificationKind.ERROR, error, index)]
            notifications.extend(_Notification(NotificationKind.NEXT, s.output, s.index) for s in released)
            notifications.extend(self._completion_notifications())
            should_dispatch = self._enqueue(notifications)

        self._log.warning(
            "Slot processing failed",
            slot_index=index,
            error=str(cause) if cause is not None else "cancelled",
            error_type=type(cause).__name__ if cause is not None else "CancelledError",
            failure_policy=str(self._failure_policy),
        )
        if should_dispatch:
            self._dispatch()

    def _completion_notifications(self) -> list[_Notification]:
        """Completion notification if it is due now (must hold _lock)."""
        if self._input_completed and not self._completion_queued and self._slots.all_settled:
            self._completion_queued = True
            return [_Notification(NotificationKind.COMPLETED)]
        return []

    # --- Dispatch ---

    def _enqueue(self, notifications: list[_Notification]) -> bool:
        """Append to the outbox (must hold _lock).

        Returns:
            True if the caller must drain the outbox after releasing the
            lock, False if another thread is already draining it.
        """
        if not notifications:
            return False
        observers = tuple(self._subscribers.snapshot())
        self._outbox.extend(replace(n, observers=observers) for n in notifications)
        if self._dispatching:
            return False
        self._dispatching = True
        return True

    def _dispatch(self) -> None:
        """Drain the outbox. Only the thread that claimed _dispatching runs this."""
        while True:
            with self._lock:
                if not self._outbox:
                    self._dispatching = False
                    return
                notification = self._outbox.popleft()

            try:
                self._deliver(notification)
            except BaseException:
                # KeyboardInterrupt and friends; let the next enqueue take over
                with self._lock:
                    self._dispatching = False
                raise

    def _deliver(self, notification: _Notification) -> None:
        """Deliver one notification to each captured observer with failure isolation."""
        for subscription_id, observer in notification.observers:
            try:
                if notification.kind is NotificationKind.NEXT:
                    observer.on_next(notification.value)
                elif notification.kind is NotificationKind.ERROR:
                    observer.on_error(notification.value)
                else:
                    observer.on_completed()
            except Exception as e:
                with self._lock:
                    self._observer_failures += 1
                self._log.warning(
                    "Observer callback failed",
                    subscription_id=subscription_id,
                    notification=str(notification.kind),
                    slot_index=notification.slot_index,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if notification.kind is NotificationKind.COMPLETED:
            self._log.info(
                "Stream completed",
                submitted=self.submitted_count,
                published=self.published_count,
                failed=self.failed_count,
            )
            self._finished.set()

    # --- Waiting and shutdown ---

    def wait_for_completion(self, timeout: float | None = None) -> bool:
        """Block until the completion notification has been delivered.

        Returns:
            True if the stream completed, False on timeout
        """
        return self._finished.wait(timeout)

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """Stop accepting inputs and release the executor.

        Args:
            wait: If True, wait for running processing to finish
                (only applies to an executor the processor created)
            cancel_pending: Cancel slots whose processing has not started.
                Cancelled slots are handled exactly like failed slots.
        """
        with self._lock:
            self._shutdown = True
            futures = [slot.future for slot in self._slots if slot.future is not None] if cancel_pending else []

        for future in futures:
            future.cancel()

        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> OrderedAsyncProcessor[I, O]:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    # --- Introspection ---

    @property
    def submitted_count(self) -> int:
        with self._lock:
            return self._slots.submitted_count

    @property
    def completed_count(self) -> int:
        """Slots whose processing succeeded (published or still buffered)."""
        with self._lock:
            return self._slots.completed_count

    @property
    def published_count(self) -> int:
        with self._lock:
            return self._slots.published_count

    @property
    def failed_count(self) -> int:
        with self._lock:
            return self._slots.failed_count

    @property
    def pending_count(self) -> int:
        """Slots whose processing has not finished yet."""
        with self._lock:
            return self._slots.pending_count

    @property
    def input_completed(self) -> bool:
        with self._lock:
            return self._input_completed

    @property
    def finished(self) -> bool:
        """True once the completion notification has been delivered."""
        return self._finished.is_set()

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of configuration and counters for monitoring."""
        with self._lock:
            published = self._slots.published_count
            return {
                "processor_config": {
                    "name": self._name,
                    "maintain_order": self._maintain_order,
                    "failure_policy": str(self._failure_policy),
                },
                "processor_stats": {
                    "submitted": self._slots.submitted_count,
                    "completed": self._slots.completed_count,
                    "published": published,
                    "failed": self._slots.failed_count,
                    "pending": self._slots.pending_count,
                    "next_publish_index": self._slots.next_publish_index,
                    "subscribers": len(self._subscribers),
                    "observer_failures": self._observer_failures,
                    "input_completed": self._input_completed,
                    "avg_buffer_wait_ms": (self._slots.total_buffer_wait_ms / published if published > 0 else 0.0),
                },
            }
