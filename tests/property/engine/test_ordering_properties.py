# tests/property/engine/test_ordering_properties.py
"""Property-based tests for publish ordering and exactly-once delivery.

Key invariants:
- Slot indices are 0..N-1 in submit order
- No output is delivered twice to the same subscription
- Submission order: release order always matches submit order
- Completion order: release order always matches completion order
- Completion fires exactly once, last, and only when every slot is settled
- STALL: nothing at or after the first failed slot is ever published

Testing approach:
- Hypothesis draws a random completion order (and optional failures)
- ManualExecutor resolves futures in exactly that order on the test thread
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from orderkeeper import FailurePolicy, OrderedAsyncProcessor
from orderkeeper.engine.slots import SlotTable
from tests.helpers.executors import ManualExecutor
from tests.helpers.observers import RecordingObserver


def _identity(x: int) -> int:
    return x


def _run(
    n: int,
    order: list[int],
    failed: set[int],
    maintain_order: bool,
    failure_policy: FailurePolicy = FailurePolicy.STALL,
) -> tuple[OrderedAsyncProcessor[int, int], RecordingObserver, list[int]]:
    executor = ManualExecutor()
    processor = OrderedAsyncProcessor(_identity, maintain_order, failure_policy=failure_policy, executor=executor)
    recorder = RecordingObserver()
    processor.subscribe(recorder)

    indices = [processor.submit(i) for i in range(n)]
    processor.complete()

    for idx in order:
        if idx in failed:
            executor.fail(idx, ValueError(f"fail-{idx}"))
        else:
            executor.run(idx)

    return processor, recorder, indices


class TestIndexAssignmentProperties:
    @given(n=st.integers(min_value=0, max_value=40))
    @settings(max_examples=50)
    def test_indices_dense_in_call_order(self, n: int) -> None:
        """Property: N submits yield exactly 0..N-1."""
        _, _, indices = _run(n, [], set(), maintain_order=True)

        assert indices == list(range(n))


class TestSubmissionOrderProperties:
    @given(n=st.integers(min_value=1, max_value=30), data=st.data())
    @settings(max_examples=100)
    def test_random_completion_order_publishes_in_submission_order(self, n: int, data: st.DataObject) -> None:
        """Property: any completion order publishes 0..N-1 in order, then completes."""
        order = data.draw(st.permutations(list(range(n))))

        processor, recorder, _ = _run(n, order, set(), maintain_order=True)

        assert recorder.values == list(range(n))
        assert recorder.events[-1] == ("completed", None)
        assert recorder.completed_count == 1
        assert processor.published_count == n

    @given(n=st.integers(min_value=1, max_value=30), data=st.data())
    @settings(max_examples=100)
    def test_published_prefix_is_contiguous_mid_stream(self, n: int, data: st.DataObject) -> None:
        """Property: after any partial completion, published outputs are exactly a prefix."""
        order = data.draw(st.permutations(list(range(n))))
        cut = data.draw(st.integers(min_value=0, max_value=n))

        _, recorder, _ = _run(n, order[:cut], set(), maintain_order=True)

        done = set(order[:cut])
        expected_prefix = 0
        while expected_prefix in done:
            expected_prefix += 1
        assert recorder.values == list(range(expected_prefix))

    @given(n=st.integers(min_value=2, max_value=20), data=st.data())
    @settings(max_examples=100)
    def test_stall_publishes_nothing_past_first_failure(self, n: int, data: st.DataObject) -> None:
        """Property: under STALL, outputs stop just before the lowest failed slot."""
        order = data.draw(st.permutations(list(range(n))))
        failed = data.draw(st.sets(st.integers(min_value=0, max_value=n - 1), min_size=1))

        _, recorder, _ = _run(n, order, failed, maintain_order=True, failure_policy=FailurePolicy.STALL)

        assert recorder.values == list(range(min(failed)))
        assert len(recorder.errors) == len(failed)
        assert recorder.completed_count == 0

    @given(n=st.integers(min_value=1, max_value=20), data=st.data())
    @settings(max_examples=100)
    def test_skip_publishes_every_success_in_order(self, n: int, data: st.DataObject) -> None:
        """Property: under SKIP, all successful outputs are published in order and the stream completes."""
        order = data.draw(st.permutations(list(range(n))))
        failed = data.draw(st.sets(st.integers(min_value=0, max_value=n - 1)))

        _, recorder, _ = _run(n, order, failed, maintain_order=True, failure_policy=FailurePolicy.SKIP)

        assert recorder.values == [i for i in range(n) if i not in failed]
        assert sorted(e.slot_index for e in recorder.errors) == sorted(failed)  # type: ignore[attr-defined]
        assert recorder.completed_count == 1
        assert recorder.events[-1] == ("completed", None)


class TestCompletionOrderProperties:
    @given(n=st.integers(min_value=1, max_value=30), data=st.data())
    @settings(max_examples=100)
    def test_publish_order_equals_completion_order(self, n: int, data: st.DataObject) -> None:
        """Property: in completion-order mode outputs follow the completion order exactly."""
        order = data.draw(st.permutations(list(range(n))))

        _, recorder, _ = _run(n, order, set(), maintain_order=False)

        assert recorder.values == order
        assert recorder.completed_count == 1

    @given(n=st.integers(min_value=1, max_value=30), data=st.data())
    @settings(max_examples=100)
    def test_no_output_delivered_twice(self, n: int, data: st.DataObject) -> None:
        """Property: every successful output is delivered exactly once."""
        order = data.draw(st.permutations(list(range(n))))
        failed = data.draw(st.sets(st.integers(min_value=0, max_value=n - 1)))

        _, recorder, _ = _run(n, order, failed, maintain_order=False, failure_policy=FailurePolicy.SKIP)

        assert sorted(recorder.values) == sorted(set(range(n)) - failed)
        assert len(recorder.values) == len(set(recorder.values))


class TestSlotTableConservation:
    @given(n=st.integers(min_value=1, max_value=30), maintain_order=st.booleans(), data=st.data())
    @settings(max_examples=100)
    def test_counts_conserved(self, n: int, maintain_order: bool, data: st.DataObject) -> None:
        """Property: submitted == completed + failed + pending and published <= completed at every step."""
        table: SlotTable[int, int] = SlotTable(maintain_order=maintain_order)
        for i in range(n):
            table.append(i)

        for idx in data.draw(st.permutations(list(range(n)))):
            table.record_output(idx, idx)
            assert table.submitted_count == table.completed_count + table.failed_count + table.pending_count
            assert table.published_count <= table.completed_count

        assert table.published_count == n
        assert table.all_settled
