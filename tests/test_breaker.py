"""Tests for the batch-splitting circuit breaker."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from repoaudit.scan.breaker import run_with_circuit_breaker, splitting_depth


class TestRunWithCircuitBreaker:
    """Test run_with_circuit_breaker function."""

    def test_success_single_call(self) -> None:
        calls: List[List[int]] = []

        async def work(batch: List[int]) -> List[int]:
            calls.append(batch)
            return [item * 10 for item in batch]

        result = asyncio.run(run_with_circuit_breaker([1, 2, 3], work))

        assert result == [10, 20, 30]
        assert calls == [[1, 2, 3]]

    def test_splits_until_single_items(self) -> None:
        """Fails for any batch longer than one; still returns every item in order."""
        calls: List[List[int]] = []

        async def work(batch: List[int]) -> List[int]:
            calls.append(batch)
            if len(batch) > 1:
                raise ValueError("too big")
            return batch

        result = asyncio.run(run_with_circuit_breaker([1, 2, 3, 4], work, max_depth=4))

        assert result == [1, 2, 3, 4]
        assert any(len(batch) == 1 for batch in calls)
        assert calls[:3] == [[1, 2, 3, 4], [1, 2], [3, 4]]

    def test_left_half_takes_extra_item(self) -> None:
        calls: List[List[int]] = []

        async def work(batch: List[int]) -> List[int]:
            calls.append(batch)
            if len(batch) == 3:
                raise ValueError("odd")
            return batch

        assert asyncio.run(run_with_circuit_breaker([1, 2, 3], work)) == [1, 2, 3]
        assert calls == [[1, 2, 3], [1, 2], [3]]

    def test_order_independent_of_completion(self) -> None:
        async def work(batch: List[int]) -> List[int]:
            if len(batch) > 1:
                raise ValueError("split")
            await asyncio.sleep(0.01 * (5 - batch[0]))
            return batch

        assert asyncio.run(run_with_circuit_breaker([1, 2, 3, 4], work)) == [1, 2, 3, 4]

    def test_exhausted_raises(self) -> None:
        async def work(batch: List[int]) -> List[int]:
            raise ValueError("always")

        with pytest.raises(ValueError, match="always"):
            asyncio.run(run_with_circuit_breaker([1, 2, 3, 4], work, max_depth=2))

    def test_large_batch_reaches_single_items_with_default_depth(self) -> None:
        """Nine items need more halvings than the default depth allows."""
        calls: List[List[int]] = []

        async def work(batch: List[int]) -> List[int]:
            calls.append(batch)
            if len(batch) > 1:
                raise ValueError("too big")
            return batch

        items = list(range(9))
        result = asyncio.run(run_with_circuit_breaker(items, work))

        assert result == items
        assert sorted(batch[0] for batch in calls if len(batch) == 1) == items

    def test_small_max_depth_is_a_floor(self) -> None:
        """A configured depth below what halving needs is raised to it."""
        calls: List[List[int]] = []

        async def work(batch: List[int]) -> List[int]:
            calls.append(batch)
            if len(batch) > 1:
                raise ValueError("too big")
            return batch

        assert asyncio.run(run_with_circuit_breaker([1, 2, 3, 4], work, max_depth=1)) == [1, 2, 3, 4]
        assert calls[0] == [1, 2, 3, 4]

    @pytest.mark.parametrize(
        ("item_count", "expected"), [(1, 2), (2, 3), (4, 4), (8, 5), (9, 6)]
    )
    def test_splitting_depth(self, item_count: int, expected: int) -> None:
        assert splitting_depth(item_count) == expected

    def test_on_exhausted_replaces_results(self) -> None:
        exhausted: List[List[int]] = []

        async def work(batch: List[int]) -> List[int]:
            if 2 in batch:
                raise ValueError("bad item")
            return batch

        def on_exhausted(batch: List[int], error: BaseException) -> List[int]:
            exhausted.append(batch)
            return []

        result = asyncio.run(
            run_with_circuit_breaker([1, 2, 3, 4], work, on_exhausted=on_exhausted)
        )

        assert result == [1, 3, 4]
        assert exhausted == [[2]]

    def test_cancellation_propagates(self) -> None:
        async def work(batch: List[int]) -> List[int]:
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(
                run_with_circuit_breaker([1, 2], work, on_exhausted=lambda batch, err: [])
            )

    def test_empty_input(self) -> None:
        async def work(batch: List[int]) -> List[int]:
            raise AssertionError("not called")

        assert asyncio.run(run_with_circuit_breaker([], work)) == []
