"""Adaptive batch splitting for LLM calls that fail as a whole."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_DEPTH = 4

ExhaustedHandler = Callable[[List[T], BaseException], List[R]]


def splitting_depth(item_count: int) -> int:
    """Depth limit that lets a batch of ``item_count`` halve down to single items."""
    return math.ceil(math.log2(max(1, item_count))) + 2


async def run_with_circuit_breaker(
    items: Sequence[T],
    work: Callable[[List[T]], Awaitable[List[R]]],
    *,
    max_depth: Optional[int] = None,
    on_exhausted: Optional[ExhaustedHandler] = None,
) -> List[R]:
    """Run ``work`` on ``items``, halving failing batches until they succeed.

    The first call covers all items at depth 1. A failing batch with more than
    one item is split in two (the left half takes the extra item) and both
    halves are retried one level deeper. Sibling batches of one level run
    concurrently. Results are concatenated in original item order.

    ``max_depth`` is a floor: the depth limit is never below
    ``ceil(log2(len(items))) + 2``, so any batch can be halved down to single
    items. A batch that fails at the depth limit or that cannot be split
    further is exhausted: its error is re-raised unless ``on_exhausted`` is
    given, in which case that handler's return value stands in for the
    batch's results.
    """
    if not items:
        return []
    depth_limit = max(
        int(max_depth) if max_depth is not None else DEFAULT_MAX_DEPTH,
        splitting_depth(len(items)),
    )
    results: Dict[int, List[R]] = {}
    pending: List[Tuple[int, List[T]]] = [(0, list(items))]
    depth = 1

    while pending:
        outcomes = await asyncio.gather(
            *(work(batch) for _, batch in pending), return_exceptions=True
        )
        next_level: List[Tuple[int, List[T]]] = []
        for (offset, batch), outcome in zip(pending, outcomes):
            if not isinstance(outcome, BaseException):
                results[offset] = list(outcome)
                continue
            if isinstance(outcome, (asyncio.CancelledError, KeyboardInterrupt)):
                raise outcome
            if len(batch) <= 1 or depth >= depth_limit:
                LOGGER.error(
                    "Batch of %d item(s) still failing at depth %d: %s", len(batch), depth, outcome
                )
                if on_exhausted is None:
                    raise outcome
                results[offset] = list(on_exhausted(batch, outcome))
                continue
            mid = math.ceil(len(batch) / 2)
            LOGGER.warning(
                "Batch of %d item(s) failed at depth %d, splitting: %s", len(batch), depth, outcome
            )
            next_level.append((offset, batch[:mid]))
            next_level.append((offset + mid, batch[mid:]))
        pending = next_level
        depth += 1

    merged: List[R] = []
    for offset in sorted(results):
        merged.extend(results[offset])
    return merged
