"""Bounded-concurrency batch execution with per-item outcomes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

from .models import OperationError, ResponseMetadata

log = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass
class Outcome(Generic[ItemT, ResultT]):
    item: ItemT
    value: ResultT | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_bounded(
    items: Iterable[ItemT],
    worker: Callable[[ItemT], Awaitable[ResultT]],
    concurrency: int,
) -> list[Outcome[ItemT, ResultT]]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    Outcomes are returned in input order. A failing item is recorded in its
    outcome and never cancels the others.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run(item: ItemT) -> Outcome[ItemT, ResultT]:
        async with semaphore:
            try:
                return Outcome(item=item, value=await worker(item))
            except Exception as e:
                log.warning("Batch item %s failed: %s", item, e)
                return Outcome(item=item, error=e)

    return list(await asyncio.gather(*(run(item) for item in items)))


def collect_errors(outcomes: list[Outcome[str, ResultT]], operation: str) -> list[OperationError]:
    """Convert failed outcomes keyed by note path into error records."""
    return [
        OperationError(path=outcome.item, operation=operation, message=str(outcome.error))
        for outcome in outcomes
        if outcome.error is not None
    ]


def summarize(outcomes: list[Outcome[ItemT, ResultT]]) -> ResponseMetadata:
    errors = sum(1 for outcome in outcomes if outcome.error is not None)
    return ResponseMetadata(
        total_processed=len(outcomes),
        success_count=len(outcomes) - errors,
        error_count=errors,
    )
