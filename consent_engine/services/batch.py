"""
Batch execution helpers shared by the consent jobs.

Per-record work runs concurrently up to a bounded worker count. A wall-clock
budget stops the job from *starting* new records once it is spent; records
already in flight finish their single atomic write.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from consent_engine.middleware.logging import request_id_var

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class _Deferred:
    def __repr__(self) -> str:
        return "DEFERRED"


# Result slot for records that were not started because the budget ran out
DEFERRED = _Deferred()


class JobBudget:
    """Monotonic wall-clock budget for one job run."""

    def __init__(self, timeout_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.timeout_seconds = timeout_seconds
        self.deadline = clock() + timeout_seconds

    @property
    def exhausted(self) -> bool:
        return self._clock() >= self.deadline


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
    budget: JobBudget,
) -> list[R | _Deferred]:
    """
    Run `worker` over `items` with at most `concurrency` in flight.

    Results keep the order of `items`. Items still waiting for a slot when
    the budget is exhausted are returned as DEFERRED without being started.
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def _run(item: T) -> R | _Deferred:
        async with semaphore:
            if budget.exhausted:
                return DEFERRED
            return await worker(item)

    return list(await asyncio.gather(*(_run(item) for item in items)))


def start_job_run(job_name: str) -> str:
    """Tag subsequent log records of this task with a fresh run id."""
    run_id = f"{job_name}-{uuid.uuid4().hex[:12]}"
    request_id_var.set(run_id)
    return run_id
