from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol, Sequence, TypeVar

from contextual_rag.services.rag.types import BatchConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchScheduler(Protocol):
    async def run(
        self,
        items: Sequence[T],
        operation: Callable[[T], Awaitable[R]],
    ) -> list[R]: ...


class FixedBatchScheduler:
    """Runs operations in fixed-size concurrent groups with a pause between groups.

    At most ``batch_size`` operations are in flight at once. Results come back
    in input order whatever order the operations finish in. If an operation
    raises, the error propagates once its group has settled and no later group
    is started.
    """

    def __init__(
        self,
        config: BatchConfig,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._sleep = sleep

    @property
    def config(self) -> BatchConfig:
        return self._config

    async def run(
        self,
        items: Sequence[T],
        operation: Callable[[T], Awaitable[R]],
    ) -> list[R]:
        batch_size = self._config.batch_size
        batch_count = (len(items) + batch_size - 1) // batch_size
        results: list[R] = []

        for batch_number, start in enumerate(range(0, len(items), batch_size), start=1):
            batch = items[start : start + batch_size]
            logger.info("Processing batch %d/%d (%d items)", batch_number, batch_count, len(batch))

            settled = await asyncio.gather(
                *(operation(item) for item in batch),
                return_exceptions=True,
            )
            for outcome in settled:
                if isinstance(outcome, BaseException):
                    raise outcome
            results.extend(settled)

            if batch_number < batch_count and self._config.inter_batch_delay > 0:
                await self._sleep(self._config.inter_batch_delay)

        return results


async def run_batched(
    items: Sequence[T],
    operation: Callable[[T], Awaitable[R]],
    config: BatchConfig,
) -> list[R]:
    return await FixedBatchScheduler(config).run(items, operation)
