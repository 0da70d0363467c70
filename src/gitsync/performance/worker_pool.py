"""Bounded worker pool for I/O-bound fan-out."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from ..utils.logging import get_logger


T = TypeVar('T')


@dataclass
class TaskOutcome(Generic[T]):
    """Result of one pooled task: a value on success or the raised error."""

    key: str
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkerPool:
    """Runs batches of async tasks through a task queue and a fixed set of workers.

    A failing task never cancels its siblings; its exception is captured in
    the task's ``TaskOutcome``.
    """

    def __init__(self, max_concurrent: int = 8):
        """Initialize worker pool.

        Args:
            max_concurrent: Number of workers draining the queue
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.logger = get_logger(self.__class__.__name__)

    async def run(
        self,
        tasks: Iterable[Tuple[str, Callable[[], Awaitable[T]]]]
    ) -> List[TaskOutcome[T]]:
        """Execute keyed task factories and return outcomes in input order.

        Args:
            tasks: (key, coroutine factory) pairs

        Returns:
            One TaskOutcome per task, in the order given
        """
        tasks = list(tasks)
        if not tasks:
            return []

        queue: asyncio.Queue = asyncio.Queue()
        for index, (key, factory) in enumerate(tasks):
            queue.put_nowait((index, key, factory))

        outcomes: Dict[int, TaskOutcome[T]] = {}

        async def worker():
            while True:
                try:
                    index, key, factory = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    outcomes[index] = TaskOutcome(key=key, value=await factory())
                except Exception as e:
                    outcomes[index] = TaskOutcome(key=key, error=e)
                finally:
                    queue.task_done()

        worker_count = min(self.max_concurrent, len(tasks))
        await asyncio.gather(*(worker() for _ in range(worker_count)))

        failed = sum(1 for outcome in outcomes.values() if not outcome.ok)
        self.logger.debug(
            "Batch execution completed",
            total_tasks=len(tasks),
            workers=worker_count,
            failed=failed
        )

        return [outcomes[index] for index in range(len(tasks))]

    async def map(
        self,
        func: Callable[[Any], Awaitable[T]],
        items: Iterable[Any],
        key: Callable[[Any], str] = str
    ) -> List[TaskOutcome[T]]:
        """Apply an async function to every item through the pool."""
        return await self.run((key(item), (lambda item=item: func(item))) for item in items)


def raise_first_error(outcomes: List[TaskOutcome[Any]]) -> None:
    """Re-raise the first captured error, for callers that need all-or-nothing."""
    for outcome in outcomes:
        if outcome.error is not None:
            raise outcome.error
