"""Performance package: bounded concurrency for transfers."""

from .worker_pool import TaskOutcome, WorkerPool, raise_first_error

__all__ = [
    "TaskOutcome",
    "WorkerPool",
    "raise_first_error"
]
