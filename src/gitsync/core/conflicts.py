"""Conflict cases and the resolver contract.

A resolver is any async callable taking the list of conflict cases of one
pass and returning one decision per case, in the same order: ``True`` keeps
the remote version, ``False`` keeps the local one.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from ..storage import FileMetadata
from ..utils.logging import get_logger


class SyncEngineError(Exception):
    """Base class for synchronization engine errors."""
    pass


class ConflictResolutionIncomplete(SyncEngineError):
    """Raised when a resolver does not return exactly one decision per case."""

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Conflict resolver returned {received} decisions for {expected} conflicts"
        )
        self.expected = expected
        self.received = received


class ConflictKind(str, Enum):
    MODIFIED = "modified"
    DELETED_LOCALLY = "deleted_locally"
    DELETED_REMOTELY = "deleted_remotely"
    UNTRACKED = "untracked"


@dataclass
class ConflictCase:
    """Both sides changed a file since its last synchronization.

    ``remote`` describes the remote version (fingerprint None if deleted
    remotely) and ``local`` the stored record (fingerprint None if the file
    was never synchronized).
    """

    local_path: str
    remote: FileMetadata
    local: FileMetadata
    kind: ConflictKind = ConflictKind.MODIFIED

    def describe(self) -> str:
        return f"{self.local_path} ({self.kind.value})"


ConflictResolver = Callable[[List[ConflictCase]], Awaitable[List[bool]]]


async def prefer_remote(cases: List[ConflictCase]) -> List[bool]:
    return [True] * len(cases)


async def prefer_local(cases: List[ConflictCase]) -> List[bool]:
    return [False] * len(cases)


def resolver_for_policy(policy: str) -> ConflictResolver:
    """Return the fixed resolver for a ``remote``/``local`` policy value."""
    value = getattr(policy, "value", policy)
    if value == "remote":
        return prefer_remote
    if value == "local":
        return prefer_local
    raise ValueError(f"Unknown conflict policy: {policy}")


def check_decisions(cases: List[ConflictCase], decisions: List[bool]) -> List[bool]:
    decisions = list(decisions)
    if len(decisions) != len(cases):
        raise ConflictResolutionIncomplete(len(cases), len(decisions))
    return decisions


class ConflictBatch:
    """One submitted batch awaiting decisions."""

    def __init__(self, cases: List[ConflictCase]):
        self.cases = list(cases)
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, decisions: List[bool]) -> None:
        """Deliver decisions; a wrong count fails the waiting pass."""
        if self._future.done():
            raise RuntimeError("Conflict batch already resolved")
        try:
            self._future.set_result(check_decisions(self.cases, decisions))
        except ConflictResolutionIncomplete as e:
            self._future.set_exception(e)
            raise

    def cancel(self) -> None:
        if not self._future.done():
            self._future.cancel()

    async def wait(self) -> List[bool]:
        return await self._future


class PendingConflictQueue:
    """Resolver that hands conflicts to another component and waits for answers.

    The orchestrator awaits the queue as a resolver; a UI or CLI prompt takes
    batches with ``next_batch()`` and answers them with ``batch.resolve()``.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._batches: asyncio.Queue = asyncio.Queue()
        self.logger = get_logger(self.__class__.__name__)

    def pending(self) -> int:
        return self._batches.qsize()

    async def submit(self, cases: List[ConflictCase]) -> List[bool]:
        batch = ConflictBatch(cases)
        await self._batches.put(batch)

        self.logger.info("Conflicts awaiting resolution", count=len(cases))

        try:
            if self.timeout is None:
                return await batch.wait()
            return await asyncio.wait_for(batch.wait(), self.timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Conflict resolution timed out", count=len(cases))
            raise ConflictResolutionIncomplete(len(cases), 0)
        finally:
            batch.cancel()

    async def next_batch(self) -> ConflictBatch:
        return await self._batches.get()

    async def __call__(self, cases: List[ConflictCase]) -> List[bool]:
        return await self.submit(cases)
