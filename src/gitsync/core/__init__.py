"""Core synchronization engine."""

from .conflicts import (
    ConflictBatch,
    ConflictCase,
    ConflictKind,
    ConflictResolutionIncomplete,
    ConflictResolver,
    PendingConflictQueue,
    SyncEngineError,
    prefer_local,
    prefer_remote,
    resolver_for_policy
)
from .fetcher import PathMapper, RemoteTreeFetcher
from .sync_engine import (
    Action,
    ChangeKind,
    SyncOrchestrator,
    SyncPhase,
    SyncResult,
    classify
)

__all__ = [
    "ConflictBatch",
    "ConflictCase",
    "ConflictKind",
    "ConflictResolutionIncomplete",
    "ConflictResolver",
    "PendingConflictQueue",
    "SyncEngineError",
    "prefer_local",
    "prefer_remote",
    "resolver_for_policy",

    "PathMapper",
    "RemoteTreeFetcher",

    "Action",
    "ChangeKind",
    "SyncOrchestrator",
    "SyncPhase",
    "SyncResult",
    "classify"
]
