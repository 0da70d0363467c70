"""Sync triggers: interval scheduling and local file events."""

from .triggers import INTERVAL_JOB_ID, SchedulerError, SyncTriggerManager

__all__ = [
    "INTERVAL_JOB_ID",
    "SchedulerError",
    "SyncTriggerManager"
]
