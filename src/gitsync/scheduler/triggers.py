"""Trigger layer: decides when synchronization passes run."""

import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from watchfiles import Change, awatch

from ..config import SyncStrategy
from ..core import SyncOrchestrator, SyncResult
from ..storage import StorageUnavailable, is_hidden
from ..utils.logging import get_logger


INTERVAL_JOB_ID = "gitsync_interval"


class SchedulerError(Exception):
    """Raised when trigger operations fail."""
    pass


class SyncTriggerManager:
    """Runs passes on save events, on an interval, or only on request.

    The file watcher runs in every mode so that ``dirty`` flags stay current;
    only the ``save`` strategy also starts a pass for each batch of events.
    Watching begins once ``mark_ready()`` is called, so files that already
    exist at start-up do not produce create events.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        strategy: SyncStrategy = SyncStrategy.MANUAL,
        interval_minutes: int = 1,
        debounce_ms: int = 1600,
        watch: bool = True
    ):
        """Initialize trigger manager.

        Args:
            orchestrator: Orchestrator passes are delegated to
            strategy: One of save, interval, manual
            interval_minutes: Pass period for the interval strategy
            debounce_ms: File event batching window
            watch: Whether to watch the local tree for edits
        """
        self.orchestrator = orchestrator
        self.strategy = SyncStrategy(strategy)
        self.interval_minutes = interval_minutes
        self.debounce_ms = debounce_ms
        self.watch = watch
        self.logger = get_logger(self.__class__.__name__)

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 30
            }
        )
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed, EVENT_JOB_MISSED)

        self._ready = asyncio.Event()
        self._stop_watching = asyncio.Event()
        self._watch_task: Optional[asyncio.Task] = None
        self._pass_tasks: Set[asyncio.Task] = set()
        self.stats: Dict[str, Any] = {
            "passes_triggered": 0,
            "passes_skipped": 0,
            "events_handled": 0,
            "last_result": None
        }

    @classmethod
    def from_settings(cls, settings, orchestrator: SyncOrchestrator) -> "SyncTriggerManager":
        return cls(
            orchestrator,
            strategy=settings.sync.strategy,
            interval_minutes=settings.sync.interval_minutes,
            debounce_ms=settings.sync.watch_debounce_ms
        )

    @property
    def local_root(self) -> Path:
        return self.orchestrator.local.resolve(self.orchestrator.mapper.local_root)

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def start(self):
        """Start the scheduler, the interval job and the (deferred) watcher."""
        if self.scheduler.running:
            self.logger.warning("Trigger manager is already running")
            return

        self.scheduler.start()
        if self.strategy == SyncStrategy.INTERVAL:
            self.start_interval(self.interval_minutes)

        if self.watch:
            self._stop_watching.clear()
            self._watch_task = asyncio.create_task(self._watch())

        self.logger.info(
            "Trigger manager started",
            strategy=self.strategy.value,
            interval_minutes=self.interval_minutes if self.strategy == SyncStrategy.INTERVAL else None,
            watching=self.watch
        )

    def mark_ready(self) -> None:
        """Signal that start-up is complete and file events may be handled."""
        self._ready.set()

    async def stop(self):
        """Stop all triggers and wait for an in-flight pass to finish."""
        self.stop_interval()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        self._stop_watching.set()
        if self._watch_task:
            # The watcher may still be waiting for readiness.
            self._watch_task.cancel()
            await asyncio.gather(self._watch_task, return_exceptions=True)
            self._watch_task = None

        if self._pass_tasks:
            await asyncio.gather(*self._pass_tasks, return_exceptions=True)

        self.logger.info("Trigger manager stopped")

    def start_interval(self, minutes: int) -> None:
        """Schedule a pass every ``minutes``, replacing any previous interval."""
        if minutes < 1:
            raise SchedulerError("Sync interval must be at least 1 minute")

        self.interval_minutes = minutes
        job = self.scheduler.add_job(
            func=self._run_scheduled_pass,
            trigger=IntervalTrigger(minutes=minutes),
            id=INTERVAL_JOB_ID,
            name="Interval sync",
            replace_existing=True
        )
        self.logger.info("Sync interval started", minutes=minutes, next_run=job.next_run_time)

    def stop_interval(self) -> bool:
        """Cancel future interval passes; a running pass is not aborted."""
        if self.scheduler.get_job(INTERVAL_JOB_ID) is None:
            return False
        self.scheduler.remove_job(INTERVAL_JOB_ID)
        self.logger.info("Sync interval stopped")
        return True

    def restart_interval(self, minutes: Optional[int] = None) -> None:
        self.stop_interval()
        self.start_interval(minutes or self.interval_minutes)

    def get_status(self) -> Dict[str, Any]:
        job = self.scheduler.get_job(INTERVAL_JOB_ID) if self.scheduler.running else None
        return {
            "strategy": self.strategy.value,
            "ready": self.is_ready,
            "watching": self._watch_task is not None and not self._watch_task.done(),
            "interval_active": job is not None,
            "next_run": job.next_run_time.isoformat() if job and job.next_run_time else None,
            "pass_running": self.orchestrator.is_running,
            **self.stats
        }

    async def trigger(self, reason: str = "manual") -> SyncResult:
        """Run a pass now; skipped if one is already running."""
        self.logger.debug("Sync triggered", reason=reason)
        result = await self.orchestrator.sync()

        if result.skipped:
            self.stats["passes_skipped"] += 1
        else:
            self.stats["passes_triggered"] += 1
            self.stats["last_result"] = result.to_dict()
        return result

    async def _run_scheduled_pass(self):
        # Shutting the scheduler down must not cancel a running pass.
        task = asyncio.get_running_loop().create_task(self.trigger("interval"))
        self._pass_tasks.add(task)
        task.add_done_callback(self._pass_done)

    def _pass_done(self, task: asyncio.Task):
        self._pass_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Triggered sync pass crashed", error=str(task.exception()))

    def watch_filter(self, change: Change, path: str) -> bool:
        """Only visible files under the content folder are of interest."""
        try:
            relative = Path(path).relative_to(self.orchestrator.local.root).as_posix()
        except ValueError:
            return False
        return not is_hidden(relative)

    async def _watch(self):
        await self._ready.wait()

        root = self.local_root
        root.mkdir(parents=True, exist_ok=True)
        self.logger.info("Watching local tree", path=str(root))

        async for changes in awatch(
            root,
            watch_filter=self.watch_filter,
            debounce=self.debounce_ms,
            stop_event=self._stop_watching,
            recursive=True
        ):
            await self.handle_changes(changes)

    async def handle_changes(self, changes: Iterable[Tuple[Change, str]]) -> int:
        """Process one batch of file events.

        Deletions are left to the next diff. In save mode a pass starts only
        when some event left local work behind: a dirty record, an untracked
        file, or a path whose state could not be recorded. Events whose
        content matches the record, such as those of the pass's own
        downloads, start nothing. Returns the number of records newly
        marked dirty.
        """
        marked = 0
        relevant = 0
        pending = 0
        for change, path in changes:
            if change == Change.deleted:
                continue
            relevant += 1

            local_path = self.orchestrator.local.relative(path)
            try:
                if await self.orchestrator.local_file_changed(local_path):
                    marked += 1
                if self.orchestrator.needs_sync(local_path):
                    pending += 1
            except (OSError, StorageUnavailable) as e:
                self.logger.error("Failed to record local change", local_path=local_path, error=str(e))
                pending += 1

        self.stats["events_handled"] += relevant

        if pending and self.strategy == SyncStrategy.SAVE:
            await self.trigger("save")

        return marked

    def _job_error(self, event):
        self.logger.error("Scheduled job failed", job_id=event.job_id, error=str(event.exception))

    def _job_missed(self, event):
        self.logger.warning(
            "Scheduled job missed",
            job_id=event.job_id,
            scheduled_run_time=event.scheduled_run_time
        )
