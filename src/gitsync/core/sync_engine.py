"""Sync orchestrator: runs one synchronization pass at a time.

A pass moves through DIFFING, RESOLVING, APPLYING and COMMITTING. Only the
committing phase writes metadata, so a pass that fails earlier leaves every
record as it was before the pass started.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from ..api_clients.base import BaseRemoteClient, RemoteEntry, TransportError
from ..performance import WorkerPool
from ..storage import FileMetadata, FileStatus, LocalStorage, MetadataStore, StorageUnavailable, is_hidden
from ..utils.logging import get_logger, log_async_execution_time
from .conflicts import (
    ConflictCase,
    ConflictKind,
    ConflictResolver,
    SyncEngineError,
    check_decisions,
    prefer_remote,
    resolver_for_policy
)
from .fetcher import PathMapper, RemoteTreeFetcher


class SyncPhase(str, Enum):
    IDLE = "idle"
    DIFFING = "diffing"
    RESOLVING = "resolving"
    APPLYING = "applying"
    COMMITTING = "committing"
    FAILED = "failed"


class ChangeKind(str, Enum):
    """Classification of one path during diffing."""
    UNCHANGED = "unchanged"
    LOCAL_CHANGED = "local_changed"
    REMOTE_CHANGED = "remote_changed"
    CONFLICT = "conflict"
    REMOTE_DELETED = "remote_deleted"
    LOCAL_DELETED = "local_deleted"
    REMOTE_NEW = "remote_new"
    LOCAL_NEW = "local_new"


class Action(str, Enum):
    """What the applying phase does for a path."""
    NONE = "none"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    DELETE_LOCAL = "delete_local"
    DELETE_REMOTE = "delete_remote"
    ADOPT = "adopt"
    FORGET = "forget"


ACTION_FOR_KIND = {
    ChangeKind.UNCHANGED: Action.NONE,
    ChangeKind.LOCAL_CHANGED: Action.UPLOAD,
    ChangeKind.REMOTE_CHANGED: Action.DOWNLOAD,
    ChangeKind.REMOTE_DELETED: Action.DELETE_LOCAL,
    ChangeKind.LOCAL_DELETED: Action.DELETE_REMOTE,
    ChangeKind.REMOTE_NEW: Action.DOWNLOAD,
    ChangeKind.LOCAL_NEW: Action.UPLOAD,
}

# (remote wins, local wins) per conflict kind
RESOLUTION_ACTIONS = {
    ConflictKind.MODIFIED: (Action.DOWNLOAD, Action.UPLOAD),
    ConflictKind.DELETED_LOCALLY: (Action.DOWNLOAD, Action.DELETE_REMOTE),
    ConflictKind.DELETED_REMOTELY: (Action.DELETE_LOCAL, Action.UPLOAD),
    ConflictKind.UNTRACKED: (Action.DOWNLOAD, Action.UPLOAD),
}


def classify(
    record: Optional[FileMetadata],
    remote: Optional[RemoteEntry],
    local_exists: bool,
    local_fingerprint: Optional[str] = None
) -> Tuple[Optional[ChangeKind], Optional[ConflictKind]]:
    """Classify one path from its record, remote entry and local presence.

    ``local_fingerprint`` is only consulted for files present on both sides
    without a record. Returns ``(None, None)`` when the path was deleted on
    both sides and only its record remains.
    """
    if record is not None:
        remote_changed = remote is not None and remote.content_fingerprint != record.content_fingerprint

        if remote is not None and local_exists:
            if record.dirty and remote_changed:
                return ChangeKind.CONFLICT, ConflictKind.MODIFIED
            if record.dirty:
                return ChangeKind.LOCAL_CHANGED, None
            if remote_changed:
                return ChangeKind.REMOTE_CHANGED, None
            return ChangeKind.UNCHANGED, None

        if remote is not None:
            if remote_changed:
                return ChangeKind.CONFLICT, ConflictKind.DELETED_LOCALLY
            return ChangeKind.LOCAL_DELETED, None

        if local_exists:
            if record.dirty:
                return ChangeKind.CONFLICT, ConflictKind.DELETED_REMOTELY
            return ChangeKind.REMOTE_DELETED, None

        return None, None

    if remote is not None and local_exists:
        if local_fingerprint == remote.content_fingerprint:
            return ChangeKind.UNCHANGED, None
        return ChangeKind.CONFLICT, ConflictKind.UNTRACKED
    if remote is not None:
        return ChangeKind.REMOTE_NEW, None
    return ChangeKind.LOCAL_NEW, None


@dataclass
class PlannedChange:
    """Diffing result for one local path."""

    local_path: str
    kind: Optional[ChangeKind]
    record: Optional[FileMetadata] = None
    remote: Optional[RemoteEntry] = None
    conflict: Optional[ConflictCase] = None
    action: Action = Action.NONE


@dataclass
class SyncResult:
    """Summary of one synchronization pass."""

    phase: SyncPhase = SyncPhase.IDLE
    downloaded: int = 0
    uploaded: int = 0
    deleted_local: int = 0
    deleted_remote: int = 0
    unchanged: int = 0
    conflicts: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    error_message: Optional[str] = None
    duration: Optional[float] = None
    skipped: bool = False

    @property
    def transfers(self) -> int:
        return self.downloaded + self.uploaded + self.deleted_local + self.deleted_remote

    @property
    def success(self) -> bool:
        return not self.skipped and self.phase != SyncPhase.FAILED and not self.errors

    def count(self, action: Action) -> None:
        if action == Action.DOWNLOAD:
            self.downloaded += 1
        elif action == Action.UPLOAD:
            self.uploaded += 1
        elif action == Action.DELETE_LOCAL:
            self.deleted_local += 1
        elif action == Action.DELETE_REMOTE:
            self.deleted_remote += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "downloaded": self.downloaded,
            "uploaded": self.uploaded,
            "deleted_local": self.deleted_local,
            "deleted_remote": self.deleted_remote,
            "unchanged": self.unchanged,
            "conflicts": self.conflicts,
            "errors": dict(self.errors),
            "error_message": self.error_message,
            "duration": self.duration,
            "skipped": self.skipped,
        }


class SyncOrchestrator:
    """Reconciles the local content folder with the remote content path."""

    def __init__(
        self,
        client: BaseRemoteClient,
        store: MetadataStore,
        local: LocalStorage,
        remote_root: str = "",
        local_root: str = "",
        resolver: Optional[ConflictResolver] = None,
        max_concurrent: int = 8,
        commit_message: str = "Sync {path}"
    ):
        """Initialize orchestrator.

        Args:
            client: Remote client for listing and transfers
            store: Loaded metadata store
            local: Local tree access
            remote_root: Synchronized repository subpath, "" for the whole repository
            local_root: Local folder mirroring ``remote_root``
            resolver: Conflict resolver, remote wins when omitted
            max_concurrent: Worker count for listings and transfers
            commit_message: Commit message template, ``{path}`` is the remote path
        """
        self.client = client
        self.store = store
        self.local = local
        self.mapper = PathMapper(remote_root, local_root)
        self.resolver = resolver or prefer_remote
        self.commit_message = commit_message

        self.pool = WorkerPool(max_concurrent)
        self.fetcher = RemoteTreeFetcher(client, store, local, self.pool)

        self._run_lock = asyncio.Lock()
        self._phase = SyncPhase.IDLE
        self._modified_during_pass: Set[str] = set()
        self.last_result: Optional[SyncResult] = None

        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def from_settings(
        cls,
        settings,
        client: BaseRemoteClient,
        store: MetadataStore,
        local: LocalStorage,
        resolver: Optional[ConflictResolver] = None
    ) -> "SyncOrchestrator":
        sync = settings.sync
        return cls(
            client=client,
            store=store,
            local=local,
            remote_root=sync.remote_content_path,
            local_root=settings.local_content_path,
            resolver=resolver or resolver_for_policy(sync.conflict_policy),
            max_concurrent=sync.max_concurrent_transfers,
            commit_message=sync.commit_message
        )

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def _set_phase(self, phase: SyncPhase) -> None:
        self.logger.debug("Sync phase changed", previous=self._phase.value, phase=phase.value)
        self._phase = phase

    def status(self, local_path: str) -> FileStatus:
        return self.store.status(local_path.strip("/"))

    async def sync(self) -> SyncResult:
        """Run one full synchronization pass.

        Returns:
            The pass summary; ``skipped`` is set if another pass was running
        """
        if self._run_lock.locked():
            self.logger.info("Sync already in progress, skipping", phase=self._phase.value)
            return SyncResult(phase=self._phase, skipped=True)

        async with self._run_lock:
            start_time = time.monotonic()
            result = SyncResult()
            self._modified_during_pass.clear()

            self.logger.info(
                "Starting sync pass",
                remote_root=self.mapper.remote_root or "/",
                local_root=self.mapper.local_root or "/"
            )

            try:
                plan = await self._diff(result)
                await self._resolve(plan, result)
                applied = await self._apply(plan, result)
                await self._commit(applied)
                result.phase = SyncPhase.IDLE

            except (TransportError, StorageUnavailable, SyncEngineError, OSError, ValueError) as e:
                failed_phase = self._phase
                self._set_phase(SyncPhase.FAILED)
                result.phase = SyncPhase.FAILED
                result.error_message = str(e)
                self.logger.error(
                    "Sync pass failed",
                    failed_phase=failed_phase.value,
                    error=str(e),
                    error_type=type(e).__name__
                )

            finally:
                self._phase = SyncPhase.IDLE
                self._modified_during_pass.clear()
                result.duration = time.monotonic() - start_time

            self.last_result = result
            self.logger.info(
                "Sync pass completed",
                success=result.success,
                downloaded=result.downloaded,
                uploaded=result.uploaded,
                deleted_local=result.deleted_local,
                deleted_remote=result.deleted_remote,
                unchanged=result.unchanged,
                conflicts=result.conflicts,
                errors=len(result.errors),
                duration=f"{result.duration:.2f}s"
            )
            return result

    @log_async_execution_time
    async def pull(self) -> SyncResult:
        """Download-only reconcile of the remote content into the local folder."""
        if self._run_lock.locked():
            return SyncResult(phase=self._phase, skipped=True)

        async with self._run_lock:
            start_time = time.monotonic()
            result = SyncResult()
            try:
                outcomes = await self.fetcher.reconcile(self.mapper.remote_root, self.mapper.local_root)
                for outcome in outcomes:
                    if outcome.ok:
                        result.downloaded += 1
                    else:
                        result.errors[outcome.key] = str(outcome.error)
            except (TransportError, StorageUnavailable) as e:
                result.phase = SyncPhase.FAILED
                result.error_message = str(e)
                self.logger.error("Pull failed", error=str(e))
            finally:
                result.duration = time.monotonic() - start_time

            self.last_result = result
            return result

    async def local_file_changed(self, local_path: str) -> bool:
        """Record a local create/modify event for ``local_path``.

        Marks the record dirty when the file content differs from the
        recorded fingerprint. Untracked files are left to the next diff.

        Returns:
            True if the record was marked dirty
        """
        local_path = local_path.strip("/")
        if self.is_running:
            self._modified_during_pass.add(local_path)

        record = self.store.get(local_path)
        if record is None:
            return False

        try:
            fingerprint = await self.local.fingerprint(local_path)
        except FileNotFoundError:
            return False

        if fingerprint == record.content_fingerprint:
            return False

        changed = self.store.mark_dirty(local_path)
        if changed:
            await self.store.save()
            self.logger.debug("Marked file dirty", local_path=local_path)
        return changed

    def needs_sync(self, local_path: str) -> bool:
        """Whether ``local_path`` has local work for the next pass.

        True for dirty records and for untracked visible files in scope.
        """
        local_path = local_path.strip("/")
        record = self.store.get(local_path)
        if record is None:
            return self._in_scope(local_path) and not is_hidden(local_path)
        return record.dirty

    async def scan_local_changes(self) -> int:
        """Re-hash tracked files and mark those edited since the last pass.

        Catches edits made while no watcher was running.

        Returns:
            Number of records newly marked dirty
        """
        candidates = [
            record for record in self.store.records()
            if not record.dirty and self._in_scope(record.local_path)
        ]

        async def changed(record: FileMetadata) -> bool:
            if not await self.local.is_file(record.local_path):
                return False
            return await self.local.fingerprint(record.local_path) != record.content_fingerprint

        outcomes = await self.pool.map(changed, candidates, key=lambda record: record.local_path)

        marked = 0
        for outcome in outcomes:
            if not outcome.ok:
                self.logger.warning("Could not hash local file", local_path=outcome.key, error=str(outcome.error))
            elif outcome.value and self.store.mark_dirty(outcome.key):
                marked += 1

        if marked:
            await self.store.save()
        self.logger.info("Local scan completed", tracked_files=len(candidates), marked_dirty=marked)
        return marked

    def _in_scope(self, local_path: str) -> bool:
        return not self.mapper.local_root or self.mapper.contains_local(local_path)

    # Pass phases

    async def _diff(self, result: SyncResult) -> List[PlannedChange]:
        self._set_phase(SyncPhase.DIFFING)

        remote_files = await self.fetcher.list_tree(self.mapper.remote_root, self.mapper.local_root)
        local_files = set(await self.local.list_files(self.mapper.local_root))
        tracked = {path for path in self.store if self._in_scope(path)}

        paths = sorted(tracked | set(remote_files) | local_files)

        # Files on both sides without a record are compared by content.
        untracked_pairs = [
            path for path in paths
            if path not in tracked and path in remote_files and path in local_files
        ]
        hash_outcomes = await self.pool.map(self.local.fingerprint, untracked_pairs)
        local_fingerprints: Dict[str, str] = {}
        for outcome in hash_outcomes:
            if outcome.ok:
                local_fingerprints[outcome.key] = outcome.value
            else:
                result.errors[outcome.key] = f"Could not read local file: {outcome.error}"

        plan = []
        for path in paths:
            if path in result.errors:
                continue

            record = self.store.get(path)
            remote = remote_files.get(path)
            kind, conflict_kind = classify(record, remote, path in local_files, local_fingerprints.get(path))

            change = PlannedChange(local_path=path, kind=kind, record=record, remote=remote)
            if kind is None:
                change.action = Action.FORGET
            elif kind == ChangeKind.CONFLICT:
                change.conflict = self._conflict_case(path, record, remote, conflict_kind)
            elif kind == ChangeKind.UNCHANGED and record is None:
                change.action = Action.ADOPT
            else:
                change.action = ACTION_FOR_KIND[kind]
            plan.append(change)

        self.logger.info(
            "Diff completed",
            remote_files=len(remote_files),
            local_files=len(local_files),
            tracked_files=len(tracked),
            **self._summarize(plan)
        )
        return plan

    @staticmethod
    def _summarize(plan: List[PlannedChange]) -> Dict[str, int]:
        summary: Dict[str, int] = {}
        for change in plan:
            key = change.kind.value if change.kind else "forgotten"
            summary[key] = summary.get(key, 0) + 1
        return summary

    def _conflict_case(
        self,
        path: str,
        record: Optional[FileMetadata],
        remote: Optional[RemoteEntry],
        kind: ConflictKind
    ) -> ConflictCase:
        remote_path = remote.path if remote else record.remote_path
        remote_meta = FileMetadata(
            local_path=path,
            remote_path=remote_path,
            content_fingerprint=remote.content_fingerprint if remote else None,
            dirty=False
        )
        local_meta = record or FileMetadata(
            local_path=path,
            remote_path=remote_path,
            content_fingerprint=None,
            dirty=True
        )
        return ConflictCase(local_path=path, remote=remote_meta, local=local_meta, kind=kind)

    async def _resolve(self, plan: List[PlannedChange], result: SyncResult) -> None:
        self._set_phase(SyncPhase.RESOLVING)

        conflicted = [change for change in plan if change.conflict is not None]
        result.conflicts = len(conflicted)
        if not conflicted:
            return

        cases = [change.conflict for change in conflicted]
        self.logger.info("Resolving conflicts", count=len(cases), paths=[case.describe() for case in cases])

        decisions = check_decisions(cases, await self.resolver(cases))

        for change, prefer_remote_version in zip(conflicted, decisions):
            remote_action, local_action = RESOLUTION_ACTIONS[change.conflict.kind]
            change.action = remote_action if prefer_remote_version else local_action

    async def _apply(self, plan: List[PlannedChange], result: SyncResult) -> Dict[str, Optional[FileMetadata]]:
        """Run every transfer; returns the post-sync record of each successful path.

        A None value means the record is to be removed.
        """
        self._set_phase(SyncPhase.APPLYING)

        applied: Dict[str, Optional[FileMetadata]] = {}
        transfers = []
        for change in plan:
            if change.action == Action.NONE:
                result.unchanged += 1
            elif change.action == Action.ADOPT:
                result.unchanged += 1
                applied[change.local_path] = FileMetadata(
                    local_path=change.local_path,
                    remote_path=change.remote.path,
                    content_fingerprint=change.remote.content_fingerprint,
                    dirty=False
                )
            elif change.action == Action.FORGET:
                applied[change.local_path] = None
            else:
                transfers.append(change)

        outcomes = await self.pool.run(
            (change.local_path, (lambda change=change: self._apply_change(change)))
            for change in transfers
        )

        for change, outcome in zip(transfers, outcomes):
            if outcome.ok:
                applied[change.local_path] = outcome.value
                result.count(change.action)
            else:
                result.errors[change.local_path] = str(outcome.error)
                self.logger.warning(
                    "Failed to apply change",
                    local_path=change.local_path,
                    action=change.action.value,
                    error=str(outcome.error)
                )

        return applied

    async def _apply_change(self, change: PlannedChange) -> Optional[FileMetadata]:
        path = change.local_path

        if change.action == Action.DOWNLOAD:
            return await self.fetcher.download(change.remote, path)

        if change.action == Action.UPLOAD:
            if change.remote:
                remote_path = change.remote.path
            elif change.record:
                remote_path = change.record.remote_path
            else:
                remote_path = self.mapper.to_remote(path)
            content = await self.local.read_binary(path)
            fingerprint = await self.client.upload(
                remote_path,
                content,
                self.commit_message.format(path=remote_path),
                fingerprint=change.remote.content_fingerprint if change.remote else None
            )
            self.logger.debug("Uploaded file", local_path=path, remote_path=remote_path)
            return FileMetadata(
                local_path=path,
                remote_path=remote_path,
                content_fingerprint=fingerprint,
                dirty=False
            )

        if change.action == Action.DELETE_LOCAL:
            await self.local.delete(path)
            self.logger.debug("Deleted local file", local_path=path)
            return None

        if change.action == Action.DELETE_REMOTE:
            remote_path = change.remote.path
            await self.client.delete(
                remote_path,
                self.commit_message.format(path=remote_path),
                change.remote.content_fingerprint
            )
            self.logger.debug("Deleted remote file", remote_path=remote_path)
            return None

        raise SyncEngineError(f"Unexpected action {change.action} for {path}")

    async def _commit(self, applied: Dict[str, Optional[FileMetadata]]) -> None:
        self._set_phase(SyncPhase.COMMITTING)

        # Files edited while transferring keep their dirty flag.
        rechecked: Dict[str, bool] = {}
        for path in self._modified_during_pass:
            record = applied.get(path)
            if record is None or not await self.local.is_file(path):
                continue
            try:
                rechecked[path] = await self.local.fingerprint(path) != record.content_fingerprint
            except OSError as e:
                self.logger.warning("Could not re-check local file", local_path=path, error=str(e))
                rechecked[path] = True

        for path, record in applied.items():
            if record is None:
                self.store.remove(path)
            else:
                self.store.set(path, record.copy(dirty=rechecked.get(path, False)))

        written = await self.store.save()
        self.logger.debug("Pass committed", records=len(applied), written=written)
