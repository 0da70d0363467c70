"""Persisted mapping from local path to last-known synchronization state.

The store keeps every record in memory and writes changes through to the
metadata database in a single transaction per ``save()`` call. Readers of
the database therefore see each file either in its state before a save or
fully after it, never a half-written record.
"""

import asyncio
from typing import Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .database import DatabaseManager
from .models import FileMetadata, FileMetadataModel, FileStatus
from ..utils.logging import get_logger


class StorageUnavailable(Exception):
    """Raised when durable metadata storage cannot be read or written."""
    pass


class MetadataStore:
    """In-memory FileMetadata map with a load/save lifecycle."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_logger(self.__class__.__name__)

        self._records: Dict[str, FileMetadata] = {}
        # local_path -> record to upsert, or None to delete
        self._pending: Dict[str, Optional[FileMetadata]] = {}
        self._save_lock = asyncio.Lock()

    async def load(self) -> Dict[str, FileMetadata]:
        """Load all records from durable storage.

        Returns:
            The loaded map, empty if nothing was ever persisted

        Raises:
            StorageUnavailable: If the database cannot be read
        """
        loop = asyncio.get_running_loop()
        try:
            records = await loop.run_in_executor(None, self._read_all)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Failed to load metadata: {e}") from e

        self._records = {record.local_path: record for record in records}
        self._pending.clear()

        self.logger.info("Metadata loaded", tracked_files=len(self._records))
        return dict(self._records)

    def get(self, local_path: str) -> Optional[FileMetadata]:
        """Return a copy of the record, or None if never synchronized."""
        record = self._records.get(local_path)
        return record.copy() if record else None

    def set(self, local_path: str, record: FileMetadata) -> None:
        if record.local_path != local_path:
            record = record.copy(local_path=local_path)
        self._records[local_path] = record.copy()
        self._pending[local_path] = record.copy()

    def remove(self, local_path: str) -> bool:
        if local_path not in self._records:
            return False
        del self._records[local_path]
        self._pending[local_path] = None
        return True

    def mark_dirty(self, local_path: str) -> bool:
        """Flag a tracked file as locally modified.

        Returns:
            True if a record changed, False if untracked or already dirty
        """
        record = self._records.get(local_path)
        if record is None or record.dirty:
            return False
        self.set(local_path, record.copy(dirty=True))
        return True

    def status(self, local_path: str) -> FileStatus:
        record = self._records.get(local_path)
        if record is None:
            return FileStatus.UNTRACKED
        if record.dirty:
            return FileStatus.OUTDATED
        return FileStatus.UP_TO_DATE

    def records(self) -> List[FileMetadata]:
        return [record.copy() for record in self._records.values()]

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending)

    def __contains__(self, local_path: str) -> bool:
        return local_path in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)

    async def save(self) -> int:
        """Persist all pending mutations in one transaction.

        Returns:
            Number of rows written or deleted

        Raises:
            StorageUnavailable: If the write fails; pending changes are kept
        """
        async with self._save_lock:
            if not self._pending:
                return 0

            snapshot = dict(self._pending)
            self._pending.clear()

            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._write, snapshot)
            except SQLAlchemyError as e:
                # Newer mutations made while writing take precedence.
                for local_path, record in snapshot.items():
                    self._pending.setdefault(local_path, record)
                raise StorageUnavailable(f"Failed to save metadata: {e}") from e

            self.logger.debug("Metadata saved", changes=len(snapshot))
            return len(snapshot)

    def _read_all(self) -> List[FileMetadata]:
        with self.db_manager.session_scope() as session:
            rows = session.query(FileMetadataModel).all()
            return [row.to_metadata() for row in rows]

    def _write(self, changes: Dict[str, Optional[FileMetadata]]) -> None:
        with self.db_manager.session_scope() as session:
            for local_path, record in changes.items():
                row = session.get(FileMetadataModel, local_path)
                if record is None:
                    if row is not None:
                        session.delete(row)
                    continue

                if row is None:
                    row = FileMetadataModel(local_path=local_path)
                    session.add(row)
                row.remote_path = record.remote_path
                row.content_fingerprint = record.content_fingerprint
                row.dirty = record.dirty
