"""Remote tree traversal and download of changed files."""

import posixpath
from typing import Dict, List, Optional, Tuple

from ..api_clients.base import BaseRemoteClient, RemoteEntry
from ..performance import TaskOutcome, WorkerPool, raise_first_error
from ..storage import FileMetadata, LocalStorage, MetadataStore, is_hidden
from ..utils.logging import get_logger, log_async_execution_time


def join_path(*parts: str) -> str:
    cleaned = [part.strip("/") for part in parts if part and part.strip("/")]
    return posixpath.join(*cleaned) if cleaned else ""


class PathMapper:
    """Maps repository paths to local paths and back.

    ``remote_root`` is the synchronized subpath of the repository and
    ``local_root`` the folder (relative to the local tree root) mirroring it.
    """

    def __init__(self, remote_root: str, local_root: str):
        self.remote_root = remote_root.strip("/")
        self.local_root = local_root.strip("/")

    @staticmethod
    def _strip_prefix(path: str, prefix: str) -> Optional[str]:
        if not prefix:
            return path
        if path == prefix:
            return ""
        if path.startswith(prefix + "/"):
            return path[len(prefix) + 1:]
        return None

    def to_local(self, remote_path: str) -> str:
        relative = self._strip_prefix(remote_path.strip("/"), self.remote_root)
        if relative is None:
            raise ValueError(f"{remote_path} is outside {self.remote_root!r}")
        return join_path(self.local_root, relative)

    def to_remote(self, local_path: str) -> str:
        relative = self._strip_prefix(local_path.strip("/"), self.local_root)
        if relative is None:
            raise ValueError(f"{local_path} is outside {self.local_root!r}")
        return join_path(self.remote_root, relative)

    def contains_local(self, local_path: str) -> bool:
        return self._strip_prefix(local_path.strip("/"), self.local_root) not in (None, "")


class RemoteTreeFetcher:
    """Lists remote content and transfers changed files into the local tree."""

    def __init__(
        self,
        client: BaseRemoteClient,
        store: MetadataStore,
        local: LocalStorage,
        pool: Optional[WorkerPool] = None
    ):
        self.client = client
        self.store = store
        self.local = local
        self.pool = pool or WorkerPool()
        self.logger = get_logger(self.__class__.__name__)

    async def _walk(self, remote_path: str, local_root: str) -> List[Tuple[RemoteEntry, str]]:
        """Collect every file under ``remote_path`` with its destination path.

        Directories of one level are listed through the pool; destinations are
        built by appending each directory name to its parent's destination,
        which preserves the remote tree shape. Entries that are neither files
        nor directories (symlinks, submodules) are skipped, and so are hidden
        entries, matching the local scan.
        """
        files: List[Tuple[RemoteEntry, str]] = []
        level = [(remote_path.strip("/"), local_root.strip("/"))]

        while level:
            outcomes = await self.pool.run(
                (remote_dir, (lambda remote_dir=remote_dir: self.client.list_directory(remote_dir)))
                for remote_dir, _ in level
            )
            # An incomplete listing would look like remote deletions.
            raise_first_error(outcomes)

            next_level = []
            for (remote_dir, local_dir), outcome in zip(level, outcomes):
                for entry in outcome.value:
                    if is_hidden(entry.name):
                        continue
                    if entry.is_dir:
                        next_level.append((entry.path, join_path(local_dir, entry.name)))
                    elif entry.is_file:
                        files.append((entry, join_path(local_dir, entry.name)))
                    else:
                        self.logger.debug("Skipping unsupported entry", path=entry.path, type=entry.type)
            level = next_level

        return files

    @log_async_execution_time
    async def list_tree(self, remote_path: str, local_root: str) -> Dict[str, RemoteEntry]:
        """List all remote files without transferring content.

        Returns:
            Mapping of destination local path to remote entry
        """
        files = await self._walk(remote_path, local_root)
        return {destination: entry for entry, destination in files}

    async def download(self, entry: RemoteEntry, local_path: str) -> FileMetadata:
        """Transfer one file and return its post-sync metadata.

        Does not touch the store; callers decide when to commit.
        """
        content = await self.client.download(entry)
        await self.local.write_binary(local_path, content)

        self.logger.debug("Downloaded file", remote_path=entry.path, local_path=local_path)

        return FileMetadata(
            local_path=local_path,
            remote_path=entry.path,
            content_fingerprint=entry.content_fingerprint,
            dirty=False
        )

    @log_async_execution_time
    async def reconcile(self, remote_path: str, local_root: str) -> List[TaskOutcome[FileMetadata]]:
        """Recursively bring remote content into the local tree.

        Files whose recorded fingerprint equals the remote one are skipped.
        Every downloaded file is committed to the store immediately.

        Returns:
            One outcome per transferred file; failures do not stop siblings
        """
        files = await self._walk(remote_path, local_root)

        pending = []
        for entry, destination in files:
            record = self.store.get(destination)
            if record and record.content_fingerprint == entry.content_fingerprint:
                continue
            pending.append((entry, destination))

        async def transfer(entry: RemoteEntry, destination: str) -> FileMetadata:
            metadata = await self.download(entry, destination)
            self.store.set(destination, metadata)
            await self.store.save()
            return metadata

        outcomes = await self.pool.run(
            (destination, (lambda entry=entry, destination=destination: transfer(entry, destination)))
            for entry, destination in pending
        )

        failed = [outcome for outcome in outcomes if not outcome.ok]
        self.logger.info(
            "Remote tree reconciled",
            remote_path=remote_path or "/",
            local_root=local_root or "/",
            files=len(files),
            downloaded=len(outcomes) - len(failed),
            failed=len(failed)
        )

        return outcomes
