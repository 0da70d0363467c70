"""Shared fixtures: an in-memory remote repository and temporary storage."""

import asyncio
import posixpath
from typing import Dict, List, Optional, Set

import pytest

from gitsync.api_clients import BaseRemoteClient, EntryType, RemoteEntry, TransportError
from gitsync.storage import LocalStorage, MetadataStore, git_blob_sha, init_database


class FakeRemoteClient(BaseRemoteClient):
    """Repository contents held in a dict of path -> bytes."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        super().__init__()
        self.files: Dict[str, bytes] = dict(files or {})

        self.listed: List[str] = []
        self.downloaded: List[str] = []
        self.uploaded: List[Dict] = []
        self.deleted: List[Dict] = []

        self.fail_downloads: Set[str] = set()
        self.fail_uploads: Set[str] = set()
        self.fail_listings: Set[str] = set()

        # Cleared by tests that need a listing to stall
        self.listing_gate = asyncio.Event()
        self.listing_gate.set()

    def sha(self, path: str) -> str:
        return git_blob_sha(self.files[path])

    async def list_directory(self, path: str) -> List[RemoteEntry]:
        await self.listing_gate.wait()
        path = path.strip("/")
        self.listed.append(path)
        if path in self.fail_listings:
            raise TransportError(f"listing failed for {path}", status=500)

        prefix = f"{path}/" if path else ""
        entries: Dict[str, RemoteEntry] = {}
        for file_path in sorted(self.files):
            if not file_path.startswith(prefix):
                continue
            rest = file_path[len(prefix):]
            name, _, remainder = rest.partition("/")
            child = posixpath.join(path, name) if path else name
            if remainder:
                entries.setdefault(child, RemoteEntry(path=child, name=name, type=EntryType.DIR))
            else:
                entries[child] = RemoteEntry(
                    path=child,
                    name=name,
                    type=EntryType.FILE,
                    content_fingerprint=self.sha(file_path),
                    download_locator=f"mem://{file_path}",
                    size=len(self.files[file_path])
                )
        return list(entries.values())

    async def download(self, entry: RemoteEntry) -> bytes:
        if entry.path in self.fail_downloads:
            raise TransportError(f"download failed for {entry.path}", status=502)
        self.downloaded.append(entry.path)
        return self.files[entry.path]

    async def upload(self, path, content, message, fingerprint=None) -> str:
        if path in self.fail_uploads:
            raise TransportError(f"upload failed for {path}", status=502)
        if path in self.files and fingerprint != self.sha(path):
            raise TransportError(f"sha mismatch for {path}", status=409)
        self.files[path] = content
        self.uploaded.append({"path": path, "message": message, "sha": fingerprint})
        return git_blob_sha(content)

    async def delete(self, path, message, fingerprint) -> None:
        self.deleted.append({"path": path, "message": message, "sha": fingerprint})
        self.files.pop(path, None)

    @property
    def transfers(self) -> int:
        return len(self.downloaded) + len(self.uploaded) + len(self.deleted)

    def reset_calls(self):
        self.listed.clear()
        self.downloaded.clear()
        self.uploaded.clear()
        self.deleted.clear()


@pytest.fixture
def remote():
    return FakeRemoteClient()


@pytest.fixture
def db_manager(tmp_path):
    manager = init_database(f"sqlite:///{tmp_path / 'meta' / 'gitsync.db'}")
    yield manager
    manager.close()


@pytest.fixture
def store(db_manager):
    return MetadataStore(db_manager)


@pytest.fixture
def local(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    return LocalStorage(root)
