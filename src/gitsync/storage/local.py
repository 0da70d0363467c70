"""Local file tree access.

All paths are POSIX-style and relative to the local root. Blocking file
I/O runs in the default executor so the event loop keeps serving network
transfers while files are read or written.
"""

import asyncio
import hashlib
import os
from functools import partial
from pathlib import Path, PurePosixPath
from typing import List, Union

from ..utils.logging import get_logger


def git_blob_sha(content: bytes) -> str:
    """Compute the fingerprint GitHub reports for a file with this content."""
    header = f"blob {len(content)}\0".encode()
    return hashlib.sha1(header + content).hexdigest()


def is_hidden(relative_path: str) -> bool:
    """Dot-files and anything under a dot-directory are never synchronized."""
    return any(part.startswith(".") for part in PurePosixPath(relative_path).parts)


class LocalStorage:
    """File operations on the local tree."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser().resolve()
        self.logger = get_logger(self.__class__.__name__)

    def resolve(self, relative_path: str) -> Path:
        path = (self.root / relative_path).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Path escapes local root: {relative_path}")
        return path

    def relative(self, absolute_path: Union[str, Path]) -> str:
        """Convert an absolute path under the root to a relative POSIX path."""
        return Path(absolute_path).resolve().relative_to(self.root).as_posix()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def exists(self, relative_path: str) -> bool:
        return await self._run(self.resolve(relative_path).exists)

    async def is_file(self, relative_path: str) -> bool:
        return await self._run(self.resolve(relative_path).is_file)

    async def create_folder(self, relative_path: str) -> None:
        """Create a folder and its parents; no-op if it exists."""
        await self._run(partial(self.resolve(relative_path).mkdir, parents=True, exist_ok=True))

    async def read_binary(self, relative_path: str) -> bytes:
        return await self._run(self.resolve(relative_path).read_bytes)

    async def write_binary(self, relative_path: str, content: bytes) -> None:
        """Create or overwrite a file, creating missing parent folders."""
        await self._run(self._write_file, self.resolve(relative_path), content)

    async def delete(self, relative_path: str) -> bool:
        """Delete a file and prune parent folders left empty.

        Returns:
            False if the file did not exist
        """
        return await self._run(self._delete_file, self.resolve(relative_path))

    async def fingerprint(self, relative_path: str) -> str:
        return git_blob_sha(await self.read_binary(relative_path))

    async def list_files(self, relative_dir: str = "") -> List[str]:
        """List non-hidden files under a folder, recursively."""
        return await self._run(self._walk, relative_dir)

    def _write_file(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.gitsync-tmp")
        tmp_path.write_bytes(content)
        os.replace(tmp_path, path)

    def _delete_file(self, path: Path) -> bool:
        if not path.is_file():
            return False
        path.unlink()

        parent = path.parent
        while parent != self.root and self.root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
        return True

    def _walk(self, relative_dir: str) -> List[str]:
        base = self.resolve(relative_dir)
        if not base.is_dir():
            return []

        files = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = [d for d in dirnames if not is_hidden(d)]
            for filename in filenames:
                if is_hidden(filename):
                    continue
                files.append(Path(dirpath, filename).relative_to(self.root).as_posix())
        return sorted(files)
