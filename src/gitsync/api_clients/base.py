"""Base remote client interface and common functionality."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..utils.logging import get_logger


class EntryType:
    """Entry types reported by a remote directory listing."""
    DIR = "dir"
    FILE = "file"


@dataclass
class RemoteEntry:
    """One node of a remote directory listing."""

    path: str
    name: str
    type: str
    content_fingerprint: Optional[str] = None
    download_locator: Optional[str] = None
    size: Optional[int] = None

    @property
    def is_dir(self) -> bool:
        return self.type == EntryType.DIR

    @property
    def is_file(self) -> bool:
        return self.type == EntryType.FILE


class BaseRemoteClient(ABC):
    """Abstract base class for remote tree clients."""

    def __init__(self, **kwargs):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def list_directory(self, path: str) -> List[RemoteEntry]:
        """List the entries directly under a remote path.

        Args:
            path: Path relative to the repository root, "" for the root

        Returns:
            Entries of the directory, empty if it does not exist
        """
        pass

    @abstractmethod
    async def download(self, entry: RemoteEntry) -> bytes:
        """Fetch the raw content of a file entry."""
        pass

    @abstractmethod
    async def upload(
        self,
        path: str,
        content: bytes,
        message: str,
        fingerprint: Optional[str] = None
    ) -> str:
        """Create or replace a remote file.

        Args:
            path: Remote path relative to the repository root
            content: Full file content
            message: Commit message
            fingerprint: Current remote fingerprint when replacing a file

        Returns:
            The new content fingerprint
        """
        pass

    @abstractmethod
    async def delete(self, path: str, message: str, fingerprint: str) -> None:
        """Delete a remote file."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class TransportError(Exception):
    """Raised when a network call or HTTP request fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitError(TransportError):
    """Raised when the remote API rate limit is exceeded."""

    def __init__(self, message: str, retry_after: Optional[int] = None, status: Optional[int] = None):
        super().__init__(message, status=status)
        self.retry_after = retry_after


class AuthenticationError(TransportError):
    """Raised when the remote API rejects the credentials."""
    pass
