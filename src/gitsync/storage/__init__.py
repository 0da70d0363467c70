"""Storage package: tracked-file metadata and the local file tree."""

from .database import DatabaseManager, init_database
from .local import LocalStorage, git_blob_sha, is_hidden
from .metadata_store import MetadataStore, StorageUnavailable
from .models import FileMetadata, FileMetadataModel, FileStatus

__all__ = [
    "DatabaseManager",
    "init_database",

    "LocalStorage",
    "git_blob_sha",
    "is_hidden",

    "MetadataStore",
    "StorageUnavailable",

    "FileMetadata",
    "FileMetadataModel",
    "FileStatus"
]
