"""Metadata models for tracked files."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base


Base = declarative_base()


class FileStatus(str, Enum):
    """Synchronization status of a local path as shown to the user."""
    UNTRACKED = "untracked"
    OUTDATED = "outdated"
    UP_TO_DATE = "up-to-date"


@dataclass
class FileMetadata:
    """Last-known synchronization state of one tracked file."""

    local_path: str
    remote_path: str
    content_fingerprint: Optional[str]
    dirty: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage or display."""
        return {
            "local_path": self.local_path,
            "remote_path": self.remote_path,
            "content_fingerprint": self.content_fingerprint,
            "dirty": self.dirty,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileMetadata":
        return cls(
            local_path=data["local_path"],
            remote_path=data["remote_path"],
            content_fingerprint=data.get("content_fingerprint"),
            dirty=bool(data.get("dirty", False)),
        )

    def copy(self, **changes) -> "FileMetadata":
        return replace(self, **changes)


# SQLAlchemy Models (Database Tables)

class FileMetadataModel(Base):
    """One row per tracked local path."""

    __tablename__ = "file_metadata"

    local_path = Column(String(1024), primary_key=True)
    remote_path = Column(Text, nullable=False)
    content_fingerprint = Column(String(64), nullable=True)
    dirty = Column(Boolean, default=False, nullable=False)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def to_metadata(self) -> FileMetadata:
        return FileMetadata(
            local_path=self.local_path,
            remote_path=self.remote_path,
            content_fingerprint=self.content_fingerprint,
            dirty=bool(self.dirty),
        )

    def __repr__(self):
        return f"<FileMetadataModel(local_path='{self.local_path}', dirty={self.dirty})>"
