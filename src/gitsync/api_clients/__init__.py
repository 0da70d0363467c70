"""Remote clients package."""

from .base import (
    BaseRemoteClient,
    EntryType,
    RemoteEntry,
    TransportError,
    RateLimitError,
    AuthenticationError
)

from .github import GitHubClient

__all__ = [
    # Base classes and exceptions
    "BaseRemoteClient",
    "EntryType",
    "RemoteEntry",
    "TransportError",
    "RateLimitError",
    "AuthenticationError",

    # Client implementations
    "GitHubClient"
]
