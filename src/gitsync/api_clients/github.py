"""GitHub repository contents API client implementation."""

import base64
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from .base import (
    BaseRemoteClient,
    RemoteEntry,
    TransportError,
    RateLimitError,
    AuthenticationError
)
from ..utils.logging import log_async_execution_time


class GitHubClient(BaseRemoteClient):
    """Reads and writes files of one repository branch through the contents API."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        branch: str = "main",
        api_url: str = "https://api.github.com",
        api_version: str = "2022-11-28",
        timeout_seconds: int = 30,
        session: Optional[aiohttp.ClientSession] = None,
        **kwargs
    ):
        """Initialize GitHub client.

        Args:
            owner: Owner of the repository
            repo: Name of the repository
            token: Bearer token, treated as an opaque credential
            branch: Branch to read from and commit to
            api_url: Base API URL
            api_version: Value of the X-GitHub-Api-Version header
            timeout_seconds: Total timeout per request
            session: Optional pre-built session, mostly for tests
        """
        super().__init__(**kwargs)

        self.owner = owner
        self.repo = repo
        self.token = token
        self.branch = branch
        self.api_url = api_url.rstrip("/")
        self.api_version = api_version
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

        self.session = session
        self._owns_session = session is None

        self.logger.info(
            "GitHub client initialized",
            owner=owner,
            repo=repo,
            branch=branch
        )

    @classmethod
    def from_settings(cls, settings) -> "GitHubClient":
        github = settings.github
        return cls(
            owner=github.owner,
            repo=github.repo,
            token=github.token,
            branch=github.branch,
            api_url=github.api_url,
            api_version=github.api_version,
            timeout_seconds=github.timeout_seconds
        )

    def headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "X-GitHub-Api-Version": self.api_version,
        }

    def contents_url(self, path: str) -> str:
        url = f"{self.api_url}/repos/{self.owner}/{self.repo}/contents"
        path = path.strip("/")
        if path:
            url = f"{url}/{quote(path)}"
        return url

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()

    async def _api_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False
    ) -> Optional[Any]:
        """Make an authenticated contents API request and decode the JSON body."""
        session = await self._get_session()
        url = self.contents_url(path)

        try:
            async with session.request(
                method, url, params=params, json=payload, headers=self.headers()
            ) as response:
                if response.status == 404 and allow_not_found:
                    return None
                if response.status >= 400:
                    error_text = await response.text()
                    raise self._error_for_status(response.status, response.headers, error_text)
                return await response.json(content_type=None)

        except aiohttp.ClientError as e:
            raise TransportError(f"Network error on {method} {url}: {e}")

    @staticmethod
    def _error_for_status(status: int, headers, body: str) -> TransportError:
        """Map an HTTP error response onto the transport error taxonomy."""
        if status == 401:
            return AuthenticationError("Invalid or expired token", status=status)

        remaining = headers.get("X-RateLimit-Remaining")
        retry_after = headers.get("Retry-After")
        if status == 429 or (status == 403 and (remaining == "0" or retry_after)):
            if retry_after is not None and retry_after.isdigit():
                wait = int(retry_after)
            elif (headers.get("X-RateLimit-Reset") or "").isdigit():
                wait = max(0, int(headers["X-RateLimit-Reset"]) - int(time.time()))
            else:
                wait = None
            return RateLimitError("Rate limit exceeded", retry_after=wait, status=status)

        return TransportError(f"API request failed: {status} - {body[:200]}", status=status)

    @log_async_execution_time
    async def list_directory(self, path: str) -> List[RemoteEntry]:
        result = await self._api_request(
            "GET", path, params={"ref": self.branch}, allow_not_found=True
        )
        if result is None:
            self.logger.debug("Remote path not found, treating as empty", path=path)
            return []

        # A file path returns a single object instead of a listing.
        items = result if isinstance(result, list) else [result]
        return [self._convert_to_entry(item) for item in items]

    async def download(self, entry: RemoteEntry) -> bytes:
        """Fetch raw content from the entry's download URL.

        The raw content host is not the API, so no auth headers are sent.
        """
        if not entry.download_locator:
            raise TransportError(f"No download URL for {entry.path}")

        session = await self._get_session()
        try:
            async with session.get(entry.download_locator) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise self._error_for_status(response.status, response.headers, error_text)
                return await response.read()
        except aiohttp.ClientError as e:
            raise TransportError(f"Network error downloading {entry.path}: {e}")

    async def upload(
        self,
        path: str,
        content: bytes,
        message: str,
        fingerprint: Optional[str] = None
    ) -> str:
        payload = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": self.branch,
        }
        if fingerprint:
            payload["sha"] = fingerprint

        result = await self._api_request("PUT", path, payload=payload)
        try:
            return result["content"]["sha"]
        except (KeyError, TypeError):
            raise TransportError(f"Unexpected upload response for {path}")

    async def delete(self, path: str, message: str, fingerprint: str) -> None:
        payload = {
            "message": message,
            "sha": fingerprint,
            "branch": self.branch,
        }
        await self._api_request("DELETE", path, payload=payload, allow_not_found=True)

    def _convert_to_entry(self, item: Dict[str, Any]) -> RemoteEntry:
        """Convert a contents API item to a RemoteEntry."""
        return RemoteEntry(
            path=item.get("path", ""),
            name=item.get("name", ""),
            type=item.get("type", ""),
            content_fingerprint=item.get("sha"),
            download_locator=item.get("download_url"),
            size=item.get("size")
        )
