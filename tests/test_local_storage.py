"""Tests for local file tree access."""

import pytest

from gitsync.storage import LocalStorage, git_blob_sha, is_hidden


class TestGitBlobSha:
    """The fingerprint must match what git computes for a blob."""

    def test_empty_blob(self):
        assert git_blob_sha(b"") == "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"

    def test_known_content(self):
        assert git_blob_sha(b"hello\n") == "ce013625030ba8dba906f756967f9e9ca394464a"


def test_is_hidden():
    assert is_hidden(".obsidian/config")
    assert is_hidden("notes/.draft.md")
    assert not is_hidden("notes/a.md")


class TestLocalStorage:
    """Test file operations relative to the local root."""

    @pytest.mark.asyncio
    async def test_write_creates_parents(self, local):
        await local.write_binary("a/b/c.txt", b"content")

        assert await local.exists("a/b/c.txt")
        assert await local.is_file("a/b/c.txt")
        assert await local.read_binary("a/b/c.txt") == b"content"
        assert await local.list_files() == ["a/b/c.txt"]

    @pytest.mark.asyncio
    async def test_overwrite(self, local):
        await local.write_binary("a.txt", b"one")
        await local.write_binary("a.txt", b"two")

        assert await local.read_binary("a.txt") == b"two"
        assert await local.fingerprint("a.txt") == git_blob_sha(b"two")

    @pytest.mark.asyncio
    async def test_delete_prunes_empty_folders(self, local):
        await local.write_binary("a/b/c.txt", b"x")
        await local.write_binary("a/keep.txt", b"y")

        assert await local.delete("a/b/c.txt") is True
        assert not (local.root / "a" / "b").exists()
        assert (local.root / "a").exists()
        assert await local.delete("a/b/c.txt") is False

    @pytest.mark.asyncio
    async def test_create_folder_is_idempotent(self, local):
        await local.create_folder("x/y")
        await local.create_folder("x/y")

        assert (local.root / "x" / "y").is_dir()

    @pytest.mark.asyncio
    async def test_list_files_skips_hidden(self, local):
        await local.write_binary("notes/a.md", b"a")
        await local.write_binary("notes/.b.md", b"b")
        await local.write_binary(".git/config", b"c")

        assert await local.list_files() == ["notes/a.md"]
        assert await local.list_files("notes") == ["notes/a.md"]
        assert await local.list_files("missing") == []

    def test_resolve_rejects_escaping_paths(self, local):
        with pytest.raises(ValueError):
            local.resolve("../outside.txt")

    def test_relative(self, local):
        assert local.relative(local.root / "a" / "b.txt") == "a/b.txt"

    def test_root_is_resolved(self, tmp_path):
        storage = LocalStorage(tmp_path / "x" / ".." / "y")
        assert storage.root == (tmp_path / "y").resolve()
