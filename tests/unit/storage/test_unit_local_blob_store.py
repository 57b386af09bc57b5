# tests/unit/storage/test_unit_local_blob_store.py - v1
"""Tests for storage/local_blob_store.py."""

from __future__ import annotations

import pytest

from dialectica.storage.local_blob_store import LocalBlobStore


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_write_and_read_text(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        await store.write("p/s/doc.md", "hello")
        assert await store.exists("p/s/doc.md")
        assert await store.read_text("p/s/doc.md") == "hello"

    @pytest.mark.asyncio
    async def test_write_bytes(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        await store.write("raw.bin", b"\x00\x01")
        assert await store.read("raw.bin") == b"\x00\x01"

    @pytest.mark.asyncio
    async def test_overwrite_replaces(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        await store.write("a.md", "one")
        await store.write("a.md", "two")
        assert await store.read_text("a.md") == "two"

    @pytest.mark.asyncio
    async def test_list_dir_marks_directories(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        await store.write("root/file.md", "x")
        await store.write("root/sub/inner.md", "y")
        assert await store.list_dir("root") == ["file.md", "sub/"]
        assert await store.list_dir("missing") == []

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        await store.write("a.md", "x")
        await store.delete("a.md")
        await store.delete("a.md")
        assert not await store.exists("a.md")

    @pytest.mark.asyncio
    async def test_escape_rejected(self, tmp_path):
        store = LocalBlobStore(tmp_path / "root")
        with pytest.raises(ValueError, match="escapes"):
            await store.write("../outside.md", "x")
