# src/storage/local_blob_store.py - v1
"""Local filesystem blob store (default backend)."""

from __future__ import annotations

from pathlib import Path

from dialectica.storage.base_blob_store import BaseBlobStore


class LocalBlobStore(BaseBlobStore):
    """Store artifacts below a root directory on the local filesystem."""

    def __init__(self, base_path: str | Path) -> None:
        self._base = Path(base_path).expanduser()

    @property
    def base_path(self) -> Path:
        return self._base

    def _resolve(self, path: str) -> Path:
        resolved = (self._base / path).resolve()
        if self._base.resolve() not in resolved.parents and resolved != self._base.resolve():
            raise ValueError(f"Path escapes blob store root: {path!r}")
        return resolved

    async def write(self, path: str, content: bytes | str) -> None:
        p = self._resolve(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            p.write_bytes(content)
        else:
            p.write_text(content, encoding="utf-8")

    async def read(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    async def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    async def delete(self, path: str) -> None:
        p = self._resolve(path)
        if p.is_file():
            p.unlink()

    async def list_dir(self, path: str) -> list[str]:
        p = self._resolve(path)
        if not p.is_dir():
            return []
        return [
            entry.name + ("/" if entry.is_dir() else "") for entry in sorted(p.iterdir())
        ]
