# src/storage/base_blob_store.py - v1
"""Abstract blob store interface.

Artifacts are addressed by the deterministic path strings built in
storage/paths.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseBlobStore(ABC):
    """Unified interface for artifact storage backends."""

    @abstractmethod
    async def write(self, path: str, content: bytes | str) -> None:
        """Write content to the given path, replacing any existing object."""

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Read content from the given path."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if path exists."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the object at path if present."""

    @abstractmethod
    async def list_dir(self, path: str) -> list[str]:
        """List directory contents."""

    async def read_text(self, path: str) -> str:
        return (await self.read(path)).decode("utf-8")
