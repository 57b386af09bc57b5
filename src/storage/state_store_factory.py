# src/storage/state_store_factory.py - v1
"""Factory: instantiate the state store from configuration."""

from __future__ import annotations

import logging

from dialectica.config.settings import Settings
from dialectica.core.errors import ConfigurationError
from dialectica.storage.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)

_BACKEND_REGISTRY: dict[str, str] = {
    "memory": "dialectica.storage.memory_state_store.MemoryStateStore",
    "sqlite": "dialectica.storage.sqlite_state_store.SqliteStateStore",
}


def create_state_store(settings: Settings) -> BaseStateStore:
    """Create the state store selected by STATE_STORE_BACKEND.

    Raises:
        ConfigurationError: If the backend is not registered.
    """
    backend = settings.state_store_backend
    if backend not in _BACKEND_REGISTRY:
        raise ConfigurationError(
            f"Unsupported state store backend: {backend!r}. "
            f"Available: {', '.join(sorted(_BACKEND_REGISTRY))}"
        )
    store_cls = _import_class(_BACKEND_REGISTRY[backend])
    logger.debug("Creating state store: backend=%s", backend)
    if backend == "sqlite":
        return store_cls(db_path=settings.state_db_path)
    return store_cls()


def _import_class(class_path: str) -> type:
    """Dynamically import a class from its fully qualified path."""
    module_path, class_name = class_path.rsplit(".", 1)
    import importlib

    module = importlib.import_module(module_path)
    return getattr(module, class_name)
