# src/__init__.py - v1
"""dialectica: multi-model dialectic job orchestration engine."""

from dialectica.version import __version__

__all__ = ["__version__"]
