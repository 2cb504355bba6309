"""
Citewatch - Persistence Package

Caching on top of the snapshot store.
"""

from .cache import SnapshotCache

__all__ = ["SnapshotCache"]
