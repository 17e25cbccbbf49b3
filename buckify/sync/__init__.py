"""Synchronization of generated regions with files on disk."""

from buckify.sync.atomic import atomic_write_bytes, atomic_write_text
from buckify.sync.baseline import BaselineStore
from buckify.sync.engine import SyncEngine
from buckify.sync.lock import WorkspaceLock
from buckify.sync.regions import BEGIN_MARKER, END_MARKER, find_region, fingerprint, replace_region

__all__ = [
    "BEGIN_MARKER",
    "END_MARKER",
    "BaselineStore",
    "SyncEngine",
    "WorkspaceLock",
    "atomic_write_bytes",
    "atomic_write_text",
    "find_region",
    "fingerprint",
    "replace_region",
]
