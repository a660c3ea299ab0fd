"""fitplan local storage.

Local-first: every read and write goes through the expiring cache, which
persists to SQLite when it can and to memory when it can't.
"""

from .backends import KeyValueBackend, MemoryBackend, SQLiteBackend
from .backup import AutoBackup, BackupManager
from .cache import KeyValueCache

__all__ = [
    "AutoBackup",
    "BackupManager",
    "KeyValueBackend",
    "KeyValueCache",
    "MemoryBackend",
    "SQLiteBackend",
]
