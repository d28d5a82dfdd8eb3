"""
Durable key-value storage for the persisted state envelope.

Every engine exposes the same async contract (`get_item`, `set_item`,
`remove_item`, `get_all_keys`) and never raises across it; the resolver picks
one engine per store instance.
"""

from .base import StorageEngine, StorageError, StorageUnavailable, StorageConfigurationError
from .memory import MemoryStorageEngine
from .resolver import Candidate, PlatformResolver, resolve_storage

__all__ = [
    "StorageEngine",
    "StorageError",
    "StorageUnavailable",
    "StorageConfigurationError",
    "MemoryStorageEngine",
    "Candidate",
    "PlatformResolver",
    "resolve_storage",
]
