"""
Two-tier cache for the spreadsheet snapshot with single-flight refresh,
cold-start bootstrap, and periodic refresh.
"""
from .core import (
    CacheMeta,
    CacheRecord,
    CacheSource,
    DurableLoad,
    LoadStatus,
    RefreshResult,
)
from .errors import (
    AlreadyInProgress,
    CacheError,
    ConfigError,
    DataUnavailableError,
    DurableReadError,
    DurableWriteError,
    RemoteFetchError,
)
from .memory import MemoryStore
from .durable import DurableStore
from .coordinator import RefreshCoordinator
from .bootstrap import Bootstrapper
from .scheduler import RefreshScheduler
from .manager import SheetCacheManager, get_cache_manager

__all__ = [
    # Core types
    "CacheMeta",
    "CacheRecord",
    "CacheSource",
    "DurableLoad",
    "LoadStatus",
    "RefreshResult",
    # Errors
    "AlreadyInProgress",
    "CacheError",
    "ConfigError",
    "DataUnavailableError",
    "DurableReadError",
    "DurableWriteError",
    "RemoteFetchError",
    # Stores
    "MemoryStore",
    "DurableStore",
    # Coordination
    "RefreshCoordinator",
    "Bootstrapper",
    "RefreshScheduler",
    # Manager
    "SheetCacheManager",
    "get_cache_manager",
]
