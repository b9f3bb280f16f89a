"""
Storage Layer - Durable lock record persistence.

Public API:
    ExecutionLockRecord - Versioned single-fire lock + fired trigger ids
    episode_id_for - Stable episode key for shared stores
    LockStore - load/save/delete protocol used by the execution guard
    FileLockStore - Atomic JSON file store (default)
    PostgresLockStore - Shared store on PostgreSQL (asyncpg)
    Database, DatabaseConfig - Connection pool management
"""
from commitment_guard.storage.database import Database, DatabaseConfig
from commitment_guard.storage.lock_store import (
    LOCK_TABLE,
    FileLockStore,
    LockStore,
    PostgresLockStore,
)
from commitment_guard.storage.models import (
    LOCK_RECORD_VERSION,
    ExecutionLockRecord,
    episode_id_for,
)

__all__ = [
    # Database
    "Database",
    "DatabaseConfig",
    # Models
    "ExecutionLockRecord",
    "LOCK_RECORD_VERSION",
    "episode_id_for",
    # Stores
    "FileLockStore",
    "LOCK_TABLE",
    "LockStore",
    "PostgresLockStore",
]
