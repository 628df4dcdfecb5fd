"""
Proof persistence.

- ProofStore: repository interface
- SQLiteProofStore: sqlite3 implementation
- PostgresProofStore: psycopg2 implementation
"""

from jindexer.config import DatabaseSettings
from jindexer.persistence.base import FreshnessInputs, ProofStore, StoreError
from jindexer.persistence.sqlite_store import SQLiteProofStore


def open_store(settings: DatabaseSettings) -> ProofStore:
    """Open the configured store backend.

    Raises:
        StoreError: if the store cannot be opened
    """
    if settings.backend == "sqlite":
        return SQLiteProofStore(settings.sqlite_path)

    from jindexer.persistence.postgres_store import PostgresProofStore
    return PostgresProofStore(settings)


__all__ = [
    "FreshnessInputs",
    "ProofStore",
    "StoreError",
    "SQLiteProofStore",
    "open_store",
]
