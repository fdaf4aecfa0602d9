"""Order-validation storage: prompt templates, ICD-10/CPT reference data,
the validation audit log and provider credentials.

Deployments that set DATABASE_URL share one PostgreSQL database (asyncpg,
async methods); single-node installs keep a local SQLite file.
"""

import os

from storage.database import Database, UsageLogUnavailableError, get_db
from storage.keychain import KeychainManager, get_keychain

_USE_PG = bool(os.getenv("DATABASE_URL", ""))


def get_active_db():
    """Store backing templates, reference lookups and attempt logging.

    Callers treat both backends alike and await results only when a
    method returns an awaitable.
    """
    if _USE_PG:
        from storage.pg_database import get_pg_db
        return get_pg_db()
    return get_db()


__all__ = [
    "Database",
    "UsageLogUnavailableError",
    "get_active_db",
    "get_db",
    "get_keychain",
    "KeychainManager",
]
