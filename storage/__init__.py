# storage/__init__.py
"""
Storage layer for the union management system.

Provides SQLite-based persistence for clients, payments, declarations,
expenses, documents, attendances, settings and users, plus schema
migrations and portable snapshots.
"""
from typing import Any, Dict, Optional

from .base import DataAccess
from .errors import (
    SchemaError,
    SnapshotCorrupt,
    StoreBlocked,
    StoreError,
    TransactionFailure,
    UniqueConstraintViolation,
    ValidationError,
)
from .migrations import (
    check_integrity,
    ensure_current_schema,
    ensure_seeded,
    get_table_stats,
    initialize_fresh_db,
)
from .schema import DATA_TABLES, SCHEMA_VERSION
from .snapshot import copy_store, export_snapshot, import_snapshot
from .sqlite_store import SQLiteStore

DEFAULT_DB_PATH = "data/sindicato.sqlite"


def open_store(config: Optional[Dict[str, Any]] = None, *, path: Optional[str] = None) -> DataAccess:
    """
    Build and open the store selected by configuration.
    The caller owns the handle and must close() it.
    """
    db = (config or {}).get("database", {})
    store = SQLiteStore(
        path or db.get("path", DEFAULT_DB_PATH),
        timeout=float(db.get("timeout", 5.0)),
        exclusive=db.get("exclusive"),
    )
    store.open()
    return store


__all__ = [
    # Main classes
    "DataAccess",
    "SQLiteStore",
    "open_store",
    # Schema info
    "SCHEMA_VERSION",
    "DATA_TABLES",
    # Migration functions
    "ensure_current_schema",
    "ensure_seeded",
    "check_integrity",
    "get_table_stats",
    "initialize_fresh_db",
    # Snapshots
    "export_snapshot",
    "import_snapshot",
    "copy_store",
    # Errors
    "StoreError",
    "ValidationError",
    "UniqueConstraintViolation",
    "TransactionFailure",
    "StoreBlocked",
    "SnapshotCorrupt",
    "SchemaError",
]
