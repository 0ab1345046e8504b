# storage/migrations.py
"""
Database migration utilities for the union management store.

Handles schema upgrades from any version to current, including:
- Fresh database initialization (latest schema + default users/settings)
- Step-by-step upgrade through every version snapshot in storage.schema
- Table rebuilds with per-row transforms (legacy month/year payment reference)
- Post-migration verification that no table was lost
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from sind_utils.normalizers import make_reference, now_iso

from .codec import decode_setting, encode_setting
from .connection import is_lock_error, transaction
from .errors import SchemaError, StoreBlocked, StoreError
from .schema import (
    CREATE_SCHEMA_VERSION,
    DATA_TABLES,
    DEFAULT_SETTINGS,
    DEFAULT_USERS,
    LATEST,
    PAYMENT_STATUS_TEMPLATE,
    SCHEMA_V1,
    SCHEMA_V2,
    SCHEMA_V3,
    SCHEMA_V4,
    SCHEMA_V5,
    SCHEMA_V6,
    SCHEMA_V7,
    SCHEMA_V8,
    SCHEMA_VERSION,
    SCHEMAS,
    SchemaVersion,
    Table,
)

log = logging.getLogger("storage.migrations")

RowTransform = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]
UpgradeHook = Callable[[sqlite3.Connection], Any]

# Tables SQLite or the migration machinery own; never reported as data tables.
INTERNAL_TABLES = {"schema_version", "sqlite_sequence", "snapshot_meta"}


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get current schema version, or 0 if not initialized."""
    cur = conn.cursor()
    try:
        cur.execute("SELECT MAX(version) FROM schema_version")
        row = cur.fetchone()
        return row[0] if row and row[0] else 0
    except sqlite3.OperationalError:
        # schema_version table doesn't exist
        return 0


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Record schema version."""
    conn.execute(
        "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
        (version, now_iso()),
    )


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Check if a table exists."""
    cur = conn.cursor()
    cur.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cur.fetchone() is not None


def list_tables(conn: sqlite3.Connection) -> List[str]:
    """User tables, excluding SQLite and migration bookkeeping tables."""
    cur = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' "
        "ORDER BY name"
    )
    return [row[0] for row in cur.fetchall() if row[0] not in INTERNAL_TABLES]


def get_table_columns(conn: sqlite3.Connection, table_name: str) -> List[str]:
    """Get list of column names for a table."""
    cur = conn.cursor()
    cur.execute(f"PRAGMA table_info({table_name})")
    return [row[1] for row in cur.fetchall()]


def schema_for(version: int) -> SchemaVersion:
    if not 1 <= version <= SCHEMA_VERSION:
        raise SchemaError(f"Unknown schema version: {version}")
    return SCHEMAS[version - 1]


# =============================================================================
# Seeding
# =============================================================================


def ensure_default_users(conn: sqlite3.Connection) -> int:
    """
    Insert the default accounts only if the users table is empty.
    Both the fresh-install populate and the v4 upgrade call this; the
    count check and the insert run in the same transaction.
    """
    with transaction(conn):
        count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        if count:
            return 0
        now = now_iso()
        conn.executemany(
            "INSERT INTO users (username, password, role, created_at) VALUES (?, ?, ?, ?)",
            [(username, password, role, now) for username, password, role in DEFAULT_USERS],
        )
    log.info("Seeded %d default users", len(DEFAULT_USERS))
    return len(DEFAULT_USERS)


def ensure_default_settings(conn: sqlite3.Connection) -> int:
    """Insert each default setting whose key is missing. Returns count inserted."""
    inserted = 0
    with transaction(conn):
        for key, value in DEFAULT_SETTINGS:
            cur = conn.execute(
                "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
                (key, encode_setting(value)),
            )
            inserted += cur.rowcount
    if inserted:
        log.info("Seeded %d default settings", inserted)
    return inserted


def ensure_seeded(conn: sqlite3.Connection) -> Dict[str, int]:
    """Idempotent populate: default users (if none) and missing default settings."""
    with transaction(conn):
        return {
            "users_seeded": ensure_default_users(conn),
            "settings_seeded": ensure_default_settings(conn),
        }


# =============================================================================
# Per-version data transforms and hooks
# =============================================================================


def fill_client_status(conn: sqlite3.Connection) -> int:
    """v3: clients registered before status existed are active."""
    cur = conn.execute("UPDATE clients SET status = 'Ativo' WHERE status IS NULL")
    if cur.rowcount:
        log.info("Set status 'Ativo' on %d existing clients", cur.rowcount)
    return cur.rowcount


def payment_reference_from_legacy(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    v6: fold the legacy (mes_referencia, ano_referencia) pair into referencia.

    Rows where the pair is incomplete or not numeric are kept with a NULL
    reference and reported with a warning; no payment is ever dropped.
    """
    month = row.pop("mes_referencia", None)
    year = row.pop("ano_referencia", None)
    if row.get("referencia"):
        return row
    try:
        row["referencia"] = make_reference(year, month)
    except (TypeError, ValueError):
        log.warning(
            "Payment %s has malformed legacy reference (mes=%r, ano=%r); "
            "kept without reference",
            row.get("id"),
            month,
            year,
        )
        row["referencia"] = None
    return row


def html_paragraphs(text: str) -> str:
    """Plain text to <p> paragraphs: blank lines split, single newlines become <br>."""
    parts = text.replace("\r\n", "\n").split("\n\n")
    return "".join(f"<p>{part.replace(chr(10), '<br>')}</p>" for part in parts)


def upgrade_declaration_templates(conn: sqlite3.Connection) -> None:
    """v8: add the payment-status template and convert a plain-text template to HTML."""
    cur = conn.execute(
        "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
        ("paymentDeclarationTemplate", encode_setting(PAYMENT_STATUS_TEMPLATE)),
    )
    if cur.rowcount:
        log.info("Added setting paymentDeclarationTemplate")

    row = conn.execute(
        "SELECT value FROM settings WHERE key = 'declarationTemplate'"
    ).fetchone()
    if row is None:
        return
    template = decode_setting(row[0])
    if isinstance(template, str) and not template.lstrip().startswith("<p>"):
        conn.execute(
            "UPDATE settings SET value = ? WHERE key = 'declarationTemplate'",
            (encode_setting(html_paragraphs(template)),),
        )
        log.info("Converted plain-text declarationTemplate to HTML paragraphs")


@dataclass(frozen=True)
class VersionStep:
    """One entry of the migration sequence: full snapshot + optional data work."""

    schema: SchemaVersion
    transforms: Mapping[str, RowTransform] = field(default_factory=dict)
    upgrade: Optional[UpgradeHook] = None

    @property
    def version(self) -> int:
        return self.schema.version


STEPS = (
    VersionStep(SCHEMA_V1),
    VersionStep(SCHEMA_V2),
    VersionStep(SCHEMA_V3, upgrade=fill_client_status),
    VersionStep(SCHEMA_V4, upgrade=ensure_default_users),
    VersionStep(SCHEMA_V5),
    VersionStep(SCHEMA_V6, transforms={"payments": payment_reference_from_legacy}),
    VersionStep(SCHEMA_V7),
    VersionStep(SCHEMA_V8, upgrade=upgrade_declaration_templates),
)

if [s.version for s in STEPS] != list(range(1, SCHEMA_VERSION + 1)):
    raise SchemaError("Migration steps do not cover every schema version")


# =============================================================================
# Applying steps
# =============================================================================


def create_schema(conn: sqlite3.Connection, schema: SchemaVersion) -> None:
    """Create every table and index of a snapshot on an empty database."""
    for table in schema.tables:
        conn.execute(table.ddl())
    for idx in schema.indexes:
        conn.execute(idx.ddl())


def _can_add_column(decl: str) -> bool:
    decl = decl.upper()
    if "PRIMARY KEY" in decl or "UNIQUE" in decl:
        return False
    return "NOT NULL" not in decl or "DEFAULT" in decl


def _only_appends(old: Table, new: Table) -> bool:
    n = len(old.columns)
    return (
        old.constraints == new.constraints
        and new.columns[:n] == old.columns
        and all(_can_add_column(c.decl) for c in new.columns[n:])
    )


def rebuild_table(
    conn: sqlite3.Connection, table: Table, transform: Optional[RowTransform] = None
) -> int:
    """
    Recreate a table with its new definition and copy every row across,
    passing each row through transform. Returns rows copied.
    """
    tmp = f"{table.name}__new"
    conn.execute(f"DROP TABLE IF EXISTS {tmp}")
    conn.execute(table.ddl(tmp))

    cur = conn.execute(f"SELECT * FROM {table.name}")
    names = [d[0] for d in cur.description]
    columns = table.column_names
    insert_sql = (
        f"INSERT INTO {tmp} ({', '.join(columns)}) "
        f"VALUES ({', '.join('?' for _ in columns)})"
    )

    copied = 0
    for values in cur.fetchall():
        record: Optional[Dict[str, Any]] = dict(zip(names, values))
        if transform is not None:
            record = transform(record)
            if record is None:
                continue
        conn.execute(insert_sql, [record.get(c) for c in columns])
        copied += 1

    conn.execute(f"DROP TABLE {table.name}")
    conn.execute(f"ALTER TABLE {tmp} RENAME TO {table.name}")
    return copied


def apply_step(
    conn: sqlite3.Connection, previous: SchemaVersion, step: VersionStep
) -> Dict[str, List[str]]:
    """Bring the database from the previous snapshot to the step's snapshot."""
    stats: Dict[str, List[str]] = {"created": [], "altered": [], "rebuilt": []}
    target = step.schema

    for table in target.tables:
        if table.name not in previous.table_names:
            if table_exists(conn, table.name):
                raise SchemaError(
                    f"v{step.version}: table {table.name} exists but is not part of v{previous.version}"
                )
            conn.execute(table.ddl())
            stats["created"].append(table.name)
            continue

        old = previous.table(table.name)
        transform = step.transforms.get(table.name)
        if old == table and transform is None:
            continue
        if transform is None and _only_appends(old, table):
            for col in table.columns[len(old.columns):]:
                conn.execute(f"ALTER TABLE {table.name} ADD COLUMN {col.ddl()}")
            stats["altered"].append(table.name)
        else:
            copied = rebuild_table(conn, table, transform)
            log.debug("Rebuilt %s (%d rows)", table.name, copied)
            stats["rebuilt"].append(table.name)

    declared = {i.name for i in target.indexes}
    for idx in previous.indexes:
        if idx.name not in declared:
            conn.execute(f"DROP INDEX IF EXISTS {idx.name}")
    for idx in target.indexes:
        conn.execute(idx.ddl())

    if step.upgrade is not None:
        step.upgrade(conn)

    set_schema_version(conn, step.version)
    log.info(
        "Applied schema v%d (created=%s altered=%s rebuilt=%s)",
        step.version,
        stats["created"],
        stats["altered"],
        stats["rebuilt"],
    )
    return stats


def verify_schema(
    conn: sqlite3.Connection, schema: SchemaVersion, before: Set[str]
) -> None:
    """Fail loudly if a table disappeared or the declared shape is not on disk."""
    present = set(list_tables(conn))

    lost = sorted(before - present)
    if lost:
        raise SchemaError(f"Tables lost during migration: {', '.join(lost)}")

    missing = sorted(set(schema.table_names) - present)
    if missing:
        raise SchemaError(f"Schema v{schema.version} is missing tables: {', '.join(missing)}")

    for table in schema.tables:
        on_disk = get_table_columns(conn, table.name)
        if on_disk != table.column_names:
            raise SchemaError(
                f"Table {table.name} has columns {on_disk}, expected {table.column_names}"
            )

    extra = sorted(present - set(schema.table_names))
    if extra:
        log.warning("Database holds undeclared tables: %s", ", ".join(extra))


# =============================================================================
# Entry points
# =============================================================================


def initialize_fresh_db(
    conn: sqlite3.Connection, version: int = SCHEMA_VERSION, populate: bool = True
) -> Dict[str, Any]:
    """
    Initialize an empty database directly at the given snapshot.
    Returns initialization stats.
    """
    schema = schema_for(version)
    create_schema(conn, schema)
    set_schema_version(conn, version)

    stats: Dict[str, Any] = {
        "version": version,
        "tables_created": len(schema.tables),
        "indexes_created": len(schema.indexes),
        "users_seeded": 0,
        "settings_seeded": 0,
    }
    # Default rows only make sense against the latest table set.
    if populate and version == SCHEMA_VERSION:
        stats.update(ensure_seeded(conn))
    return stats


def ensure_current_schema(
    conn: sqlite3.Connection,
    *,
    target_version: int = SCHEMA_VERSION,
    populate: bool = True,
) -> Dict[str, Any]:
    """
    Ensure database has current schema. Migrate if needed.
    This is the main entry point for schema management.

    The whole check/upgrade runs in one exclusive transaction: either the
    database reaches target_version or it is left at its previous version.
    """
    if not 1 <= target_version <= SCHEMA_VERSION:
        raise ValueError(f"target_version must be between 1 and {SCHEMA_VERSION}")

    try:
        with transaction(conn, "EXCLUSIVE"):
            return _ensure_schema_locked(conn, target_version, populate)
    except StoreError:
        raise
    except sqlite3.Error as e:
        if is_lock_error(e):
            raise StoreBlocked(str(e)) from e
        raise SchemaError(f"Migration failed and was rolled back: {e}") from e


def _ensure_schema_locked(
    conn: sqlite3.Connection, target_version: int, populate: bool
) -> Dict[str, Any]:
    conn.execute(CREATE_SCHEMA_VERSION)
    current = get_schema_version(conn)
    before = set(list_tables(conn))

    if current > SCHEMA_VERSION:
        raise SchemaError(
            f"Database schema v{current} is newer than this program (v{SCHEMA_VERSION})"
        )

    if current == 0:
        known = sorted(before & set(DATA_TABLES))
        if known:
            raise SchemaError(
                f"Database has tables without a schema version: {', '.join(known)}"
            )
        stats = initialize_fresh_db(conn, target_version, populate)
        verify_schema(conn, schema_for(target_version), before)
        log.info("Initialized fresh database at schema v%d", target_version)
        return {"status": "initialized", **stats}

    if current >= target_version:
        verify_schema(conn, schema_for(current), before)
        return {"status": "current", "version": current}

    previous = schema_for(current)
    applied: List[int] = []
    for step in STEPS[current:target_version]:
        apply_step(conn, previous, step)
        previous = step.schema
        applied.append(step.version)

    verify_schema(conn, previous, before)
    log.info("Migrated database from v%d to v%d", current, target_version)
    return {
        "status": "migrated",
        "from_version": current,
        "to_version": target_version,
        "steps": applied,
    }


def check_integrity(conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Run integrity checks on the database.
    Returns detailed status report.
    """
    result: Dict[str, Any] = {
        "status": "ok",
        "version": get_schema_version(conn),
        "expected_version": SCHEMA_VERSION,
        "tables": {},
        "integrity_check": None,
        "issues": [],
    }

    cur = conn.cursor()

    # SQLite integrity check
    cur.execute("PRAGMA integrity_check")
    integrity = cur.fetchone()[0]
    result["integrity_check"] = integrity
    if integrity != "ok":
        result["status"] = "error"
        result["issues"].append(f"Integrity check failed: {integrity}")

    if result["version"] != SCHEMA_VERSION:
        result["status"] = "warning" if result["status"] == "ok" else result["status"]
        result["issues"].append(
            f"Schema version is v{result['version']}, expected v{SCHEMA_VERSION}"
        )

    for table in LATEST.tables:
        if table_exists(conn, table.name):
            cur.execute(f"SELECT COUNT(*) FROM {table.name}")
            count = cur.fetchone()[0]
            result["tables"][table.name] = {
                "exists": True,
                "rows": count,
                "empty": count == 0,
            }
        else:
            result["tables"][table.name] = {"exists": False, "rows": 0, "empty": True}
            if result["status"] == "ok":
                result["status"] = "warning"
            result["issues"].append(f"Missing table: {table.name}")

    # A usable store always has someone who can log in
    if result["tables"].get("users", {}).get("rows", 0) == 0:
        result["issues"].append("No users registered - nobody can log in")

    return result


def get_table_stats(conn: sqlite3.Connection) -> Dict[str, int]:
    """Get row counts for all tables."""
    stats = {}
    cur = conn.cursor()

    for table in DATA_TABLES:
        if table_exists(conn, table):
            cur.execute(f"SELECT COUNT(*) FROM {table}")
            stats[table] = cur.fetchone()[0]
        else:
            stats[table] = -1  # Doesn't exist

    return stats
