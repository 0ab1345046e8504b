# storage/snapshot.py
"""
Portable snapshots: the whole store in one standalone SQLite file.

Layout of a snapshot file:
  snapshot_meta(key, value)   format, schema_version, exported_at, app
  schema_version              as in a live database
  <every data table>          rows with their original ids

Import copies the file into memory, upgrades that copy with the migration
engine (so snapshots taken by older versions still load) and then replaces
the live store in a single transaction.
"""
from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Union

from sind_utils.normalizers import now_iso

from .base import DataAccess
from .codec import decode_setting, encode_row, encode_setting
from .connection import open_conn, transaction
from .errors import SnapshotCorrupt, StoreError, TransactionFailure
from .migrations import (
    create_schema,
    ensure_current_schema,
    get_schema_version,
    set_schema_version,
    table_exists,
)
from .schema import CREATE_SCHEMA_VERSION, DATA_TABLES, LATEST, SCHEMA_VERSION

log = logging.getLogger("storage.snapshot")

SNAPSHOT_FORMAT = "sindicato-snapshot/1"
APP_NAME = "sindicato-gestao"

CREATE_SNAPSHOT_META = """
CREATE TABLE IF NOT EXISTS snapshot_meta (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""

Rows = Dict[str, List[Dict[str, Any]]]


def portable_row(table: str, row: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize one row for the portable boundary (bytes content, ISO dates)."""
    if table == "settings":
        # value stays decoded; it is JSON-encoded exactly once on write
        return dict(row)
    record = encode_row(row, row.keys())
    if table == "documents" and isinstance(record.get("content"), str):
        record["content"] = record["content"].encode("utf-8")
    return record


def read_store(store: DataAccess) -> Rows:
    return {
        table: [portable_row(table, row) for row in store.get_all(table)]
        for table in DATA_TABLES
    }


def export_snapshot(store: DataAccess, path: Union[str, Path]) -> Dict[str, Any]:
    """
    Write every row of every table to a new snapshot file.
    The file appears at path only once it is complete.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    if tmp.exists():
        tmp.unlink()

    tables = read_store(store)
    out = open_conn(tmp)
    try:
        with transaction(out):
            out.execute(CREATE_SCHEMA_VERSION)
            out.execute(CREATE_SNAPSHOT_META)
            create_schema(out, LATEST)
            set_schema_version(out, SCHEMA_VERSION)
            out.executemany(
                "INSERT INTO snapshot_meta (key, value) VALUES (?, ?)",
                [
                    ("format", SNAPSHOT_FORMAT),
                    ("schema_version", str(SCHEMA_VERSION)),
                    ("exported_at", now_iso()),
                    ("app", APP_NAME),
                ],
            )
            for table, rows in tables.items():
                for row in rows:
                    if table == "settings":
                        row = {**row, "value": encode_setting(row.get("value"))}
                    cols = list(row)
                    out.execute(
                        f"INSERT INTO {table} ({', '.join(cols)}) "
                        f"VALUES ({', '.join('?' for _ in cols)})",
                        [row[c] for c in cols],
                    )
    except BaseException:
        out.close()
        tmp.unlink(missing_ok=True)
        raise
    out.close()
    os.replace(tmp, path)

    counts = {table: len(rows) for table, rows in tables.items()}
    log.info("Exported snapshot %s: %s", path, counts)
    return {"path": str(path), "schema_version": SCHEMA_VERSION, "tables": counts}


def _read_meta(conn: sqlite3.Connection) -> Dict[str, str]:
    if not table_exists(conn, "snapshot_meta"):
        raise SnapshotCorrupt("Arquivo não é um backup deste sistema (snapshot_meta ausente).")
    meta = {row[0]: row[1] for row in conn.execute("SELECT key, value FROM snapshot_meta")}
    if meta.get("format") != SNAPSHOT_FORMAT:
        raise SnapshotCorrupt(f"Formato de backup desconhecido: {meta.get('format')!r}")
    try:
        version = int(meta.get("schema_version", ""))
    except ValueError as e:
        raise SnapshotCorrupt("Versão de esquema inválida no backup.") from e
    if version > SCHEMA_VERSION:
        raise SnapshotCorrupt(
            f"Backup gerado por uma versão mais nova do sistema (v{version} > v{SCHEMA_VERSION})."
        )
    if get_schema_version(conn) != version:
        raise SnapshotCorrupt("Versão de esquema do backup não confere com seus dados.")
    return meta


def load_snapshot(path: Union[str, Path]) -> Rows:
    """
    Read and validate a snapshot file, upgraded to the current schema.
    Raises SnapshotCorrupt; never touches a live store.
    """
    path = Path(path)
    if not path.is_file():
        raise SnapshotCorrupt(f"Arquivo de backup não encontrado: {path}")

    mem = open_conn(":memory:")
    try:
        src = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
        try:
            src.backup(mem)
        finally:
            src.close()

        meta = _read_meta(mem)
        report = ensure_current_schema(mem, populate=False)
        if report["status"] == "migrated":
            log.info(
                "Snapshot upgraded from v%s to v%s", meta["schema_version"], SCHEMA_VERSION
            )

        tables: Rows = {}
        for table in DATA_TABLES:
            rows = [dict(row) for row in mem.execute(f"SELECT * FROM {table} ORDER BY rowid")]
            if table == "settings":
                for row in rows:
                    row["value"] = decode_setting(row["value"], strict=True)
            tables[table] = [portable_row(table, row) for row in rows]
        return tables
    except SnapshotCorrupt:
        raise
    except (sqlite3.Error, StoreError, ValueError) as e:
        raise SnapshotCorrupt(f"Backup inválido ou corrompido: {e}") from e
    finally:
        mem.close()


def import_snapshot(store: DataAccess, path: Union[str, Path]) -> Dict[str, Any]:
    """Replace the whole store with the snapshot contents, or change nothing."""
    tables = load_snapshot(path)
    try:
        counts = store.replace_all(tables)
    except TransactionFailure as e:
        raise SnapshotCorrupt(f"Falha ao restaurar backup; nenhum dado foi alterado: {e.original}") from e
    log.info("Restored snapshot %s: %s", path, counts)
    return {"path": str(path), "tables": counts}


def copy_store(source: DataAccess, target: DataAccess) -> Dict[str, int]:
    """Copy every row from one store implementation to another (target replaced)."""
    counts = target.replace_all(read_store(source))
    log.info("Copied store %r -> %r: %s", source, target, counts)
    return counts
