# storage/sqlite_store.py
"""
SQLite storage layer for the union management store.

Provides:
- Generic CRUD over every table of the latest schema
- Named queries used by the CLI, declarations and reports
- The two composite transactions (cascading client delete, bulk wipe)
- replace_all, the primitive behind snapshot import
"""
from __future__ import annotations

import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from sind_utils.normalizers import normalize_reference, now_iso

from .base import DataAccess
from .codec import decode_setting, encode_row, encode_setting
from .connection import is_lock_error, open_conn, transaction as sql_transaction
from .errors import (
    StoreBlocked,
    StoreError,
    TransactionFailure,
    UniqueConstraintViolation,
    ValidationError,
)
from .migrations import (
    check_integrity,
    ensure_current_schema,
    get_schema_version,
    get_table_stats,
)
from .schema import (
    CLIENT_RELATED_TABLES,
    DATA_TABLES,
    LATEST,
    SCHEMA_VERSION,
    TRANSACTIONAL_TABLES,
)

log = logging.getLogger("storage.sqlite_store")

_UNIQUE_RX = re.compile(r"UNIQUE constraint failed: (.+)$")
_NOT_NULL_RX = re.compile(r"NOT NULL constraint failed: (\S+)")


def integrity_error(table: str, exc: sqlite3.IntegrityError) -> ValidationError:
    """Translate a SQLite constraint failure into a user-facing validation error."""
    msg = str(exc)
    m = _UNIQUE_RX.search(msg)
    if m:
        fields = tuple(part.strip().split(".")[-1] for part in m.group(1).split(","))
        return UniqueConstraintViolation(table, fields, detail=msg)
    m = _NOT_NULL_RX.search(msg)
    if m:
        field = m.group(1).split(".")[-1]
        return ValidationError(f"O campo '{field}' é obrigatório.", field=field)
    return ValidationError(f"Registro inválido em {table}: {msg}")


def primary_key(table: str) -> str:
    return "id" if LATEST.table(table).has_id else "key"


class SQLiteStore(DataAccess):
    """
    Main storage class. One instance per session; open() runs migrations and,
    for file databases, takes an exclusive lock held until close().
    """

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        *,
        timeout: float = 5.0,
        exclusive: Optional[bool] = None,
    ):
        self.db_path = str(db_path)
        self.timeout = timeout
        self.exclusive = self.db_path != ":memory:" if exclusive is None else exclusive
        self._conn: Optional[sqlite3.Connection] = None
        # migration report of the last open()
        self.report: Dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"SQLiteStore({self.db_path!r})"

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        return self._conn

    def open(
        self, *, target_version: int = SCHEMA_VERSION, populate: bool = True
    ) -> Dict[str, Any]:
        """Connect, then create or upgrade the schema. Returns the migration report."""
        if self._conn is not None:
            return {"status": "open", "version": get_schema_version(self._conn)}
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = open_conn(self.db_path, timeout=self.timeout, exclusive=self.exclusive)
        try:
            report = ensure_current_schema(
                conn, target_version=target_version, populate=populate
            )
        except BaseException:
            conn.close()
            raise
        self._conn = conn
        self.report = report
        log.debug("Opened %s: %s", self.db_path, report)
        return report

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def transaction(self):
        """Group several calls into one atomic unit (nests as a savepoint)."""
        return sql_transaction(self.conn)

    def ensure_schema(self) -> Dict[str, Any]:
        """Ensure database has current schema."""
        return ensure_current_schema(self.conn)

    def check_integrity(self) -> Dict[str, Any]:
        """Run integrity checks."""
        return check_integrity(self.conn)

    def get_stats(self) -> Dict[str, int]:
        """Get row counts for all tables."""
        return get_table_stats(self.conn)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in DATA_TABLES:
            raise ValueError(f"Unknown table: {table!r}")

    @staticmethod
    def _check_columns(table: str, columns) -> None:
        known = set(LATEST.table(table).column_names)
        unknown = sorted(set(columns) - known)
        if unknown:
            raise ValueError(f"Unknown column(s) for {table}: {', '.join(unknown)}")

    @staticmethod
    def _decode(table: str, row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        if table == "settings":
            record["value"] = decode_setting(record.get("value"))
        return record

    def _write(self, table: str, sql: str, params) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise integrity_error(table, e) from e
        except sqlite3.OperationalError as e:
            if is_lock_error(e):
                raise StoreBlocked(str(e)) from e
            raise StoreError(f"{table}: {e}") from e

    @staticmethod
    def _check_reference(rec: Dict[str, Any]) -> None:
        """A payment names its period as YYYY-MM; stored zero-padded."""
        ref = normalize_reference(rec.get("referencia"))
        if ref is None:
            raise ValidationError(
                "Informe a referência do pagamento no formato AAAA-MM.", field="referencia"
            )
        rec["referencia"] = ref

    def _check_username(self, username: Any, exclude_id=None) -> None:
        """Usernames are unique ignoring case, accented letters included."""
        row = self.conn.execute(
            "SELECT id FROM users WHERE casefold(username) = casefold(?) AND id IS NOT ?",
            (username, exclude_id),
        ).fetchone()
        if row is not None:
            raise UniqueConstraintViolation("users", ("username",))

    def _prepare(self, table: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        rec = dict(record)
        if table == "settings" and "value" in rec:
            rec["value"] = encode_setting(rec["value"])
        self._check_columns(table, rec)
        return encode_row(rec, rec.keys())

    # =========================================================================
    # Generic CRUD
    # =========================================================================

    def get_all(self, table: str) -> List[Dict[str, Any]]:
        self._check_table(table)
        cur = self.conn.execute(f"SELECT * FROM {table} ORDER BY {primary_key(table)}")
        return [self._decode(table, row) for row in cur.fetchall()]

    def get_by_id(self, table: str, id) -> Optional[Dict[str, Any]]:
        self._check_table(table)
        cur = self.conn.execute(
            f"SELECT * FROM {table} WHERE {primary_key(table)} = ?", (id,)
        )
        row = cur.fetchone()
        return self._decode(table, row) if row else None

    def count(self, table: str) -> int:
        self._check_table(table)
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def insert(self, table: str, record: Mapping[str, Any]) -> int:
        """Insert a record. Returns the generated id."""
        self._check_table(table)
        rec = dict(record)
        if rec.get("id") is None:
            rec.pop("id", None)

        columns = LATEST.table(table).column_names
        now = now_iso()
        if "created_at" in columns and not rec.get("created_at"):
            rec["created_at"] = now
        if table == "clients" and not rec.get("updated_at"):
            rec["updated_at"] = now
        if table == "payments":
            self._check_reference(rec)
        if table == "users":
            self._check_username(rec.get("username"))

        values = self._prepare(table, rec)
        cols = list(values)
        cur = self._write(
            table,
            f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            [values[c] for c in cols],
        )
        return cur.lastrowid

    def update(self, table: str, id, partial: Mapping[str, Any]) -> int:
        """Update fields of one record. Returns rows affected (0 if id is absent)."""
        self._check_table(table)
        pk = primary_key(table)
        fields = {k: v for k, v in dict(partial).items() if k != pk}
        if table == "clients":
            fields["updated_at"] = now_iso()
        if table == "payments" and "referencia" in fields:
            self._check_reference(fields)
        if table == "users" and "username" in fields:
            self._check_username(fields["username"], exclude_id=id)
        if not fields:
            return 0

        values = self._prepare(table, fields)
        set_clause = ", ".join(f"{k} = ?" for k in values)
        cur = self._write(
            table,
            f"UPDATE {table} SET {set_clause} WHERE {pk} = ?",
            list(values.values()) + [id],
        )
        return cur.rowcount

    def delete(self, table: str, id) -> int:
        """
        Delete one record. Returns rows affected (0 if id is absent).
        Clients always go through delete_client_and_relations.
        """
        self._check_table(table)
        if table == "clients":
            if self.get_by_id("clients", id) is None:
                return 0
            return 1 if self.delete_client_and_relations(id) else 0
        cur = self._write(table, f"DELETE FROM {table} WHERE {primary_key(table)} = ?", (id,))
        return cur.rowcount

    # =========================================================================
    # Named queries
    # =========================================================================

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        """Case-insensitive username lookup."""
        cur = self.conn.execute(
            "SELECT * FROM users WHERE casefold(username) = casefold(?) ORDER BY id LIMIT 1",
            (username,),
        )
        row = cur.fetchone()
        return dict(row) if row else None

    def get_setting(self, key: str, default: Any = None) -> Any:
        row = self.conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return decode_setting(row[0])

    def get_settings(self) -> Dict[str, Any]:
        cur = self.conn.execute("SELECT key, value FROM settings ORDER BY key")
        return {row["key"]: decode_setting(row["value"]) for row in cur.fetchall()}

    def upsert_setting(self, key: str, value: Any) -> None:
        if not key or not isinstance(key, str):
            raise ValidationError("Chave de configuração inválida.", field="key")
        self._write(
            "settings",
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, encode_setting(value)),
        )

    def get_payments_by_client(self, client_id: int) -> List[Dict[str, Any]]:
        cur = self.conn.execute(
            "SELECT * FROM payments WHERE client_id = ? ORDER BY id", (client_id,)
        )
        return [dict(row) for row in cur.fetchall()]

    def get_documents_by_client(self, client_id: int) -> List[Dict[str, Any]]:
        """Newest first."""
        cur = self.conn.execute(
            "SELECT * FROM documents WHERE client_id = ? ORDER BY created_at DESC, id DESC",
            (client_id,),
        )
        return [dict(row) for row in cur.fetchall()]

    def get_attendances_by_client(self, client_id: int) -> List[Dict[str, Any]]:
        """Newest first."""
        cur = self.conn.execute(
            "SELECT * FROM attendances WHERE client_id = ? ORDER BY created_at DESC, id DESC",
            (client_id,),
        )
        return [dict(row) for row in cur.fetchall()]

    def get_last_payment(self, client_id: int) -> Optional[Dict[str, Any]]:
        cur = self.conn.execute(
            """
            SELECT * FROM payments
            WHERE client_id = ? AND referencia IS NOT NULL
            ORDER BY referencia DESC, id DESC
            LIMIT 1
            """,
            (client_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None

    def get_payments_by_reference(self, referencia: str) -> List[Dict[str, Any]]:
        cur = self.conn.execute(
            "SELECT * FROM payments WHERE referencia = ? ORDER BY id", (referencia,)
        )
        return [dict(row) for row in cur.fetchall()]

    # =========================================================================
    # Composite transactions
    # =========================================================================

    def delete_client_and_relations(self, client_id: int) -> bool:
        """
        Delete a client and every payment, declaration, document and
        attendance that references it, atomically. Returns True once the
        client is confirmed gone.

        Inside an outer store.transaction() the work runs as a savepoint: the
        check sees the uncommitted state and the outer block decides whether
        the deletion is committed.
        """
        deleted: Dict[str, int] = {}
        try:
            with self.transaction():
                for table in CLIENT_RELATED_TABLES:
                    cur = self.conn.execute(
                        f"DELETE FROM {table} WHERE client_id = ?", (client_id,)
                    )
                    deleted[table] = cur.rowcount
                cur = self.conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
                deleted["clients"] = cur.rowcount
        except StoreBlocked:
            raise
        except (sqlite3.Error, StoreError) as e:
            log.error("delete_client %s rolled back: %s", client_id, e)
            raise TransactionFailure("delete_client", e) from e

        gone = self.get_by_id("clients", client_id) is None
        log.info("Deleted client %s and relations %s", client_id, deleted)
        return gone

    def wipe_transactional_data(self) -> Dict[str, int]:
        """Clear every transactional table. Settings and users are left alone."""
        deleted: Dict[str, int] = {}
        try:
            with self.transaction():
                for table in TRANSACTIONAL_TABLES:
                    cur = self.conn.execute(f"DELETE FROM {table}")
                    deleted[table] = cur.rowcount
        except StoreBlocked:
            raise
        except (sqlite3.Error, StoreError) as e:
            log.error("wipe rolled back: %s", e)
            raise TransactionFailure("wipe", e) from e

        log.warning("Wiped transactional data: %s", deleted)
        return deleted

    def replace_all(self, tables: Mapping[str, List[Dict[str, Any]]]) -> Dict[str, int]:
        """
        Replace the contents of every data table with the given rows, ids
        included. Tables absent from the mapping end up empty. All or nothing.
        """
        for name in tables:
            self._check_table(name)

        counts: Dict[str, int] = {}
        try:
            with self.transaction():
                for table in DATA_TABLES:
                    self.conn.execute(f"DELETE FROM {table}")
                    rows = tables.get(table) or []
                    for row in rows:
                        values = self._prepare(table, row)
                        cols = list(values)
                        self._write(
                            table,
                            f"INSERT INTO {table} ({', '.join(cols)}) "
                            f"VALUES ({', '.join('?' for _ in cols)})",
                            [values[c] for c in cols],
                        )
                    counts[table] = len(rows)
        except StoreBlocked:
            raise
        except (sqlite3.Error, StoreError, ValueError) as e:
            log.error("replace_all rolled back: %s", e)
            raise TransactionFailure("restore", e) from e

        log.info("Replaced store contents: %s", counts)
        return counts
