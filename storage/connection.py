# storage/connection.py
"""
SQLite connection helpers: opening, explicit transactions, lock detection.

Connections are opened in autocommit mode (isolation_level=None) so that
every multi-statement unit of work goes through ``transaction()`` and is
either fully committed or fully rolled back.
"""
from __future__ import annotations

import itertools
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from .errors import StoreBlocked, StoreError

BLOCKED_MESSAGE = (
    "O banco de dados está em uso por outra sessão do sistema. "
    "Feche as outras janelas ou processos e tente novamente."
)

_savepoints = itertools.count(1)


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def open_conn(
    path: Union[str, Path] = ":memory:",
    *,
    timeout: float = 5.0,
    exclusive: bool = False,
) -> sqlite3.Connection:
    """Open a database connection with row factory and explicit transactions."""
    try:
        conn = sqlite3.connect(str(path), timeout=timeout, isolation_level=None)
    except sqlite3.Error as e:
        raise StoreError(f"Cannot open database {path}: {e}") from e
    conn.row_factory = sqlite3.Row
    # Unicode case folding for usernames; COLLATE NOCASE only folds ASCII
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    if exclusive:
        # Once the first write lock is taken it is kept until close(),
        # so a second session on the same file cannot open it.
        conn.execute("PRAGMA locking_mode = EXCLUSIVE")
    return conn


def is_lock_error(exc: BaseException) -> bool:
    """True for SQLite 'database is locked' / 'busy' conditions."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


@contextmanager
def transaction(conn: sqlite3.Connection, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
    """
    Run the block as one atomic unit.

    Top level: BEGIN <mode> ... COMMIT, ROLLBACK on any exception.
    Nested: a SAVEPOINT, so an inner failure only undoes the inner block.
    """
    if conn.in_transaction:
        name = f"sp_{next(_savepoints)}"
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            conn.execute(f"RELEASE SAVEPOINT {name}")
        return

    try:
        conn.execute(f"BEGIN {mode}")
    except sqlite3.OperationalError as e:
        if is_lock_error(e):
            raise StoreBlocked(BLOCKED_MESSAGE) from e
        raise StoreError(f"Cannot start transaction: {e}") from e

    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        try:
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if is_lock_error(e):
                raise StoreBlocked(BLOCKED_MESSAGE) from e
            raise
