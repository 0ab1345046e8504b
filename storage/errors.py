# storage/errors.py
"""
Error taxonomy for the storage layer.

StoreError
 ├── ValidationError
 │    └── UniqueConstraintViolation   duplicate CPF / username / payment period
 ├── TransactionFailure               a composite operation was rolled back
 ├── StoreBlocked                     another session holds the database lock
 ├── SnapshotCorrupt                  backup artifact could not be restored
 └── SchemaError                      migration could not reach the current schema
"""
from __future__ import annotations

from typing import Optional, Tuple


class StoreError(Exception):
    """Base class for every error raised by the storage layer."""


class ValidationError(StoreError):
    """User-correctable input problem. No data was changed."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


# Portuguese messages shown to the operator for each unique constraint.
UNIQUE_MESSAGES = {
    ("clients", ("cpf",)): "Já existe um associado cadastrado com este CPF.",
    ("users", ("username",)): "Já existe um usuário com este nome.",
    (
        "payments",
        ("client_id", "referencia"),
    ): "Já existe um pagamento registrado para este associado nesta referência.",
    ("settings", ("key",)): "Configuração já existente.",
}


class UniqueConstraintViolation(ValidationError):
    """Insert or update collided with a UNIQUE constraint."""

    def __init__(self, table: str, fields: Tuple[str, ...], detail: str = ""):
        message = UNIQUE_MESSAGES.get(
            (table, tuple(fields)),
            f"Registro duplicado em {table} ({', '.join(fields)}).",
        )
        super().__init__(message, field=fields[0] if fields else None)
        self.table = table
        self.fields = tuple(fields)
        self.detail = detail


class TransactionFailure(StoreError):
    """A multi-table transaction failed and was rolled back."""

    def __init__(self, operation: str, original: BaseException):
        super().__init__(f"{operation} failed and was rolled back: {original}")
        self.operation = operation
        self.original = original


class StoreBlocked(StoreError):
    """The database is held by another session; close it and retry."""


class SnapshotCorrupt(StoreError):
    """A backup artifact is unreadable or incompatible; the live store is untouched."""


class SchemaError(StoreError):
    """The on-disk schema cannot be brought to the current version."""
