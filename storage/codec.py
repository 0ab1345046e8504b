# storage/codec.py
"""
Value conversion between Python objects and SQLite columns.

Settings hold arbitrary JSON-serializable values and are stored as JSON text.
Dates are stored as ISO-8601 strings; document content as raw bytes.
"""
from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable

from .errors import ValidationError


def encode_setting(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Valor de configuração inválido: {e}", field="value") from e


def decode_setting(raw: Any, *, strict: bool = False) -> Any:
    """
    Decode a stored setting value.
    Non-JSON text (hand-edited or very old rows) is returned as-is unless strict.
    """
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        return json.loads(raw)
    except ValueError:
        if strict:
            raise
        return raw


def to_column_value(value: Any) -> Any:
    """Convert one Python value to something sqlite3 can bind."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


def encode_row(row: Dict[str, Any], columns: Iterable[str]) -> Dict[str, Any]:
    return {c: to_column_value(row[c]) for c in columns if c in row}
