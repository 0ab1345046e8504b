from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from storage.base import DataAccess

log = logging.getLogger("reports.export")

EXPORTABLE_TABLES = ("clients", "payments", "expenses")


def csv_value(value: Any) -> str:
    """JSON-quote one cell; None becomes an empty quoted string."""
    if value is None:
        value = ""
    elif isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, bytes):
        value = base64.b64encode(value).decode("ascii")
    return json.dumps(value, ensure_ascii=False)


def to_csv(rows: List[Dict[str, Any]]) -> str:
    """
    Header from the first row's field names, one line per record,
    lines joined with CRLF. No rows gives an empty string.
    """
    if not rows:
        return ""
    headers = list(rows[0].keys())
    lines = [",".join(headers)]
    lines.extend(",".join(csv_value(row.get(h)) for h in headers) for row in rows)
    return "\r\n".join(lines)


def export_table_csv(store: DataAccess, table: str, path: Union[str, Path]) -> int:
    """Write one table as CSV. Returns rows written; nothing is written for an empty table."""
    if table not in EXPORTABLE_TABLES:
        raise ValueError(f"Table {table!r} cannot be exported (choose {', '.join(EXPORTABLE_TABLES)})")
    rows = store.get_all(table)
    if not rows:
        log.info("Table %s is empty; nothing exported", table)
        return 0
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_csv(rows), encoding="utf-8", newline="")
    log.info("Exported %d rows of %s to %s", len(rows), table, path)
    return len(rows)
