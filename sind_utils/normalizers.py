# sind_utils/normalizers.py
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Optional, Tuple


# ---------------- Timestamps ----------------


def now_iso() -> str:
    """Wall-clock timestamp for created_at / updated_at (UTC, ISO-8601)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


# ---------------- Dates ----------------

MONTHS_PT = (
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
)

YMD_RX = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
DMY_RX = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{4})\s*$")


def parse_date(raw: Any) -> Optional[date]:
    """
    Accept date/datetime objects, ISO strings ("2023-01-01", "2023-01-01T10:00:00Z")
    and Brazilian "dd/mm/yyyy". Anything else returns None.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    s = str(raw)
    m = YMD_RX.match(s)
    if m:
        y, mon, d = int(m.group(1)), int(m.group(2)), int(m.group(3))
    else:
        m = DMY_RX.match(s)
        if not m:
            return None
        d, mon, y = int(m.group(1)), int(m.group(2)), int(m.group(3))
    try:
        return date(y, mon, d)
    except ValueError:
        return None


def format_date_br(raw: Any) -> str:
    """2023-01-05 -> 05/01/2023. Unparseable input gives an empty string."""
    d = parse_date(raw)
    return d.strftime("%d/%m/%Y") if d else ""


def month_name_pt(month: int, *, capitalize: bool = False) -> str:
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    name = MONTHS_PT[month - 1]
    return name.capitalize() if capitalize else name


def format_long_date_pt(d: Optional[date] = None) -> str:
    """05 de janeiro de 2024"""
    d = d or date.today()
    return f"{d.day:02d} de {month_name_pt(d.month)} de {d.year}"


# ---------------- Reference periods (YYYY-MM) ----------------

REF_RX = re.compile(r"^(\d{4})-(\d{2})$")
# typed references may drop the leading zero of the month
LOOSE_REF_RX = re.compile(r"^(\d{4})-(\d{1,2})$")


def make_reference(year: Any, month: Any) -> str:
    y, m = int(year), int(month)
    if not 1 <= m <= 12:
        raise ValueError(f"Invalid month: {month}")
    return f"{y:04d}-{m:02d}"


def parse_reference(ref: Optional[str]) -> Optional[Tuple[int, int]]:
    if not ref:
        return None
    m = REF_RX.match(str(ref).strip())
    if not m:
        return None
    y, mon = int(m.group(1)), int(m.group(2))
    if not 1 <= mon <= 12:
        return None
    return y, mon


def normalize_reference(raw: Any) -> Optional[str]:
    """2023-5 or 2023-05 -> 2023-05; anything else -> None"""
    if raw is None:
        return None
    m = LOOSE_REF_RX.match(str(raw).strip())
    if not m or not 1 <= int(m.group(2)) <= 12:
        return None
    return make_reference(m.group(1), m.group(2))


def format_reference(ref: Optional[str]) -> str:
    """2023-06 -> 06/2023"""
    parsed = parse_reference(ref)
    if not parsed:
        return ref or ""
    return f"{parsed[1]:02d}/{parsed[0]}"


def current_reference(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{today.year:04d}-{today.month:02d}"


# ---------------- Money / documents ----------------


def format_brl(value: Any) -> str:
    """1234.5 -> 'R$ 1.234,50'"""
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        amount = 0.0
    sign = "-" if amount < 0 else ""
    text = f"{abs(amount):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {text}"


def only_digits(raw: Optional[str]) -> str:
    return re.sub(r"\D", "", raw or "")


def format_cpf(raw: Optional[str]) -> str:
    """Mask an 11-digit CPF as 000.000.000-00; other input is returned unchanged."""
    digits = only_digits(raw)
    if len(digits) != 11:
        return raw or ""
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"
