# reports/mailing.py
"""
Member mailing: contact list filtered by status and printable address
labels (A4 sheet, 3 x 10 labels of 63.5 x 25.4 mm).
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping

import fitz  # PyMuPDF
import pandas as pd

from sind_core.models import Client
from storage.base import DataAccess

from .reports import Report

log = logging.getLogger("reports.mailing")

STATUS_FILTERS = ("active", "inactive", "all")

MM = 72.0 / 25.4
PAGE_W, PAGE_H = fitz.paper_size("a4")
LABEL_W, LABEL_H = 63.5 * MM, 25.4 * MM
LABEL_COLS, LABEL_ROWS = 3, 10
SHEET_LEFT, SHEET_TOP = 6.35 * MM, 12.7 * MM
LABEL_PAD = 5.0
LABEL_FONT_SIZE = 9.0


def whatsapp_link(phone: Any) -> str:
    """(79) 98888-7777 -> https://wa.me/5579988887777; empty when there are no digits."""
    digits = re.sub(r"\D", "", str(phone or ""))
    return f"https://wa.me/55{digits}" if digits else ""


def select_clients(store: DataAccess, status: str = "active") -> List[Dict[str, Any]]:
    """
    Clients for the mailing, sorted by name. "inactive" means every status
    other than Ativo (Inativo and Suspenso).
    """
    if status not in STATUS_FILTERS:
        raise ValueError(f"Unknown status filter: {status!r} (choose {', '.join(STATUS_FILTERS)})")
    clients = store.get_all("clients")
    if status == "active":
        clients = [c for c in clients if Client.from_row(c).is_active]
    elif status == "inactive":
        clients = [c for c in clients if not Client.from_row(c).is_active]
    return sorted(clients, key=lambda c: (c.get("nome_completo") or "").lower())


def mailing_list(store: DataAccess, status: str = "active") -> Report:
    titles = {"active": "Ativos", "inactive": "Inativos/Suspensos", "all": "Todos"}
    rows = [
        {
            "Nome": c.get("nome_completo") or "",
            "Telefone": c.get("telefone") or "",
            "Endereço": c.get("endereco") or "",
            "WhatsApp": whatsapp_link(c.get("telefone")),
        }
        for c in select_clients(store, status)
    ]
    df = pd.DataFrame(rows, columns=["Nome", "Telefone", "Endereço", "WhatsApp"])
    return Report(f"Mala Direta - {titles[status]}", df)


def label_rect(index: int) -> fitz.Rect:
    """Position of the index-th label on its sheet."""
    pitch_x = (PAGE_W - 2 * SHEET_LEFT) / LABEL_COLS
    row, col = divmod(index % (LABEL_COLS * LABEL_ROWS), LABEL_COLS)
    x0 = SHEET_LEFT + col * pitch_x
    y0 = SHEET_TOP + row * LABEL_H
    return fitz.Rect(x0, y0, x0 + LABEL_W, y0 + LABEL_H)


def render_labels(clients: List[Mapping[str, Any]]) -> bytes:
    """One label per client: name on the first line, address below."""
    if not clients:
        raise ValueError("No clients to print labels for")
    per_sheet = LABEL_COLS * LABEL_ROWS
    sheets = -(-len(clients) // per_sheet)

    doc = fitz.open()
    try:
        for _ in range(sheets):
            doc.new_page(width=PAGE_W, height=PAGE_H)
        for i, client in enumerate(clients):
            page = doc[i // per_sheet]
            rect = label_rect(i)
            text = f"{client.get('nome_completo') or ''}\n{client.get('endereco') or ''}"
            inner = fitz.Rect(rect.x0 + LABEL_PAD, rect.y0 + LABEL_PAD, rect.x1 - LABEL_PAD, rect.y1 - LABEL_PAD)
            # negative result: text did not fit and was cut
            if page.insert_textbox(inner, text, fontsize=LABEL_FONT_SIZE, fontname="helv") < 0:
                log.warning("Label for client %s truncated", client.get("id"))
        return doc.tobytes()
    finally:
        doc.close()
