# reports/reports.py
"""
Management reports built from store rows with pandas.

  paid_report       who paid a reference month
  unpaid_report     active members with no payment for a reference month
  balance_report    revenue vs expenses for a calendar year, ledger newest first
  cash_flow         signed ledger between two dates
  dashboard_summary headline numbers for the current month
"""
from __future__ import annotations

import html
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from sind_core.models import Client
from sind_utils.normalizers import (
    current_reference,
    format_brl,
    format_date_br,
    make_reference,
    parse_date,
)
from storage.base import DataAccess

NO_DATA = "Nenhum dado encontrado para este período."


@dataclass
class Report:
    title: str
    frame: pd.DataFrame
    summary: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return self.frame.empty

    def to_html(self, syndicate_name: str, generated_at: Optional[datetime] = None) -> str:
        generated_at = generated_at or datetime.now()
        if self.frame.empty:
            header = "".join(f"<th>{html.escape(str(c))}</th>" for c in self.frame.columns)
            table = (
                f'<table class="report"><thead><tr>{header}</tr></thead><tbody>'
                f'<tr><td colspan="{len(self.frame.columns)}" class="no-data">{NO_DATA}</td></tr>'
                "</tbody></table>"
            )
        else:
            table = self.frame.to_html(index=False, classes="report", border=0, na_rep="")
        summary = "".join(f"<p>{html.escape(line)}</p>" for line in self.summary)
        if summary:
            summary = f'<div class="summary">{summary}</div>'
        return (
            '<!DOCTYPE html>\n<html lang="pt-BR"><head><meta charset="UTF-8">'
            f"<title>{html.escape(self.title)}</title>"
            "<style>body{font-family:Helvetica,Arial,sans-serif;margin:2rem;color:#111827}"
            "header{border-bottom:2px solid #e5e7eb;margin-bottom:2rem}"
            "table{width:100%;border-collapse:collapse}th,td{padding:.5rem;text-align:left;"
            "border-bottom:1px solid #e5e7eb}thead th{background:#064e3b;color:#fff}"
            ".summary{border-left:4px solid #10b981;padding:1rem;margin-bottom:2rem}"
            ".no-data{text-align:center;color:#6b7280}</style></head><body>"
            f"<header><h1>{html.escape(syndicate_name)}</h1><p>{html.escape(self.title)}</p>"
            f"<p>Gerado em: {generated_at.strftime('%d/%m/%Y %H:%M:%S')}</p></header>"
            f"{summary}{table}"
            "<footer>Sistema de Gestão - Sindicato Rural de Indiaroba</footer>"
            "</body></html>"
        )


def _clients_by_id(store: DataAccess) -> Dict[int, Dict[str, Any]]:
    return {c["id"]: c for c in store.get_all("clients")}


def _sort_by_name(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    key = df["Nome"].fillna("").str.lower()
    return df.loc[key.sort_values(kind="stable").index].reset_index(drop=True)


def paid_report(store: DataAccess, year: int, month: int) -> Report:
    reference = make_reference(year, month)
    clients = _clients_by_id(store)
    rows = []
    for p in store.get_all("payments"):
        if p.get("referencia") != reference:
            continue
        client = clients.get(p["client_id"], {})
        rows.append(
            {
                "Nome": client.get("nome_completo") or "N/A",
                "CPF": client.get("cpf") or "N/A",
                "Data Pag.": format_date_br(p.get("data_pagamento")),
                "Valor Pago": format_brl(p.get("valor")),
            }
        )
    df = pd.DataFrame(rows, columns=["Nome", "CPF", "Data Pag.", "Valor Pago"])
    return Report(f"Relatório de Pagantes - {month:02d}/{year}", _sort_by_name(df))


def unpaid_report(store: DataAccess, year: int, month: int) -> Report:
    reference = make_reference(year, month)
    paid = {p["client_id"] for p in store.get_all("payments") if p.get("referencia") == reference}
    rows = [
        {"Nome": c.get("nome_completo") or "", "CPF": c.get("cpf"), "Telefone": c.get("telefone") or ""}
        for c in store.get_all("clients")
        if Client.from_row(c).is_active and c["id"] not in paid
    ]
    df = pd.DataFrame(rows, columns=["Nome", "CPF", "Telefone"])
    return Report(f"Relatório de Inadimplentes - {month:02d}/{year}", _sort_by_name(df))


def ledger(store: DataAccess, start: date, end: date) -> pd.DataFrame:
    """
    Revenue (payments by payment date) and expenses (by date) within
    [start, end], newest first. amount is signed: expenses are negative.
    """
    rows = []
    for p in store.get_all("payments"):
        d = parse_date(p.get("data_pagamento"))
        if d and start <= d <= end:
            rows.append(
                {"date": d, "description": "Pagamento de associado", "type": "Receita",
                 "amount": float(p.get("valor") or 0)}
            )
    for e in store.get_all("expenses"):
        d = parse_date(e.get("date"))
        if d and start <= d <= end:
            rows.append(
                {"date": d, "description": e.get("description") or "", "type": "Despesa",
                 "amount": -float(e.get("amount") or 0)}
            )
    df = pd.DataFrame(rows, columns=["date", "description", "type", "amount"])
    if df.empty:
        return df
    return df.sort_values("date", ascending=False, kind="stable").reset_index(drop=True)


def cash_flow(store: DataAccess, start: date, end: date) -> Dict[str, Any]:
    df = ledger(store, start, end)
    revenue = float(df.loc[df["amount"] > 0, "amount"].sum()) if not df.empty else 0.0
    expenses = float(-df.loc[df["amount"] < 0, "amount"].sum()) if not df.empty else 0.0
    return {
        "transactions": df,
        "revenue": round(revenue, 2),
        "expenses": round(expenses, 2),
        "balance": round(revenue - expenses, 2),
    }


def balance_report(store: DataAccess, year: int) -> Report:
    flow = cash_flow(store, date(year, 1, 1), date(year, 12, 31))
    df = flow["transactions"]
    display = pd.DataFrame(
        {
            "Descrição": df["description"],
            "Tipo": df["type"],
            "Data": df["date"].map(format_date_br),
            "Valor": df["amount"].map(format_brl),
        },
        columns=["Descrição", "Tipo", "Data", "Valor"],
    )
    summary = [
        f"Total de Receitas (Pagamentos): {format_brl(flow['revenue'])}",
        f"Total de Despesas: {format_brl(flow['expenses'])}",
        f"Resultado Líquido: {format_brl(flow['balance'])}",
    ]
    return Report(f"Balanço Financeiro - {year}", display, summary)


def dashboard_summary(store: DataAccess, today: Optional[date] = None) -> Dict[str, Any]:
    reference = current_reference(today)
    payments = pd.DataFrame(
        store.get_all("payments"),
        columns=["id", "client_id", "referencia", "data_pagamento", "valor", "created_at", "registered_by"],
    )
    this_month = payments[payments["referencia"] == reference]
    clients = _clients_by_id(store)

    latest = payments.sort_values("created_at", ascending=False, kind="stable").head(5)
    recent = [
        {
            "nome": clients.get(row.client_id, {}).get("nome_completo") or "N/A",
            "referencia": row.referencia,
            "valor": float(row.valor),
            "created_at": row.created_at,
        }
        for row in latest.itertuples(index=False)
    ]
    return {
        "reference": reference,
        "total_clients": len(clients),
        "active_clients": sum(1 for c in clients.values() if c.get("status") == "Ativo"),
        "payments_this_month": int(len(this_month)),
        "revenue_this_month": round(float(this_month["valor"].sum()), 2),
        "recent_payments": recent,
    }
