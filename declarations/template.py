from __future__ import annotations

import html
import re
from typing import Any, Dict, Mapping, Optional

from sind_utils.normalizers import format_date_br, month_name_pt, parse_reference

PLACEHOLDERS = (
    "NOME_ASSOCIADO",
    "CPF",
    "RG",
    "DATA_FILIACAO",
    "MES_ULTIMO_PAGAMENTO",
    "ANO_ULTIMO_PAGAMENTO",
)

_TOKEN_RX = re.compile(r"\{\{\s*([A-Z_]+)\s*\}\}")


def placeholder_values(
    client: Mapping[str, Any], last_payment: Optional[Mapping[str, Any]] = None
) -> Dict[str, str]:
    values = {
        "NOME_ASSOCIADO": client.get("nome_completo") or "",
        "CPF": client.get("cpf") or "",
        "RG": client.get("rg") or "",
        "DATA_FILIACAO": format_date_br(client.get("data_filiacao")),
    }
    parsed = parse_reference(last_payment.get("referencia")) if last_payment else None
    if parsed:
        year, month = parsed
        values["MES_ULTIMO_PAGAMENTO"] = month_name_pt(month, capitalize=True)
        values["ANO_ULTIMO_PAGAMENTO"] = str(year)
    return values


def fill_template(template: str, values: Mapping[str, str]) -> str:
    """
    Replace every {{TOKEN}} that has a value. Values are HTML-escaped so a
    name like "Ana & Filhos" cannot break the markup. Unknown tokens stay.
    """

    def repl(m: re.Match) -> str:
        key = m.group(1)
        if key not in values:
            return m.group(0)
        return html.escape(str(values[key]), quote=False)

    return _TOKEN_RX.sub(repl, template or "")
