# declarations/pdf.py
"""
PDF output for declarations and payment receipts (PyMuPDF).

Page geometry follows the printed forms the union already uses: A4,
20 mm side margins, letterhead at the top of the first page, footer with
the confirmation phone and validity notice on every page.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple

import fitz  # PyMuPDF

from sind_core.models import Client, Payment
from sind_utils.normalizers import (
    format_brl,
    format_date_br,
    format_long_date_pt,
    parse_reference,
)
from storage.base import DataAccess
from storage.errors import ValidationError
from storage.schema import PAYMENT_STATUS_TEMPLATE

from .images import decode_data_url, normalize_signature
from .layout import BodyFrame, LayoutResult, layout_paragraphs
from .markup import Style, parse_markup
from .template import fill_template, placeholder_values

log = logging.getLogger("declarations")

PAGE_W, PAGE_H = fitz.paper_size("a4")
MM = 72.0 / 25.4
MARGIN = 20 * MM
CONTENT_W = PAGE_W - 2 * MARGIN

BLACK = (0, 0, 0)
GRAY = (0.5, 0.5, 0.5)

FONTS = {
    (False, False): "helv",
    (True, False): "hebo",
    (False, True): "heit",
    (True, True): "hebi",
}

KINDS = {
    "membership": ("declarationTemplate", "DECLARAÇÃO DE VÍNCULO ASSOCIATIVO", "declaracao"),
    "payment": (
        "paymentDeclarationTemplate",
        "DECLARAÇÃO DE SITUAÇÃO DE PAGAMENTO",
        "declaracao_pagamento",
    ),
}

FALLBACK_TEMPLATES = {
    "membership": "O associado {{NOME_ASSOCIADO}} (CPF: {{CPF}}) é filiado desde {{DATA_FILIACAO}}.",
    "payment": PAYMENT_STATUS_TEMPLATE,
}


def font_for(style: Style) -> str:
    return FONTS[(style.bold, style.italic)]


def measure(text: str, style: Style, size: float) -> float:
    return fitz.get_text_length(text, fontname=font_for(style), fontsize=size)


def _text(page, x: float, y: float, text: str, *, size: float, bold: bool = False, color=BLACK) -> None:
    page.insert_text(
        (x, y), text, fontsize=size, fontname="hebo" if bold else "helv", color=color
    )


def _centered(page, y: float, text: str, *, size: float, bold: bool = False, color=BLACK,
              max_width: float = CONTENT_W) -> None:
    font = "hebo" if bold else "helv"
    width = fitz.get_text_length(text, fontname=font, fontsize=size)
    if width > max_width:
        size = size * max_width / width
        width = max_width
    _text(page, (PAGE_W - width) / 2, y, text, size=size, bold=bold, color=color)


def _right(page, y: float, text: str, *, size: float) -> None:
    width = fitz.get_text_length(text, fontname="helv", fontsize=size)
    _text(page, PAGE_W - MARGIN - width, y, text, size=size)


def _rule(page, y: float, x0: float = MARGIN, x1: float = PAGE_W - MARGIN, width: float = 0.5,
          color=BLACK) -> None:
    page.draw_line((x0, y), (x1, y), color=color, width=width)


@dataclass
class DeclarationOptions:
    city: str = "Indiaroba"
    state: str = "Sergipe"
    validity_days: int = 30

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]]) -> "DeclarationOptions":
        section = (config or {}).get("declaration", {})
        return cls(
            city=section.get("city", cls.city),
            state=section.get("state", cls.state),
            validity_days=int(section.get("validity_days", cls.validity_days)),
        )


# =============================================================================
# Page furniture
# =============================================================================


def draw_letterhead(page, settings: Mapping[str, Any]) -> None:
    _centered(page, 25 * MM, settings.get("syndicateName") or "SINDICATO", size=14, bold=True)
    _centered(page, 32 * MM, f"CNPJ: {settings.get('syndicateCnpj') or 'N/A'}", size=10)
    _centered(page, 37 * MM, settings.get("syndicateAddress") or "", size=10)
    _rule(page, 45 * MM, width=0.5)


def draw_footer(page, settings: Mapping[str, Any], validity_days: int) -> None:
    _rule(page, PAGE_H - 25 * MM, width=0.2)
    phone = settings.get("syndicatePhone") or ""
    _centered(
        page,
        PAGE_H - 18 * MM,
        f"A veracidade deste documento pode ser confirmada através do telefone: {phone}",
        size=9,
        color=GRAY,
    )
    _centered(
        page,
        PAGE_H - 13 * MM,
        f"Este documento tem validade de {validity_days} dias a partir da data de emissão.",
        size=9,
        color=GRAY,
    )


def draw_body(pages: List[Any], layout: LayoutResult, size: float) -> None:
    for page, laid in zip(pages, layout.pages):
        for line in laid.lines:
            for piece in line.pieces:
                page.insert_text(
                    (piece.x, line.y),
                    piece.text,
                    fontsize=size,
                    fontname=font_for(piece.style),
                    color=BLACK,
                )
                if piece.style.underline:
                    uy = line.y + size * 0.12
                    page.draw_line(
                        (piece.x, uy), (piece.x + piece.width, uy), color=BLACK, width=0.6
                    )


def draw_signature(page, y: float, signature: Optional[str]) -> None:
    """Signature image (optional) sitting on a rule, with 'A Diretoria' below."""
    if signature:
        try:
            png, w, h = normalize_signature(decode_data_url(signature))
            img_w = 50 * MM
            img_h = h * img_w / w
            x0 = PAGE_W / 2 - img_w / 2
            page.insert_image(
                fitz.Rect(x0, y - img_h - 2 * MM, x0 + img_w, y - 2 * MM), stream=png
            )
        except (ValueError, OSError, RuntimeError) as e:
            log.error("Error adding signature image: %s", e)
    _rule(page, y, PAGE_W / 2 - 40 * MM, PAGE_W / 2 + 40 * MM, width=0.5)
    _centered(page, y + 7 * MM, "A Diretoria", size=11)


# =============================================================================
# Declarations
# =============================================================================


def render_declaration(
    client: Mapping[str, Any],
    settings: Mapping[str, Any],
    *,
    kind: str = "membership",
    last_payment: Optional[Mapping[str, Any]] = None,
    today: Optional[date] = None,
    options: Optional[DeclarationOptions] = None,
) -> bytes:
    """Fill the kind's template for the client and lay it out as a PDF."""
    if kind not in KINDS:
        raise ValueError(f"Unknown declaration kind: {kind!r}")
    if kind == "payment" and not (last_payment and parse_reference(last_payment.get("referencia"))):
        raise ValidationError(
            "O associado não possui pagamento registrado para a declaração.",
            field="referencia",
        )
    options = options or DeclarationOptions()
    today = today or date.today()
    setting_key, title, _ = KINDS[kind]

    template = settings.get(setting_key) or FALLBACK_TEMPLATES[kind]
    body_html = fill_template(template, placeholder_values(client, last_payment))
    paragraphs = parse_markup(body_html)

    size = 12.5
    frame = BodyFrame(
        left=MARGIN,
        width=CONTENT_W,
        top=85 * MM - size,
        bottom=PAGE_H - 32 * MM,
        next_top=25 * MM,
        font_size=size,
        indent=12.5 * MM,
    )
    layout = layout_paragraphs(paragraphs, measure, frame)

    y = layout.end_y + 25 * MM
    # date line + signature block need about 55 mm
    spill = y + 50 * MM > PAGE_H - 30 * MM
    if spill:
        y = 40 * MM
    page_count = len(layout.pages) + (1 if spill else 0)

    doc = fitz.open()
    try:
        # new_page() invalidates Page objects already loaded
        for _ in range(page_count):
            doc.new_page(width=PAGE_W, height=PAGE_H)
        pages = [doc[i] for i in range(page_count)]

        draw_letterhead(pages[0], settings)
        _centered(pages[0], 65 * MM, title, size=20, bold=True)
        draw_body(pages, layout, size)

        page = pages[-1]
        place = f"{options.city}, {options.state}, em {format_long_date_pt(today)}."
        _right(page, y, place, size=size)
        draw_signature(page, y + 40 * MM, settings.get("syndicateSignature"))

        for p in pages:
            draw_footer(p, settings, options.validity_days)
        return doc.tobytes()
    finally:
        doc.close()


@dataclass
class IssuedDocument:
    pdf: bytes
    filename: str
    log_id: Optional[int] = None


def declaration_filename(kind: str, client: Mapping[str, Any], today: date) -> str:
    return f"{KINDS[kind][2]}_{Client.from_row(client).first_name}_{today.isoformat()}.pdf"


def issue_declaration(
    store: DataAccess,
    client_id: int,
    kind: str = "membership",
    *,
    config: Optional[Mapping[str, Any]] = None,
    today: Optional[date] = None,
) -> IssuedDocument:
    """Render a declaration for a stored client and append it to the declarations log."""
    client = store.get_by_id("clients", client_id)
    if client is None:
        raise ValidationError(f"Associado {client_id} não encontrado.", field="client_id")
    today = today or date.today()
    last_payment = store.get_last_payment(client_id) if kind == "payment" else None

    pdf = render_declaration(
        client,
        store.get_settings(),
        kind=kind,
        last_payment=last_payment,
        today=today,
        options=DeclarationOptions.from_config(config),
    )
    log_id = store.insert(
        "declarations", {"client_id": client_id, "data_emissao": today.isoformat()}
    )
    log.info("Issued %s declaration for client %s (log %s)", kind, client_id, log_id)
    return IssuedDocument(pdf, declaration_filename(kind, client, today), log_id)


# =============================================================================
# Payment receipt
# =============================================================================


def render_payment_receipt(
    client: Mapping[str, Any],
    payment: Mapping[str, Any],
    settings: Mapping[str, Any],
    *,
    today: Optional[date] = None,
) -> bytes:
    today = today or date.today()
    ref = parse_reference(payment.get("referencia"))
    reference = f"{ref[1]:02d}/{ref[0]}" if ref else "-"

    doc = fitz.open()
    try:
        page = doc.new_page(width=PAGE_W, height=PAGE_H)
        _centered(page, 20 * MM, "Comprovante de Pagamento", size=18)
        _centered(page, 30 * MM, settings.get("syndicateName") or "Sindicato Rural de Indiaroba", size=12)
        _rule(page, 35 * MM)

        rows: List[Tuple[float, str]] = [
            (50, f"Recebemos de: {client.get('nome_completo') or ''}"),
            (60, f"CPF: {client.get('cpf') or ''}"),
            (70, f"Referente a: {reference}"),
            (80, f"Data do Pagamento: {format_date_br(payment.get('data_pagamento'))}"),
        ]
        for y, text in rows:
            _text(page, MARGIN, y * MM, text, size=12)
        _text(page, MARGIN, 95 * MM, f"Valor Pago: {format_brl(payment.get('valor'))}", size=14)

        _rule(page, 110 * MM)
        _text(page, MARGIN, 120 * MM, f"Emitido em: {today.strftime('%d/%m/%Y')}", size=10)
        if payment.get("registered_by"):
            _text(page, MARGIN, 125 * MM, f"Registrado por: {payment['registered_by']}", size=10)
        return doc.tobytes()
    finally:
        doc.close()


def issue_receipt(
    store: DataAccess, payment_id: int, *, today: Optional[date] = None
) -> IssuedDocument:
    payment = store.get_by_id("payments", payment_id)
    if payment is None:
        raise ValidationError(f"Pagamento {payment_id} não encontrado.", field="payment_id")
    client = store.get_by_id("clients", payment["client_id"])
    if client is None:
        raise ValidationError(
            f"Associado {payment['client_id']} do pagamento não encontrado.", field="client_id"
        )
    today = today or date.today()
    pdf = render_payment_receipt(client, payment, store.get_settings(), today=today)
    year, month = Payment.from_row(payment).period or (today.year, today.month)
    filename = f"recibo_{Client.from_row(client).first_name}_{year}_{month:02d}.pdf"
    return IssuedDocument(pdf, filename)
