"""Plain-text detail of one parsed document, for the /xml_ver command."""

from __future__ import annotations

from egresos.accounting.codes import (
    EMPTY_LABEL,
    PAYMENT_METHOD_LABELS,
    TRANSACTION_TYPE_LABELS,
    VAT_RATE_LABELS,
    label_for_code,
    tax_code_label,
)
from egresos.accounting.invoice_models import InvoiceRecord, Party
from egresos.accounting.numbers import format_money, format_number, format_simple_date, is_zero, parse_decimal

NO_TAX_BREAKDOWN = "Sin desglose de IVA en el XML."


def _value(text: str | None) -> str:
    text = (text or "").strip()
    return text or EMPTY_LABEL


def _money(raw: str | None, currency: str | None, default_currency: str | None) -> str:
    """Formatted amount; text that is not a number is shown as found in the XML."""
    if not (raw or "").strip():
        return EMPTY_LABEL
    value = parse_decimal(raw)
    if value is None:
        return raw.strip()
    return format_money(value, currency, default_currency)


def _is_nonzero(raw: str | None) -> bool:
    value = parse_decimal(raw)
    return value is not None and not is_zero(value)


def _percent(raw: str | None) -> str:
    value = parse_decimal(raw)
    if value is None:
        return _value(raw)
    return f"{format_number(value)}%"


def _document_type(invoice: InvoiceRecord) -> str:
    code = (invoice.document_type_code or "").strip()
    label = (invoice.document_type_label or "").strip()
    if code and label:
        return f"{code} - {label}"
    return code or label or EMPTY_LABEL


def _party_lines(title: str, party: Party | None) -> list[str]:
    party = party or Party()
    ident = " ".join(p for p in ((party.id_type or "").strip(), (party.id_number or "").strip()) if p)
    return [
        title,
        f"  Nombre: {_value(party.name)}",
        f"  Identificación: {ident or EMPTY_LABEL}",
        f"  Nombre comercial: {_value(party.trade_name)}",
        f"  Correo: {_value(party.email)}",
        f"  Teléfono: {_value(party.phone)}",
        f"  Ubicación: {_value(party.location)}",
    ]


def describe_invoice(
    invoice: InvoiceRecord,
    category_label: str | None = None,
    default_currency: str | None = None,
) -> str:
    """Header, summary, VAT, payment methods, issuer and receiver of one document."""
    summary = invoice.summary
    currency = invoice.currency_code

    def money(raw):
        return _money(raw, currency, default_currency)

    transaction_types = " | ".join(
        label_for_code(code, TRANSACTION_TYPE_LABELS) for code in sorted(invoice.transaction_type_codes)
    )

    lines = [
        "Encabezado",
        f"  Tipo comprobante: {_document_type(invoice)}",
        f"  Número consecutivo: {_value(invoice.consecutive_number)}",
        f"  Fecha: {format_simple_date(invoice.issue_date)}",
        f"  Proveedor sistemas: {_value(invoice.systems_provider)}",
        f"  Actividad emisor: {_value(invoice.issuer_activity_code)}",
        f"  Actividad receptor: {_value(invoice.receiver_activity_code)}",
        f"  Condición venta: {_value(invoice.sale_condition)}",
        f"  Condición otros: {_value(invoice.sale_condition_other)}",
        f"  Tipo transacción: {transaction_types or EMPTY_LABEL}",
    ]
    if category_label:
        lines.append(f"  Tipo egreso: {category_label}")

    lines += ["", "Resumen"]
    if summary is None:
        lines.append(f"  {EMPTY_LABEL}")
    else:
        lines += [
            f"  Moneda: {_value(currency)}",
            f"  Total gravado: {money(summary.total_taxed)}",
            f"  Total merc. gravadas: {money(summary.total_taxed_goods)}",
            f"  Total venta: {money(summary.total_sale)}",
        ]
        if _is_nonzero(summary.total_discounts):
            lines.append(f"  Total descuentos: {money(summary.total_discounts)}")
        lines.append(f"  Total venta neta: {money(summary.net_sale)}")
        if _is_nonzero(summary.other_charges):
            lines.append(f"  Total otros cargos: {money(summary.other_charges)}")
        lines += [
            f"  Total impuesto: {money(summary.total_tax)}",
            f"  Total comprobante: {money(summary.total_document)}",
        ]

    lines += ["", "IVA aplicado", f"  Total IVA: {money(summary.total_tax if summary else None)}"]
    breakdown = summary.tax_breakdown if summary else []
    if not breakdown:
        lines.append(f"  {NO_TAX_BREAKDOWN}")
    for tax in breakdown:
        rate = label_for_code(tax.tax_rate_code, VAT_RATE_LABELS)
        lines.append(
            f"  {tax_code_label(tax.tax_code)} | {rate} | {_percent(tax.rate_percent)} | {money(tax.tax_amount)}"
        )

    methods = summary.payment_methods if summary else []
    if methods:
        lines += ["", "Medios de pago"]
        for method in methods:
            lines.append(
                f"  {label_for_code(method.type_code, PAYMENT_METHOD_LABELS)}"
                f" | Otros: {_value(method.other_text)} | Total: {money(method.total)}"
            )

    lines.append("")
    lines += _party_lines("Emisor", invoice.issuer)
    lines.append("")
    lines += _party_lines("Receptor", invoice.receiver)
    return "\n".join(lines)
