"""Parser for Costa Rica electronic invoice XML (FacturaElectronica, NotaCreditoElectronica, ...).

Reads header, party and summary data only. Line items (DetalleServicio/LineaDetalle)
are deliberately never extracted; the few whole-document scans below (transaction
types, tax rates, discount amounts) aggregate values without building line records.

Lookups go by local element name and ignore namespaces, so documents from the
different schema versions (4.3, 4.4) and namespace prefixes all parse the same way.
"""

from __future__ import annotations

import logging
import re
from typing import Iterator

from lxml import etree

from egresos.accounting.codes import document_type_for_root
from egresos.accounting.errors import ParseError
from egresos.accounting.invoice_models import (
    InvoiceRecord,
    Party,
    PaymentMethod,
    Summary,
    TaxBreakdownLine,
)
from egresos.accounting.numbers import is_zero, parse_decimal

logger = logging.getLogger(__name__)

XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)
XML_DECLARATION = re.compile(r"^<\?xml[^>]*\?>")


def local_name(el) -> str | None:
    tag = getattr(el, "tag", None)
    if not isinstance(tag, str):
        return None
    return etree.QName(tag).localname


def iter_named(node, name: str) -> Iterator:
    """Descendants of ``node`` (not ``node`` itself) with the given local name, in document order."""
    for el in node.iter():
        if el is node:
            continue
        if local_name(el) == name:
            yield el


def find_first(node, name: str):
    if node is None:
        return None
    return next(iter_named(node, name), None)


def _text_of(el) -> str:
    return "".join(el.itertext()).strip()


def first_text(node, name: str) -> str | None:
    el = find_first(node, name)
    if el is None:
        return None
    return _text_of(el) or None


def format_phone(country_code: str | None, number: str | None) -> str | None:
    cc = (country_code or "").strip()
    num = (number or "").strip()
    if cc and num:
        return f"+{cc} {num}"
    if num:
        return num
    return f"+{cc}" if cc else None


def join_defined(parts: list[str | None], separator: str = ", ") -> str | None:
    kept = [p.strip() for p in parts if p and p.strip()]
    return separator.join(kept) if kept else None


def _load_tree(raw_text: str):
    if raw_text is None or not raw_text.strip():
        raise ParseError("XML vacío")
    # The text is already decoded: a declared encoding such as ISO-8859-1 no longer applies
    text = raw_text.lstrip("\ufeff").strip()
    try:
        root = etree.fromstring(XML_DECLARATION.sub("", text, count=1).encode("utf-8"), XML_PARSER)
    except etree.XMLSyntaxError as e:
        raise ParseError(f"XML inválido o mal formado: {e}") from e
    except ValueError as e:
        raise ParseError(f"XML inválido o mal formado: {e}") from e
    if root is None or local_name(root) is None:
        raise ParseError("XML vacío")
    return root


def _build_party(party_el) -> Party | None:
    if party_el is None:
        return None

    ident = find_first(party_el, "Identificacion")
    phone_el = find_first(party_el, "Telefono")
    location_el = find_first(party_el, "Ubicacion")

    phone = None
    if phone_el is not None:
        phone = format_phone(first_text(phone_el, "CodigoPais"), first_text(phone_el, "NumTelefono"))

    location = None
    if location_el is not None:
        location = join_defined(
            [
                first_text(location_el, "Provincia"),
                first_text(location_el, "Canton"),
                first_text(location_el, "Distrito"),
                first_text(location_el, "Barrio"),
                first_text(location_el, "OtrasSenas"),
            ],
            " - ",
        )

    return Party(
        name=first_text(party_el, "Nombre"),
        id_type=first_text(ident, "Tipo") if ident is not None else None,
        id_number=first_text(ident, "Numero") if ident is not None else None,
        trade_name=first_text(party_el, "NombreComercial"),
        email=first_text(party_el, "CorreoElectronico"),
        phone=phone,
        location=location,
    )


def _collect_tax_rates(root) -> dict[tuple[str, str], str]:
    """Map (Codigo, CodigoTarifaIVA) -> Tarifa from every <Impuesto> in the document."""
    rates: dict[tuple[str, str], str] = {}
    for imp in iter_named(root, "Impuesto"):
        code = first_text(imp, "Codigo")
        rate_code = first_text(imp, "CodigoTarifaIVA")
        rate = first_text(imp, "Tarifa")
        if not code or not rate_code or not rate:
            continue
        rates.setdefault((code, rate_code), rate)
    return rates


def _total_discounts(root, summary_el) -> str | None:
    direct = first_text(summary_el, "TotalDescuentos")
    if parse_decimal(direct) is not None:
        return direct

    # Best-effort fallback: the issuer did not fill TotalDescuentos, so add up every
    # MontoDescuento in the document. Not guaranteed to match the issuer's intent.
    total = 0.0
    found = False
    for el in iter_named(root, "MontoDescuento"):
        value = parse_decimal(_text_of(el))
        if value is None:
            continue
        found = True
        total += value
    if not found:
        return None
    if is_zero(total):
        return "0.00"
    return f"{total:.2f}"


def _tax_breakdown(summary_el, rates: dict[tuple[str, str], str]) -> list[TaxBreakdownLine]:
    lines = []
    for el in iter_named(summary_el, "TotalDesgloseImpuesto"):
        code = first_text(el, "Codigo")
        rate_code = first_text(el, "CodigoTarifaIVA")
        amount = first_text(el, "TotalMontoImpuesto")

        value = parse_decimal(amount)
        if value is not None and is_zero(value):
            continue

        rate = first_text(el, "Tarifa")
        if rate is None and code and rate_code:
            rate = rates.get((code, rate_code))

        lines.append(TaxBreakdownLine(
            tax_code=code,
            tax_rate_code=rate_code,
            rate_percent=rate,
            tax_amount=amount,
        ))
    return lines


def _payment_methods(summary_el) -> list[PaymentMethod]:
    return [
        PaymentMethod(
            type_code=first_text(el, "TipoMedioPago"),
            other_text=first_text(el, "MedioPagoOtros"),
            total=first_text(el, "TotalMedioPago"),
        )
        for el in iter_named(summary_el, "MedioPago")
    ]


def _build_summary(root, summary_el, rates) -> Summary | None:
    if summary_el is None:
        return None
    currency_el = find_first(summary_el, "CodigoTipoMoneda")
    return Summary(
        currency_code=first_text(currency_el, "CodigoMoneda") if currency_el is not None else None,
        exchange_rate=first_text(currency_el, "TipoCambio") if currency_el is not None else None,
        total_sale=first_text(summary_el, "TotalVenta"),
        total_discounts=_total_discounts(root, summary_el),
        net_sale=first_text(summary_el, "TotalVentaNeta"),
        total_taxed_goods=first_text(summary_el, "TotalMercanciasGravadas"),
        total_taxed=first_text(summary_el, "TotalGravado"),
        other_charges=first_text(summary_el, "TotalOtrosCargos"),
        total_tax=first_text(summary_el, "TotalImpuesto"),
        total_document=first_text(summary_el, "TotalComprobante"),
        payment_methods=_payment_methods(summary_el),
        tax_breakdown=_tax_breakdown(summary_el, rates),
    )


def parse_invoice_xml(raw_text: str) -> InvoiceRecord:
    """Parse raw XML text into an InvoiceRecord. Raises ParseError for malformed XML."""
    root = _load_tree(raw_text)

    doc_code, doc_label = document_type_for_root(local_name(root))

    transaction_types = frozenset(
        text for text in (_text_of(el) for el in iter_named(root, "TipoTransaccion")) if text
    )

    rates = _collect_tax_rates(root)

    return InvoiceRecord(
        document_type_code=doc_code,
        document_type_label=doc_label,
        transaction_type_codes=transaction_types,
        key=first_text(root, "Clave"),
        consecutive_number=first_text(root, "NumeroConsecutivo"),
        issue_date=first_text(root, "FechaEmision"),
        systems_provider=first_text(root, "ProveedorSistemas"),
        issuer_activity_code=first_text(root, "CodigoActividadEmisor"),
        receiver_activity_code=first_text(root, "CodigoActividadReceptor"),
        sale_condition=first_text(root, "CondicionVenta"),
        sale_condition_other=first_text(root, "CondicionVentaOtros"),
        issuer=_build_party(find_first(root, "Emisor")),
        receiver=_build_party(find_first(root, "Receptor")),
        summary=_build_summary(root, find_first(root, "ResumenFactura"), rates),
    )


def is_likely_xml(file_name: str, mime_type: str | None = None) -> bool:
    """Cheap prefilter by MIME type or extension; parsing is the real check."""
    if mime_type and "xml" in mime_type.lower():
        return True
    return (file_name or "").lower().endswith(".xml")
