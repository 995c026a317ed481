"""Code catalogs for Costa Rica electronic invoices (comprobantes electronicos v4.4)."""

from __future__ import annotations

CREDIT_NOTE_CODE = "03"

DOCUMENT_TYPE_LABELS: dict[str, str] = {
    "01": "Factura electrónica",
    "02": "Nota de débito electrónica",
    "03": "Nota de crédito electrónica",
    "04": "Tiquete electrónico",
    "05": "Confirmación de aceptación",
    "06": "Confirmación de aceptación parcial",
    "07": "Confirmación de rechazo",
}

# Root element local name -> document type code
ROOT_DOCUMENT_TYPES: dict[str, str] = {
    "FacturaElectronica": "01",
    "NotaDebitoElectronica": "02",
    "NotaCreditoElectronica": "03",
    "TiqueteElectronico": "04",
}

RECEIVER_MESSAGE_ROOT = "MensajeReceptor"
RECEIVER_MESSAGE_LABEL = "Mensaje receptor (confirmación)"

PAYMENT_METHOD_LABELS: dict[str, str] = {
    "01": "Efectivo",
    "02": "Tarjeta (crédito o débito)",
    "03": "Cheque",
    "04": "Transferencia bancaria",
    "05": "Recaudado por terceros",
    "06": "Otros",
}

TRANSACTION_TYPE_LABELS: dict[str, str] = {
    "01": "Venta de bienes o servicios",
    "02": "Devolución de mercadería",
    "03": "Bonificaciones",
    "04": "Descuentos",
    "05": "Otros",
}

TAX_CODE_LABELS: dict[str, str] = {
    "01": "Impuesto al Valor Agregado",
    "02": "Impuesto Selectivo de Consumo",
    "03": "Impuesto único a los combustibles",
    "04": "Impuesto específico de bebidas alcohólicas",
    "05": "Impuesto específico sobre bebidas envasadas sin contenido alcohólico y jabones de tocador",
    "06": "Impuesto a los productos de tabaco",
    "07": "IVA (cálculo especial)",
    "08": "IVA Régimen de Bienes Usados (Factor)",
    "12": "Impuesto específico al Cemento",
    "99": "Otros",
}

VAT_RATE_LABELS: dict[str, str] = {
    "01": "Tarifa 0% (Artículo 32, num 1, RLIVA)",
    "02": "Tarifa reducida 1%",
    "03": "Tarifa reducida 2%",
    "04": "Tarifa reducida 4%",
    "05": "Transitorio 0%",
    "06": "Transitorio 4%",
    "07": "Tarifa transitoria 8%",
    "08": "Tarifa general 13%",
    "09": "Tarifa reducida 0.5%",
    "10": "Tarifa Exenta",
    "11": "Tarifa 0% sin derecho a crédito",
}

EMPTY_LABEL = "—"


def document_type_for_root(local_name: str | None) -> tuple[str | None, str | None]:
    """Return (code, label) for a root element name.

    Unknown roots keep their own name as label and get no code.
    """
    name = (local_name or "").strip()
    code = ROOT_DOCUMENT_TYPES.get(name)
    if code:
        return code, DOCUMENT_TYPE_LABELS[code]
    if name == RECEIVER_MESSAGE_ROOT:
        # 05-07 can't be told apart without reading the message body
        return None, RECEIVER_MESSAGE_LABEL
    return None, name or None


def label_for_code(code: str | None, catalog: dict[str, str]) -> str:
    code = (code or "").strip()
    if not code:
        return EMPTY_LABEL
    label = catalog.get(code)
    return f"{code} - {label}" if label else code


def tax_code_label(code: str | None) -> str:
    code = (code or "").strip()
    if not code:
        return EMPTY_LABEL
    label = TAX_CODE_LABELS.get(code)
    return f"{label} ({code})" if label else code


def tax_column_label(tax_code: str | None, rate_code: str | None) -> str:
    rate = label_for_code(rate_code, VAT_RATE_LABELS) if (rate_code or "").strip() else EMPTY_LABEL
    return f"{tax_code_label(tax_code)} | {rate}"
