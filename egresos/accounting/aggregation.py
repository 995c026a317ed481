"""Aggregation of stored XML documents into export tables.

Credit notes contribute with the opposite sign. Totals are kept per currency and
never summed across currencies: a total that mixes currencies renders as
"CRC: ... | USD: ..." text, a single-currency total as a plain number.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Union

import config
from egresos.accounting.categorizer import ExpenseCatalog
from egresos.accounting.codes import CREDIT_NOTE_CODE, tax_column_label
from egresos.accounting.errors import (
    MissingCategory,
    MultipleReceivers,
    NothingToExport,
    ParseError,
)
from egresos.accounting.invoice_models import InvoiceRecord, StoredInvoice
from egresos.accounting.invoice_parser import parse_invoice_xml
from egresos.accounting.numbers import (
    format_currency_totals,
    format_money,
    format_simple_date,
    is_zero,
    parse_decimal,
    sort_key,
)

logger = logging.getLogger(__name__)

Cell = Union[str, float, int]
TaxKey = tuple[str, str]
ReversalPredicate = Callable[[Union[str, None]], bool]

NO_RECEIVER_LABEL = "Sin cédula"


def is_credit_note(document_type_code: str | None) -> bool:
    return (document_type_code or "").strip() == CREDIT_NOTE_CODE


def reversal_predicate(codes: Iterable[str]) -> ReversalPredicate:
    """Build a predicate treating every given document type code as a reversal."""
    wanted = frozenset(c.strip() for c in codes)
    return lambda code: (code or "").strip() in wanted


class RowKind(str, enum.Enum):
    HEADER = "header"
    DATA = "data"
    BLANK = "blank"
    TITLE = "title"
    SUBTOTAL = "subtotal"
    SPLIT = "split"
    TOTAL = "total"


@dataclass
class ExportRow:
    kind: RowKind
    cells: list[Cell]


@dataclass
class ExportMatrix:
    title: str
    rows: list[ExportRow]
    file_names: list[str] = field(default_factory=list)
    missing_category_count: int = 0
    column_widths: list[int] | None = None   # report layout hints, in points

    @property
    def header(self) -> list[Cell]:
        return self.rows[0].cells

    @property
    def width(self) -> int:
        return len(self.header)

    def rows_of(self, kind: RowKind) -> list[list[Cell]]:
        return [r.cells for r in self.rows if r.kind == kind]

    def as_lists(self) -> list[list[Cell]]:
        return [list(r.cells) for r in self.rows]

    def find_row(self, first_label: str) -> list[Cell] | None:
        """First row that has ``first_label`` in any text cell."""
        for r in self.rows:
            if first_label in r.cells:
                return r.cells
        return None


class CurrencyTotals:
    """Running sums keyed by currency code."""

    def __init__(self):
        self.sums: dict[str, float] = {}

    def add(self, currency: str, value: float):
        self.sums[currency] = self.sums.get(currency, 0.0) + value

    def get(self, currency: str) -> float:
        return self.sums.get(currency, 0.0)

    def negated(self) -> CurrencyTotals:
        out = CurrencyTotals()
        out.sums = {code: -value + 0.0 for code, value in self.sums.items()}
        return out

    def nonzero(self) -> dict[str, float]:
        return {code: value for code, value in self.sums.items() if not is_zero(value)}

    def cell(self, default_currency: str) -> Cell:
        kept = self.nonzero()
        if len(kept) > 1:
            return format_currency_totals(kept, default_currency)
        if kept:
            return next(iter(kept.values())) + 0.0
        return 0.0

    def text(self, default_currency: str) -> str:
        return format_currency_totals(self.sums, default_currency)

    def sort_value(self, default_currency: str) -> float:
        if default_currency in self.sums:
            return self.sums[default_currency]
        return sum(self.sums.values())


@dataclass
class _Totals:
    sale: CurrencyTotals = field(default_factory=CurrencyTotals)
    discounts: CurrencyTotals = field(default_factory=CurrencyTotals)
    other_charges: CurrencyTotals = field(default_factory=CurrencyTotals)
    tax: CurrencyTotals = field(default_factory=CurrencyTotals)
    document: CurrencyTotals = field(default_factory=CurrencyTotals)
    by_tax_key: dict[TaxKey, CurrencyTotals] = field(default_factory=dict)
    currencies: set[str] = field(default_factory=set)

    def add(self, item: _Item):
        c = item.currency
        self.currencies.add(c)
        self.sale.add(c, item.signed(item.summary_value("total_sale")))
        self.discounts.add(c, item.signed(item.summary_value("total_discounts")))
        self.other_charges.add(c, item.signed(item.summary_value("other_charges")))
        self.tax.add(c, item.signed(item.summary_value("total_tax")))
        self.document.add(c, item.signed(item.summary_value("total_document")))
        for key, amount in item.tax_amounts().items():
            self.by_tax_key.setdefault(key, CurrencyTotals()).add(c, amount)

    def tax_for(self, key: TaxKey) -> CurrencyTotals:
        return self.by_tax_key.get(key, CurrencyTotals())

    def negated(self) -> _Totals:
        return _Totals(
            sale=self.sale.negated(),
            discounts=self.discounts.negated(),
            other_charges=self.other_charges.negated(),
            tax=self.tax.negated(),
            document=self.document.negated(),
            by_tax_key={k: v.negated() for k, v in self.by_tax_key.items()},
            currencies=set(self.currencies),
        )

    def currency_label(self) -> str:
        return ", ".join(sorted(self.currencies))


@dataclass
class _Item:
    stored: StoredInvoice
    invoice: InvoiceRecord
    category_label: str
    account: str
    sign: int
    currency: str

    @property
    def is_reversal(self) -> bool:
        return self.sign < 0

    def raw(self, attr: str) -> str | None:
        summary = self.invoice.summary
        return getattr(summary, attr) if summary else None

    def summary_value(self, attr: str) -> float:
        return parse_decimal(self.raw(attr)) or 0.0

    def signed(self, value: float) -> float:
        return (-value if self.sign < 0 else value) + 0.0

    def detail(self, attr: str) -> Cell:
        """Signed number for a detail row; unparsable text is shown exactly as written."""
        raw = self.raw(attr)
        value = parse_decimal(raw)
        if value is None:
            return raw.strip() if raw and raw.strip() else 0.0
        return self.signed(value)

    def tax_amounts(self) -> dict[TaxKey, float]:
        sums: dict[TaxKey, float] = {}
        summary = self.invoice.summary
        for line in (summary.tax_breakdown if summary else []):
            value = parse_decimal(line.tax_amount)
            if value is None or is_zero(value):
                continue
            sums[line.key] = sums.get(line.key, 0.0) + self.signed(value)
        return sums


@dataclass
class ReceiverGroup:
    receiver_id: str
    receiver_name: str | None = None
    file_names: list[str] = field(default_factory=list)

    @property
    def is_blank(self) -> bool:
        return not self.receiver_id

    @property
    def label(self) -> str:
        return self.receiver_id or NO_RECEIVER_LABEL


def _receiver_of(record: StoredInvoice) -> tuple[str, str]:
    try:
        invoice = parse_invoice_xml(record.raw_text)
    except ParseError:
        return "", ""
    receiver = invoice.receiver
    name = ((receiver.name or receiver.trade_name) if receiver else None) or ""
    return invoice.receiver_id, name.strip()


def group_by_receiver(records: Iterable[StoredInvoice]) -> list[ReceiverGroup]:
    """Group stored documents by receiver id; the group without id goes last."""
    groups: dict[str, ReceiverGroup] = {}
    for record in records:
        receiver_id, name = _receiver_of(record)
        group = groups.get(receiver_id)
        if group is None:
            group = groups[receiver_id] = ReceiverGroup(receiver_id=receiver_id)
        group.file_names.append(record.file_name)
        if not group.receiver_name and name:
            group.receiver_name = name
    return sorted(groups.values(), key=lambda g: (g.is_blank, sort_key(g.receiver_id), g.receiver_id))


class AggregationEngine:
    """Builds the spreadsheet and report tables for one receiver's documents."""

    def __init__(
        self,
        catalog: ExpenseCatalog,
        is_reversal: ReversalPredicate = is_credit_note,
        default_currency: str | None = None,
    ):
        self.catalog = catalog
        self.is_reversal = is_reversal
        self.default_currency = (default_currency or config.DEFAULT_CURRENCY).upper()

    # -- Preparation --

    def _prepare(self, records: list[StoredInvoice], allow_missing_category: bool) -> list[_Item]:
        if not records:
            raise NothingToExport()

        items = []
        for record in records:
            try:
                invoice = parse_invoice_xml(record.raw_text)
            except ParseError as e:
                raise ParseError(f"No se pudo exportar {record.file_name}: {e}") from e

            category = (record.expense_category or "").strip()
            currency = ((invoice.currency_code or "").strip() or self.default_currency).upper()
            items.append(_Item(
                stored=record,
                invoice=invoice,
                category_label=self.catalog.label(category),
                account=self.catalog.account(category),
                sign=-1 if self.is_reversal(invoice.document_type_code) else 1,
                currency=currency,
            ))

        receivers = {item.invoice.receiver_id for item in items}
        if len(receivers) > 1:
            raise MultipleReceivers(len(receivers))

        missing = sum(1 for r in records if not r.has_category)
        if missing and not allow_missing_category:
            raise MissingCategory(missing)
        if missing:
            logger.warning(f"Exporting with {missing} XML without expense type (SIN TIPO)")

        items.sort(key=lambda i: (
            sort_key(i.category_label),
            sort_key(i.invoice.issue_date),
            sort_key(i.invoice.issuer_name),
            sort_key(i.invoice.consecutive_number),
            sort_key(i.stored.file_name),
            i.stored.file_name,
        ))
        return items

    @staticmethod
    def _tax_columns(items: list[_Item]) -> list[tuple[TaxKey, str]]:
        labels: dict[TaxKey, str] = {}
        for item in items:
            summary = item.invoice.summary
            for line in (summary.tax_breakdown if summary else []):
                if line.key not in labels:
                    labels[line.key] = tax_column_label(line.tax_code, line.tax_rate_code)
        return sorted(labels.items(), key=lambda kv: (sort_key(kv[1]), kv[0]))

    def _category_totals(self, items: list[_Item]) -> list[tuple[str, str, _Totals]]:
        by_label: dict[str, tuple[str, _Totals]] = {}
        for item in items:
            account, totals = by_label.setdefault(item.category_label, (item.account, _Totals()))
            totals.add(item)
        entries = [(label, account, totals) for label, (account, totals) in by_label.items()]
        entries.sort(key=lambda e: (e[2].document.sort_value(self.default_currency), sort_key(e[0]), e[0]))
        return entries

    @staticmethod
    def _split_totals(items: list[_Item]) -> tuple[_Totals, _Totals, _Totals]:
        regular, reversals, net = _Totals(), _Totals(), _Totals()
        for item in items:
            (reversals if item.is_reversal else regular).add(item)
            net.add(item)
        return regular, reversals, net

    # -- Spreadsheet layout --

    def build_export(self, records: list[StoredInvoice], allow_missing_category: bool = False) -> ExportMatrix:
        items = self._prepare(list(records), allow_missing_category)
        tax_columns = self._tax_columns(items)
        keys = [key for key, _ in tax_columns]
        dc = self.default_currency

        header: list[Cell] = [
            "Proveedor", "Correo", "Tipo egreso", "Cuenta", "Moneda",
            "Total venta", "Total descuentos",
            *[label for _, label in tax_columns],
            "Otros cargos", "Total comprobante",
        ]
        width = len(header)
        rows = [ExportRow(RowKind.HEADER, header)]

        for item in items:
            issuer = item.invoice.issuer
            taxes = item.tax_amounts()
            rows.append(ExportRow(RowKind.DATA, [
                item.invoice.issuer_name or "—",
                (issuer.email if issuer else None) or "—",
                item.category_label,
                item.account,
                item.currency,
                item.detail("total_sale"),
                item.detail("total_discounts"),
                *[taxes.get(key, 0.0) for key in keys],
                item.detail("other_charges"),
                item.detail("total_document"),
            ]))

        def totals_row(kind: RowKind, label: str, totals: _Totals, label_col: int = 0, account: str = "") -> ExportRow:
            cells: list[Cell] = [""] * width
            cells[label_col] = label
            if account:
                cells[3] = account
            cells[4] = totals.currency_label()
            cells[5] = totals.sale.cell(dc)
            cells[6] = totals.discounts.cell(dc)
            for offset, key in enumerate(keys):
                cells[7 + offset] = totals.tax_for(key).cell(dc)
            cells[width - 2] = totals.other_charges.cell(dc)
            cells[width - 1] = totals.document.cell(dc)
            return ExportRow(kind, cells)

        def text_row(kind: RowKind, label: str = "") -> ExportRow:
            return ExportRow(kind, [label] + [""] * (width - 1))

        rows.append(text_row(RowKind.BLANK))
        rows.append(text_row(RowKind.TITLE, "TOTALES POR TIPO DE EGRESO"))
        for label, account, totals in self._category_totals(items):
            rows.append(totals_row(RowKind.SUBTOTAL, label, totals, label_col=2, account=account))

        regular, reversals, net = self._split_totals(items)
        rows.append(text_row(RowKind.BLANK))
        rows.append(totals_row(RowKind.SPLIT, "TOTAL FACTURAS", regular))
        rows.append(totals_row(RowKind.SPLIT, "TOTAL NOTAS DE CRÉDITO (NC)", reversals.negated()))
        rows.append(totals_row(RowKind.SPLIT, "TOTAL NETO (Facturas - NC)", net))
        rows.append(text_row(RowKind.BLANK))
        rows.append(totals_row(RowKind.TOTAL, "TOTAL", net))

        logger.info(f"Export table built: {len(items)} XML, {len(keys)} tax columns")
        return ExportMatrix(
            title="Facturas",
            rows=rows,
            file_names=[item.stored.file_name for item in items],
            missing_category_count=sum(1 for r in records if not r.has_category),
        )

    # -- Report layout --

    def _report_amount(self, item: _Item, attr: str) -> str:
        cell = item.detail(attr)
        if isinstance(cell, str):
            return cell
        return format_money(cell, item.currency, self.default_currency)

    def build_report(self, records: list[StoredInvoice], allow_missing_category: bool = False) -> ExportMatrix:
        items = self._prepare(list(records), allow_missing_category)
        dc = self.default_currency

        header: list[Cell] = ["Fecha", "Número", "Proveedor", "IVA", "Descuento", "Total", "Cuenta", "Tipo egreso"]
        width = len(header)
        rows = [ExportRow(RowKind.HEADER, header)]

        def row(kind: RowKind, cols: dict[int, Cell] | None = None) -> ExportRow:
            cells: list[Cell] = [""] * width
            for index, value in (cols or {}).items():
                cells[index] = value
            return ExportRow(kind, cells)

        for item in items:
            inv = item.invoice
            rows.append(ExportRow(RowKind.DATA, [
                format_simple_date(inv.issue_date),
                (inv.consecutive_number or "").strip() or "—",
                inv.issuer_name or "—",
                self._report_amount(item, "total_tax"),
                self._report_amount(item, "total_discounts"),
                self._report_amount(item, "total_document"),
                item.account,
                item.category_label,
            ]))

        def amounts_row(kind: RowKind, label: str, totals: _Totals, label_col: int = 2) -> ExportRow:
            return row(kind, {
                label_col: label,
                3: totals.tax.text(dc),
                4: totals.discounts.text(dc),
                5: totals.document.text(dc),
            })

        tax_columns = self._tax_columns(items)
        regular, reversals, net = self._split_totals(items)
        if tax_columns:
            rows.append(row(RowKind.TITLE, {2: "Resumen de IVA"}))
            for key, label in tax_columns:
                rows.append(row(RowKind.SUBTOTAL, {2: label, 3: net.tax_for(key).text(dc)}))

        rows.append(row(RowKind.BLANK))
        rows.append(row(RowKind.TITLE, {2: "TOTALES POR TIPO DE EGRESO"}))
        for label, _account, totals in self._category_totals(items):
            rows.append(amounts_row(RowKind.SUBTOTAL, label, totals))

        rows.append(row(RowKind.BLANK))
        rows.append(row(RowKind.TITLE, {2: "TOTALES (FACTURAS / NOTAS DE CRÉDITO / NETO)"}))
        rows.append(amounts_row(RowKind.SPLIT, "TOTAL FACTURAS", regular))
        rows.append(amounts_row(RowKind.SPLIT, "TOTAL NOTAS DE CRÉDITO (NC)", reversals.negated()))
        rows.append(amounts_row(RowKind.SPLIT, "TOTAL NETO (Facturas - NC)", net))

        rows.append(row(RowKind.BLANK))
        rows.append(amounts_row(RowKind.TOTAL, "TOTAL", net, label_col=0))

        return ExportMatrix(
            title="Exportación de facturas (XML)",
            rows=rows,
            file_names=[item.stored.file_name for item in items],
            missing_category_count=sum(1 for r in records if not r.has_category),
            column_widths=[55, 120, 210, 80, 80, 90, 70, 210],
        )
