"""Data models for electronic invoice XML documents."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


@dataclass
class Party:
    name: str | None = None
    id_type: str | None = None
    id_number: str | None = None
    trade_name: str | None = None
    email: str | None = None
    phone: str | None = None      # "+506 22223333"
    location: str | None = None   # "Provincia - Canton - Distrito - Barrio - Otras senas"


@dataclass
class PaymentMethod:
    type_code: str | None = None
    other_text: str | None = None
    total: str | None = None


@dataclass
class TaxBreakdownLine:
    tax_code: str | None = None
    tax_rate_code: str | None = None
    rate_percent: str | None = None
    tax_amount: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.tax_code or "").strip(), (self.tax_rate_code or "").strip()


@dataclass
class Summary:
    # Amounts stay as the strings found in the XML; parsing happens at aggregation
    currency_code: str | None = None
    exchange_rate: str | None = None
    total_sale: str | None = None
    total_discounts: str | None = None
    net_sale: str | None = None
    total_taxed_goods: str | None = None
    total_taxed: str | None = None
    other_charges: str | None = None
    total_tax: str | None = None
    total_document: str | None = None
    payment_methods: list[PaymentMethod] = field(default_factory=list)
    tax_breakdown: list[TaxBreakdownLine] = field(default_factory=list)


@dataclass
class InvoiceRecord:
    document_type_code: str | None = None
    document_type_label: str | None = None
    transaction_type_codes: frozenset[str] = frozenset()
    key: str | None = None
    consecutive_number: str | None = None
    issue_date: str | None = None
    systems_provider: str | None = None
    issuer_activity_code: str | None = None
    receiver_activity_code: str | None = None
    sale_condition: str | None = None
    sale_condition_other: str | None = None
    issuer: Party | None = None
    receiver: Party | None = None
    summary: Summary | None = None

    @property
    def receiver_id(self) -> str:
        return ((self.receiver.id_number if self.receiver else None) or "").strip()

    @property
    def issuer_name(self) -> str:
        return ((self.issuer.name if self.issuer else None) or "").strip()

    @property
    def currency_code(self) -> str | None:
        return self.summary.currency_code if self.summary else None


@dataclass
class StoredInvoice:
    file_name: str
    raw_text: str
    expense_category: str | None = None
    created_at_millis: int = 0

    @property
    def has_category(self) -> bool:
        return bool((self.expense_category or "").strip())


class IngestStatus(str, enum.Enum):
    ADDED = "added"
    DUPLICATE = "duplicate"
    INVALID = "invalid"


@dataclass
class IngestResult:
    file_name: str
    status: IngestStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status == IngestStatus.ADDED
