"""Dataclass models for transaction records returned by the backend.

Each dataclass mirrors one nested object of the backend transaction
payload. Every field is optional: absent nested objects become empty
instances so callers never have to guard against None.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass
class Summary:
    third_party_name: str | None = None
    total_amount: Decimal | None = None
    currency: str | None = None
    transaction_date: float | None = None  # epoch ms
    description: str | None = None


@dataclass
class Capture:
    source: str | None = None     # purchase_invoice_ocr, bank_statement_upload, ...
    mechanism: str | None = None  # ocr, manual


@dataclass
class Classification:
    kind: str | None = None  # purchase, sale, statement_entry


@dataclass
class Verification:
    status: str | None = None  # unverified, verified, exception


@dataclass
class Reconciliation:
    status: str | None = None  # not_required, pending_bank_match, matched, ...
    type: str | None = None    # bank_transfer, card


@dataclass
class LedgerLine:
    """One debit or credit leg of the posted accounting entry."""
    chart_name: str | None = None
    is_asset: bool = False
    is_liability: bool = False
    is_income: bool = False


@dataclass
class PaymentMethod:
    type: str | None = None


@dataclass
class Accounting:
    debits: list[LedgerLine] = field(default_factory=list)
    credits: list[LedgerLine] = field(default_factory=list)
    payment_breakdown: list[PaymentMethod] | None = None


@dataclass
class Details:
    """Legacy location for payment data on manual entries."""
    payment_type: list[PaymentMethod] | None = None
    payment_breakdown: list[PaymentMethod] | None = None
    item_list: list[dict] = field(default_factory=list)


@dataclass
class StatementContext:
    is_credit: bool = False


@dataclass
class RecordMetadata:
    created_at: float | None = None  # epoch ms
    updated_at: float | None = None  # epoch ms
    business_id: str | None = None


@dataclass
class TransactionRecord:
    id: str
    summary: Summary = field(default_factory=Summary)
    capture: Capture = field(default_factory=Capture)
    classification: Classification = field(default_factory=Classification)
    verification: Verification = field(default_factory=Verification)
    reconciliation: Reconciliation = field(default_factory=Reconciliation)
    accounting: Accounting = field(default_factory=Accounting)
    details: Details = field(default_factory=Details)
    statement_context: StatementContext = field(default_factory=StatementContext)
    metadata: RecordMetadata = field(default_factory=RecordMetadata)
