"""Predicate library: boolean questions asked of a single TransactionRecord.

Every predicate is total over a well-formed record and answers False when
the field it inspects is absent. The classifier refers to predicates by
the names registered in PREDICATES.
"""

from __future__ import annotations

from typing import Callable

from tallyflow.records.models import PaymentMethod, TransactionRecord

RECEIPT_SOURCES = frozenset({"purchase_invoice_ocr", "manual_entry"})
RECEIPT_MECHANISMS = frozenset({"ocr", "manual"})
BANK_STATEMENT_SOURCES = frozenset({"bank_statement_ocr", "bank_statement_upload"})
CARD_STATEMENT_SOURCES = frozenset({"credit_card_statement_ocr", "credit_card_statement_upload"})
POS_SOURCE = "pos_one_off_item"

VERIFIED_STATUSES = frozenset({"verified", "exception"})
RECONCILED_STATUSES = frozenset({"matched", "reconciled", "exception"})
RECONCILED_OR_NOT_REQUIRED_STATUSES = RECONCILED_STATUSES | {"not_required"}


def _normalize_label(value: str | None) -> str:
    """'Accounts Payable', 'accounts_payable', 'accountspayable' → 'accountspayable'."""
    if not value:
        return ""
    return value.lower().replace("_", "").replace(" ", "")


def payment_methods(tx: TransactionRecord) -> list[PaymentMethod]:
    """Resolve the effective payment-method list.

    Locations are checked in order: accounting.paymentBreakdown,
    details.paymentType, details.paymentBreakdown. The first one present
    wins even if it is empty.
    """
    for methods in (
        tx.accounting.payment_breakdown,
        tx.details.payment_type,
        tx.details.payment_breakdown,
    ):
        if methods is not None:
            return methods
    return []


# ── Source / category ─────────────────────────────────────


def is_receipt(tx: TransactionRecord) -> bool:
    source = tx.capture.source or ""
    return (
        source in RECEIPT_SOURCES
        or tx.capture.mechanism in RECEIPT_MECHANISMS
        or "purchase" in source
    )


def is_bank_statement_entry(tx: TransactionRecord) -> bool:
    return tx.capture.source in BANK_STATEMENT_SOURCES


def is_credit_card_statement_entry(tx: TransactionRecord) -> bool:
    return tx.capture.source in CARD_STATEMENT_SOURCES


def has_income_credit(tx: TransactionRecord) -> bool:
    return any(line.is_income for line in tx.accounting.credits)


def is_sale(tx: TransactionRecord) -> bool:
    """Sale by classification, by an income credit, or by capture source.

    The source fallback also treats a bare ``manual`` source as a sale.
    """
    if tx.classification.kind == "sale":
        return True
    if has_income_credit(tx):
        return True
    source = (tx.capture.source or "").lower()
    return "sale" in source or "invoice" in source or source == "manual"


def is_pos_sale(tx: TransactionRecord) -> bool:
    return tx.capture.source == POS_SOURCE and tx.classification.kind == "sale"


# ── Accounting ────────────────────────────────────────────


def has_accounting_entries(tx: TransactionRecord) -> bool:
    return bool(tx.accounting.debits) or bool(tx.accounting.credits)


def is_cash_only(tx: TransactionRecord) -> bool:
    methods = payment_methods(tx)
    if not methods:
        return False
    return all(pm.type == "cash" for pm in methods)


def has_accounts_payable_payment(tx: TransactionRecord) -> bool:
    return any(_normalize_label(pm.type) == "accountspayable" for pm in payment_methods(tx))


def has_accounts_receivable(tx: TransactionRecord) -> bool:
    """Accounts Receivable as a payment method or as a posted ledger leg."""
    if any(_normalize_label(pm.type) == "accountsreceivable" for pm in payment_methods(tx)):
        return True
    legs = tx.accounting.debits + tx.accounting.credits
    return any(_normalize_label(line.chart_name) == "accountsreceivable" for line in legs)


def is_credit_to_account(tx: TransactionRecord) -> bool:
    """True when the transaction brings money into the account."""
    debits = tx.accounting.debits
    if is_bank_statement_entry(tx):
        if tx.statement_context.is_credit:
            return True
        if any(d.chart_name == "Bank" and d.is_asset for d in debits):
            return True
    if is_credit_card_statement_entry(tx):
        if tx.statement_context.is_credit:
            return True
        if any(d.chart_name == "Card" and d.is_liability for d in debits):
            return True
    if tx.classification.kind == "sale":
        return True
    return has_income_credit(tx)


# ── Verification / reconciliation ─────────────────────────


def is_unverified(tx: TransactionRecord) -> bool:
    return tx.verification.status == "unverified"


def is_verified(tx: TransactionRecord) -> bool:
    return tx.verification.status in VERIFIED_STATUSES


def is_reconciled(tx: TransactionRecord) -> bool:
    """Reconciled family: matched, reconciled or exception."""
    return tx.reconciliation.status in RECONCILED_STATUSES


def is_reconciled_or_not_required(tx: TransactionRecord) -> bool:
    return tx.reconciliation.status in RECONCILED_OR_NOT_REQUIRED_STATUSES


def _reconciliation_status(status: str) -> Callable[[TransactionRecord], bool]:
    def predicate(tx: TransactionRecord) -> bool:
        return tx.reconciliation.status == status
    predicate.__name__ = f"reconciliation_{status}"
    return predicate


def _reconciliation_type(kind: str) -> Callable[[TransactionRecord], bool]:
    def predicate(tx: TransactionRecord) -> bool:
        return tx.reconciliation.type == kind
    predicate.__name__ = f"reconcile_via_{kind}"
    return predicate


PREDICATES: dict[str, Callable[[TransactionRecord], bool]] = {
    "receipt": is_receipt,
    "bank_statement_entry": is_bank_statement_entry,
    "card_statement_entry": is_credit_card_statement_entry,
    "sale": is_sale,
    "pos_sale": is_pos_sale,
    "has_accounting_entries": has_accounting_entries,
    "cash_only": is_cash_only,
    "accounts_payable": has_accounts_payable_payment,
    "accounts_receivable": has_accounts_receivable,
    "credit_to_account": is_credit_to_account,
    "unverified": is_unverified,
    "verified": is_verified,
    "reconciled": is_reconciled,
    "reconciled_or_not_required": is_reconciled_or_not_required,
    "reconciliation_pending_bank_match": _reconciliation_status("pending_bank_match"),
    "reconciliation_reconciled": _reconciliation_status("reconciled"),
    "reconciliation_not_required": _reconciliation_status("not_required"),
    "reconciliation_unreconciled": _reconciliation_status("unreconciled"),
    "reconcile_via_bank_transfer": _reconciliation_type("bank_transfer"),
    "reconcile_via_card": _reconciliation_type("card"),
}
