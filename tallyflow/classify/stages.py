"""Stage classifier: ordered, declarative rule tables per business category.

Each category owns a table of (stage, label, condition) rules evaluated top
to bottom; the first rule whose condition holds decides the stage. A record
matching no rule lands in UNCLASSIFIED and is logged.

Conditions are plain data so tables can also be supplied from config:

    "verified"                     predicate by name (see predicates.PREDICATES)
    "not cash_only"                negated predicate
    {"all": [cond, ...]}           conjunction
    {"any": [cond, ...]}           disjunction
    {"not": cond}                  negation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from tallyflow.classify import predicates as p
from tallyflow.classify.predicates import PREDICATES
from tallyflow.records.models import TransactionRecord

if TYPE_CHECKING:
    from tallyflow.config import Config

logger = logging.getLogger(__name__)


class Category(str, Enum):
    PURCHASE = "purchase"
    BANK = "bank"
    CARD = "card"
    SALE = "sale"


class InvalidCategoryError(ValueError):
    """Raised for a category outside purchase/bank/card/sale."""


def as_category(value) -> Category:
    try:
        return Category(value)
    except ValueError:
        raise InvalidCategoryError(
            f"Unknown category {value!r}; expected one of "
            f"{', '.join(c.value for c in Category)}"
        ) from None


# ── Stage names ───────────────────────────────────────────

NEEDS_VERIFICATION = "NeedsVerification"
ACCOUNTS_PAYABLE = "AccountsPayable"
RECONCILE_TO_BANK = "ReconcileToBank"
RECONCILE_TO_CARD = "ReconcileToCard"
AUDIT_READY = "AuditReady"
NEEDS_RECONCILIATION = "NeedsReconciliation"
CONFIRMED_UNRECONCILABLE = "ConfirmedUnreconcilable"
PENDING_PAYMENT = "PendingPayment"
PAID_NEEDS_MATCH = "PaidNeedsMatch"
PAID_AND_RECONCILED = "PaidAndReconciled"
POS_SALES = "PosSales"
UNCLASSIFIED = "Unclassified"


# ── Default tables ────────────────────────────────────────

_PURCHASE_TABLE = [
    {"stage": NEEDS_VERIFICATION, "label": "Needs verification",
     "when": "unverified"},
    {"stage": ACCOUNTS_PAYABLE, "label": "Unpaid purchases",
     "when": {"all": ["verified", "accounts_payable", "not reconciled", "not cash_only"]}},
    {"stage": RECONCILE_TO_BANK, "label": "Awaiting bank match",
     "when": {"all": ["verified", "reconciliation_pending_bank_match", "reconcile_via_bank_transfer"]}},
    {"stage": RECONCILE_TO_CARD, "label": "Awaiting card match",
     "when": {"all": ["verified", "reconciliation_pending_bank_match", "reconcile_via_card"]}},
    {"stage": AUDIT_READY, "label": "All done",
     "when": {"all": ["verified", {"any": ["reconciliation_reconciled", "reconciliation_not_required"]}]}},
]

# "unreconciled" is a settled outcome for statement entries: it never falls
# back into the matching queue.
_STATEMENT_TABLE = [
    {"stage": NEEDS_VERIFICATION, "label": "Needs verification",
     "when": {"all": ["has_accounting_entries", "not verified", "not reconciled"]}},
    {"stage": NEEDS_RECONCILIATION, "label": "Needs matching",
     "when": {"all": ["not has_accounting_entries", "not reconciled",
                      "not reconciliation_unreconciled"]}},
    {"stage": CONFIRMED_UNRECONCILABLE, "label": "Couldn't be matched",
     "when": {"all": ["verified", "reconciliation_unreconciled"]}},
    {"stage": AUDIT_READY, "label": "All done",
     "when": {"all": ["not reconciliation_unreconciled",
                      {"any": ["reconciled", {"all": ["verified", "has_accounting_entries"]}]}]}},
]

# POS sales never enter the invoice stages; unverified ones stay unclassified.
_SALE_TABLE = [
    {"stage": PENDING_PAYMENT, "label": "Unpaid invoices",
     "when": {"all": ["not pos_sale",
                      {"any": ["unverified", {"all": ["verified", "not reconciled", "not cash_only"]}]}]}},
    {"stage": PAID_NEEDS_MATCH, "label": "Awaiting bank match",
     "when": {"all": ["not pos_sale", "verified", "not cash_only", "not reconciled",
                      "accounts_receivable"]}},
    {"stage": PAID_AND_RECONCILED, "label": "Sales invoices",
     "when": {"all": ["not pos_sale", {"any": ["reconciled", {"all": ["verified", "cash_only"]}]}]}},
    {"stage": POS_SALES, "label": "POS sales",
     "when": {"all": ["pos_sale", "verified"]}},
]

DEFAULT_STAGE_TABLES: dict[Category, list[dict]] = {
    Category.PURCHASE: _PURCHASE_TABLE,
    Category.BANK: _STATEMENT_TABLE,
    Category.CARD: _STATEMENT_TABLE,
    Category.SALE: _SALE_TABLE,
}

DEFAULT_REPORTING_STAGES: dict[Category, list[str]] = {
    Category.PURCHASE: [AUDIT_READY],
    Category.BANK: [AUDIT_READY],
    Category.CARD: [AUDIT_READY],
    Category.SALE: [PAID_AND_RECONCILED, POS_SALES],
}


# ── Condition compiler ────────────────────────────────────

Condition = Callable[[TransactionRecord], bool]


def compile_condition(cond) -> Condition:
    """Compile a condition into a predicate callable.

    Raises ValueError on unknown predicate names or malformed conditions.
    """
    if isinstance(cond, str):
        name = cond.strip()
        if name.startswith("not "):
            inner = compile_condition(name[4:])
            return lambda tx: not inner(tx)
        if name not in PREDICATES:
            raise ValueError(f"Unknown predicate: {name!r}")
        return PREDICATES[name]

    if isinstance(cond, dict) and len(cond) == 1:
        op, arg = next(iter(cond.items()))
        if op == "not":
            inner = compile_condition(arg)
            return lambda tx: not inner(tx)
        if op in ("all", "any"):
            if not isinstance(arg, list) or not arg:
                raise ValueError(f"'{op}' needs a non-empty list, got {arg!r}")
            parts = [compile_condition(a) for a in arg]
            if op == "all":
                return lambda tx: all(c(tx) for c in parts)
            return lambda tx: any(c(tx) for c in parts)

    raise ValueError(f"Malformed condition: {cond!r}")


@dataclass(frozen=True)
class StageRule:
    stage: str
    label: str
    condition: Condition


def compile_table(entries: list[dict]) -> list[StageRule]:
    """Compile a list of {stage, label, when} entries, preserving order."""
    if not isinstance(entries, list) or not entries:
        raise ValueError("Stage table must be a non-empty list")
    rules = []
    seen = set()
    for entry in entries:
        if not isinstance(entry, dict) or "stage" not in entry or "when" not in entry:
            raise ValueError(f"Stage table entry needs 'stage' and 'when': {entry!r}")
        stage = entry["stage"]
        if stage == UNCLASSIFIED:
            raise ValueError(f"'{UNCLASSIFIED}' is reserved")
        if stage in seen:
            raise ValueError(f"Duplicate stage in table: {stage}")
        seen.add(stage)
        rules.append(StageRule(
            stage=stage,
            label=entry.get("label", stage),
            condition=compile_condition(entry["when"]),
        ))
    return rules


_COMPILED_DEFAULTS = {cat: compile_table(table) for cat, table in DEFAULT_STAGE_TABLES.items()}


def stage_table(category, config: Config | None = None) -> list[StageRule]:
    """Return the compiled table for a category, honoring config overrides."""
    category = as_category(category)
    if config is not None:
        override = config.stage_tables.get(category)
        if override is not None:
            return override
    return _COMPILED_DEFAULTS[category]


# ── Classification ────────────────────────────────────────


def category_of(tx: TransactionRecord) -> Category | None:
    """Resolve the single business category a record belongs to.

    Statement sources win over classification.kind; an explicit kind wins
    over the receipt/sale heuristics; receipts are checked before the sale
    source pattern since "purchase_invoice_ocr" also contains "invoice".
    """
    if p.is_bank_statement_entry(tx):
        return Category.BANK
    if p.is_credit_card_statement_entry(tx):
        return Category.CARD
    kind = tx.classification.kind
    if kind == "purchase":
        return Category.PURCHASE
    if kind == "sale":
        return Category.SALE
    if kind == "statement_entry":
        return None
    if p.has_income_credit(tx):
        return Category.SALE
    if p.is_receipt(tx):
        return Category.PURCHASE
    if p.is_sale(tx):
        return Category.SALE
    return None


def classify_transaction(
    tx: TransactionRecord,
    category,
    config: Config | None = None,
) -> str:
    """Return the first matching stage for tx in the category's table.

    Falls back to UNCLASSIFIED (with a warning) when no rule matches.
    """
    category = as_category(category)
    for rule in stage_table(category, config):
        if rule.condition(tx):
            return rule.stage
    logger.warning(
        "Transaction %s matched no %s stage (verification=%s, reconciliation=%s)",
        tx.id, category.value, tx.verification.status, tx.reconciliation.status,
    )
    return UNCLASSIFIED
