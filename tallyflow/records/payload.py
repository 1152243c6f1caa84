"""Convert backend transaction payloads into TransactionRecord objects.

The backend nests capture/classification/verification/reconciliation under
``metadata`` and uses camelCase keys. Fields with an unexpected type are
treated as absent rather than rejected, so a partially-populated payload
still yields a record the classifier can route (possibly to Unclassified).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from tallyflow.records.models import (
    Accounting,
    Capture,
    Classification,
    Details,
    LedgerLine,
    PaymentMethod,
    Reconciliation,
    RecordMetadata,
    StatementContext,
    Summary,
    TransactionRecord,
    Verification,
)

logger = logging.getLogger(__name__)


def _obj(value) -> dict:
    return value if isinstance(value, dict) else {}


def _str(value) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_timestamp(value) -> float | None:
    """Normalize an epoch-ms number or ISO-8601 string to epoch milliseconds.

    Naive ISO values are taken as UTC. Returns None for anything else.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable timestamp %r", value)
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp() * 1000
    return None


def _decimal(value) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _payment_methods(value) -> list[PaymentMethod] | None:
    # None means "not present"; an empty list is kept so it still wins the
    # payment-location lookup order.
    if not isinstance(value, list):
        return None
    methods = []
    for entry in value:
        entry = _obj(entry)
        methods.append(PaymentMethod(type=_str(entry.get("type")) or _str(entry.get("paymentType"))))
    return methods


def _ledger_lines(value) -> list[LedgerLine]:
    if not isinstance(value, list):
        return []
    lines = []
    for entry in value:
        entry = _obj(entry)
        lines.append(LedgerLine(
            chart_name=_str(entry.get("chartName")),
            is_asset=entry.get("isAsset") is True,
            is_liability=entry.get("isLiability") is True,
            is_income=entry.get("isIncome") is True,
        ))
    return lines


def record_from_payload(payload: dict) -> TransactionRecord | None:
    """Build a TransactionRecord from one backend transaction object.

    Returns None when the payload carries no id (top-level ``id`` or
    ``metadata.id``), since such a record cannot be deduplicated.
    """
    payload = _obj(payload)
    meta = _obj(payload.get("metadata"))
    record_id = _str(payload.get("id")) or _str(meta.get("id"))
    if record_id is None:
        return None

    summary = _obj(payload.get("summary"))
    capture = _obj(meta.get("capture"))
    classification = _obj(meta.get("classification"))
    verification = _obj(meta.get("verification"))
    reconciliation = _obj(meta.get("reconciliation"))
    accounting = _obj(payload.get("accounting"))
    details = _obj(payload.get("details"))
    statement = _obj(meta.get("statementContext"))
    item_list = details.get("itemList")

    return TransactionRecord(
        id=record_id,
        summary=Summary(
            third_party_name=_str(summary.get("thirdPartyName")),
            total_amount=_decimal(summary.get("totalAmount")),
            currency=_str(summary.get("currency")),
            transaction_date=parse_timestamp(summary.get("transactionDate")),
            description=_str(summary.get("description")),
        ),
        capture=Capture(
            source=_str(capture.get("source")),
            mechanism=_str(capture.get("mechanism")),
        ),
        classification=Classification(kind=_str(classification.get("kind"))),
        verification=Verification(status=_str(verification.get("status"))),
        reconciliation=Reconciliation(
            status=_str(reconciliation.get("status")),
            type=_str(reconciliation.get("type")),
        ),
        accounting=Accounting(
            debits=_ledger_lines(accounting.get("debits")),
            credits=_ledger_lines(accounting.get("credits")),
            payment_breakdown=_payment_methods(accounting.get("paymentBreakdown")),
        ),
        details=Details(
            payment_type=_payment_methods(details.get("paymentType")),
            payment_breakdown=_payment_methods(details.get("paymentBreakdown")),
            item_list=item_list if isinstance(item_list, list) else [],
        ),
        statement_context=StatementContext(is_credit=statement.get("isCredit") is True),
        metadata=RecordMetadata(
            created_at=parse_timestamp(meta.get("createdAt")),
            updated_at=parse_timestamp(meta.get("updatedAt")),
            business_id=_str(meta.get("businessId")),
        ),
    )


class PayloadLoader:
    """Turns backend list responses into records.

    Attributes:
        skipped_count: Number of payloads dropped because they had no id.
            Check this after load() to detect silent data loss.
    """

    def __init__(self):
        self.skipped_count: int = 0

    def load(self, response) -> list[TransactionRecord]:
        """Accept ``{"transactions": [...]}`` or a bare list of payloads."""
        if isinstance(response, dict):
            items = response.get("transactions") or []
        elif isinstance(response, list):
            items = response
        else:
            raise ValueError(f"Unsupported response shape: {type(response).__name__}")

        records = []
        for item in items:
            record = record_from_payload(item)
            if record is None:
                self.skipped_count += 1
                logger.warning("Skipping transaction payload without an id")
                continue
            records.append(record)
        return records
