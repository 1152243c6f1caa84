"""Tests for tallyflow.records.payload: backend payload conversion."""

import logging
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from tallyflow.records.payload import PayloadLoader, parse_timestamp, record_from_payload


def _payload(**overrides) -> dict:
    payload = {
        "id": "tx-100",
        "metadata": {
            "businessId": "biz-1",
            "capture": {"source": "purchase_invoice_ocr", "mechanism": "ocr"},
            "classification": {"kind": "purchase"},
            "verification": {"status": "verified"},
            "reconciliation": {"status": "pending_bank_match", "type": "card"},
            "statementContext": {"isCredit": False},
            "createdAt": 1767225600000,
            "updatedAt": "2026-01-02T10:00:00Z",
        },
        "summary": {
            "thirdPartyName": "Pret A Manger",
            "totalAmount": 12.4,
            "currency": "GBP",
            "transactionDate": 1767139200000,
        },
        "accounting": {
            "debits": [{"chartName": "Meals", "isAsset": False}],
            "credits": [{"chartName": "Card", "isLiability": True}],
            "paymentBreakdown": [{"type": "card"}],
        },
        "details": {"itemList": [{"name": "Sandwich"}]},
    }
    payload.update(overrides)
    return payload


class TestParseTimestamp:
    def test_epoch_ms(self):
        assert parse_timestamp(1767225600000) == 1767225600000.0

    def test_iso_with_z(self):
        expected = datetime(2026, 1, 2, 10, tzinfo=timezone.utc).timestamp() * 1000
        assert parse_timestamp("2026-01-02T10:00:00Z") == expected

    def test_naive_iso_is_utc(self):
        assert parse_timestamp("2026-01-02T10:00:00") == parse_timestamp("2026-01-02T10:00:00+00:00")

    def test_garbage(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(True) is None
        assert parse_timestamp({"_seconds": 1}) is None


class TestRecordFromPayload:
    def test_full_payload(self):
        tx = record_from_payload(_payload())
        assert tx.id == "tx-100"
        assert tx.capture.source == "purchase_invoice_ocr"
        assert tx.capture.mechanism == "ocr"
        assert tx.classification.kind == "purchase"
        assert tx.verification.status == "verified"
        assert tx.reconciliation.status == "pending_bank_match"
        assert tx.reconciliation.type == "card"
        assert tx.summary.total_amount == Decimal("12.4")
        assert tx.summary.currency == "GBP"
        assert tx.summary.transaction_date == 1767139200000.0
        assert tx.metadata.created_at == 1767225600000.0
        assert tx.metadata.business_id == "biz-1"
        assert tx.accounting.credits[0].is_liability is True
        assert tx.accounting.debits[0].chart_name == "Meals"
        assert [pm.type for pm in tx.accounting.payment_breakdown] == ["card"]
        assert tx.details.payment_type is None
        assert tx.details.item_list == [{"name": "Sandwich"}]

    def test_id_from_metadata(self):
        payload = _payload()
        del payload["id"]
        payload["metadata"]["id"] = "meta-id"
        assert record_from_payload(payload).id == "meta-id"

    def test_missing_id(self):
        payload = _payload()
        del payload["id"]
        assert record_from_payload(payload) is None

    def test_minimal_payload(self):
        tx = record_from_payload({"id": "bare"})
        assert tx.verification.status is None
        assert tx.accounting.debits == []
        assert tx.accounting.payment_breakdown is None
        assert tx.summary.total_amount is None
        assert tx.statement_context.is_credit is False

    def test_wrong_types_become_absent(self):
        tx = record_from_payload({
            "id": "odd",
            "metadata": {"capture": "ocr", "verification": {"status": 3}},
            "summary": {"totalAmount": "n/a", "currency": 826},
            "accounting": {"debits": "none", "credits": [None]},
        })
        assert tx.capture.source is None
        assert tx.verification.status is None
        assert tx.summary.total_amount is None
        assert tx.summary.currency is None
        assert tx.accounting.debits == []
        assert len(tx.accounting.credits) == 1
        assert tx.accounting.credits[0].chart_name is None

    def test_payment_type_alias(self):
        tx = record_from_payload(_payload(
            accounting={"paymentBreakdown": [{"paymentType": "accounts_payable"}]},
        ))
        assert tx.accounting.payment_breakdown[0].type == "accounts_payable"

    def test_empty_breakdown_kept_as_present(self):
        tx = record_from_payload(_payload(
            accounting={"paymentBreakdown": []},
            details={"paymentType": [{"type": "cash"}]},
        ))
        assert tx.accounting.payment_breakdown == []
        assert tx.details.payment_type[0].type == "cash"

    def test_strict_booleans(self):
        tx = record_from_payload(_payload(
            accounting={"credits": [{"isIncome": "true"}, {"isIncome": True}]},
        ))
        assert [c.is_income for c in tx.accounting.credits] == [False, True]


class TestPayloadLoader:
    def test_list_response(self):
        loader = PayloadLoader()
        records = loader.load({"transactions": [_payload(id="a"), _payload(id="b")], "total": 2})
        assert [r.id for r in records] == ["a", "b"]
        assert loader.skipped_count == 0

    def test_bare_list(self):
        assert [r.id for r in PayloadLoader().load([_payload(id="a")])] == ["a"]

    def test_null_transactions(self):
        assert PayloadLoader().load({"transactions": None}) == []

    def test_skips_and_counts_missing_ids(self, caplog):
        loader = PayloadLoader()
        no_id = _payload()
        del no_id["id"]
        with caplog.at_level(logging.WARNING, logger="tallyflow.records.payload"):
            records = loader.load([no_id, _payload(id="kept")])
        assert [r.id for r in records] == ["kept"]
        assert loader.skipped_count == 1
        assert "without an id" in caplog.text

    def test_unsupported_shape(self):
        with pytest.raises(ValueError, match="Unsupported response shape"):
            PayloadLoader().load("transactions")
