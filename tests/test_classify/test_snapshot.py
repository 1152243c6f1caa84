"""Tests for tallyflow.classify.snapshot: merging, snapshots, reporting ready."""

import logging

import pytest

from tallyflow.classify.snapshot import (
    DEFAULT_FETCH_PLANS,
    PENDING,
    REPORTING_READY,
    SOURCE_OF_TRUTH,
    SourceQuery,
    build_queries,
    build_snapshot,
    fetch_plan,
    merge_batches,
    reporting_ready,
)
from tallyflow.classify.stages import Category, InvalidCategoryError
from tallyflow.config import Config
from tallyflow.records.models import (
    Accounting,
    Capture,
    Classification,
    LedgerLine,
    PaymentMethod,
    Reconciliation,
    RecordMetadata,
    Summary,
    TransactionRecord,
    Verification,
)
from tests.conftest import FIXTURE_CONFIG_DIR


def _tx(id, source, kind=None, verification="verified", recon=None, updated=0.0,
        name="Vendor", credits=None, payments=None) -> TransactionRecord:
    return TransactionRecord(
        id=id,
        summary=Summary(third_party_name=name),
        capture=Capture(source=source),
        classification=Classification(kind=kind),
        verification=Verification(status=verification),
        reconciliation=Reconciliation(status=recon),
        accounting=Accounting(
            credits=credits or [],
            payment_breakdown=[PaymentMethod(type=t) for t in payments] if payments else None,
        ),
        metadata=RecordMetadata(updated_at=updated),
    )


def _purchase(id, **kw):
    return _tx(id, "purchase_invoice_ocr", kind="purchase", **kw)


def _bank(id, **kw):
    return _tx(id, "bank_statement_upload", kind="statement_entry", **kw)


def _card(id, **kw):
    return _tx(id, "credit_card_statement_upload", kind="statement_entry", **kw)


def _sale(id, **kw):
    return _tx(id, "sales_invoice", kind="sale", **kw)


def _pos(id, **kw):
    return _tx(id, "pos_one_off_item", kind="sale", **kw)


class TestMergeBatches:
    def test_first_occurrence_wins(self):
        pending = [_purchase("X", name="pending copy"), _purchase("A")]
        truth = [_purchase("B"), _purchase("X", name="truth copy")]
        merged = merge_batches(pending, truth)
        assert [t.id for t in merged] == ["X", "A", "B"]
        assert merged[0].summary.third_party_name == "pending copy"

    def test_self_union_is_idempotent(self):
        batch = [_purchase("A"), _purchase("B")]
        assert [t.id for t in merge_batches(batch, batch)] == ["A", "B"]

    def test_empty(self):
        assert merge_batches() == []
        assert merge_batches([], []) == []


class TestBuildSnapshot:
    def test_pending_and_source_of_truth_overlap(self):
        pending = [_purchase("X", verification="unverified", updated=5.0)]
        truth = [_purchase("X", recon="reconciled", updated=6.0), _purchase("Y", recon="not_required")]
        snapshot = build_snapshot("purchase", pending, truth)
        assert [t.id for t in snapshot.stages["NeedsVerification"].full] == ["X"]
        assert [t.id for t in snapshot.stages["AuditReady"].full] == ["Y"]

    def test_as_dict_shape(self):
        snapshot = build_snapshot("bank", [_bank(f"b{i}", verification="unverified", updated=float(i))
                                           for i in range(4)])
        shaped = snapshot.as_dict()
        assert list(shaped) == ["NeedsVerification", "NeedsReconciliation",
                                "ConfirmedUnreconcilable", "AuditReady"]
        needs = shaped["NeedsReconciliation"]
        assert needs["label"] == "Needs matching"
        assert [t.id for t in needs["preview"]] == ["b3", "b2", "b1"]
        assert len(needs["full"]) == 4

    def test_reporting_stages_for_sale(self):
        snapshot = build_snapshot("sale", [_sale("s1", recon="matched")])
        assert snapshot.reporting_stages == ["PaidAndReconciled", "PosSales"]
        assert [t.id for t in snapshot.reporting_ready.full] == ["s1"]

    def test_pos_sales_kept_apart_from_invoices(self):
        snapshot = build_snapshot("sale", [
            _pos("till-1", updated=3.0),
            _pos("till-2", verification="unverified", updated=2.0),
            _sale("inv-1", verification="unverified", updated=1.0),
        ])
        assert [t.id for t in snapshot.stages["PosSales"].full] == ["till-1"]
        assert [t.id for t in snapshot.stages["PendingPayment"].full] == ["inv-1"]
        assert [t.id for t in snapshot.unclassified] == ["till-2"]
        assert [t.id for t in snapshot.reporting_ready.full] == ["till-1"]

    def test_reporting_ready_combines_invoice_and_pos_stages(self):
        snapshot = build_snapshot("sale", [
            _sale("inv-1", recon="reconciled", updated=1.0),
            _pos("till-1", updated=5.0),
        ])
        assert [t.id for t in snapshot.reporting_ready.full] == ["till-1", "inv-1"]

    def test_purchase_kind_never_listed_as_sale(self):
        income = [LedgerLine(chart_name="Sales", is_income=True)]
        tx = _tx("p1", "sales_invoice", kind="purchase", recon="reconciled", credits=income)
        snapshot = build_snapshot("sale", [tx])
        assert all(g.full == [] for g in snapshot.stages.values())
        assert snapshot.unclassified == []

    def test_uncategorized_exposed(self):
        orphan = _tx("orphan", "open_banking_feed", kind="statement_entry", recon="matched")
        snapshot = build_snapshot("bank", [orphan, _bank("b1", recon="matched")])
        assert [t.id for t in snapshot.uncategorized] == ["orphan"]
        assert [t.id for t in snapshot.stages["AuditReady"].full] == ["b1"]

    def test_unclassified_exposed(self):
        snapshot = build_snapshot("purchase", [_purchase("odd", recon="matched")])
        assert [t.id for t in snapshot.unclassified] == ["odd"]

    def test_invalid_category(self):
        with pytest.raises(InvalidCategoryError):
            build_snapshot("payroll", [])

    def test_config_override_makes_paid_needs_match_reachable(self):
        config = Config(FIXTURE_CONFIG_DIR)
        tx = _sale("s1", payments=["accounts_receivable"])
        snapshot = build_snapshot("sale", [tx], config=config)
        assert [t.id for t in snapshot.stages["PaidNeedsMatch"].full] == ["s1"]
        assert snapshot.stages["PendingPayment"].full == []
        assert list(snapshot.stages)[0] == "PaidNeedsMatch"


class TestReportingReady:
    def test_union_across_categories(self):
        records = [
            _purchase("p-done", recon="reconciled", updated=1.0),
            _purchase("p-open", verification="unverified", updated=9.0),
            _bank("b-done", recon="matched", updated=4.0),
            _card("c-done", recon="exception", updated=3.0),
            _bank("b-unrec", recon="unreconciled", updated=8.0),
            _sale("s-done", recon="reconciled", updated=2.0),
            _sale("s-open", verification="unverified", updated=7.0),
        ]
        group = reporting_ready(records)
        assert group.stage == REPORTING_READY
        assert [t.id for t in group.full] == ["b-done", "c-done", "s-done", "p-done"]
        assert len(group.preview) == 3

    def test_duplicate_id_across_batches_appears_once(self):
        """Scenario: the same id from two fetch batches is reported once."""
        first = [_bank("X", recon="matched", credits=[LedgerLine(chart_name="Sales")])]
        second = [_bank("X", recon="matched"), _purchase("P", recon="not_required")]
        group = reporting_ready(first, second)
        assert [t.id for t in group.full].count("X") == 1
        assert {t.id for t in group.full} == {"X", "P"}

    def test_self_union(self):
        batch = [_purchase("A", recon="reconciled"), _bank("B", recon="matched")]
        assert [t.id for t in reporting_ready(batch, batch).full] == [t.id for t in reporting_ready(batch).full]

    def test_empty(self):
        assert reporting_ready().full == []
        assert reporting_ready().uncategorized == []

    def test_verified_pos_sales_are_reporting_ready(self):
        group = reporting_ready([
            _pos("till-1", updated=2.0),
            _pos("till-2", verification="unverified", updated=3.0),
            _purchase("p-done", recon="reconciled", updated=1.0),
        ])
        assert [t.id for t in group.full] == ["till-1", "p-done"]

    def test_uncategorized_records_surface(self, caplog):
        orphan = _tx("orphan", "open_banking_feed", kind="statement_entry", recon="matched")
        with caplog.at_level(logging.WARNING, logger="tallyflow.classify.partition"):
            group = reporting_ready([orphan, _bank("b1", recon="matched")])
        assert [t.id for t in group.full] == ["b1"]
        assert [t.id for t in group.uncategorized] == ["orphan"]
        assert caplog.text.count("orphan") == 1


class TestFetchPlan:
    def test_purchase_plan(self):
        plan = fetch_plan("purchase")
        assert plan[0] == SourceQuery(collection=PENDING, kind="purchase", status="verification:unverified")
        assert {q.collection for q in plan[1:]} == {SOURCE_OF_TRUTH}
        assert len(plan) == len(DEFAULT_FETCH_PLANS[Category.PURCHASE])

    def test_params(self):
        query = SourceQuery(collection=PENDING, kind="statement_entry", status="verification:unverified")
        assert query.params("biz-1") == {
            "businessId": "biz-1",
            "page": "1",
            "limit": "200",
            "kind": "statement_entry",
            "status": "verification:unverified",
        }

    def test_params_with_source(self):
        query = SourceQuery(collection=SOURCE_OF_TRUTH, kind="sale", source="pos_one_off_item")
        params = query.params("biz-1")
        assert params["source"] == "pos_one_off_item"
        assert "status" not in params

    def test_bank_and_card_share_queries(self):
        assert fetch_plan("bank") == fetch_plan("card")

    def test_config_override(self):
        config = Config(FIXTURE_CONFIG_DIR)
        plan = fetch_plan("sale", config)
        assert [q.source for q in plan] == ["pos_one_off_item", None]
        assert [q.limit for q in plan] == [50, 25]

    def test_config_fetch_limit_applies_to_defaults(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert {q.limit for q in fetch_plan("purchase", config)} == {50}

    def test_invalid_category(self):
        with pytest.raises(InvalidCategoryError):
            fetch_plan("inventory")

    def test_build_queries_validates(self):
        with pytest.raises(ValueError, match="collection must be one of"):
            build_queries([{"collection": "archive", "kind": "sale"}])
        with pytest.raises(ValueError, match="needs a 'kind'"):
            build_queries([{"collection": PENDING}])
        with pytest.raises(ValueError, match="non-empty list"):
            build_queries([])
