"""Tests for the capture ledger."""

from decimal import Decimal

import pytest

from checkoutflow.errors import CaptureNotFoundError
from checkoutflow.reconciliation import CaptureLedger


def record_capture(ledger, transaction_id="txn-1"):
    return ledger.record(
        transaction_id=transaction_id,
        provider="razorpay",
        temp_order_id="TEMP_1_abc",
        amount=Decimal("650"),
        reason="Order service unavailable",
        cart=[{"productId": "p1", "quantity": 1}],
        shipping_info={"city": "Pune"},
    )


class TestCaptureLedger:
    def test_empty_ledger(self, temp_dir):
        assert CaptureLedger(temp_dir).list_records() == []

    def test_record_and_get(self, temp_dir):
        ledger = CaptureLedger(temp_dir)
        entry = record_capture(ledger)

        loaded = ledger.get(entry.id)
        assert loaded.transaction_id == "txn-1"
        assert loaded.amount == "650"
        assert loaded.cart == [{"productId": "p1", "quantity": 1}]
        assert loaded.resolved is False

    def test_one_file_per_record(self, temp_dir):
        ledger = CaptureLedger(temp_dir)
        record_capture(ledger, "txn-1")
        record_capture(ledger, "txn-2")

        files = sorted(p.name for p in ledger.captures_dir.glob("*.json"))
        assert len(files) == 2

    def test_get_missing_raises(self, temp_dir):
        with pytest.raises(CaptureNotFoundError):
            CaptureLedger(temp_dir).get("nope")

    def test_mark_resolved(self, temp_dir):
        ledger = CaptureLedger(temp_dir)
        entry = record_capture(ledger)

        resolved = ledger.mark_resolved(entry.id, "Refunded manually")

        assert resolved.resolved is True
        assert resolved.resolved_at is not None
        assert ledger.get(entry.id).resolution_note == "Refunded manually"

    def test_list_unresolved_only(self, temp_dir):
        ledger = CaptureLedger(temp_dir)
        first = record_capture(ledger, "txn-1")
        record_capture(ledger, "txn-2")
        ledger.mark_resolved(first.id)

        unresolved = ledger.list_records(unresolved_only=True)
        assert [r.transaction_id for r in unresolved] == ["txn-2"]
        assert len(ledger.list_records()) == 2

    def test_corrupted_file_is_skipped(self, temp_dir):
        ledger = CaptureLedger(temp_dir)
        record_capture(ledger)
        (ledger.captures_dir / "broken.json").write_text("{not json")

        assert len(ledger.list_records()) == 1
