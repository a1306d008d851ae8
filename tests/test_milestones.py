"""Tests for the milestone lifecycle: payments, overdue sweep, cancellation.

The repository functions run for real against a mocked cursor so the
guarded UPDATE statements are checked together with the domain logic.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from staypay.domain.milestones import (
    MilestoneDraft,
    MilestoneNotFoundError,
    MilestoneStatus,
    cancel_schedule,
    derive_status,
    record_payment,
    sweep_overdue,
)

from .helpers import make_txn, milestone_row

MODULE = "staypay.domain.milestones"
MILESTONE_ID = "11111111-1111-1111-1111-111111111111"
NOW = datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def patched_txn(cur):
    with patch(f"{MODULE}.txn", make_txn(cur)):
        yield cur


def _update_params(cur):
    """Params of the UPDATE issued by update_milestone_payment."""
    updates = [c for c in cur.execute.call_args_list if "UPDATE booking_payment_schedules" in c[0][0]]
    assert len(updates) == 1
    return updates[0][0][1]


# ── derive_status ─────────────────────────────────────────


@pytest.mark.parametrize(
    "current,paid,expected",
    [
        ("pending", Decimal("500"), MilestoneStatus.PAID),
        ("pending", Decimal("600"), MilestoneStatus.PAID),
        ("pending", Decimal("100"), MilestoneStatus.PARTIAL),
        ("pending", Decimal("0"), MilestoneStatus.PENDING),
        ("overdue", Decimal("100"), MilestoneStatus.PARTIAL),
        ("overdue", Decimal("500"), MilestoneStatus.PAID),
        ("overdue", Decimal("0"), MilestoneStatus.OVERDUE),
        ("partial", Decimal("499.99"), MilestoneStatus.PARTIAL),
        ("partial", Decimal("500"), MilestoneStatus.PAID),
        ("paid", Decimal("0"), MilestoneStatus.PAID),
        ("cancelled", Decimal("500"), MilestoneStatus.CANCELLED),
    ],
)
def test_derive_status(current, paid, expected):
    assert derive_status(current, paid, Decimal("500")) is expected


# ── record_payment ────────────────────────────────────────


class TestRecordPayment:
    def test_full_payment_marks_paid(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row()
        cur.rowcount = 1

        result = record_payment(MILESTONE_ID, Decimal("500"), now=NOW)

        assert result == {
            "status": "updated",
            "milestone_id": MILESTONE_ID,
            "milestone_status": "paid",
            "amount_paid": Decimal("500"),
            "paid_at": NOW,
        }
        assert _update_params(cur) == (Decimal("500"), "paid", NOW, MILESTONE_ID)

    def test_lock_taken_before_update(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row()
        cur.rowcount = 1

        record_payment(MILESTONE_ID, "100", now=NOW)

        first_sql = cur.execute.call_args_list[0][0][0]
        assert "FOR UPDATE" in first_sql

    def test_partial_payment_keeps_paid_at_empty(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row()
        cur.rowcount = 1

        result = record_payment(MILESTONE_ID, Decimal("200"), now=NOW)

        assert result["milestone_status"] == "partial"
        assert result["paid_at"] is None
        assert _update_params(cur) == (Decimal("200"), "partial", None, MILESTONE_ID)

    def test_overdue_then_full_payment(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row(status="overdue")
        cur.rowcount = 1

        result = record_payment(MILESTONE_ID, 500, now=NOW)

        assert result["milestone_status"] == "paid"

    def test_amount_due_override(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row()
        cur.rowcount = 1

        result = record_payment(MILESTONE_ID, Decimal("300"), amount_due=Decimal("300"), now=NOW)

        assert result["milestone_status"] == "paid"

    def test_paid_then_late_correction_is_noop(self, patched_txn):
        cur = patched_txn
        cur.fetchone.side_effect = [
            milestone_row(),
            milestone_row(status="paid", amount_paid=Decimal("500"), paid_at=NOW),
        ]
        cur.rowcount = 1

        first = record_payment(MILESTONE_ID, Decimal("500"), now=NOW)
        second = record_payment(MILESTONE_ID, Decimal("600"))

        assert first["milestone_status"] == "paid"
        assert second == {
            "status": "noop_terminal",
            "milestone_id": MILESTONE_ID,
            "milestone_status": "paid",
        }
        # only the first call wrote
        _update_params(cur)

    def test_cancelled_is_noop(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row(status="cancelled")

        result = record_payment(MILESTONE_ID, Decimal("500"))

        assert result["status"] == "noop_terminal"
        assert result["milestone_status"] == "cancelled"

    def test_stale_cumulative_is_ignored(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row(status="partial", amount_paid=Decimal("300"))

        result = record_payment(MILESTONE_ID, Decimal("200"))

        assert result["status"] == "stale"
        assert result["amount_paid"] == Decimal("300")
        assert all(
            "UPDATE booking_payment_schedules" not in c[0][0]
            for c in cur.execute.call_args_list
        )

    def test_replayed_cumulative_is_harmless(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row(status="partial", amount_paid=Decimal("200"))
        cur.rowcount = 1

        result = record_payment(MILESTONE_ID, Decimal("200"), now=NOW)

        assert result["milestone_status"] == "partial"
        assert result["amount_paid"] == Decimal("200")

    def test_overpayment_recorded_as_paid(self, patched_txn):
        cur = patched_txn
        cur.fetchone.return_value = milestone_row()
        cur.rowcount = 1

        with patch(f"{MODULE}.logger") as mock_logger:
            result = record_payment(MILESTONE_ID, Decimal("650"), now=NOW)

        assert result["milestone_status"] == "paid"
        assert result["amount_paid"] == Decimal("650")
        warnings = [c[0][0] for c in mock_logger.warning.call_args_list]
        assert "milestone_overpaid" in warnings

    def test_missing_milestone(self, patched_txn):
        patched_txn.fetchone.return_value = None

        with pytest.raises(MilestoneNotFoundError) as exc_info:
            record_payment("missing-id", Decimal("10"))

        assert exc_info.value.milestone_id == "missing-id"

    def test_negative_amount_rejected(self, patched_txn):
        with pytest.raises(ValueError, match="negative"):
            record_payment(MILESTONE_ID, Decimal("-1"))

        patched_txn.execute.assert_not_called()


# ── sweep_overdue ─────────────────────────────────────────


class TestSweepOverdue:
    def test_sweep_transitions_then_second_run_is_zero(self, patched_txn):
        cur = patched_txn
        # 1 row matches on the first run; nothing is pending past due afterwards
        counts = iter([1, 0])

        def _execute(sql, params):
            cur.rowcount = next(counts)

        cur.execute.side_effect = _execute

        assert sweep_overdue("2025-01-11") == 1
        assert sweep_overdue("2025-01-11") == 0

        sql, params = cur.execute.call_args[0]
        assert "status = 'pending'" in sql
        assert "due_date < %s" in sql
        assert params == (date(2025, 1, 11),)

    def test_sweep_accepts_datetime(self, patched_txn):
        patched_txn.rowcount = 0

        sweep_overdue(datetime(2025, 1, 11, 23, 59))

        assert patched_txn.execute.call_args[0][1] == (date(2025, 1, 11),)


# ── cancel_schedule ───────────────────────────────────────


class TestCancelSchedule:
    def test_cancels_open_milestones_only(self, patched_txn):
        cur = patched_txn
        cur.rowcount = 2

        assert cancel_schedule("booking-1") == 2

        sql, params = cur.execute.call_args[0]
        assert "status IN ('pending', 'overdue', 'partial')" in sql
        assert params == ("booking-1",)

    def test_retry_cancels_nothing(self, patched_txn):
        patched_txn.rowcount = 0

        assert cancel_schedule("booking-1") == 0


def test_draft_as_row_uses_db_strings():
    draft = MilestoneDraft(
        booking_id="booking-1",
        milestone_sequence=1,
        milestone_name="Deposit",
        amount_due=Decimal("300"),
        currency="ZAR",
        due_date=date(2025, 1, 1),
        due_type="at_booking",
    )

    row = draft.as_row()

    assert row["status"] == "pending"
    assert row["due_type"] == "at_booking"
    assert row["amount_paid"] == Decimal(0)
