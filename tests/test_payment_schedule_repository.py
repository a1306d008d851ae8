"""Tests for the payment schedule repository (mocked cursor, SQL shape)."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from staypay.infra.repositories.payment_schedule_repository import (
    cancel_booking_milestones,
    claim_schedule_generation,
    get_milestone_for_update,
    get_schedule_generation,
    insert_milestones,
    list_milestones,
    mark_overdue,
    update_milestone_payment,
)

from .helpers import milestone_dict, milestone_row


class TestGenerationGuard:
    def test_claim_won(self, cur):
        cur.fetchone.return_value = ("booking-1",)

        assert claim_schedule_generation(
            cur, booking_id="booking-1", rule_id="r1", milestone_count=2
        ) is True

        sql, params = cur.execute.call_args[0]
        assert "ON CONFLICT (booking_id) DO NOTHING" in sql
        assert params == ("booking-1", "r1", 2)

    def test_claim_lost(self, cur):
        cur.fetchone.return_value = None

        assert claim_schedule_generation(
            cur, booking_id="booking-1", rule_id="r1", milestone_count=2
        ) is False

    def test_get_generation_missing(self, cur):
        cur.fetchone.return_value = None

        assert get_schedule_generation(cur, booking_id="booking-1") is None

    def test_get_generation_stringifies_rule_id(self, cur):
        generated_at = datetime(2025, 1, 1, tzinfo=timezone.utc)
        cur.fetchone.return_value = (
            "booking-1",
            UUID("22222222-2222-2222-2222-222222222222"),
            2,
            generated_at,
        )

        assert get_schedule_generation(cur, booking_id="booking-1") == {
            "booking_id": "booking-1",
            "rule_id": "22222222-2222-2222-2222-222222222222",
            "milestone_count": 2,
            "generated_at": generated_at,
        }


class TestInsertMilestones:
    def test_empty_list_skips_database(self, cur):
        assert insert_milestones(cur, []) == []
        cur.execute.assert_not_called()

    def test_rows_returned_in_sequence_order(self, cur):
        drafts = [
            {
                "booking_id": "booking-1",
                "milestone_sequence": seq,
                "milestone_name": name,
                "amount_due": amount,
                "currency": "ZAR",
                "due_date": due,
                "due_type": "at_booking",
                "status": "pending",
                "amount_paid": Decimal(0),
                "created_from_rule_id": "r1",
            }
            for seq, name, amount, due in [
                (1, "Deposit", Decimal("300"), date(2025, 1, 1)),
                (2, "Balance", Decimal("700"), date(2025, 1, 25)),
            ]
        ]
        # Rows come back in a different order than inserted
        cur.fetchone.side_effect = [
            milestone_row(id=UUID(int=2), milestone_sequence=2, milestone_name="Balance"),
            milestone_row(id=UUID(int=1), milestone_sequence=1),
        ]

        rows = insert_milestones(cur, drafts)

        assert cur.execute.call_count == 2
        sql, params = cur.execute.call_args_list[0][0]
        assert "INSERT INTO booking_payment_schedules" in sql
        assert "RETURNING" in sql
        assert params[:4] == ("booking-1", 1, "Deposit", Decimal("300"))
        assert len(params) == sql.count("%s")
        assert [r["milestone_sequence"] for r in rows] == [1, 2]
        assert rows[0]["id"] == str(UUID(int=1))


class TestGuardedUpdates:
    def test_payment_update_excludes_terminal_rows(self, cur):
        cur.rowcount = 1
        paid_at = datetime(2025, 1, 5, tzinfo=timezone.utc)

        assert update_milestone_payment(
            cur,
            milestone_id="m1",
            amount_paid=Decimal("500"),
            status="paid",
            paid_at=paid_at,
        ) is True

        sql, params = cur.execute.call_args[0]
        assert "status NOT IN ('paid', 'cancelled')" in sql
        assert "COALESCE(%s, paid_at)" in sql
        assert params == (Decimal("500"), "paid", paid_at, "m1")

    def test_payment_update_on_terminal_row_reports_false(self, cur):
        cur.rowcount = 0

        assert update_milestone_payment(
            cur, milestone_id="m1", amount_paid=Decimal("1"), status="partial", paid_at=None
        ) is False

    def test_mark_overdue_is_single_conditional_update(self, cur):
        cur.rowcount = 3

        assert mark_overdue(cur, today=date(2025, 1, 11)) == 3

        assert cur.execute.call_count == 1
        sql, params = cur.execute.call_args[0]
        assert sql.strip().startswith("UPDATE booking_payment_schedules")
        assert params == (date(2025, 1, 11),)

    def test_cancel_leaves_paid(self, cur):
        cur.rowcount = 1

        assert cancel_booking_milestones(cur, booking_id="booking-1") == 1

        sql, _ = cur.execute.call_args[0]
        assert "'paid'" not in sql


class TestReads:
    def test_get_for_update(self, cur):
        cur.fetchone.return_value = milestone_row(id=UUID(int=7))

        row = get_milestone_for_update(cur, milestone_id=str(UUID(int=7)))

        assert row["id"] == str(UUID(int=7))
        assert row["amount_due"] == Decimal("500.0000")
        assert "FOR UPDATE" in cur.execute.call_args[0][0]

    def test_get_for_update_missing(self, cur):
        cur.fetchone.return_value = None

        assert get_milestone_for_update(cur, milestone_id="nope") is None

    def test_list_milestones_ordered(self, cur):
        cur.fetchall.return_value = [milestone_row(), milestone_row(milestone_sequence=2)]

        rows = list_milestones(cur, booking_id="booking-1")

        assert "ORDER BY milestone_sequence" in cur.execute.call_args[0][0]
        assert rows[0] == milestone_dict()
        assert len(rows) == 2
