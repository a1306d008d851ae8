"""Shared test helper functions for StayPay tests.

Regular functions (not fixtures) importable by conftest.py and test modules.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from staypay.infra.repositories.payment_schedule_repository import MILESTONE_COLUMNS


def make_txn(cur):
    """Build a txn() replacement that yields the given cursor."""

    @contextmanager
    def _txn(conn=None):
        yield cur

    return _txn


def milestone_dict(**overrides: Any) -> dict[str, Any]:
    """A persisted milestone row as a dict, with sensible defaults."""
    row: dict[str, Any] = {
        "id": "11111111-1111-1111-1111-111111111111",
        "booking_id": "booking-1",
        "milestone_sequence": 1,
        "milestone_name": "Deposit",
        "amount_due": Decimal("500.0000"),
        "currency": "ZAR",
        "due_date": date(2025, 1, 10),
        "due_type": "at_booking",
        "status": "pending",
        "amount_paid": Decimal("0.0000"),
        "paid_at": None,
        "created_from_rule_id": "22222222-2222-2222-2222-222222222222",
        "created_at": datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc),
        "updated_at": datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


def milestone_row(**overrides: Any) -> tuple[Any, ...]:
    """A persisted milestone row as the tuple a cursor returns."""
    row = milestone_dict(**overrides)
    return tuple(row[col] for col in MILESTONE_COLUMNS)


def deposit_rule_row(**overrides: Any) -> dict[str, Any]:
    """A Rule Store row for a 30% deposit / balance 7 days before check-in."""
    row: dict[str, Any] = {
        "id": "22222222-2222-2222-2222-222222222222",
        "room_id": "room-1",
        "rule_name": "Standard deposit",
        "rule_type": "deposit",
        "is_active": True,
        "start_date": None,
        "end_date": None,
        "deposit_type": "percentage",
        "deposit_amount": Decimal("30"),
        "deposit_due": "at_booking",
        "deposit_due_days": None,
        "balance_due": "days_before_checkin",
        "balance_due_days": 7,
        "schedule_config": None,
    }
    row.update(overrides)
    return row


def installment_rule_row(schedule_config: list[dict[str, Any]], **overrides: Any) -> dict[str, Any]:
    """A Rule Store row for a payment_schedule rule."""
    row: dict[str, Any] = {
        "id": "33333333-3333-3333-3333-333333333333",
        "room_id": "room-1",
        "rule_name": "Three installments",
        "rule_type": "payment_schedule",
        "is_active": True,
        "start_date": None,
        "end_date": None,
        "deposit_type": None,
        "deposit_amount": None,
        "deposit_due": None,
        "deposit_due_days": None,
        "balance_due": None,
        "balance_due_days": None,
        "schedule_config": schedule_config,
    }
    row.update(overrides)
    return row


THREE_STEP_SCHEDULE = [
    {"sequence": 1, "name": "First", "amount_type": "percentage", "amount": 50, "due": "at_booking"},
    {"sequence": 2, "name": "Second", "amount_type": "percentage", "amount": 30, "due": "days_after_booking", "days": 30},
    {"sequence": 3, "name": "Final", "amount_type": "percentage", "amount": 20, "due": "on_checkin"},
]
