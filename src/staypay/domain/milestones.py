"""Milestone lifecycle - payment recording, overdue sweep, cancellation.

State machine (initial 'pending', terminal 'paid' and 'cancelled'):

    pending --payment >= due--> paid
    pending --0 < payment < due--> partial
    pending --sweep, due_date < today--> overdue
    partial --payment >= due--> paid
    overdue --payment >= due--> paid
    overdue --0 < payment < due--> partial
    pending/overdue/partial --booking cancelled--> cancelled

Payments are always reported as the cumulative amount paid so that a
replayed provider webhook cannot double-count.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from staypay.domain.amounts import to_decimal
from staypay.domain.due_dates import DueTiming
from staypay.infra.db import txn
from staypay.infra.repositories.payment_schedule_repository import (
    cancel_booking_milestones,
    get_milestone_for_update,
    mark_overdue,
    update_milestone_payment,
)
from staypay.infra.time import as_calendar_date, utc_now
from staypay.observability.logging import get_logger
from staypay.observability.redaction import safe_log_context

logger = get_logger(__name__)


# ── Enums ─────────────────────────────────────────────────


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    OVERDUE = "overdue"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({MilestoneStatus.PAID, MilestoneStatus.CANCELLED})
OPEN_STATUSES = frozenset(
    {MilestoneStatus.PENDING, MilestoneStatus.OVERDUE, MilestoneStatus.PARTIAL}
)


# ── Exceptions ───────────────────────────────────────────


class MilestoneNotFoundError(Exception):
    def __init__(self, milestone_id: str):
        self.milestone_id = milestone_id
        super().__init__(f"Payment milestone {milestone_id} not found")


# ── Pydantic Schemas ─────────────────────────────────────


class MilestoneDraft(BaseModel):
    """A milestone computed from a rule, not yet persisted."""

    model_config = ConfigDict(frozen=True)

    booking_id: str
    milestone_sequence: int
    milestone_name: str
    amount_due: Decimal
    currency: str
    due_date: date
    due_type: DueTiming
    status: MilestoneStatus = MilestoneStatus.PENDING
    amount_paid: Decimal = Decimal(0)
    created_from_rule_id: str | None = None

    def as_row(self) -> dict[str, Any]:
        """Column values for the repository (enums as their DB strings)."""
        row = self.model_dump()
        row["due_type"] = self.due_type.value
        row["status"] = self.status.value
        return row


class PaymentScheduleMilestone(MilestoneDraft):
    """A persisted milestone row."""

    id: str
    paid_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Transitions ──────────────────────────────────────────


def derive_status(
    current: MilestoneStatus | str,
    cumulative_amount_paid: Decimal,
    amount_due: Decimal,
) -> MilestoneStatus:
    """Compute the status after a payment report.

    Terminal states never change. A zero cumulative figure leaves the
    status as it is, and partial never falls back to pending or overdue.
    """
    status = MilestoneStatus(current)
    if status in TERMINAL_STATUSES:
        return status
    if cumulative_amount_paid >= amount_due:
        return MilestoneStatus.PAID
    if cumulative_amount_paid > 0:
        return MilestoneStatus.PARTIAL
    return status


def record_payment(
    milestone_id: str,
    cumulative_amount_paid: Decimal | int | float | str,
    *,
    amount_due: Decimal | int | float | str | None = None,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Record the cumulative amount paid against one milestone.

    This function:
    1. Locks the milestone with FOR UPDATE
    2. Returns early if the milestone is paid or cancelled (terminal no-op)
    3. Returns early if the figure is below the stored amount_paid (stale replay)
    4. Derives the new status from the cumulative figure and amount due
    5. Persists amount_paid, status and, on entering 'paid', paid_at

    Args:
        milestone_id: Milestone UUID.
        cumulative_amount_paid: Total paid so far for this milestone (not a delta).
        amount_due: Amount to compare against. Defaults to the stored amount_due.
        now: Timestamp for paid_at. Defaults to the current UTC time.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        Dict with result:
        - {"status": "noop_terminal", "milestone_id", "milestone_status"}
        - {"status": "stale", "milestone_id", "milestone_status", "amount_paid"}
        - {"status": "updated", "milestone_id", "milestone_status", "amount_paid", "paid_at"}

    Raises:
        ValueError: If cumulative_amount_paid is negative.
        MilestoneNotFoundError: If the milestone does not exist.
    """
    cumulative = to_decimal(cumulative_amount_paid)
    if cumulative < 0:
        raise ValueError("cumulative_amount_paid must not be negative")

    with txn() as cur:
        row = get_milestone_for_update(cur, milestone_id=milestone_id)
        if row is None:
            raise MilestoneNotFoundError(milestone_id)

        current = MilestoneStatus(row["status"])
        stored_paid = to_decimal(row["amount_paid"])

        if current in TERMINAL_STATUSES:
            logger.info(
                "milestone_payment_ignored_terminal",
                extra={
                    "extra_fields": safe_log_context(
                        milestone_id=milestone_id,
                        milestone_status=current,
                        reported_amount=cumulative,
                        correlation_id=correlation_id,
                    )
                },
            )
            return {
                "status": "noop_terminal",
                "milestone_id": milestone_id,
                "milestone_status": current.value,
            }

        if cumulative < stored_paid:
            logger.warning(
                "milestone_payment_stale",
                extra={
                    "extra_fields": safe_log_context(
                        milestone_id=milestone_id,
                        stored_amount=stored_paid,
                        reported_amount=cumulative,
                        correlation_id=correlation_id,
                    )
                },
            )
            return {
                "status": "stale",
                "milestone_id": milestone_id,
                "milestone_status": current.value,
                "amount_paid": stored_paid,
            }

        due = to_decimal(amount_due) if amount_due is not None else to_decimal(row["amount_due"])
        new_status = derive_status(current, cumulative, due)
        paid_at = (now or utc_now()) if new_status is MilestoneStatus.PAID else None

        update_milestone_payment(
            cur,
            milestone_id=milestone_id,
            amount_paid=cumulative,
            status=new_status.value,
            paid_at=paid_at,
        )

    if cumulative > due:
        logger.warning(
            "milestone_overpaid",
            extra={
                "extra_fields": safe_log_context(
                    milestone_id=milestone_id,
                    amount_due=due,
                    amount_paid=cumulative,
                    correlation_id=correlation_id,
                )
            },
        )

    logger.info(
        "milestone_payment_recorded",
        extra={
            "extra_fields": safe_log_context(
                milestone_id=milestone_id,
                from_status=current,
                to_status=new_status,
                correlation_id=correlation_id,
            )
        },
    )

    return {
        "status": "updated",
        "milestone_id": milestone_id,
        "milestone_status": new_status.value,
        "amount_paid": cumulative,
        "paid_at": paid_at,
    }


def sweep_overdue(
    today: date | datetime | str,
    *,
    correlation_id: str | None = None,
) -> int:
    """Mark pending milestones due before `today` as overdue.

    The evaluation date is always supplied by the caller. Safe to run
    repeatedly and concurrently with record_payment: a second run with the
    same date transitions nothing.

    Returns:
        Number of milestones transitioned.
    """
    evaluation_date = as_calendar_date(today)

    with txn() as cur:
        count = mark_overdue(cur, today=evaluation_date)

    logger.info(
        "overdue_sweep_completed",
        extra={
            "extra_fields": safe_log_context(
                today=evaluation_date,
                transitioned=count,
                correlation_id=correlation_id,
            )
        },
    )
    return count


def cancel_schedule(
    booking_id: str,
    *,
    correlation_id: str | None = None,
) -> int:
    """Cancel a booking's open milestones (pending, overdue, partial).

    Paid milestones keep their status. Safe to retry.

    Returns:
        Number of milestones cancelled.
    """
    with txn() as cur:
        count = cancel_booking_milestones(cur, booking_id=booking_id)

    logger.info(
        "payment_schedule_cancelled",
        extra={
            "extra_fields": safe_log_context(
                booking_id=booking_id,
                cancelled=count,
                correlation_id=correlation_id,
            )
        },
    )
    return count
