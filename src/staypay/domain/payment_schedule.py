"""Payment schedule generation - turn a booking and its room's rule into milestones.

Orchestrates generation inside a single DB transaction:
check existing → resolve rule → build milestones → claim booking → insert batch.

Schedules are a snapshot of the rule at booking time. Each milestone stores
its own amount and due date; editing the rule later never touches them.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict

from staypay.domain.amounts import AmountType, calculate_amount
from staypay.domain.due_dates import ConfigurationError, calculate_due_date
from staypay.domain.milestones import (
    OPEN_STATUSES,
    MilestoneDraft,
    MilestoneStatus,
    PaymentScheduleMilestone,
)
from staypay.domain.payment_rules import (
    DepositRule,
    FlexibleRule,
    InstallmentRule,
    PaymentRule,
)
from staypay.domain.rule_resolver import resolve_payment_rule
from staypay.infra.db import txn
from staypay.infra.repositories.payment_schedule_repository import (
    claim_schedule_generation,
    get_schedule_generation,
    insert_milestones,
    list_milestones,
)
from staypay.infra.time import as_calendar_date
from staypay.observability.logging import get_logger
from staypay.observability.redaction import safe_log_context

logger = get_logger(__name__)

PERCENTAGE_TOTAL = Decimal(100)
PERCENTAGE_TOLERANCE = Decimal("0.01")

DEPOSIT_MILESTONE_NAME = "Deposit"
BALANCE_MILESTONE_NAME = "Balance"


class ScheduleConfigurationError(ConfigurationError):
    """An installment rule cannot produce a consistent schedule."""

    def __init__(
        self,
        message: str,
        *,
        rule_id: str | None = None,
        total_percentage: Decimal | None = None,
    ):
        self.rule_id = rule_id
        self.total_percentage = total_percentage
        super().__init__(message)


# ── Pydantic Schemas ─────────────────────────────────────


class BookingFacts(BaseModel):
    """Booking data needed for schedule generation. Never mutated."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    room_id: str
    checkin_date: date
    booking_date: date
    total_amount: Decimal
    currency: str


class ScheduleSummary(BaseModel):
    booking_id: str
    currency: str | None
    total_scheduled: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    has_overdue: bool
    next_due_milestone: PaymentScheduleMilestone | None


# ── Milestone building (pure) ────────────────────────────


def validate_installment_rule(rule: InstallmentRule) -> None:
    """Check an installment rule before it may generate a schedule.

    Raises:
        ScheduleConfigurationError: No milestones, duplicate sequence numbers,
            or all-percentage amounts that do not total 100 (±0.01).
    """
    configs = rule.schedule_config
    if not configs:
        raise ScheduleConfigurationError(
            f"Payment schedule rule {rule.id} has no milestone configuration",
            rule_id=rule.id,
        )

    sequences = [m.sequence for m in configs]
    if len(set(sequences)) != len(sequences):
        raise ScheduleConfigurationError(
            f"Payment schedule rule {rule.id} has duplicate milestone sequences",
            rule_id=rule.id,
        )

    if all(m.amount_type is AmountType.PERCENTAGE for m in configs):
        total = sum((m.amount for m in configs), Decimal(0))
        if abs(total - PERCENTAGE_TOTAL) > PERCENTAGE_TOLERANCE:
            raise ScheduleConfigurationError(
                f"Payment schedule percentages must total 100% (current: {total}%)",
                rule_id=rule.id,
                total_percentage=total,
            )


def _deposit_milestones(booking: BookingFacts, rule: DepositRule) -> list[MilestoneDraft]:
    deposit_amount = calculate_amount(
        rule.deposit_type, rule.deposit_amount, booking.total_amount
    )
    # Balance is the remainder so the two always add up to the total.
    # A negative balance (misconfigured fixed deposit) is kept as-is.
    balance_amount = booking.total_amount - deposit_amount

    deposit_due = calculate_due_date(
        rule.deposit_due,
        rule.deposit_due_days,
        booking.checkin_date,
        booking.booking_date,
    )
    balance_due = calculate_due_date(
        rule.balance_due,
        rule.balance_due_days,
        booking.checkin_date,
        booking.booking_date,
    )

    return [
        MilestoneDraft(
            booking_id=booking.id,
            milestone_sequence=1,
            milestone_name=DEPOSIT_MILESTONE_NAME,
            amount_due=deposit_amount,
            currency=booking.currency,
            due_date=deposit_due,
            due_type=rule.deposit_due,
            created_from_rule_id=rule.id,
        ),
        MilestoneDraft(
            booking_id=booking.id,
            milestone_sequence=2,
            milestone_name=BALANCE_MILESTONE_NAME,
            amount_due=balance_amount,
            currency=booking.currency,
            due_date=balance_due,
            due_type=rule.balance_due,
            created_from_rule_id=rule.id,
        ),
    ]


def _installment_milestones(
    booking: BookingFacts, rule: InstallmentRule
) -> list[MilestoneDraft]:
    validate_installment_rule(rule)

    drafts = []
    for config in rule.ordered_milestones():
        drafts.append(
            MilestoneDraft(
                booking_id=booking.id,
                milestone_sequence=config.sequence,
                milestone_name=config.name,
                amount_due=calculate_amount(
                    config.amount_type, config.amount, booking.total_amount
                ),
                currency=booking.currency,
                due_date=calculate_due_date(
                    config.due,
                    config.days,
                    booking.checkin_date,
                    booking.booking_date,
                    config.specific_date,
                ),
                due_type=config.due,
                created_from_rule_id=rule.id,
            )
        )
    return drafts


def build_milestones(
    booking: BookingFacts,
    rule: PaymentRule | None,
) -> list[MilestoneDraft]:
    """Compute the milestones a rule produces for a booking.

    Pure: no database access. Either returns every milestone or raises;
    a partial list is never produced.

    Returns:
        Drafts in ascending sequence order ([] for no rule or flexible).

    Raises:
        ConfigurationError: Timing strategy missing a parameter.
        ScheduleConfigurationError: Installment rule is inconsistent.
    """
    if rule is None or isinstance(rule, FlexibleRule):
        return []
    if isinstance(rule, DepositRule):
        return _deposit_milestones(booking, rule)
    return _installment_milestones(booking, rule)


# ── Generation ───────────────────────────────────────────


def _to_milestones(rows: list[dict[str, Any]]) -> list[PaymentScheduleMilestone]:
    milestones = [PaymentScheduleMilestone(**r) for r in rows]
    return sorted(milestones, key=lambda m: m.milestone_sequence)


def generate_payment_schedule(
    booking: BookingFacts | dict[str, Any],
    *,
    correlation_id: str | None = None,
) -> list[PaymentScheduleMilestone]:
    """Generate and persist the payment schedule for a confirmed booking.

    This function:
    1. Returns the stored schedule if one was already generated (no re-resolve)
    2. Resolves the room's rule for the check-in date
    3. Builds the milestones (empty for no rule or a flexible rule)
    4. Claims the booking in payment_schedule_generations (PK on booking_id),
       also when the schedule is empty
    5. Inserts the milestones

    Everything runs in one transaction: any failure leaves zero milestones.

    Args:
        booking: Booking facts (model or dict with the same keys).
        correlation_id: Optional correlation ID for tracing.

    Returns:
        Persisted milestones sorted by milestone_sequence.

    Raises:
        ResolutionConflictError: More than one active rule for the room/date.
        ScheduleConfigurationError: Installment rule is inconsistent.
        ConfigurationError: Timing strategy missing a parameter or unknown.
        PersistenceError: Storage failure (transaction rolled back).
    """
    if not isinstance(booking, BookingFacts):
        booking = BookingFacts.model_validate(booking)

    with txn() as cur:
        if get_schedule_generation(cur, booking_id=booking.id) is not None:
            existing = _to_milestones(list_milestones(cur, booking_id=booking.id))
            logger.info(
                "payment_schedule_already_generated",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking.id,
                        milestone_count=len(existing),
                        correlation_id=correlation_id,
                    )
                },
            )
            return existing

        rule = resolve_payment_rule(cur, booking.room_id, booking.checkin_date)

        try:
            drafts = build_milestones(booking, rule)
        except ConfigurationError as exc:
            logger.error(
                "payment_schedule_configuration_error",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking.id,
                        room_id=booking.room_id,
                        rule_id=rule.id if rule is not None else None,
                        error_type=type(exc).__name__,
                        correlation_id=correlation_id,
                    )
                },
            )
            raise

        # Claimed even when empty: a rule added later must not reach this booking.
        claimed = claim_schedule_generation(
            cur,
            booking_id=booking.id,
            rule_id=rule.id if rule is not None else None,
            milestone_count=len(drafts),
        )
        if not claimed:
            # Lost the race to a concurrent generator; its schedule stands.
            return _to_milestones(list_milestones(cur, booking_id=booking.id))

        if not drafts:
            logger.info(
                "payment_schedule_not_required",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking.id,
                        room_id=booking.room_id,
                        reason="no_rule" if rule is None else "flexible",
                        correlation_id=correlation_id,
                    )
                },
            )
            return []

        rows = insert_milestones(cur, [d.as_row() for d in drafts])

    milestones = _to_milestones(rows)
    logger.info(
        "payment_schedule_generated",
        extra={
            "extra_fields": safe_log_context(
                booking_id=booking.id,
                rule_id=rule.id,
                rule_type=rule.rule_type,
                milestone_count=len(milestones),
                correlation_id=correlation_id,
            )
        },
    )
    return milestones


# ── Reads ────────────────────────────────────────────────


def get_payment_schedule(booking_id: str) -> list[PaymentScheduleMilestone]:
    """Return a booking's milestones sorted by milestone_sequence ascending."""
    with txn() as cur:
        rows = list_milestones(cur, booking_id=booking_id)
    return _to_milestones(rows)


def summarize_schedule(
    booking_id: str,
    milestones: list[PaymentScheduleMilestone],
    *,
    today: date | datetime | str | None = None,
) -> ScheduleSummary:
    """Summarize a schedule for "amount due next" displays.

    Cancelled milestones are left out of the totals. When `today` is given,
    a pending milestone already past its due date counts as overdue even if
    the sweep has not run yet.
    """
    evaluation_date = as_calendar_date(today) if today is not None else None
    ordered = sorted(milestones, key=lambda m: m.milestone_sequence)
    active = [m for m in ordered if m.status is not MilestoneStatus.CANCELLED]

    total_scheduled = sum((m.amount_due for m in active), Decimal(0))
    total_paid = sum((m.amount_paid for m in active), Decimal(0))
    total_outstanding = sum(
        (
            max(m.amount_due - m.amount_paid, Decimal(0))
            for m in active
            if m.status is not MilestoneStatus.PAID
        ),
        Decimal(0),
    )

    has_overdue = any(
        m.status is MilestoneStatus.OVERDUE
        or (
            evaluation_date is not None
            and m.status is MilestoneStatus.PENDING
            and m.due_date < evaluation_date
        )
        for m in active
    )

    next_due = next((m for m in ordered if m.status in OPEN_STATUSES), None)

    return ScheduleSummary(
        booking_id=booking_id,
        currency=ordered[0].currency if ordered else None,
        total_scheduled=total_scheduled,
        total_paid=total_paid,
        total_outstanding=total_outstanding,
        has_overdue=has_overdue,
        next_due_milestone=next_due,
    )
