"""Rule resolution - pick the single payment rule that applies to a booking."""

from __future__ import annotations

from datetime import date, datetime

from psycopg2.extensions import cursor as PgCursor

from staypay.domain.payment_rules import PaymentRule, parse_payment_rule
from staypay.infra.repositories.payment_rules_repository import find_applicable_rules
from staypay.infra.time import as_calendar_date
from staypay.observability.logging import get_logger
from staypay.observability.redaction import safe_log_context

logger = get_logger(__name__)


class ResolutionConflictError(Exception):
    """More than one active rule covers the same room and date."""

    def __init__(self, room_id: str, reference_date: date, rule_ids: list[str]):
        self.room_id = room_id
        self.reference_date = reference_date
        self.rule_ids = rule_ids
        super().__init__(
            f"Room {room_id} has {len(rule_ids)} active payment rules "
            f"covering {reference_date.isoformat()}: {', '.join(rule_ids)}"
        )


def resolve_payment_rule(
    cur: PgCursor,
    room_id: str,
    reference_date: date | datetime | str,
) -> PaymentRule | None:
    """Resolve the payment rule for a room at a reference date.

    Args:
        cur: Database cursor.
        room_id: Room identifier.
        reference_date: Date the rule must cover (the booking's check-in).

    Returns:
        The applicable rule, or None when no rule applies (payment is
        flexible and no schedule is required).

    Raises:
        ResolutionConflictError: If the store yields more than one candidate.
        ConfigurationError: If the stored rule does not parse.
    """
    ref = as_calendar_date(reference_date)
    rows = find_applicable_rules(cur, room_id=room_id, reference_date=ref)

    if not rows:
        return None

    if len(rows) > 1:
        rule_ids = [r["id"] for r in rows]
        logger.error(
            "payment_rule_resolution_conflict",
            extra={
                "extra_fields": safe_log_context(
                    room_id=room_id,
                    reference_date=ref,
                    candidate_count=len(rule_ids),
                )
            },
        )
        raise ResolutionConflictError(room_id, ref, rule_ids)

    return parse_payment_rule(rows[0])
