"""Payment schedule repository - persistence for booking milestones.

Uses raw SQL with psycopg2 (no ORM). Milestones are never deleted; every
status change is a guarded UPDATE so concurrent writers cannot push a row
out of a terminal state.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

MILESTONE_COLUMNS = (
    "id",
    "booking_id",
    "milestone_sequence",
    "milestone_name",
    "amount_due",
    "currency",
    "due_date",
    "due_type",
    "status",
    "amount_paid",
    "paid_at",
    "created_from_rule_id",
    "created_at",
    "updated_at",
)

_INSERT_COLUMNS = (
    "booking_id",
    "milestone_sequence",
    "milestone_name",
    "amount_due",
    "currency",
    "due_date",
    "due_type",
    "status",
    "amount_paid",
    "created_from_rule_id",
)

_SELECT_LIST = ", ".join(MILESTONE_COLUMNS)


def _row_to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    milestone = dict(zip(MILESTONE_COLUMNS, row))
    milestone["id"] = str(milestone["id"])
    if milestone["created_from_rule_id"] is not None:
        milestone["created_from_rule_id"] = str(milestone["created_from_rule_id"])
    return milestone


# ── Generation guard ──────────────────────────────────────


def get_schedule_generation(
    cur: PgCursor,
    *,
    booking_id: str,
) -> dict[str, Any] | None:
    """Get the generation record for a booking, if a schedule exists.

    Returns:
        Dict with booking_id, rule_id, milestone_count, generated_at or None.
    """
    cur.execute(
        """
        SELECT booking_id, rule_id, milestone_count, generated_at
        FROM payment_schedule_generations
        WHERE booking_id = %s
        """,
        (booking_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "booking_id": row[0],
        "rule_id": str(row[1]) if row[1] else None,
        "milestone_count": row[2],
        "generated_at": row[3],
    }


def claim_schedule_generation(
    cur: PgCursor,
    *,
    booking_id: str,
    rule_id: str | None,
    milestone_count: int,
) -> bool:
    """Claim the right to write a booking's schedule.

    The booking_id primary key is the uniqueness guard: only one
    transaction can insert the claim row.

    Returns:
        True if this transaction claimed the booking, False if a schedule
        was already generated (or is being generated concurrently).
    """
    cur.execute(
        """
        INSERT INTO payment_schedule_generations (booking_id, rule_id, milestone_count)
        VALUES (%s, %s, %s)
        ON CONFLICT (booking_id) DO NOTHING
        RETURNING booking_id
        """,
        (booking_id, rule_id, milestone_count),
    )
    return cur.fetchone() is not None


# ── Milestone writes ──────────────────────────────────────


def insert_milestone(cur: PgCursor, *, milestone: dict[str, Any]) -> dict[str, Any]:
    """Insert one milestone row.

    Args:
        cur: Database cursor (within transaction).
        milestone: Dict with the _INSERT_COLUMNS keys.

    Returns:
        The inserted row as a dict (with id and timestamps).
    """
    cur.execute(
        f"""
        INSERT INTO booking_payment_schedules ({", ".join(_INSERT_COLUMNS)})
        VALUES ({", ".join(["%s"] * len(_INSERT_COLUMNS))})
        RETURNING {_SELECT_LIST}
        """,
        tuple(milestone[col] for col in _INSERT_COLUMNS),
    )
    return _row_to_dict(cur.fetchone())


def insert_milestones(
    cur: PgCursor,
    milestones: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Insert a booking's milestones.

    All rows go through the caller's transaction, so a failure on any of
    them leaves none behind.

    Returns:
        Inserted rows as dicts, in milestone_sequence order.
    """
    rows = [insert_milestone(cur, milestone=m) for m in milestones]
    return sorted(rows, key=lambda m: m["milestone_sequence"])


def update_milestone_payment(
    cur: PgCursor,
    *,
    milestone_id: str,
    amount_paid: Decimal,
    status: str,
    paid_at: datetime | None,
) -> bool:
    """Persist a recorded payment on one milestone.

    paid_at is only written when a value is passed (the transition into
    'paid'); otherwise the stored value is kept.

    Returns:
        True if a row was updated, False if the milestone is missing or
        already terminal.
    """
    cur.execute(
        """
        UPDATE booking_payment_schedules
        SET amount_paid = %s,
            status = %s,
            paid_at = COALESCE(%s, paid_at),
            updated_at = now()
        WHERE id = %s
          AND status NOT IN ('paid', 'cancelled')
        """,
        (amount_paid, status, paid_at, milestone_id),
    )
    return cur.rowcount > 0


def mark_overdue(cur: PgCursor, *, today: date) -> int:
    """Move every pending milestone due before today to 'overdue'.

    Single conditional UPDATE: a milestone that a concurrent payment moved
    out of 'pending' simply does not match.

    Returns:
        Number of milestones transitioned.
    """
    cur.execute(
        """
        UPDATE booking_payment_schedules
        SET status = 'overdue', updated_at = now()
        WHERE status = 'pending'
          AND due_date < %s
        """,
        (today,),
    )
    return cur.rowcount


def cancel_booking_milestones(cur: PgCursor, *, booking_id: str) -> int:
    """Cancel every open milestone of a booking. Paid ones are untouched.

    Returns:
        Number of milestones cancelled.
    """
    cur.execute(
        """
        UPDATE booking_payment_schedules
        SET status = 'cancelled', updated_at = now()
        WHERE booking_id = %s
          AND status IN ('pending', 'overdue', 'partial')
        """,
        (booking_id,),
    )
    return cur.rowcount


# ── Milestone reads ───────────────────────────────────────


def get_milestone_for_update(
    cur: PgCursor,
    *,
    milestone_id: str,
) -> dict[str, Any] | None:
    """Lock and return one milestone (SELECT ... FOR UPDATE)."""
    cur.execute(
        f"""
        SELECT {_SELECT_LIST}
        FROM booking_payment_schedules
        WHERE id = %s
        FOR UPDATE
        """,
        (milestone_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_dict(row)


def list_milestones(cur: PgCursor, *, booking_id: str) -> list[dict[str, Any]]:
    """List a booking's milestones sorted by milestone_sequence ascending."""
    cur.execute(
        f"""
        SELECT {_SELECT_LIST}
        FROM booking_payment_schedules
        WHERE booking_id = %s
        ORDER BY milestone_sequence
        """,
        (booking_id,),
    )
    return [_row_to_dict(r) for r in cur.fetchall()]
