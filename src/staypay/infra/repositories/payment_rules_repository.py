"""Payment rules repository - read access to the Rule Store.

Uses raw SQL with psycopg2 (no ORM). Rules are edited elsewhere; this
module only reads them.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_RULE_COLUMNS = (
    "id",
    "room_id",
    "rule_name",
    "rule_type",
    "is_active",
    "start_date",
    "end_date",
    "deposit_type",
    "deposit_amount",
    "deposit_due",
    "deposit_due_days",
    "balance_due",
    "balance_due_days",
    "schedule_config",
)


def _row_to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    rule = dict(zip(_RULE_COLUMNS, row))
    rule["id"] = str(rule["id"])
    return rule


def find_applicable_rules(
    cur: PgCursor,
    *,
    room_id: str,
    reference_date: date,
    limit: int = 2,
) -> list[dict[str, Any]]:
    """List active rules for a room whose validity window contains a date.

    The window is inclusive on both ends; a NULL bound is open-ended.
    The default limit of 2 is enough to detect a conflict without
    loading every overlapping rule.

    Args:
        cur: Database cursor.
        room_id: Room identifier.
        reference_date: Date the rule must cover (the check-in date).
        limit: Maximum number of rows to return.

    Returns:
        List of rule dicts keyed by column name.
    """
    cur.execute(
        f"""
        SELECT {", ".join(_RULE_COLUMNS)}
        FROM payment_rules
        WHERE room_id = %s
          AND is_active
          AND (start_date IS NULL OR start_date <= %s)
          AND (end_date IS NULL OR end_date >= %s)
        ORDER BY created_at, id
        LIMIT %s
        """,
        (room_id, reference_date, reference_date, limit),
    )
    return [_row_to_dict(r) for r in cur.fetchall()]
