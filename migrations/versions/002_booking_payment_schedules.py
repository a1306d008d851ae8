"""Booking payment milestones and the per-booking generation guard.

payment_schedule_generations.booking_id is the primary key that stops a
booking from ever receiving a second schedule.

Revision ID: 002_booking_payment_schedules
Revises: 001_payment_rules
Create Date: 2025-01-06
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_booking_payment_schedules"
down_revision = "001_payment_rules"
branch_labels = None
depends_on = None

_SQL_FILE = (
    Path(__file__).resolve().parent.parent / "sql" / "002_booking_payment_schedules.sql"
)


def upgrade() -> None:
    sql = _SQL_FILE.read_text(encoding="utf-8")
    op.execute(sql)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS booking_payment_schedules")
    op.execute("DROP TABLE IF EXISTS payment_schedule_generations")
    op.execute("DROP TYPE IF EXISTS payment_milestone_status")
