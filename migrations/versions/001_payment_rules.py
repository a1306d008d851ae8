"""Rule Store: payment_rules table.

Adds an EXCLUDE USING GIST constraint so a room can never have two active
rules whose validity windows overlap. The resolver still refuses to pick
between two candidates if this is ever bypassed.

Revision ID: 001_payment_rules
Revises:
Create Date: 2025-01-06
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_payment_rules"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_payment_rules.sql"


def upgrade() -> None:
    sql = _SQL_FILE.read_text(encoding="utf-8")
    op.execute(sql)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payment_rules")
    # btree_gist stays installed; other indexes may use it.
