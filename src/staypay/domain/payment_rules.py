"""Payment rule domain: one pydantic model per rule type.

A rule is a tagged union over rule_type. Each variant carries exactly the
fields its policy needs and forbids the rest, so deposit fields on an
installment rule cannot be represented at all.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from staypay.domain.amounts import AmountType
from staypay.domain.due_dates import ConfigurationError, DueTiming


# ── Rule types ────────────────────────────────────────────

RULE_TYPE_FLEXIBLE = "flexible"
RULE_TYPE_DEPOSIT = "deposit"
RULE_TYPE_PAYMENT_SCHEDULE = "payment_schedule"


# ── Pydantic Schemas ─────────────────────────────────────


class ScheduleMilestoneConfig(BaseModel):
    """One configured installment of a payment_schedule rule."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    sequence: int = Field(ge=1)
    name: str
    amount_type: AmountType
    amount: Decimal
    due: DueTiming
    days: int | None = Field(default=None, ge=0)
    specific_date: date | None = None


class _RuleBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    room_id: str
    rule_name: str = ""
    is_active: bool = True
    # Validity window, inclusive on both ends. None means open-ended.
    start_date: date | None = None
    end_date: date | None = None


class FlexibleRule(_RuleBase):
    rule_type: Literal["flexible"] = RULE_TYPE_FLEXIBLE


class DepositRule(_RuleBase):
    rule_type: Literal["deposit"] = RULE_TYPE_DEPOSIT

    deposit_type: AmountType
    deposit_amount: Decimal
    deposit_due: DueTiming
    deposit_due_days: int | None = Field(default=None, ge=0)
    balance_due: DueTiming
    balance_due_days: int | None = Field(default=None, ge=0)


class InstallmentRule(_RuleBase):
    rule_type: Literal["payment_schedule"] = RULE_TYPE_PAYMENT_SCHEDULE

    schedule_config: tuple[ScheduleMilestoneConfig, ...] = ()

    def ordered_milestones(self) -> list[ScheduleMilestoneConfig]:
        """Milestone configs in ascending sequence order."""
        return sorted(self.schedule_config, key=lambda m: m.sequence)


PaymentRule = Annotated[
    Union[FlexibleRule, DepositRule, InstallmentRule],
    Field(discriminator="rule_type"),
]

_payment_rule_adapter: TypeAdapter[PaymentRule] = TypeAdapter(PaymentRule)


# ── Row parsing ───────────────────────────────────────────

_COMMON_FIELDS = ("id", "room_id", "rule_name", "is_active", "start_date", "end_date")

# Columns that belong to each variant. Everything else in a stored row is
# expected to be NULL and is dropped before validation.
_VARIANT_FIELDS: dict[str, tuple[str, ...]] = {
    RULE_TYPE_FLEXIBLE: (),
    RULE_TYPE_DEPOSIT: (
        "deposit_type",
        "deposit_amount",
        "deposit_due",
        "deposit_due_days",
        "balance_due",
        "balance_due_days",
    ),
    RULE_TYPE_PAYMENT_SCHEDULE: ("schedule_config",),
}


def parse_payment_rule(row: dict[str, Any]) -> PaymentRule:
    """Build the typed rule variant from a flat Rule Store row.

    Args:
        row: Dict with the payment_rules columns (see the repository).

    Returns:
        FlexibleRule, DepositRule or InstallmentRule.

    Raises:
        ConfigurationError: Unknown rule_type, or the stored payload does not
            validate (e.g. an unknown timing strategy).
    """
    rule_id = row.get("id")
    rule_type = row.get("rule_type")
    if rule_type not in _VARIANT_FIELDS:
        raise ConfigurationError(
            f"payment rule {rule_id} has unknown rule_type: {rule_type!r}"
        )

    payload: dict[str, Any] = {"rule_type": rule_type}
    for key in _COMMON_FIELDS + _VARIANT_FIELDS[rule_type]:
        value = row.get(key)
        if value is not None:
            payload[key] = value
    if payload.get("id") is not None:
        payload["id"] = str(payload["id"])

    try:
        return _payment_rule_adapter.validate_python(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(
            f"payment rule {rule_id} is misconfigured at {location}: {first['msg']}"
        ) from exc
