"""Worker routes for payment schedule tasks.

Task endpoints (Cloud Tasks / Cloud Scheduler, OIDC or internal secret):
- POST /tasks/payment-schedules/generate        booking confirmed
- POST /tasks/payment-schedules/record-payment  funds confirmed for a milestone
- POST /tasks/payment-schedules/sweep-overdue   periodic overdue sweep
- POST /tasks/payment-schedules/cancel          booking cancelled

Internal read (invoicing, "amount due next" displays):
- GET /internal/bookings/{booking_id}/payment-schedule
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from staypay.api.task_auth import verify_task_auth
from staypay.domain.due_dates import ConfigurationError
from staypay.domain.milestones import (
    MilestoneNotFoundError,
    cancel_schedule,
    record_payment,
    sweep_overdue,
)
from staypay.domain.payment_schedule import (
    BookingFacts,
    generate_payment_schedule,
    get_payment_schedule,
    summarize_schedule,
)
from staypay.domain.rule_resolver import ResolutionConflictError
from staypay.infra.db import PersistenceError
from staypay.infra.time import as_calendar_date
from staypay.observability.correlation import get_correlation_id
from staypay.observability.logging import get_logger
from staypay.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/payment-schedules", tags=["tasks"])
internal_router = APIRouter(prefix="/internal", tags=["internal"])

logger = get_logger(__name__)


# ── Helpers ──────────────────────────────────────────────


def _encode(value: Any) -> Any:
    return jsonable_encoder(value, custom_encoder={Decimal: str})


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=_encode({"ok": False, "error": error, **extra}),
    )


def _require_auth(request: Request, correlation_id: str) -> None:
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _read_json(request: Request, correlation_id: str) -> dict[str, Any] | None:
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return None
    return payload


def _domain_error_response(exc: Exception, correlation_id: str) -> JSONResponse:
    """Map engine errors to HTTP responses; the caller decides on retries."""
    if isinstance(exc, ResolutionConflictError):
        status_code = 409
    elif isinstance(exc, ConfigurationError):
        status_code = 422
    elif isinstance(exc, MilestoneNotFoundError):
        status_code = 404
    else:
        status_code = 503

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "payment schedule task failed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                error_type=type(exc).__name__,
                status_code=status_code,
            )
        },
    )
    return _error(status_code, str(exc), error_type=type(exc).__name__)


_DOMAIN_ERRORS = (
    ConfigurationError,
    ResolutionConflictError,
    MilestoneNotFoundError,
    PersistenceError,
)


# ── Task endpoints ───────────────────────────────────────


@router.post("/generate")
async def handle_generate(request: Request) -> JSONResponse:
    """Generate the payment schedule for a confirmed booking.

    Expected payload:
    - id, room_id, checkin_date, booking_date, total_amount, currency (required)
    - correlation_id: Optional correlation ID

    Re-delivery of the same booking returns the stored schedule.
    """
    correlation_id = get_correlation_id()
    _require_auth(request, correlation_id)

    payload = await _read_json(request, correlation_id)
    if payload is None:
        return _error(400, "invalid json")

    try:
        booking = BookingFacts.model_validate(payload)
    except ValidationError as e:
        logger.warning(
            "invalid booking payload",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    error_count=e.error_count(),
                )
            },
        )
        return _error(400, "invalid booking payload")

    req_correlation_id = payload.get("correlation_id") or correlation_id

    try:
        milestones = generate_payment_schedule(booking, correlation_id=req_correlation_id)
    except _DOMAIN_ERRORS as e:
        return _domain_error_response(e, req_correlation_id)

    return JSONResponse(
        status_code=200,
        content={
            "ok": True,
            "booking_id": booking.id,
            "milestones": [m.model_dump(mode="json") for m in milestones],
        },
    )


@router.post("/record-payment")
async def handle_record_payment(request: Request) -> JSONResponse:
    """Record the cumulative amount paid against a milestone.

    Expected payload:
    - milestone_id: Milestone UUID (required)
    - cumulative_amount_paid: Total paid so far, not a delta (required)
    - correlation_id: Optional correlation ID
    """
    correlation_id = get_correlation_id()
    _require_auth(request, correlation_id)

    payload = await _read_json(request, correlation_id)
    if payload is None:
        return _error(400, "invalid json")

    milestone_id = payload.get("milestone_id", "")
    raw_amount = payload.get("cumulative_amount_paid")
    req_correlation_id = payload.get("correlation_id") or correlation_id

    if not milestone_id or raw_amount is None or isinstance(raw_amount, bool):
        logger.warning(
            "missing required fields",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=req_correlation_id,
                    has_milestone_id=bool(milestone_id),
                    has_amount=raw_amount is not None,
                )
            },
        )
        return _error(400, "missing required fields")

    try:
        cumulative = Decimal(str(raw_amount))
    except ArithmeticError:
        return _error(400, "invalid cumulative_amount_paid")
    if not cumulative.is_finite() or cumulative < 0:
        return _error(400, "invalid cumulative_amount_paid")

    try:
        result = record_payment(
            milestone_id,
            cumulative,
            correlation_id=req_correlation_id,
        )
    except _DOMAIN_ERRORS as e:
        return _domain_error_response(e, req_correlation_id)

    return JSONResponse(status_code=200, content=_encode({"ok": True, **result}))


@router.post("/sweep-overdue")
async def handle_sweep_overdue(request: Request) -> JSONResponse:
    """Mark pending milestones past their due date as overdue.

    Expected payload:
    - today: Evaluation date, YYYY-MM-DD (required; the server clock is
      never used)
    """
    correlation_id = get_correlation_id()
    _require_auth(request, correlation_id)

    payload = await _read_json(request, correlation_id)
    if payload is None:
        return _error(400, "invalid json")

    raw_today = payload.get("today")
    if not isinstance(raw_today, str) or not raw_today:
        return _error(400, "missing required fields")
    try:
        today = as_calendar_date(raw_today)
    except ValueError:
        return _error(400, "invalid today")

    try:
        transitioned = sweep_overdue(today, correlation_id=correlation_id)
    except _DOMAIN_ERRORS as e:
        return _domain_error_response(e, correlation_id)

    return JSONResponse(
        status_code=200,
        content={"ok": True, "today": today.isoformat(), "transitioned": transitioned},
    )


@router.post("/cancel")
async def handle_cancel(request: Request) -> JSONResponse:
    """Cancel a booking's open milestones. Paid milestones are kept.

    Expected payload:
    - booking_id: Booking identifier (required)
    - correlation_id: Optional correlation ID
    """
    correlation_id = get_correlation_id()
    _require_auth(request, correlation_id)

    payload = await _read_json(request, correlation_id)
    if payload is None:
        return _error(400, "invalid json")

    booking_id = payload.get("booking_id", "")
    req_correlation_id = payload.get("correlation_id") or correlation_id
    if not booking_id:
        return _error(400, "missing required fields")

    try:
        cancelled = cancel_schedule(booking_id, correlation_id=req_correlation_id)
    except _DOMAIN_ERRORS as e:
        return _domain_error_response(e, req_correlation_id)

    return JSONResponse(
        status_code=200,
        content={"ok": True, "booking_id": booking_id, "cancelled": cancelled},
    )


# ── Internal reads ───────────────────────────────────────


@internal_router.get("/bookings/{booking_id}/payment-schedule")
def read_payment_schedule(
    booking_id: str,
    request: Request,
    today: date | None = None,
) -> JSONResponse:
    """Return a booking's milestones (sequence order) with a summary."""
    correlation_id = get_correlation_id()
    _require_auth(request, correlation_id)

    try:
        milestones = get_payment_schedule(booking_id)
    except PersistenceError as e:
        return _domain_error_response(e, correlation_id)

    summary = summarize_schedule(booking_id, milestones, today=today)
    return JSONResponse(
        status_code=200,
        content={
            "ok": True,
            "booking_id": booking_id,
            "milestones": [m.model_dump(mode="json") for m in milestones],
            "summary": summary.model_dump(mode="json"),
        },
    )
