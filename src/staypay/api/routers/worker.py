"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from staypay.api.routes import tasks_payment_schedules

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}


router.include_router(tasks_payment_schedules.router)
router.include_router(tasks_payment_schedules.internal_router)
