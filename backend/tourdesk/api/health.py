from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from tourdesk.database import get_db
from tourdesk.models import User
from tourdesk.scheduler import get_scheduler_status, run_automation_now
from tourdesk.api.deps import require_admin

router = APIRouter()


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "ok" if db_status == "healthy" else "degraded",
        "database": db_status
    }


@router.get("/api/scheduler/status")
async def scheduler_status(admin: User = Depends(require_admin)):
    return get_scheduler_status()


@router.post("/api/scheduler/run")
async def trigger_automation(admin: User = Depends(require_admin)):
    """Run reminders, expiry sweeps and alerts immediately."""
    return await run_automation_now()
