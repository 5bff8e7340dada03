"""
APScheduler setup for reservation automation.

A single interval job runs the whole automation tick. The first run fires
immediately on start so reminders and expiries missed while the service was
down are caught up.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore

from tourdesk.database import SessionLocal
from tourdesk.services.automation import run_automation_tick
from tourdesk.services.email_templates import NotificationService
from tourdesk.services.notification import get_global_notifier
from tourdesk.config import get_settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None

settings = get_settings()

AUTOMATION_JOB_ID = "reservation_automation"

# Summary of the most recent tick, for the status endpoint
_last_run: Optional[dict] = None

# Manual runs share this with the scheduled job so ticks never overlap in-process
_tick_lock = asyncio.Lock()


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the global scheduler instance."""
    global scheduler
    if scheduler is None:
        tz = settings.scheduler_timezone
        logger.info(f"Scheduler using timezone: {tz}")

        scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone=tz,
        )
        _setup_scheduled_jobs()

    return scheduler


def _setup_scheduled_jobs():
    interval = settings.scheduler_interval_minutes

    scheduler.add_job(
        automation_tick_job,
        trigger=IntervalTrigger(minutes=interval),
        id=AUTOMATION_JOB_ID,
        name="Reservation automation (reminders, expiry, alerts)",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(ZoneInfo(settings.scheduler_timezone)),
    )

    logger.info("Scheduled jobs configured:")
    logger.info(f"  - Reservation automation: every {interval} minutes, first run now")


async def automation_tick_job() -> dict:
    """Open a session, run every automation job, record a summary."""
    global _last_run
    if _tick_lock.locked():
        logger.warning("Automation tick already running, skipping this run")
        return {"skipped": True, "reason": "tick already running", "jobs": []}

    async with _tick_lock:
        logger.info("Starting reservation automation tick")

        db = SessionLocal()
        started_at = datetime.utcnow()

        try:
            notifications = NotificationService(db, get_global_notifier())
            reports = await run_automation_tick(db, notifications)

            summary = {
                "started_at": started_at.isoformat(),
                "finished_at": datetime.utcnow().isoformat(),
                "jobs": [report.as_dict() for report in reports],
            }
            _last_run = summary

            failures = sum(report.failed for report in reports)
            if failures:
                logger.warning(f"Automation tick finished with {failures} failure(s)")
            else:
                logger.info("Automation tick complete")
            return summary

        except Exception as e:
            logger.error(f"Error in automation tick: {e}")
            _last_run = {
                "started_at": started_at.isoformat(),
                "finished_at": datetime.utcnow().isoformat(),
                "error": str(e),
                "jobs": [],
            }
            return _last_run

        finally:
            db.close()


async def run_automation_now() -> dict:
    """Manually trigger a tick outside the schedule."""
    logger.info("Manual automation tick triggered")
    return await automation_tick_job()


def start_scheduler():
    """Start the scheduler (call this from FastAPI startup)."""
    scheduler_instance = get_scheduler()

    if not scheduler_instance.running:
        scheduler_instance.start()
        logger.info("APScheduler started successfully")

        for job in scheduler_instance.get_jobs():
            logger.info(f"Next '{job.name}': {job.next_run_time}")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """Stop the scheduler (call this from FastAPI shutdown)."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")
    scheduler = None


def get_scheduler_status() -> dict:
    """Get scheduler status for the admin status endpoint."""
    if scheduler is None or not scheduler.running:
        return {
            "running": False,
            "jobs": [],
            "next_run": None,
            "last_run": _last_run,
        }

    jobs = []
    next_run = None

    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "func": job.func.__name__ if job.func else None,
        })
        if job.next_run_time and (next_run is None or job.next_run_time < next_run):
            next_run = job.next_run_time

    return {
        "running": True,
        "jobs": jobs,
        "next_run": next_run.isoformat() if next_run else None,
        "last_run": _last_run,
    }
