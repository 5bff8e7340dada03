from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from tourdesk.api import tours, departures, reservations, passengers, installments, reminder_rules, health
from tourdesk.scheduler import start_scheduler, stop_scheduler
from tourdesk.services.notification import shutdown_notifier
from tourdesk.services.email_templates import seed_default_templates, seed_default_reminder_rules
from tourdesk.config import get_settings
from tourdesk.database import engine, Base, SessionLocal
import tourdesk.models  # noqa: F401  registers tables on Base.metadata

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def seed_defaults():
    db = SessionLocal()
    try:
        seed_default_templates(db)
        seed_default_reminder_rules(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting TourDesk reservation service")

    if settings.database_url.startswith("sqlite"):
        logger.info("SQLite detected - creating tables if needed")
        Base.metadata.create_all(bind=engine)

    try:
        seed_defaults()

        if settings.scheduler_enabled:
            start_scheduler()
            logger.info("APScheduler started")
        else:
            logger.info("Scheduler disabled by configuration")

    except Exception as e:
        logger.error(f"Startup failed: {e}")

    yield

    logger.info("Shutting down TourDesk")

    try:
        stop_scheduler()
        await shutdown_notifier()
        logger.info("Scheduler and notifier shut down")

    except Exception as e:
        logger.error(f"Shutdown error: {e}")


app = FastAPI(
    title="TourDesk",
    description="Tour reservations with seat inventory, payment deadlines and automated reminders",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(tours.router, prefix="/api/tours", tags=["tours"])
app.include_router(departures.router, prefix="/api/departures", tags=["departures"])
app.include_router(reservations.router, prefix="/api/reservations", tags=["reservations"])
app.include_router(passengers.router, prefix="/api/passengers", tags=["passengers"])
app.include_router(installments.router, prefix="/api", tags=["installments"])
app.include_router(reminder_rules.router, prefix="/api/reminder-rules", tags=["reminder-rules"])
