import asyncio
from celery import shared_task
from celery.utils.log import get_task_logger
from tourdesk.database import SessionLocal
from tourdesk.services.automation import run_automation_tick
from tourdesk.services.email_templates import NotificationService
from tourdesk.services.notification import EmailNotifier

logger = get_task_logger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def run_automation(self):
    db = SessionLocal()

    try:
        notifier = EmailNotifier()

        async def run_tick():
            try:
                return await run_automation_tick(db, NotificationService(db, notifier))
            finally:
                await notifier.close()

        reports = asyncio.run(run_tick())
        for report in reports:
            logger.info(
                f"{report.job}: {report.examined} examined, {report.sent} sent, "
                f"{report.updated} updated, {report.failed} failed"
            )
        return [report.as_dict() for report in reports]

    except Exception as e:
        logger.exception("Reservation automation tick failed")
        raise self.retry(exc=e)

    finally:
        db.close()
