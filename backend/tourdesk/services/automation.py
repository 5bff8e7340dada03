"""
Time-driven reservation automation.

Each job scans the reservations it cares about and handles them one at a
time; a failure on one reservation is logged and counted, and the job moves
on to the next. Jobs take `now` (naive UTC) so they can be driven from tests
or a manual trigger.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from tourdesk.config import get_settings
from tourdesk.models import ReminderRule, ReservationStatus
from tourdesk.services import reservation_service
from tourdesk.services.email_templates import NotificationService
from tourdesk.services.errors import InvalidTransition
from tourdesk.services.installments import mark_overdue_installments
from tourdesk.services.reminder_rules import days_until, select_reminder_rule, sort_enabled_rules
from tourdesk.services.timeline import record_event

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class JobReport:
    job: str
    examined: int = 0
    sent: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def fail(self, reservation_id, error: Exception):
        self.failed += 1
        self.errors.append(f"reservation {reservation_id}: {error}")

    def as_dict(self) -> dict:
        return asdict(self)


def to_local(now: datetime, tz_name: Optional[str] = None) -> datetime:
    """Naive UTC -> aware wall-clock time in the scheduler timezone."""
    return now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name or settings.scheduler_timezone))


def _log_email_event(db: Session, reservation_id: int, description: str, template_type: str):
    try:
        record_event(db, reservation_id, "email_sent", description, metadata={"template_type": template_type})
        db.commit()
    except Exception:
        db.rollback()
        raise


def _with_ids(reservations) -> list:
    """Pair each row with its id, read before any commit in the loop can expire it."""
    return [(reservation.id, reservation) for reservation in reservations]


async def _send_once(db: Session, reservation_id: int, flag: str, send) -> bool:
    """
    Claim a one-shot flag, then send. The claim is undone if the send does not
    go through, so only one tick (or driver) ever delivers the notice.
    """
    if not reservation_service.claim_flag(db, reservation_id, flag):
        logger.info(f"{flag} for reservation {reservation_id} already claimed")
        return False

    sent = False
    try:
        sent = await send()
    finally:
        if not sent:
            reservation_service.release_flag(db, reservation_id, flag)
    return sent


async def process_payment_reminders(
    db: Session,
    notifications: NotificationService,
    now: Optional[datetime] = None,
) -> JobReport:
    now = now or reservation_service.utcnow()
    report = JobReport(job="payment_reminders")

    rules = sort_enabled_rules(db.query(ReminderRule).all())
    if not rules:
        logger.info("No enabled reminder rules, skipping payment reminders")
        return report

    now_local = to_local(now)
    reservations = reservation_service.get_reservations_for_reminders(db, now)

    for reservation_id, reservation in _with_ids(reservations):
        report.examined += 1
        try:
            if reservation.user is None:
                continue

            days_left = days_until(now, reservation.payment_due_date)
            previous = reservation.last_reminder_sent
            rule = select_reminder_rule(
                now_local,
                days_left,
                previous,
                rules,
                window_minutes=settings.reminder_window_minutes,
            )
            if rule is None:
                continue

            # Claim the tier before sending; a concurrent tick that loses the claim skips
            threshold = rule.days_before_deadline
            if not reservation_service.update_automation_fields(
                db, reservation_id, last_reminder_sent=threshold
            ):
                logger.info(f"Reminder tier {threshold} for reservation {reservation_id} already claimed")
                continue

            sent = False
            try:
                sent = await notifications.send_payment_reminder(
                    reservation, rule.template_type, days_left, recipient=reservation.user.email
                )
            finally:
                if not sent:
                    reservation_service.release_reminder_claim(db, reservation_id, threshold, previous)
            if not sent:
                logger.warning(f"Payment reminder for reservation {reservation_id} was not delivered")
                continue

            _log_email_event(
                db,
                reservation_id,
                f"Payment reminder sent ({threshold} days before deadline)",
                rule.template_type,
            )
            report.sent += 1
            logger.info(f"Payment reminder sent for reservation {reservation_id} ({threshold} days)")

        except Exception as e:
            db.rollback()
            report.fail(reservation_id, e)
            logger.error(f"Error sending payment reminder for reservation {reservation_id}: {e}")

    logger.info(f"Payment reminders processed: {report.examined} reviewed, {report.sent} sent")
    return report


async def process_auto_cancellations(
    db: Session,
    notifications: NotificationService,
    now: Optional[datetime] = None,
) -> JobReport:
    """
    Two-phase expiry: past-due pending/approved reservations become vencida
    (seats held), vencida ones past auto_cancel_at become cancelada (seats
    released). Statuses are snapshotted up front so nothing goes through both
    phases in one run.
    """
    now = now or reservation_service.utcnow()
    report = JobReport(job="auto_cancellations")

    candidates = [
        (r.id, r.status, r.auto_cancel_at)
        for r in reservation_service.get_reservations_for_cancellation(db, now)
    ]

    for reservation_id, status, auto_cancel_at in candidates:
        report.examined += 1
        try:
            if status in (ReservationStatus.PENDING, ReservationStatus.APPROVED):
                kind = "vencida"
                target = ReservationStatus.VENCIDA
            elif status == ReservationStatus.VENCIDA and auto_cancel_at is not None and auto_cancel_at <= now:
                kind = "cancelada"
                target = ReservationStatus.CANCELADA
            else:
                continue

            reservation = reservation_service.auto_cancel_atomic(db, reservation_id, target)
            report.updated += 1
            logger.info(f"Reservation {reservation_id} marked as {kind}")

            if await notifications.send_cancellation_notice(reservation, kind):
                report.sent += 1
                _log_email_event(
                    db, reservation_id, f"Notice sent: reservation {kind}", f"reservation_{kind}"
                )

        except InvalidTransition as e:
            db.rollback()
            logger.info(f"Skipping reservation {reservation_id}, status changed during sweep: {e}")
        except Exception as e:
            db.rollback()
            report.fail(reservation_id, e)
            logger.error(f"Error auto-cancelling reservation {reservation_id}: {e}")

    logger.info(
        f"Auto-cancellations processed: {report.examined} reviewed, {report.updated} updated"
    )
    return report


async def process_admin_expiry_alerts(
    db: Session,
    notifications: NotificationService,
    now: Optional[datetime] = None,
) -> JobReport:
    now = now or reservation_service.utcnow()
    report = JobReport(job="admin_expiry_alerts")
    alert_days = settings.admin_alert_days_before

    for reservation_id, reservation in _with_ids(reservation_service.get_reservations_for_reminders(db, now)):
        try:
            if reservation.admin_alert_sent:
                continue
            report.examined += 1

            days_left = days_until(now, reservation.payment_due_date)
            if days_left != alert_days:
                continue

            if await _send_once(
                db,
                reservation_id,
                "admin_alert_sent",
                lambda: notifications.send_admin_reservation_expiring(reservation, days_left),
            ):
                report.sent += 1
                logger.info(f"Admin alerted: reservation {reservation_id} expires in {days_left} days")

        except Exception as e:
            db.rollback()
            report.fail(reservation_id, e)
            logger.error(f"Error sending admin alert for reservation {reservation_id}: {e}")

    return report


async def process_trip_reminders(
    db: Session,
    notifications: NotificationService,
    now: Optional[datetime] = None,
) -> JobReport:
    now = now or reservation_service.utcnow()
    report = JobReport(job="trip_reminders")
    reminder_days = settings.trip_reminder_days_before

    for reservation_id, reservation in _with_ids(
        reservation_service.get_reservations_for_trip_reminders(db, now)
    ):
        report.examined += 1
        try:
            days_left = days_until(now, reservation.departure_date)
            if days_left != reminder_days:
                continue

            if await _send_once(
                db,
                reservation_id,
                "trip_reminder_sent",
                lambda: notifications.send_trip_reminder(reservation, days_left),
            ):
                report.sent += 1
                _log_email_event(
                    db, reservation_id, f"Trip reminder sent ({days_left} days before departure)", "trip_reminder"
                )

        except Exception as e:
            db.rollback()
            report.fail(reservation_id, e)
            logger.error(f"Error sending trip reminder for reservation {reservation_id}: {e}")

    return report


async def process_overdue_installments(
    db: Session,
    notifications: NotificationService,
    now: Optional[datetime] = None,
) -> JobReport:
    report = JobReport(job="overdue_installments")
    report.updated = mark_overdue_installments(db, now)
    return report


AUTOMATION_JOBS = (
    process_payment_reminders,
    process_auto_cancellations,
    process_admin_expiry_alerts,
    process_trip_reminders,
    process_overdue_installments,
)


async def run_automation_tick(
    db: Session,
    notifications: NotificationService,
    now: Optional[datetime] = None,
) -> List[JobReport]:
    """Run every automation job in order. One job failing does not stop the rest."""
    now = now or reservation_service.utcnow()
    reports = []

    for job in AUTOMATION_JOBS:
        try:
            reports.append(await job(db, notifications, now))
        except Exception as e:
            db.rollback()
            logger.error(f"Automation job {job.__name__} failed: {e}")
            report = JobReport(job=job.__name__.replace("process_", ""), failed=1, errors=[str(e)])
            reports.append(report)

    return reports
