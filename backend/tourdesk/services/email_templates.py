"""
Template-driven customer and admin emails.

Templates live in the email_templates table so admins can edit them; bodies
are rendered with a sandboxed Jinja2 environment. Every attempt is written to
email_logs. Sending never raises into the caller: a failed email must not undo
the reservation state change that triggered it.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tourdesk.config import get_settings
from tourdesk.models import EmailLog, EmailStatus, EmailTemplate, ReminderRule, Reservation
from tourdesk.services.notification import EmailNotifier, EmailResult, get_global_notifier

logger = logging.getLogger(__name__)
settings = get_settings()

_body_env = SandboxedEnvironment(autoescape=True)
_subject_env = SandboxedEnvironment(autoescape=False)

CANCELLATION_TEMPLATES = {
    "vencida": "reservation_vencida",
    "cancelada": "reservation_cancelada",
}


def _layout(title: str, content: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">'
        f'<div style="background-color: #2563eb; color: white; padding: 20px; text-align: center;"><h1>{title}</h1></div>'
        f'<div style="background-color: #f9fafb; padding: 20px;">{content}</div>'
        '<div style="text-align: center; padding: 20px; color: #666; font-size: 12px;">Tu Destino Tours</div>'
        "</div>"
    )


DEFAULT_TEMPLATES = [
    {
        "template_type": "reservation_confirmation",
        "subject": "Reserva recibida - {{ tour_nombre }} - Ref: {{ codigo_reserva }}",
        "body": _layout(
            "¡Reserva Recibida!",
            "<p>Estimado/a {{ nombre_cliente }},</p>"
            "<p>Hemos recibido tu reserva <strong>{{ codigo_reserva }}</strong> para el tour "
            "<strong>{{ tour_nombre }}</strong>.</p>"
            "<p>Fecha de salida: {{ fecha_salida }}<br>Pasajeros: {{ numero_pasajeros }}<br>"
            "Total: ${{ monto_total }}</p>"
            "<p><strong>Importante:</strong> completa el pago antes del {{ fecha_limite }} para confirmar tu reserva.</p>",
        ),
    },
    {
        "template_type": "payment_reminder",
        "subject": "Recordatorio de pago - {{ tour_nombre }}",
        "body": _layout(
            "Recordatorio de Pago",
            "<p>Estimado/a {{ nombre_cliente }},</p>"
            "<p>Te quedan <strong>{{ dias_restantes }} días</strong> para completar el pago de tu reserva "
            "{{ codigo_reserva }} ({{ tour_nombre }}).</p>"
            "<p>Monto total: ${{ monto_total }}<br>Fecha límite: {{ fecha_limite }}</p>",
        ),
    },
    {
        "template_type": "payment_reminder_final",
        "subject": "Último aviso de pago - {{ tour_nombre }}",
        "body": _layout(
            "Último Aviso de Pago",
            "<p>Estimado/a {{ nombre_cliente }},</p>"
            "<p>Tu reserva {{ codigo_reserva }} vence el <strong>{{ fecha_limite }}</strong>. "
            "Si no recibimos el pago, los cupos serán liberados.</p>"
            "<p>Monto total: ${{ monto_total }}</p>",
        ),
    },
    {
        "template_type": "reservation_vencida",
        "subject": "Reserva vencida - {{ tour_nombre }}",
        "body": _layout(
            "Reserva Vencida",
            "<p>Estimado/a {{ nombre_cliente }},</p>"
            "<p>La fecha límite de pago de tu reserva {{ codigo_reserva }} ({{ tour_nombre }}) "
            "venció el {{ fecha_limite }}. Tus cupos siguen reservados por un breve periodo; "
            "contáctanos para regularizar el pago.</p>",
        ),
    },
    {
        "template_type": "reservation_cancelada",
        "subject": "Reserva cancelada - {{ tour_nombre }}",
        "body": _layout(
            "Reserva Cancelada",
            "<p>Estimado/a {{ nombre_cliente }},</p>"
            "<p>Tu reserva {{ codigo_reserva }} para {{ tour_nombre }} fue cancelada por falta de pago "
            "y los cupos fueron liberados.</p>",
        ),
    },
    {
        "template_type": "payment_confirmed",
        "subject": "Pago confirmado - Itinerario {{ tour_nombre }}",
        "body": _layout(
            "¡Pago Confirmado!",
            "<p>Estimado/a {{ nombre_cliente }},</p>"
            "<p>Confirmamos el pago de tu reserva <strong>{{ codigo_reserva }}</strong>. "
            "Este es tu itinerario:</p>"
            "<p>Tour: {{ tour_nombre }}<br>Salida: {{ fecha_salida }}<br>Regreso: {{ fecha_regreso }}<br>"
            "Total pagado: ${{ monto_total }}</p>"
            "{% if pasajeros %}<p>Pasajeros:</p><ul>{% for nombre in pasajeros %}<li>{{ nombre }}</li>{% endfor %}</ul>{% endif %}",
        ),
    },
    {
        "template_type": "trip_reminder",
        "subject": "¡Tu viaje se acerca! - {{ tour_nombre }}",
        "body": _layout(
            "¡Tu viaje se acerca!",
            "<p>Estimado/a {{ nombre_cliente }},</p>"
            "<p>Faltan <strong>{{ dias_restantes }} días</strong> para tu salida a {{ tour_nombre }} "
            "el {{ fecha_salida }}. Revisa que tus documentos estén en regla.</p>",
        ),
    },
    {
        "template_type": "admin_reservation_expiring",
        "subject": "[Admin] Alerta: reserva próxima a expirar - {{ tour_nombre }}",
        "body": _layout(
            "Reserva Próxima a Expirar",
            "<p>La reserva <strong>{{ codigo_reserva }}</strong> de {{ nombre_cliente }} "
            "({{ tour_nombre }}) vence en {{ dias_restantes }} días ({{ fecha_limite }}).</p>"
            "<p>Monto total: ${{ monto_total }}</p>"
            '<p><a href="{{ enlace }}">Ver reserva</a></p>',
        ),
    },
]

DEFAULT_REMINDER_RULES = [
    {"days_before_deadline": 7, "template_type": "payment_reminder", "send_time": "09:00"},
    {"days_before_deadline": 3, "template_type": "payment_reminder", "send_time": "09:00"},
    {"days_before_deadline": 1, "template_type": "payment_reminder_final", "send_time": "09:00"},
]


def _format_date(value: Optional[datetime]) -> str:
    return value.strftime("%d/%m/%Y") if value else ""


def _format_amount(value) -> str:
    if value is None:
        return "0.00"
    return f"{Decimal(value):.2f}"


def reservation_variables(reservation: Reservation, days_remaining: Optional[int] = None) -> dict:
    """Standard variables available to every reservation template."""
    tour = reservation.tour
    return {
        "nombre_cliente": reservation.contact_name or "",
        "tour_nombre": tour.title if tour else "",
        "codigo_reserva": reservation.reservation_code,
        "monto_total": _format_amount(reservation.total_price),
        "fecha_limite": _format_date(reservation.payment_due_date),
        "dias_restantes": "" if days_remaining is None else str(days_remaining),
        "fecha_salida": _format_date(reservation.departure_date),
        "numero_pasajeros": str(reservation.number_of_passengers),
        "enlace": f"{settings.base_url}/reservations/{reservation.id}",
    }


class NotificationService:
    """Renders stored templates, sends them and records an EmailLog row per attempt."""

    def __init__(self, db: Session, notifier: Optional[EmailNotifier] = None):
        self.db = db
        self.notifier = notifier or get_global_notifier()

    def _get_template(self, template_type: str) -> Optional[EmailTemplate]:
        return self.db.query(EmailTemplate).filter(
            EmailTemplate.template_type == template_type
        ).first()

    def _log(self, recipient, template_type, subject, result: EmailResult, reservation_id=None):
        try:
            self.db.add(EmailLog(
                reservation_id=reservation_id,
                template_type=template_type,
                recipient=recipient,
                subject=subject,
                status=result.status,
                error_message=result.error,
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not record email log for {recipient}: {e}")

    async def send_template_email(
        self,
        recipient: str,
        template_type: str,
        variables: dict,
        reservation_id: Optional[int] = None,
    ) -> bool:
        template = self._get_template(template_type)
        if template is None or not template.is_active:
            logger.warning(f"Email template '{template_type}' not found or inactive")
            return False

        try:
            subject = _subject_env.from_string(template.subject).render(**variables)
            html = _body_env.from_string(template.body).render(**variables)
        except TemplateError as e:
            logger.error(f"Email template '{template_type}' failed to render: {e}")
            self._log(
                recipient, template_type, template.subject,
                EmailResult(status=EmailStatus.FAILED, error=f"Render error: {e}"),
                reservation_id,
            )
            return False

        result = await self.notifier.send_email(recipient, subject, html)
        self._log(recipient, template_type, subject, result, reservation_id)
        return result.delivered

    async def send_reservation_confirmation(self, reservation: Reservation) -> bool:
        recipient = reservation.contact_email
        if not recipient:
            logger.info(f"Reservation {reservation.reservation_code} has no contact email, skipping confirmation")
            return False
        return await self.send_template_email(
            recipient,
            "reservation_confirmation",
            reservation_variables(reservation),
            reservation.id,
        )

    async def send_payment_reminder(
        self,
        reservation: Reservation,
        template_type: str,
        days_remaining: int,
        recipient: Optional[str] = None,
    ) -> bool:
        recipient = recipient or reservation.contact_email
        if not recipient:
            return False
        return await self.send_template_email(
            recipient,
            template_type,
            reservation_variables(reservation, days_remaining),
            reservation.id,
        )

    async def send_cancellation_notice(self, reservation: Reservation, kind: str) -> bool:
        template_type = CANCELLATION_TEMPLATES.get(kind)
        if template_type is None:
            raise ValueError(f"Unknown cancellation notice kind: {kind}")
        recipient = reservation.contact_email
        if not recipient:
            return False
        return await self.send_template_email(
            recipient, template_type, reservation_variables(reservation), reservation.id
        )

    async def send_payment_confirmed(self, reservation: Reservation) -> bool:
        """Itinerary email once the payment is confirmed."""
        recipient = reservation.contact_email
        if not recipient:
            return False
        departure = reservation.departure
        variables = reservation_variables(reservation)
        variables["fecha_regreso"] = _format_date(departure.return_date if departure else None)
        variables["pasajeros"] = [p.full_name for p in reservation.passengers]
        return await self.send_template_email(recipient, "payment_confirmed", variables, reservation.id)

    async def send_trip_reminder(self, reservation: Reservation, days_to_departure: int) -> bool:
        recipient = reservation.contact_email
        if not recipient:
            return False
        return await self.send_template_email(
            recipient,
            "trip_reminder",
            reservation_variables(reservation, days_to_departure),
            reservation.id,
        )

    async def send_admin_reservation_expiring(self, reservation: Reservation, days_remaining: int) -> bool:
        if not settings.admin_email:
            logger.warning("ADMIN_EMAIL not configured, skipping expiry alert")
            return False
        return await self.send_template_email(
            settings.admin_email,
            "admin_reservation_expiring",
            reservation_variables(reservation, days_remaining),
            reservation.id,
        )


def seed_default_templates(db: Session) -> int:
    """Insert any missing default templates. Existing (possibly edited) ones are left alone."""
    existing = {t for (t,) in db.query(EmailTemplate.template_type).all()}
    created = 0
    for template in DEFAULT_TEMPLATES:
        if template["template_type"] in existing:
            continue
        db.add(EmailTemplate(**template, is_active=True))
        created += 1
    if created:
        db.commit()
        logger.info(f"Seeded {created} email template(s)")
    return created


def seed_default_reminder_rules(db: Session) -> int:
    """Create the default reminder schedule when no rules are configured."""
    if db.query(ReminderRule).count() > 0:
        return 0
    for rule in DEFAULT_REMINDER_RULES:
        db.add(ReminderRule(**rule, enabled=True))
    db.commit()
    logger.info(f"Seeded {len(DEFAULT_REMINDER_RULES)} reminder rule(s)")
    return len(DEFAULT_REMINDER_RULES)
