"""Tests for the email notifier and template-driven notifications."""
import httpx
import pytest

from tourdesk.models import EmailLog, EmailStatus, EmailTemplate, ReminderRule
from tourdesk.services.email_templates import (
    DEFAULT_TEMPLATES,
    reservation_variables,
    seed_default_reminder_rules,
    seed_default_templates,
)
from tourdesk.services.notification import EmailNotifier


def _notifier_with(handler):
    notifier = EmailNotifier(api_url="https://mail.test/emails", api_key="key-123", from_email="tours@test")
    notifier._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return notifier


class TestEmailNotifier:
    async def test_simulated_without_api_key(self):
        notifier = EmailNotifier(api_key="")

        result = await notifier.send_email("ana@example.com", "Hola", "<p>hi</p>")

        assert notifier.is_configured is False
        assert result.status == EmailStatus.SIMULATED
        assert result.delivered

    async def test_posts_to_email_api(self):
        captured = {}

        def handler(request):
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = request.content
            return httpx.Response(200, json={"id": "msg_1"})

        notifier = _notifier_with(handler)
        result = await notifier.send_email("ana@example.com", "Hola", "<p>hi</p>")
        await notifier.close()

        assert result.status == EmailStatus.SENT
        assert result.provider_id == "msg_1"
        assert captured["auth"] == "Bearer key-123"
        assert b"ana@example.com" in captured["body"]

    async def test_api_error_is_reported_not_raised(self):
        notifier = _notifier_with(lambda request: httpx.Response(422, text="invalid recipient"))

        result = await notifier.send_email("bad", "Hola", "<p>hi</p>")

        assert result.status == EmailStatus.FAILED
        assert "422" in result.error
        assert not result.delivered

    async def test_transport_error_is_reported_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        notifier = _notifier_with(handler)
        result = await notifier.send_email("ana@example.com", "Hola", "<p>hi</p>")

        assert result.status == EmailStatus.FAILED
        assert "connection refused" in result.error


class TestNotificationService:
    async def test_confirmation_renders_and_logs(self, db_session, factory, notifications, fake_notifier):
        reservation = factory.reservation(count=2, buyer_name="Ana <b>Ríos</b>")

        assert await notifications.send_reservation_confirmation(reservation)

        [message] = fake_notifier.sent_to("buyer@example.com")
        assert reservation.reservation_code in message["subject"]
        assert "Ana &lt;b&gt;Ríos&lt;/b&gt;" in message["html"]

        log = db_session.query(EmailLog).filter(EmailLog.reservation_id == reservation.id).one()
        assert log.status == EmailStatus.SENT
        assert log.template_type == "reservation_confirmation"

    async def test_inactive_template_is_not_sent(self, db_session, factory, notifications, fake_notifier):
        template = db_session.query(EmailTemplate).filter(
            EmailTemplate.template_type == "reservation_confirmation"
        ).one()
        template.is_active = False
        db_session.commit()
        reservation = factory.reservation()

        assert await notifications.send_reservation_confirmation(reservation) is False
        assert fake_notifier.sent == []

    async def test_broken_template_logs_failure(self, db_session, factory, notifications, fake_notifier):
        template = db_session.query(EmailTemplate).filter(
            EmailTemplate.template_type == "reservation_confirmation"
        ).one()
        template.body = "{{ nombre_cliente "
        db_session.commit()
        reservation = factory.reservation()

        assert await notifications.send_reservation_confirmation(reservation) is False

        log = db_session.query(EmailLog).one()
        assert log.status == EmailStatus.FAILED
        assert log.error_message.startswith("Render error")
        assert fake_notifier.sent == []

    async def test_failed_delivery_returns_false(self, db_session, factory, notifications, fake_notifier):
        fake_notifier.fail_for.add("buyer@example.com")
        reservation = factory.reservation()

        assert await notifications.send_reservation_confirmation(reservation) is False
        assert db_session.query(EmailLog).one().status == EmailStatus.FAILED

    async def test_unknown_cancellation_kind(self, factory, notifications):
        reservation = factory.reservation()
        with pytest.raises(ValueError):
            await notifications.send_cancellation_notice(reservation, "refunded")


class TestTemplateVariables:
    def test_reservation_variables(self, factory):
        departure = factory.departure(days_ahead=60)
        reservation = factory.reservation(departure, count=3)

        variables = reservation_variables(reservation, days_remaining=5)

        assert variables["codigo_reserva"] == reservation.reservation_code
        assert variables["monto_total"] == "3000.00"
        assert variables["numero_pasajeros"] == "3"
        assert variables["dias_restantes"] == "5"
        assert variables["fecha_limite"] == reservation.payment_due_date.strftime("%d/%m/%Y")
        assert variables["enlace"].endswith(f"/reservations/{reservation.id}")


class TestSeeding:
    def test_templates_seeded_once(self, db_session):
        assert seed_default_templates(db_session) == len(DEFAULT_TEMPLATES)
        assert seed_default_templates(db_session) == 0

    def test_edited_template_is_kept(self, db_session):
        db_session.add(EmailTemplate(template_type="payment_reminder", subject="Custom", body="x", is_active=True))
        db_session.commit()

        seed_default_templates(db_session)

        template = db_session.query(EmailTemplate).filter(EmailTemplate.template_type == "payment_reminder").one()
        assert template.subject == "Custom"

    def test_reminder_rules_only_when_empty(self, db_session, factory):
        assert seed_default_reminder_rules(db_session) == 3
        assert sorted(r.days_before_deadline for r in db_session.query(ReminderRule)) == [1, 3, 7]
        assert seed_default_reminder_rules(db_session) == 0
