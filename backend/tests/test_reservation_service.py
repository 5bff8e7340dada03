"""
Tests for the reservation aggregate: creation, transitions and seat symmetry.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from tourdesk.models import (
    DepartureStatus,
    Passenger,
    PaymentStatus,
    Reservation,
    ReservationStatus,
    ReservationTimelineEvent,
)
from tourdesk.services import reservation_service
from tourdesk.services.errors import (
    DepartureNotFound,
    DepartureValidationError,
    InsufficientCapacity,
    InvalidTransition,
    ReservationNotFound,
)
from tourdesk.services.reservation_service import (
    cancel_atomic,
    change_status,
    check_bulk_capacity,
    claim_flag,
    compute_payment_dates,
    create_atomic,
    create_bulk_atomic,
    release_flag,
    release_reminder_claim,
    update_automation_fields,
    update_status,
)
from tourdesk.services.timeline import AUTOMATED_ACTOR, list_events


def _reserved(db, departure):
    db.refresh(departure)
    return departure.reserved_seats


class TestCreateAtomic:
    def test_creates_reservation_and_takes_seats(self, db_session, factory):
        departure = factory.departure(total_seats=10, price=Decimal("1250.00"))

        reservation = factory.reservation(departure, count=3)

        assert reservation.status == ReservationStatus.PENDING
        assert reservation.payment_status == PaymentStatus.PENDING
        assert reservation.number_of_passengers == 3
        assert reservation.total_price == Decimal("3750.00")
        assert reservation.tour_id == departure.tour_id
        assert reservation.departure_date == departure.departure_date
        assert reservation.last_reminder_sent is None
        assert _reserved(db_session, departure) == 3

    def test_payment_dates_follow_departure(self, db_session, factory):
        departure = factory.departure(days_ahead=75, payment_deadline_days=45)

        reservation = factory.reservation(departure, count=1)

        assert reservation.payment_due_date == departure.departure_date - timedelta(days=45)
        assert reservation.auto_cancel_at == reservation.payment_due_date + timedelta(hours=24)

    def test_reservation_codes_are_sequential_per_year(self, db_session, factory):
        departure = factory.departure(total_seats=20)
        now = datetime(2026, 3, 1, 12, 0)

        first = factory.reservation(departure, count=1, now=now)
        second = factory.reservation(departure, count=1, now=now)
        other_year = factory.reservation(departure, count=1, now=datetime(2027, 1, 2))

        assert first.reservation_code == "TD-2026-001"
        assert second.reservation_code == "TD-2026-002"
        assert other_year.reservation_code == "TD-2027-001"

    def test_reservation_code_grows_past_three_digits(self, db_session, factory):
        departure = factory.departure(total_seats=20)
        now = datetime(2026, 5, 1)
        reservation = factory.reservation(departure, count=1, now=now)
        reservation.reservation_code = "TD-2026-999"
        db_session.commit()

        assert factory.reservation(departure, count=1, now=now).reservation_code == "TD-2026-1000"
        assert factory.reservation(departure, count=1, now=now).reservation_code == "TD-2026-1001"

    def test_passengers_and_timeline_recorded(self, db_session, factory):
        departure = factory.departure()
        reservation = factory.reservation(
            departure,
            count=2,
            passengers=[{"full_name": "Ana Pérez", "passport_number": "X123"}],
        )

        passengers = db_session.query(Passenger).filter(Passenger.reservation_id == reservation.id).all()
        assert [p.full_name for p in passengers] == ["Ana Pérez"]

        events = list_events(db_session, reservation.id)
        assert events[0]["event_type"] == "reservation_created"
        assert events[0]["metadata"]["passengers"] == 2

    def test_over_capacity_persists_nothing(self, db_session, factory):
        departure = factory.departure(total_seats=3)
        factory.reservation(departure, count=2)

        with pytest.raises(InsufficientCapacity) as exc_info:
            factory.reservation(departure, count=2)

        assert exc_info.value.available == 1
        assert _reserved(db_session, departure) == 2
        assert db_session.query(Reservation).count() == 1

    def test_inactive_departure_rejected_and_seats_untouched(self, db_session, factory):
        departure = factory.departure(status=DepartureStatus.INACTIVE)

        with pytest.raises(DepartureValidationError):
            factory.reservation(departure, count=1)

        assert _reserved(db_session, departure) == 0
        assert db_session.query(Reservation).count() == 0

    def test_more_passengers_than_seats_rejected(self, db_session, factory):
        departure = factory.departure()
        with pytest.raises(ValueError):
            factory.reservation(
                departure,
                count=1,
                passengers=[{"full_name": "A"}, {"full_name": "B"}],
            )
        assert _reserved(db_session, departure) == 0

    def test_zero_passengers_rejected(self, db_session, factory):
        departure = factory.departure()
        with pytest.raises(ValueError):
            create_atomic(db_session, {}, departure.id, 0)


def _bulk_item(departure, count, email="group@example.com", **extra):
    item = {
        "departure_id": departure.id,
        "number_of_passengers": count,
        "buyer_name": "Group Lead",
        "buyer_email": email,
        "buyer_phone": None,
        "user_id": None,
        "passengers": [],
    }
    item.update(extra)
    return item


class TestBulkCreate:
    def test_creates_every_reservation(self, db_session, factory):
        first = factory.departure(total_seats=10)
        second = factory.departure(total_seats=4)

        created = create_bulk_atomic(db_session, [
            _bulk_item(first, 3, passengers=[{"full_name": "Luz"}]),
            _bulk_item(first, 2),
            _bulk_item(second, 4),
        ])

        assert len(created) == 3
        assert len({r.reservation_code for r in created}) == 3
        assert _reserved(db_session, first) == 5
        assert _reserved(db_session, second) == 4
        assert created[0].passengers[0].full_name == "Luz"
        events = list_events(db_session, created[2].id)
        assert events[0]["description"] == "Reservation created by administrator (bulk import)"

    def test_overflowing_batch_persists_nothing(self, db_session, factory):
        roomy = factory.departure(total_seats=10)
        tight = factory.departure(total_seats=5)
        factory.reservation(tight, count=2)

        # Each row fits on its own, together they need 4 of the 3 free seats
        with pytest.raises(InsufficientCapacity) as exc_info:
            create_bulk_atomic(db_session, [
                _bulk_item(roomy, 2),
                _bulk_item(tight, 2),
                _bulk_item(tight, 2),
            ])

        assert exc_info.value.requested == 4
        assert exc_info.value.available == 3
        assert db_session.query(Reservation).count() == 1
        assert _reserved(db_session, roomy) == 0
        assert _reserved(db_session, tight) == 2

    def test_unknown_departure_persists_nothing(self, db_session, factory):
        departure = factory.departure()
        missing = _bulk_item(departure, 1, departure_id=31337)

        with pytest.raises(DepartureNotFound):
            create_bulk_atomic(db_session, [_bulk_item(departure, 1), missing])

        assert db_session.query(Reservation).count() == 0
        assert _reserved(db_session, departure) == 0

    def test_empty_batch_rejected(self, db_session):
        with pytest.raises(ValueError):
            create_bulk_atomic(db_session, [])

    def test_capacity_check_reserves_nothing(self, db_session, factory):
        open_departure = factory.departure(total_seats=4)
        closed = factory.departure(status=DepartureStatus.INACTIVE)

        checks = check_bulk_capacity(db_session, [
            _bulk_item(open_departure, 3),
            _bulk_item(closed, 1),
            _bulk_item(open_departure, 2),
            _bulk_item(open_departure, 1, departure_id=31337),
        ])

        assert checks == [
            {"departure_id": open_departure.id, "requested": 5, "available": 4, "problem": "insufficient"},
            {"departure_id": closed.id, "requested": 1, "available": 10, "problem": "inactive"},
            {"departure_id": 31337, "requested": 1, "available": 0, "problem": "not_found"},
        ]
        assert _reserved(db_session, open_departure) == 0
        assert db_session.query(Reservation).count() == 0


class TestPaymentDates:
    def test_compute_payment_dates(self):
        departure_date = datetime(2026, 12, 20, 8, 0)
        due, auto_cancel = compute_payment_dates(departure_date, 30, grace_hours=24)
        assert due == datetime(2026, 11, 20, 8, 0)
        assert auto_cancel == datetime(2026, 11, 21, 8, 0)


class TestTransitions:
    def test_happy_path(self, db_session, factory):
        reservation = factory.reservation()

        for status in (ReservationStatus.APPROVED, ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED):
            reservation = update_status(db_session, reservation.id, status=status)
            assert reservation.status == status

    def test_illegal_transition_rejected(self, db_session, factory):
        reservation = factory.reservation()
        update_status(db_session, reservation.id, status=ReservationStatus.CONFIRMED)

        with pytest.raises(InvalidTransition):
            update_status(db_session, reservation.id, status=ReservationStatus.PENDING)

        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.CONFIRMED

    def test_completed_cannot_expire(self, db_session, factory):
        reservation = factory.reservation()
        update_status(db_session, reservation.id, status=ReservationStatus.CONFIRMED)
        update_status(db_session, reservation.id, status=ReservationStatus.COMPLETED)

        with pytest.raises(InvalidTransition):
            cancel_atomic(db_session, reservation.id, ReservationStatus.VENCIDA)

    def test_update_status_refuses_seat_releasing_targets(self, db_session, factory):
        reservation = factory.reservation()
        with pytest.raises(ValueError):
            update_status(db_session, reservation.id, status=ReservationStatus.CANCELLED)

    def test_same_status_is_noop(self, db_session, factory):
        reservation = factory.reservation()
        before = db_session.query(ReservationTimelineEvent).count()

        update_status(db_session, reservation.id, status=ReservationStatus.PENDING)

        assert db_session.query(ReservationTimelineEvent).count() == before

    def test_payment_status_changes_independently(self, db_session, factory):
        reservation = factory.reservation()

        reservation = update_status(db_session, reservation.id, payment_status=PaymentStatus.PARTIAL)

        assert reservation.status == ReservationStatus.PENDING
        assert reservation.payment_status == PaymentStatus.PARTIAL
        types = [e["event_type"] for e in list_events(db_session, reservation.id)]
        assert "payment_status_changed" in types

    def test_missing_reservation(self, db_session):
        with pytest.raises(ReservationNotFound):
            update_status(db_session, 424242, status=ReservationStatus.APPROVED)
        with pytest.raises(ReservationNotFound):
            cancel_atomic(db_session, 424242, ReservationStatus.CANCELLED)


class TestCancelAtomic:
    def test_cancel_releases_exactly_the_booked_seats(self, db_session, factory):
        departure = factory.departure(total_seats=10)
        factory.reservation(departure, count=2)
        reservation = factory.reservation(departure, count=3)
        assert _reserved(db_session, departure) == 5

        cancel_atomic(db_session, reservation.id, ReservationStatus.CANCELLED)

        assert _reserved(db_session, departure) == 2

    def test_create_then_cancel_restores_inventory(self, db_session, factory):
        departure = factory.departure(total_seats=8)
        before = _reserved(db_session, departure)

        reservation = factory.reservation(departure, count=4)
        cancel_atomic(db_session, reservation.id, ReservationStatus.CANCELADA)

        assert _reserved(db_session, departure) == before
        db_session.refresh(departure)
        assert departure.tour.reserved_seats == 0

    def test_cancel_is_idempotent(self, db_session, factory):
        departure = factory.departure(total_seats=10)
        factory.reservation(departure, count=1)
        reservation = factory.reservation(departure, count=3)

        cancel_atomic(db_session, reservation.id, ReservationStatus.CANCELLED)
        cancel_atomic(db_session, reservation.id, ReservationStatus.CANCELLED)
        # Switching label between cancellation states never releases again
        cancel_atomic(db_session, reservation.id, ReservationStatus.CANCELADA)

        assert _reserved(db_session, departure) == 1

    def test_vencida_holds_seats_until_cancelada(self, db_session, factory):
        departure = factory.departure(total_seats=10)
        reservation = factory.reservation(departure, count=4)

        reservation = cancel_atomic(db_session, reservation.id, ReservationStatus.VENCIDA)
        assert reservation.status == ReservationStatus.VENCIDA
        assert _reserved(db_session, departure) == 4

        reservation = cancel_atomic(db_session, reservation.id, ReservationStatus.CANCELADA)
        assert reservation.status == ReservationStatus.CANCELADA
        assert _reserved(db_session, departure) == 0

    def test_vencida_can_be_recovered_without_touching_seats(self, db_session, factory):
        departure = factory.departure(total_seats=10)
        reservation = factory.reservation(departure, count=2)
        cancel_atomic(db_session, reservation.id, ReservationStatus.VENCIDA)

        reservation = update_status(db_session, reservation.id, status=ReservationStatus.CONFIRMED)

        assert reservation.status == ReservationStatus.CONFIRMED
        assert _reserved(db_session, departure) == 2

    def test_cancelled_cannot_be_reopened(self, db_session, factory):
        reservation = factory.reservation()
        cancel_atomic(db_session, reservation.id, ReservationStatus.CANCELLED)

        with pytest.raises(InvalidTransition):
            update_status(db_session, reservation.id, status=ReservationStatus.PENDING)

    def test_rejects_non_cancellation_status(self, db_session, factory):
        reservation = factory.reservation()
        with pytest.raises(ValueError):
            cancel_atomic(db_session, reservation.id, ReservationStatus.CONFIRMED)

    def test_status_event_records_released_seats(self, db_session, factory):
        admin = factory.admin(name="Marta", email="marta@example.com")
        reservation = factory.reservation(count=2)

        cancel_atomic(db_session, reservation.id, ReservationStatus.CANCELLED, performed_by=admin.id)

        event = [e for e in list_events(db_session, reservation.id) if e["event_type"] == "status_changed"][-1]
        assert event["metadata"]["seats_released"] == 2
        assert event["performed_by_name"] == "Marta (marta@example.com)"

    def test_auto_cancel_is_attributed_to_automation(self, db_session, factory):
        reservation = factory.reservation(count=1)

        reservation_service.auto_cancel_atomic(db_session, reservation.id, ReservationStatus.VENCIDA)

        event = list_events(db_session, reservation.id)[-1]
        assert event["performed_by"] is None
        assert event["performed_by_name"] == AUTOMATED_ACTOR


class TestChangeStatus:
    def test_cancellation_targets_go_through_cancel(self, db_session, factory):
        departure = factory.departure(total_seats=6)
        reservation = factory.reservation(departure, count=2)

        change_status(db_session, reservation.id, status=ReservationStatus.CANCELLED)

        assert _reserved(db_session, departure) == 0

    def test_other_targets_leave_seats(self, db_session, factory):
        departure = factory.departure(total_seats=6)
        reservation = factory.reservation(departure, count=2)

        reservation = change_status(
            db_session,
            reservation.id,
            status=ReservationStatus.APPROVED,
            payment_status=PaymentStatus.PARTIAL,
        )

        assert reservation.status == ReservationStatus.APPROVED
        assert reservation.payment_status == PaymentStatus.PARTIAL
        assert _reserved(db_session, departure) == 2


class TestAutomationFields:
    def test_last_reminder_only_ratchets_down(self, db_session, factory):
        reservation = factory.reservation()

        assert update_automation_fields(db_session, reservation.id, last_reminder_sent=7)
        assert update_automation_fields(db_session, reservation.id, last_reminder_sent=3)
        assert not update_automation_fields(db_session, reservation.id, last_reminder_sent=7)

        db_session.refresh(reservation)
        assert reservation.last_reminder_sent == 3

    def test_unknown_field_rejected(self, db_session, factory):
        reservation = factory.reservation()
        with pytest.raises(ValueError):
            update_automation_fields(db_session, reservation.id, status=ReservationStatus.CANCELLED)

    def test_missing_reservation(self, db_session):
        with pytest.raises(ReservationNotFound):
            update_automation_fields(db_session, 31337, admin_alert_sent=True)

    def test_claim_flag_only_once(self, db_session, factory):
        reservation = factory.reservation()

        assert claim_flag(db_session, reservation.id, "admin_alert_sent")
        assert not claim_flag(db_session, reservation.id, "admin_alert_sent")

    def test_released_flag_can_be_claimed_again(self, db_session, factory):
        reservation = factory.reservation()
        claim_flag(db_session, reservation.id, "trip_reminder_sent")

        assert release_flag(db_session, reservation.id, "trip_reminder_sent")
        assert not release_flag(db_session, reservation.id, "trip_reminder_sent")
        assert claim_flag(db_session, reservation.id, "trip_reminder_sent")

    def test_only_one_shot_flags(self, db_session, factory):
        reservation = factory.reservation()
        with pytest.raises(ValueError, match="Not a one-shot flag"):
            claim_flag(db_session, reservation.id, "last_reminder_sent")

    def test_reminder_claim_released_to_previous_tier(self, db_session, factory):
        reservation = factory.reservation()
        update_automation_fields(db_session, reservation.id, last_reminder_sent=7)
        update_automation_fields(db_session, reservation.id, last_reminder_sent=3)

        assert release_reminder_claim(db_session, reservation.id, 3, 7)
        # A tier that is no longer current is left alone
        assert not release_reminder_claim(db_session, reservation.id, 3, None)

        db_session.refresh(reservation)
        assert reservation.last_reminder_sent == 7


class TestQueries:
    def test_reminder_and_cancellation_candidates(self, db_session, factory):
        departure = factory.departure(days_ahead=60)
        upcoming = factory.reservation(departure, count=1)
        paid = factory.reservation(departure, count=1)
        update_status(db_session, paid.id, payment_status=PaymentStatus.COMPLETED)

        now = reservation_service.utcnow()
        assert [r.id for r in reservation_service.get_reservations_for_reminders(db_session, now)] == [upcoming.id]
        assert reservation_service.get_reservations_for_cancellation(db_session, now) == []

        after_due = upcoming.payment_due_date + timedelta(hours=1)
        overdue_ids = [r.id for r in reservation_service.get_reservations_for_cancellation(db_session, after_due)]
        assert overdue_ids == [upcoming.id]
        assert reservation_service.get_reservations_for_reminders(db_session, after_due) == []
