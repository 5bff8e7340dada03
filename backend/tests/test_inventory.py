"""
Tests for the seat inventory ledger, including concurrent bookings.
"""
import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tourdesk.database import Base, enable_sqlite_foreign_keys
from tourdesk.models import Departure, Reservation, Tour
from tourdesk.services import inventory
from tourdesk.services.errors import DepartureNotFound, InsufficientCapacity
from tourdesk.services.reservation_service import create_atomic, utcnow


class TestReserveSeats:
    def test_reserve_moves_departure_and_tour_counters(self, db_session, factory):
        departure = factory.departure(total_seats=10)

        inventory.reserve_seats(db_session, departure.id, 3)
        db_session.commit()

        db_session.refresh(departure)
        assert departure.reserved_seats == 3
        assert departure.tour.reserved_seats == 3
        assert inventory.available_seats(db_session, departure.id) == 7

    def test_reserve_exact_remaining_capacity(self, db_session, factory):
        departure = factory.departure(total_seats=4)

        inventory.reserve_seats(db_session, departure.id, 4)
        db_session.commit()

        assert inventory.available_seats(db_session, departure.id) == 0

    def test_over_capacity_raises_and_changes_nothing(self, db_session, factory):
        departure = factory.departure(total_seats=5)
        inventory.reserve_seats(db_session, departure.id, 4)
        db_session.commit()

        with pytest.raises(InsufficientCapacity) as exc_info:
            inventory.reserve_seats(db_session, departure.id, 2)
        db_session.rollback()

        assert exc_info.value.available == 1
        assert exc_info.value.requested == 2
        assert "Only 1 seats left" in str(exc_info.value)
        db_session.refresh(departure)
        assert departure.reserved_seats == 4

    def test_unknown_departure(self, db_session):
        with pytest.raises(DepartureNotFound):
            inventory.reserve_seats(db_session, 9999, 1)

    @pytest.mark.parametrize("count", [0, -1])
    def test_non_positive_count_rejected(self, db_session, factory, count):
        departure = factory.departure()
        with pytest.raises(ValueError):
            inventory.reserve_seats(db_session, departure.id, count)


class TestReleaseSeats:
    def test_release_returns_seats(self, db_session, factory):
        departure = factory.departure(total_seats=10)
        inventory.reserve_seats(db_session, departure.id, 6)
        db_session.commit()

        inventory.release_seats(db_session, departure.id, 2)
        db_session.commit()

        db_session.refresh(departure)
        assert departure.reserved_seats == 4
        assert departure.tour.reserved_seats == 4

    def test_release_is_floored_at_zero(self, db_session, factory):
        departure = factory.departure(total_seats=10)
        inventory.reserve_seats(db_session, departure.id, 1)
        db_session.commit()

        inventory.release_seats(db_session, departure.id, 5)
        db_session.commit()

        db_session.refresh(departure)
        assert departure.reserved_seats == 0
        assert departure.tour.reserved_seats == 0

    def test_release_unknown_departure(self, db_session):
        with pytest.raises(DepartureNotFound):
            inventory.release_seats(db_session, 9999, 1)

    def test_available_seats_unknown_departure(self, db_session):
        with pytest.raises(DepartureNotFound):
            inventory.available_seats(db_session, 9999)


class TestConcurrentBookings:
    """Parallel create_atomic calls against a file-backed database."""

    @pytest.fixture
    def file_engine(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'concurrency.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        enable_sqlite_foreign_keys(engine)
        Base.metadata.create_all(bind=engine)
        yield engine
        engine.dispose()

    def _seed_departure(self, Session, total_seats):
        session = Session()
        try:
            tour = Tour(title="Salkantay", location="Cusco", price=Decimal("900"), max_passengers=50)
            session.add(tour)
            session.flush()
            departure = Departure(
                tour_id=tour.id,
                departure_date=utcnow() + timedelta(days=90),
                total_seats=total_seats,
                reserved_seats=0,
                price=Decimal("900"),
            )
            session.add(departure)
            session.commit()
            return departure.id
        finally:
            session.close()

    def test_never_overbooks(self, file_engine):
        Session = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        departure_id = self._seed_departure(Session, total_seats=5)

        attempts = 12
        results = []
        lock = threading.Lock()
        start = threading.Barrier(attempts)

        def book(i):
            session = Session()
            try:
                start.wait()
                create_atomic(
                    session,
                    {"buyer_name": f"Buyer {i}", "buyer_email": f"buyer{i}@example.com"},
                    departure_id,
                    1,
                )
                outcome = "ok"
            except InsufficientCapacity:
                outcome = "full"
            except Exception as e:
                outcome = f"error: {e!r}"
            finally:
                session.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=book, args=(i,)) for i in range(attempts)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert len(results) == attempts
        assert results.count("ok") == 5
        assert results.count("full") == attempts - 5

        session = Session()
        try:
            departure = session.get(Departure, departure_id)
            assert departure.reserved_seats == 5
            assert session.query(Reservation).count() == 5
            codes = {r.reservation_code for r in session.query(Reservation).all()}
            assert len(codes) == 5
        finally:
            session.close()

    def test_multi_seat_bookings_fill_without_exceeding(self, file_engine):
        Session = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        departure_id = self._seed_departure(Session, total_seats=7)

        def book(i):
            session = Session()
            try:
                create_atomic(session, {"buyer_name": "X", "buyer_email": "x@example.com"}, departure_id, 3)
            except InsufficientCapacity:
                pass
            finally:
                session.close()

        threads = [threading.Thread(target=book, args=(i,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        session = Session()
        try:
            departure = session.get(Departure, departure_id)
            # Two bookings of 3 fit; a third would exceed 7
            assert departure.reserved_seats == 6
            assert session.query(Reservation).count() == 2
        finally:
            session.close()
