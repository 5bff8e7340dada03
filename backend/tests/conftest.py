"""
Test fixtures for TourDesk backend tests.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from tourdesk.database import Base, get_db, enable_sqlite_foreign_keys
from tourdesk.main import app
from tourdesk.api.deps import create_access_token, get_notification_service
from tourdesk.models import Tour, Departure, User, UserRole, ReminderRule, EmailStatus
from tourdesk.services.email_templates import NotificationService, seed_default_templates
from tourdesk.services.notification import EmailResult
from tourdesk.services.reservation_service import create_atomic, utcnow


# Create test database engine (SQLite in-memory, one connection shared by all threads)
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

enable_sqlite_foreign_keys(test_engine)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeNotifier:
    """Records outgoing emails instead of calling the email API."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self.raise_for = set()
        # Awaited before each delivery; tests use it to interleave work with a send
        self.on_send = None

    async def send_email(self, to, subject, html):
        if self.on_send is not None:
            await self.on_send(to)
        if to in self.raise_for:
            raise RuntimeError(f"mail transport exploded for {to}")
        if to in self.fail_for:
            return EmailResult(status=EmailStatus.FAILED, error="rejected")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return EmailResult(status=EmailStatus.SENT)

    def sent_to(self, address):
        return [m for m in self.sent if m["to"] == address]


class Factory:
    """Builds persisted tours, departures, users and reservations for tests."""

    def __init__(self, db):
        self.db = db
        self._counter = 0

    def _next(self):
        self._counter += 1
        return self._counter

    def user(self, role=UserRole.CLIENT, email=None, name=None, **kwargs):
        n = self._next()
        user = User(
            email=email or f"user{n}@example.com",
            name=name or f"User {n}",
            role=role,
            is_active=True,
            **kwargs,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def admin(self, **kwargs):
        return self.user(role=UserRole.ADMIN, **kwargs)

    def tour(self, **kwargs):
        data = {
            "title": f"Tour {self._next()}",
            "description": "Guided tour",
            "location": "Cusco",
            "price": Decimal("1000.00"),
            "duration": "7 days",
            "max_passengers": 40,
            "reserved_seats": 0,
        }
        data.update(kwargs)
        tour = Tour(**data)
        self.db.add(tour)
        self.db.commit()
        self.db.refresh(tour)
        return tour

    def departure(self, tour=None, total_seats=10, days_ahead=60, price=Decimal("1000.00"),
                  payment_deadline_days=30, **kwargs):
        tour = tour or self.tour()
        departure = Departure(
            tour_id=tour.id,
            departure_date=utcnow().replace(microsecond=0) + timedelta(days=days_ahead),
            total_seats=total_seats,
            reserved_seats=0,
            price=price,
            payment_deadline_days=payment_deadline_days,
            **kwargs,
        )
        self.db.add(departure)
        self.db.commit()
        self.db.refresh(departure)
        return departure

    def reservation(self, departure=None, count=2, user=None, **data):
        departure = departure or self.departure()
        payload = {
            "user_id": user.id if user is not None else None,
            "buyer_name": data.pop("buyer_name", "Ana Buyer"),
            "buyer_email": data.pop("buyer_email", "buyer@example.com"),
            "buyer_phone": data.pop("buyer_phone", None),
        }
        return create_atomic(self.db, payload, departure.id, count, **data)

    def reminder_rule(self, days, send_time="09:00", template_type="payment_reminder", enabled=True):
        rule = ReminderRule(
            days_before_deadline=days,
            send_time=send_time,
            template_type=template_type,
            enabled=enabled,
        )
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        return rule


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def session_factory(db_session):
    """Session maker bound to the test database, for code that opens its own sessions."""
    return TestSessionLocal


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def notifications(db_session, fake_notifier):
    seed_default_templates(db_session)
    return NotificationService(db_session, fake_notifier)


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    return _headers


@pytest.fixture(scope="function")
def override_get_db(db_session):
    """
    Override the get_db dependency to use the test database session.
    """
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    return _override_get_db


@pytest.fixture(scope="function")
async def client(override_get_db, notifications):
    """
    Create an async test client with the database and email dependencies overridden.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_service] = lambda: notifications

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
