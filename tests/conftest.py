from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ticket_booking.application.authorization import Actor, Role
from ticket_booking.application.engine import BookingEngine
from ticket_booking.application.notifications import Notifier
from ticket_booking.infrastructure.db import models  # noqa: F401  registers tables
from ticket_booking.infrastructure.db.session import Base, build_engine, build_session_factory

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

ADMIN = Actor(user_id="admin-1", role=Role.ADMIN)
ORGANIZER = Actor(user_id="organizer-1", role=Role.ORGANIZER)
CUSTOMER = Actor(user_id="customer-1", role=Role.CUSTOMER)
OTHER_CUSTOMER = Actor(user_id="customer-2", role=Role.CUSTOMER)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def send(self, booking, recipient):
        self.sent.append((booking.id, recipient))


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def payment_outcome():
    return lambda amount: True


@pytest.fixture
def booking_engine(session_factory, notifier, payment_outcome):
    return BookingEngine(
        session_factory=session_factory,
        notifier=notifier,
        clock=lambda: NOW,
        payment_outcome=payment_outcome,
        max_quantity=10,
    )


@pytest.fixture
def make_ticket(booking_engine):
    def _make_ticket(total_stock=10, price="100.00", starts_at=None, organizer=ORGANIZER):
        event = booking_engine.create_event(
            organizer,
            title="Sunidhi Chauhan Live Concert",
            starts_at=starts_at or NOW + timedelta(days=30),
            location="Indira Gandhi Arena, New Delhi",
        )
        return booking_engine.create_ticket(
            organizer,
            event_id=event.id,
            ticket_type="Regular",
            price=Decimal(price),
            total_stock=total_stock,
        )

    return _make_ticket


@pytest.fixture
def client(booking_engine):
    from ticket_booking.api.routes.routes import get_booking_engine
    from ticket_booking.main import app

    app.dependency_overrides[get_booking_engine] = lambda: booking_engine
    yield TestClient(app)
    app.dependency_overrides.clear()
