# tests/integration/test_booking_lifecycle.py

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError

from ticket_booking.application.payment_service import PaymentService
from ticket_booking.domain.exceptions import (
    AlreadyCancelledError,
    AlreadyRefundedError,
    BookingNotAmendableError,
    CapacityExceededError,
    DatabaseUnavailableError,
    EventAlreadyOccurredError,
    InvalidQuantityError,
    InvalidStateTransitionError,
    LockTimeoutError,
    NoPaymentFoundError,
    NotAuthorizedError,
    NotRefundableError,
    PaymentAlreadyExistsError,
)
from ticket_booking.domain.state_machine import BookingStatus, PaymentStatus
from ticket_booking.infrastructure.repositories.outbox_repository import (
    OUTBOX_FAILED,
    OUTBOX_PENDING,
    OUTBOX_PUBLISHED,
)

from conftest import ADMIN, CUSTOMER, NOW, ORGANIZER, OTHER_CUSTOMER


# ---------------------
# RESERVE
# ---------------------

def test_reserve_creates_pending_booking(booking_engine, make_ticket):
    ticket = make_ticket(total_stock=10)

    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 3, actor=CUSTOMER)

    assert booking.status == BookingStatus.PENDING
    assert booking.payment is None
    assert booking_engine.available_quantity(ticket.id) == 7


def test_reserve_rejects_past_event(booking_engine, make_ticket):
    ticket = make_ticket(starts_at=NOW - timedelta(hours=1))

    with pytest.raises(EventAlreadyOccurredError):
        booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)


@pytest.mark.parametrize("quantity", [0, -1, 11])
def test_reserve_enforces_quantity_range(booking_engine, make_ticket, quantity):
    ticket = make_ticket()

    with pytest.raises(InvalidQuantityError):
        booking_engine.reserve(ticket.id, CUSTOMER.user_id, quantity)


def test_cancelled_booking_frees_the_user_to_book_again(booking_engine, make_ticket):
    ticket = make_ticket(total_stock=2)

    first = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 2)
    booking_engine.cancel(first.id, CUSTOMER)
    second = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 2)

    assert second.id != first.id
    assert booking_engine.available_quantity(ticket.id) == 0


def test_organizer_cannot_reserve(booking_engine, make_ticket):
    ticket = make_ticket()

    with pytest.raises(NotAuthorizedError):
        booking_engine.reserve(ticket.id, ORGANIZER.user_id, 1, actor=ORGANIZER)


# ---------------------
# CONFIRM / CANCEL
# ---------------------

def test_confirm_then_cancel_round_trip(booking_engine, make_ticket):
    ticket = make_ticket(total_stock=10, price="50.00")
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 2)

    confirmed = booking_engine.confirm(booking.id, ORGANIZER)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment.amount == Decimal("100.00")
    assert confirmed.payment.status == PaymentStatus.SUCCESS

    cancelled = booking_engine.cancel(booking.id, CUSTOMER)
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment.status == PaymentStatus.REFUNDED
    assert booking_engine.available_quantity(ticket.id) == 10

    with pytest.raises(AlreadyCancelledError):
        booking_engine.cancel(booking.id, CUSTOMER)


def test_confirm_twice_is_an_invalid_transition(booking_engine, make_ticket):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)
    booking_engine.confirm(booking.id, ORGANIZER)

    with pytest.raises(InvalidStateTransitionError):
        booking_engine.confirm(booking.id, ORGANIZER)


def test_other_customer_cannot_cancel(booking_engine, make_ticket):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)

    with pytest.raises(NotAuthorizedError):
        booking_engine.cancel(booking.id, OTHER_CUSTOMER)

    assert booking_engine.get_booking(booking.id).status == BookingStatus.PENDING


def test_refund_failure_does_not_block_cancel(booking_engine, make_ticket, monkeypatch):
    ticket = make_ticket(price="100.00")
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)
    booking_engine.confirm(booking.id, ORGANIZER)

    def broken_refund(self, booking):
        raise RuntimeError("gateway unavailable")

    with monkeypatch.context() as patch:
        patch.setattr(PaymentService, "refund", broken_refund)
        cancelled = booking_engine.cancel(booking.id, CUSTOMER)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment.status == PaymentStatus.SUCCESS

    # Reconciliation later settles the payment without reopening the booking.
    settled = booking_engine.refund(booking.id, ADMIN)
    assert settled.status == BookingStatus.CANCELLED
    assert settled.payment.status == PaymentStatus.REFUNDED


# ---------------------
# PAYMENTS
# ---------------------

def test_refund_guards(booking_engine, make_ticket):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)

    with pytest.raises(NoPaymentFoundError):
        booking_engine.refund(booking.id, ADMIN)

    booking_engine.confirm(booking.id, ORGANIZER)
    refunded = booking_engine.refund(booking.id, ORGANIZER)
    assert refunded.status == BookingStatus.CANCELLED
    assert refunded.payment.status == PaymentStatus.REFUNDED

    with pytest.raises(AlreadyRefundedError):
        booking_engine.refund(booking.id, ADMIN)


def test_customer_cannot_refund(booking_engine, make_ticket):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)
    booking_engine.confirm(booking.id, ORGANIZER)

    with pytest.raises(NotAuthorizedError):
        booking_engine.refund(booking.id, CUSTOMER)


def test_successful_payment_confirms_booking(booking_engine, make_ticket, notifier):
    ticket = make_ticket(price="250.50")
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 2)

    paid = booking_engine.process_payment(booking.id, CUSTOMER)

    assert paid.status == BookingStatus.CONFIRMED
    assert paid.payment.amount == Decimal("501.00")
    assert paid.payment.status == PaymentStatus.SUCCESS
    assert notifier.sent == [(booking.id, CUSTOMER.user_id)]

    with pytest.raises(PaymentAlreadyExistsError):
        booking_engine.process_payment(booking.id, CUSTOMER)


@pytest.mark.parametrize("payment_outcome", [lambda amount: False])
def test_failed_payment_leaves_booking_pending(booking_engine, make_ticket, notifier):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)

    unpaid = booking_engine.process_payment(booking.id, CUSTOMER)

    assert unpaid.status == BookingStatus.PENDING
    assert unpaid.payment.status == PaymentStatus.FAILED
    assert notifier.sent == []

    with pytest.raises(NotRefundableError):
        booking_engine.refund(booking.id, ADMIN)


def test_zero_amount_never_succeeds(booking_engine, make_ticket):
    ticket = make_ticket(price="0.00")
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)

    result = booking_engine.process_payment(booking.id, CUSTOMER)

    assert result.payment.status == PaymentStatus.FAILED
    assert result.status == BookingStatus.PENDING


# ---------------------
# AMEND
# ---------------------

def test_amendment_respects_availability(booking_engine, make_ticket):
    ticket = make_ticket(total_stock=10)
    mine = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 5)
    theirs = booking_engine.reserve(ticket.id, OTHER_CUSTOMER.user_id, 5)
    booking_engine.confirm(theirs.id, ORGANIZER)

    with pytest.raises(CapacityExceededError) as exc_info:
        booking_engine.amend_quantity(mine.id, 6, CUSTOMER)
    assert exc_info.value.available == 5

    unchanged = booking_engine.amend_quantity(mine.id, 5, CUSTOMER)
    assert unchanged.quantity == 5

    booking_engine.cancel(theirs.id, OTHER_CUSTOMER)
    grown = booking_engine.amend_quantity(mine.id, 6, CUSTOMER)
    assert grown.quantity == 6
    assert booking_engine.available_quantity(ticket.id) == 4


def test_confirmed_booking_is_not_amendable(booking_engine, make_ticket):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 2)
    booking_engine.confirm(booking.id, ORGANIZER)

    with pytest.raises(BookingNotAmendableError):
        booking_engine.amend_quantity(booking.id, 3, CUSTOMER)


# ---------------------
# DELETE
# ---------------------

def test_admin_delete_releases_stock(booking_engine, make_ticket):
    ticket = make_ticket(total_stock=4)
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 4)
    booking_engine.confirm(booking.id, ORGANIZER)

    with pytest.raises(NotAuthorizedError):
        booking_engine.delete(booking.id, ORGANIZER)

    booking_engine.delete(booking.id, ADMIN)
    assert booking_engine.available_quantity(ticket.id) == 4


# ---------------------
# NOTIFICATIONS
# ---------------------

def test_confirmation_notice_is_delivered_once(booking_engine, make_ticket, notifier):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)

    booking_engine.confirm(booking.id, ORGANIZER)

    assert notifier.sent == [(booking.id, CUSTOMER.user_id)]
    published = booking_engine.list_outbox_events(status=OUTBOX_PUBLISHED)
    assert [item.aggregate_id for item in published] == [booking.id]

    again = booking_engine.dispatch_notifications()
    assert again.delivered == 0
    assert len(notifier.sent) == 1


def test_notifier_failure_keeps_event_pending(booking_engine, make_ticket, notifier, monkeypatch):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)

    def broken_send(booking, recipient):
        raise ConnectionError("smtp down")

    monkeypatch.setattr(notifier, "send", broken_send)
    confirmed = booking_engine.confirm(booking.id, ORGANIZER)
    assert confirmed.status == BookingStatus.CONFIRMED

    pending = booking_engine.list_outbox_events(status=OUTBOX_PENDING)
    assert len(pending) == 1
    assert pending[0].attempts == 1
    assert "smtp down" in pending[0].last_error

    monkeypatch.undo()
    result = booking_engine.dispatch_notifications()
    assert result.delivered == 1
    assert notifier.sent == [(booking.id, CUSTOMER.user_id)]


def test_failing_notice_does_not_block_later_ones(booking_engine, make_ticket, notifier, monkeypatch):
    ticket = make_ticket()
    stuck = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)
    later = booking_engine.reserve(ticket.id, OTHER_CUSTOMER.user_id, 1)
    deliver = notifier.send

    def send_except_stuck(booking, recipient):
        if booking.id == stuck.id:
            raise ConnectionError("mailbox full")
        deliver(booking, recipient)

    monkeypatch.setattr(notifier, "send", send_except_stuck)
    booking_engine.dispatcher.batch_size = 1

    booking_engine.confirm(stuck.id, ORGANIZER)
    booking_engine.confirm(later.id, ORGANIZER)

    assert (later.id, OTHER_CUSTOMER.user_id) in notifier.sent
    published = booking_engine.list_outbox_events(status=OUTBOX_PUBLISHED)
    assert [item.aggregate_id for item in published] == [later.id]


def test_notice_is_retired_after_max_attempts(booking_engine, make_ticket, notifier, monkeypatch):
    ticket = make_ticket()
    booking = booking_engine.reserve(ticket.id, CUSTOMER.user_id, 1)

    def broken_send(booking, recipient):
        raise ConnectionError("smtp down")

    monkeypatch.setattr(notifier, "send", broken_send)
    booking_engine.dispatcher.max_attempts = 2

    booking_engine.confirm(booking.id, ORGANIZER)
    assert len(booking_engine.list_outbox_events(status=OUTBOX_PENDING)) == 1

    result = booking_engine.dispatch_notifications()
    assert result.failed == 1

    failed = booking_engine.list_outbox_events(status=OUTBOX_FAILED)
    assert [item.aggregate_id for item in failed] == [booking.id]
    assert failed[0].attempts == 2
    assert booking_engine.list_outbox_events(status=OUTBOX_PENDING) == []

    monkeypatch.undo()
    result = booking_engine.dispatch_notifications()
    assert (result.delivered, result.failed) == (0, 0)
    assert notifier.sent == []
    assert booking_engine.get_booking(booking.id).status == BookingStatus.CONFIRMED


# ---------------------
# LOCKING)
# ---------------------

def test_database_lock_errors_surface_as_retryable(booking_engine):
    with pytest.raises(LockTimeoutError) as exc_info:
        with booking_engine._unit_of_work():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    assert exc_info.value.retryable
    assert exc_info.value.to_dict()["code"] == "LOCK_TIMEOUT"


class LockNotAvailable(Exception):
    pgcode = "55P03"


def test_postgres_lock_timeout_is_a_lock_error(booking_engine):
    with pytest.raises(LockTimeoutError):
        with booking_engine._unit_of_work("booking"):
            raise OperationalError("SELECT 1", {}, LockNotAvailable("canceling statement due to lock timeout"))


def test_other_database_failures_are_not_reported_as_lock_waits(booking_engine):
    with pytest.raises(DatabaseUnavailableError) as exc_info:
        with booking_engine._unit_of_work():
            raise OperationalError("SELECT 1", {}, Exception("no such table: bookings"))

    body = exc_info.value.to_dict()
    assert body["code"] == "DATABASE_UNAVAILABLE"
    assert body["retryable"] is True
    assert "lock" not in body["message"].lower()
    assert exc_info.value.http_status == 503


def test_exhausted_connection_pool_is_unavailable(booking_engine):
    with pytest.raises(DatabaseUnavailableError):
        with booking_engine._unit_of_work():
            raise SQLAlchemyTimeoutError("QueuePool limit reached")
