from datetime import datetime, timezone
import logging
import os
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticket_booking.application.inventory import available_quantity
from ticket_booking.application.payment_service import PaymentService
from ticket_booking.domain.exceptions import (
    AlreadyCancelledError,
    BookingNotAmendableError,
    CapacityExceededError,
    DuplicateActiveBookingError,
    EventAlreadyOccurredError,
    EventNotFoundError,
    InvalidQuantityError,
    TicketNotFoundError,
)
from ticket_booking.domain.state_machine import BookingStateMachine, BookingStatus, PaymentStatus
from ticket_booking.infrastructure.db.models import Booking, Ticket
from ticket_booking.infrastructure.repositories.booking_repository import BookingRepository
from ticket_booking.infrastructure.repositories.outbox_repository import OutboxRepository
from ticket_booking.infrastructure.repositories.payment_repository import PaymentRepository
from ticket_booking.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

MAX_BOOKING_QUANTITY = int(os.getenv("MAX_BOOKING_QUANTITY", "10"))

BOOKING_CONFIRMED_EVENT = "BOOKING_CONFIRMED"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BookingService:
    """Booking workflow inside the caller's unit of work."""

    def __init__(
        self,
        db: Session,
        payment_service: PaymentService | None = None,
        clock: Callable[[], datetime] = utc_now,
        max_quantity: int = MAX_BOOKING_QUANTITY,
    ):
        self.db = db
        self.clock = clock
        self.max_quantity = max_quantity
        self.payment_service = payment_service or PaymentService(db)
        self.booking_repository = BookingRepository(db)
        self.ticket_repository = TicketRepository(db)
        self.payment_repository = PaymentRepository(db)
        self.outbox_repository = OutboxRepository(db)

    def validate_quantity(self, quantity: int) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantityError(quantity, self.max_quantity)
        if quantity < 1 or quantity > self.max_quantity:
            raise InvalidQuantityError(quantity, self.max_quantity)

    def reserve(
        self,
        ticket_id: str,
        user_id: str,
        quantity: int,
    ) -> Booking:
        self.validate_quantity(quantity)

        # Fast rejections, before the lock.
        ticket = self.ticket_repository.get_by_id(ticket_id)
        if not ticket:
            raise TicketNotFoundError(ticket_id)
        self._ensure_event_upcoming(ticket)
        if self.booking_repository.has_active_booking(user_id, ticket_id):
            raise DuplicateActiveBookingError(user_id, ticket_id)

        # Critical section: held until the caller commits or rolls back.
        ticket = self.ticket_repository.find_ticket_locked(ticket_id)
        if not ticket:
            raise TicketNotFoundError(ticket_id)

        available = available_quantity(self.ticket_repository, ticket)
        if quantity > available:
            logger.warning(
                "Reservation rejected ticket_id=%s requested=%s available=%s",
                ticket_id,
                quantity,
                available,
            )
            raise CapacityExceededError(requested=quantity, available=available)

        if self.booking_repository.has_active_booking(user_id, ticket_id):
            raise DuplicateActiveBookingError(user_id, ticket_id)

        booking = self.booking_repository.create_booking(
            user_id=user_id,
            ticket_id=ticket_id,
            quantity=quantity,
        )
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise DuplicateActiveBookingError(user_id, ticket_id) from exc

        logger.info(
            "Booking reserved booking_id=%s ticket_id=%s user_id=%s quantity=%s",
            booking.id,
            ticket_id,
            user_id,
            quantity,
        )
        return booking

    def confirm(self, booking: Booking) -> Booking:
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)

        if self.payment_service.get_payment(booking) is None:
            self.payment_service.create_confirmed_payment(booking)

        self._transition(booking, BookingStatus.CONFIRMED)
        self.queue_confirmation_notice(booking)
        self.db.flush()

        logger.info("Booking confirmed booking_id=%s", booking.id)
        return booking

    def cancel(self, booking: Booking) -> Booking:
        if booking.status == BookingStatus.CANCELLED:
            raise AlreadyCancelledError(booking.id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)

        payment = self.payment_service.get_payment(booking)
        if payment and payment.status == PaymentStatus.SUCCESS:
            payment_id = payment.id
            try:
                with self.db.begin_nested():
                    self.payment_service.refund(booking)
            except Exception:
                # Left for manual reconciliation; the cancellation still goes through.
                logger.exception(
                    "Compensating refund failed booking_id=%s payment_id=%s",
                    booking.id,
                    payment_id,
                )

        if booking.status != BookingStatus.CANCELLED:
            self._transition(booking, BookingStatus.CANCELLED)
        self.db.flush()

        logger.info("Booking cancelled booking_id=%s", booking.id)
        return booking

    def amend_quantity(self, booking: Booking, quantity: int) -> Booking:
        self.validate_quantity(quantity)

        # Ticket first, then booking: the same lock order as every other writer.
        ticket = self.ticket_repository.find_ticket_locked(booking.ticket_id)
        if not ticket:
            raise TicketNotFoundError(booking.ticket_id)
        booking = self.booking_repository.get_by_id_for_update(booking.id)

        if booking.status != BookingStatus.PENDING:
            raise BookingNotAmendableError(booking.id, booking.status.value)

        if quantity == booking.quantity:
            return booking

        available = available_quantity(
            self.ticket_repository,
            ticket,
            excluding_booking_id=booking.id,
        )
        if quantity > available:
            logger.warning(
                "Quantity change rejected booking_id=%s requested=%s available=%s",
                booking.id,
                quantity,
                available,
            )
            raise CapacityExceededError(requested=quantity, available=available)

        previous = booking.quantity
        booking.quantity = quantity
        self.db.flush()

        logger.info(
            "Booking quantity changed booking_id=%s from=%s to=%s",
            booking.id,
            previous,
            quantity,
        )
        return booking

    def delete(self, booking: Booking) -> None:
        logger.info(
            "Deleting booking booking_id=%s ticket_id=%s quantity=%s status=%s",
            booking.id,
            booking.ticket_id,
            booking.quantity,
            booking.status.value,
        )

        payment = self.payment_repository.get_by_booking_id(booking.id)
        if payment:
            self.payment_repository.delete(payment)
            self.db.flush()
        self.booking_repository.delete(booking)
        self.db.flush()

    def queue_confirmation_notice(self, booking: Booking) -> None:
        self.outbox_repository.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type=BOOKING_CONFIRMED_EVENT,
            payload={
                "booking_id": booking.id,
                "user_id": booking.user_id,
                "ticket_id": booking.ticket_id,
                "quantity": booking.quantity,
            },
            dedupe_key=f"booking:{booking.id}:confirmed",
        )

    def _ensure_event_upcoming(self, ticket: Ticket) -> None:
        event = self.ticket_repository.get_event(ticket)
        if not event:
            raise EventNotFoundError(ticket.event_id)
        if _as_utc(event.starts_at) <= self.clock():
            raise EventAlreadyOccurredError(event.id)

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)
