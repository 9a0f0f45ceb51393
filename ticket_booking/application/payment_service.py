from decimal import Decimal, ROUND_HALF_UP
import logging
import os
import random
import threading

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticket_booking.domain.exceptions import (
    AlreadyRefundedError,
    NoPaymentFoundError,
    NotRefundableError,
    PaymentAlreadyExistsError,
    TicketNotFoundError,
)
from ticket_booking.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentStateMachine,
    PaymentStatus,
)
from ticket_booking.infrastructure.db.models import Booking, Payment
from ticket_booking.infrastructure.repositories.booking_repository import BookingRepository
from ticket_booking.infrastructure.repositories.payment_repository import PaymentRepository
from ticket_booking.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS_RATE = float(os.getenv("PAYMENT_SUCCESS_RATE", "0.95"))

_CENTS = Decimal("0.01")


class RandomPaymentOutcome:
    """
    Simulated gateway decision: succeeds with a fixed probability.
    Pass a seed for a reproducible sequence of outcomes.
    """

    def __init__(self, success_rate: float = PAYMENT_SUCCESS_RATE, seed: int | None = None):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def __call__(self, amount: Decimal) -> bool:
        with self._lock:
            roll = self._rng.random()
        return roll < self.success_rate


class PaymentService:
    """
    Payment state machine operations inside the caller's unit of work.

    A booking acquires its payment only through these methods. The caller
    owns commit and rollback, so payment and booking status always land
    together or not at all.
    """

    def __init__(self, db: Session, outcome=None):
        self.db = db
        self.outcome = outcome or RandomPaymentOutcome()
        self.payment_repository = PaymentRepository(db)
        self.booking_repository = BookingRepository(db)
        self.ticket_repository = TicketRepository(db)

    def amount_for(self, booking: Booking) -> Decimal:
        ticket = self.ticket_repository.get_by_id(booking.ticket_id)
        if not ticket:
            raise TicketNotFoundError(booking.ticket_id)
        amount = Decimal(ticket.price) * booking.quantity
        return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)

    def get_payment(self, booking: Booking) -> Payment | None:
        return self.payment_repository.get_by_booking_id(booking.id)

    def create_confirmed_payment(self, booking: Booking) -> Payment:
        """
        Manual confirmation path. Never simulates a failure.
        """
        if self.get_payment(booking):
            raise PaymentAlreadyExistsError(booking.id)

        amount = self.amount_for(booking)
        payment = self.payment_repository.create_payment(
            booking_id=booking.id,
            amount=amount,
            status=PaymentStatus.SUCCESS,
        )
        self._flush_new_payment(booking)

        logger.info(
            "Confirmed payment created booking_id=%s amount=%s",
            booking.id,
            amount,
        )
        return payment

    def process_payment(self, booking: Booking) -> Payment:
        """
        Simulated gateway flow. A successful charge confirms the booking
        in the same unit of work; a failed one leaves it pending.
        """
        if self.get_payment(booking):
            raise PaymentAlreadyExistsError(booking.id)

        BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)

        amount = self.amount_for(booking)
        succeeded = amount > 0 and bool(self.outcome(amount))

        payment = self.payment_repository.create_payment(
            booking_id=booking.id,
            amount=amount,
            status=PaymentStatus.SUCCESS if succeeded else PaymentStatus.FAILED,
        )
        if succeeded:
            self.booking_repository.update_status(booking, BookingStatus.CONFIRMED)
        self._flush_new_payment(booking)

        logger.info(
            "Payment processed booking_id=%s amount=%s status=%s",
            booking.id,
            amount,
            payment.status.value,
        )
        return payment

    def refund(self, booking: Booking) -> Payment:
        payment = self.get_payment(booking)

        if not payment:
            raise NoPaymentFoundError(booking.id)

        if payment.status == PaymentStatus.REFUNDED:
            raise AlreadyRefundedError(payment.id)

        if payment.status != PaymentStatus.SUCCESS:
            raise NotRefundableError(payment.id, payment.status.value)

        PaymentStateMachine.validate_transition(payment.status, PaymentStatus.REFUNDED)
        self.payment_repository.update_status(payment, PaymentStatus.REFUNDED)

        # A cancelled booking can still carry an unrefunded payment when an
        # earlier compensating refund failed; settling it keeps the booking as is.
        if booking.status != BookingStatus.CANCELLED:
            BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)
            self.booking_repository.update_status(booking, BookingStatus.CANCELLED)

        self.db.flush()

        logger.info(
            "Payment refunded booking_id=%s payment_id=%s amount=%s",
            booking.id,
            payment.id,
            payment.amount,
        )
        return payment

    def _flush_new_payment(self, booking: Booking) -> None:
        # payments.booking_id is unique; a concurrent writer loses here.
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise PaymentAlreadyExistsError(booking.id) from exc
