"""
Booking engine facade.

Each public operation is one unit of work: it opens a session, takes the
locks it needs, applies the change and commits before returning a record.
Callers never see ORM rows.
"""

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
import logging
import os
from typing import Callable

from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from ticket_booking.application.authorization import (
    Actor,
    BookingAuthorizer,
    RoleBasedAuthorizer,
)
from ticket_booking.application.booking_service import (
    MAX_BOOKING_QUANTITY,
    BookingService,
    utc_now,
)
from ticket_booking.application.inventory import available_quantity
from ticket_booking.application.notifications import (
    DispatchResult,
    LoggingNotifier,
    NotificationDispatcher,
    Notifier,
)
from ticket_booking.application.payment_service import PaymentService, RandomPaymentOutcome
from ticket_booking.domain.exceptions import (
    BookingNotFoundError,
    DatabaseUnavailableError,
    EventNotFoundError,
    LockTimeoutError,
    NotAuthorizedError,
    OutboxEventNotFoundError,
    TicketNotFoundError,
)
from ticket_booking.domain.records import (
    BookingRecord,
    EventRecord,
    OutboxEventRecord,
    PaymentRecord,
    TicketRecord,
)
from ticket_booking.domain.state_machine import PaymentStatus
from ticket_booking.infrastructure.db.models import Booking, Event, OutboxEvent, Payment, Ticket
from ticket_booking.infrastructure.db.session import SessionLocal, get_db_session
from ticket_booking.infrastructure.repositories.booking_repository import BookingRepository
from ticket_booking.infrastructure.repositories.event_repository import EventRepository
from ticket_booking.infrastructure.repositories.outbox_repository import (
    OUTBOX_PENDING,
    OutboxRepository,
)
from ticket_booking.infrastructure.repositories.payment_repository import PaymentRepository
from ticket_booking.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

_seed = os.getenv("PAYMENT_RANDOM_SEED")
PAYMENT_RANDOM_SEED = int(_seed) if _seed else None


class BookingEngine:

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        authorizer: BookingAuthorizer | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
        payment_outcome: Callable[[Decimal], bool] | None = None,
        max_quantity: int = MAX_BOOKING_QUANTITY,
    ):
        self.session_factory = session_factory
        self.authorizer = authorizer or RoleBasedAuthorizer()
        self.clock = clock
        self.payment_outcome = payment_outcome or RandomPaymentOutcome(seed=PAYMENT_RANDOM_SEED)
        self.max_quantity = max_quantity
        self.dispatcher = NotificationDispatcher(
            notifier or LoggingNotifier(),
            session_factory=session_factory,
        )

    # -----------------------------
    # Catalog
    # -----------------------------
    def create_event(
        self,
        actor: Actor,
        title: str,
        starts_at: datetime,
        location: str,
    ) -> EventRecord:
        if not self.authorizer.can_manage_event(actor):
            raise NotAuthorizedError("create events")

        with self._unit_of_work() as db:
            event = EventRepository(db).create_event(
                title=title,
                starts_at=starts_at,
                location=location,
                created_by=actor.user_id,
            )
            record = _event_record(event)

        logger.info("Event created event_id=%s created_by=%s", record.id, actor.user_id)
        return record

    def create_ticket(
        self,
        actor: Actor,
        event_id: str,
        ticket_type: str,
        price: Decimal,
        total_stock: int,
    ) -> TicketRecord:
        with self._unit_of_work() as db:
            event = EventRepository(db).get_by_id(event_id)
            if not event:
                raise EventNotFoundError(event_id)
            if not self.authorizer.can_manage_event(actor, event.created_by):
                raise NotAuthorizedError("add tickets to this event")

            tickets = TicketRepository(db)
            ticket = tickets.create_ticket(
                event_id=event_id,
                ticket_type=ticket_type,
                price=Decimal(price),
                total_stock=total_stock,
            )
            record = _ticket_record(ticket, ticket.total_stock)

        logger.info(
            "Ticket created ticket_id=%s event_id=%s total_stock=%s",
            record.id,
            event_id,
            total_stock,
        )
        return record

    def get_ticket(self, ticket_id: str) -> TicketRecord:
        with self._unit_of_work() as db:
            tickets = TicketRepository(db)
            ticket = tickets.get_by_id(ticket_id)
            if not ticket:
                raise TicketNotFoundError(ticket_id)
            return _ticket_record(ticket, available_quantity(tickets, ticket))

    def available_quantity(self, ticket_id: str) -> int:
        """Unlocked read. Fine for display, never for a booking decision."""
        return self.get_ticket(ticket_id).available_quantity

    # -----------------------------
    # Bookings
    # -----------------------------
    def reserve(
        self,
        ticket_id: str,
        user_id: str,
        quantity: int,
        actor: Actor | None = None,
    ) -> BookingRecord:
        if actor is not None and not self.authorizer.can_create(actor):
            raise NotAuthorizedError("create bookings")

        with self._unit_of_work() as db:
            booking = self._booking_service(db).reserve(
                ticket_id=ticket_id,
                user_id=user_id,
                quantity=quantity,
            )
            return _booking_record(booking, None)

    def get_booking(self, booking_id: str, actor: Actor | None = None) -> BookingRecord:
        with self._unit_of_work() as db:
            booking = _load_booking(db, booking_id)
            if actor is not None:
                organizer_id = _organizer_of(db, booking)
                if not self.authorizer.can_view(actor, booking.user_id, organizer_id):
                    raise NotAuthorizedError("view this booking")
            return self._record(db, booking)

    def confirm(self, booking_id: str, actor: Actor) -> BookingRecord:
        with self._unit_of_work("booking") as db:
            booking = _load_booking(db, booking_id, for_update=True)
            organizer_id = _organizer_of(db, booking)
            if not self.authorizer.can_confirm(actor, booking.user_id, organizer_id):
                raise NotAuthorizedError("confirm this booking")

            booking = self._booking_service(db).confirm(booking)
            record = self._record(db, booking)

        self._dispatch_after_commit()
        return record

    def cancel(self, booking_id: str, actor: Actor) -> BookingRecord:
        with self._unit_of_work("booking") as db:
            booking = _load_booking(db, booking_id, for_update=True)
            if not self.authorizer.can_cancel(actor, booking.user_id):
                raise NotAuthorizedError("cancel this booking")

            booking = self._booking_service(db).cancel(booking)
            return self._record(db, booking)

    def amend_quantity(self, booking_id: str, quantity: int, actor: Actor) -> BookingRecord:
        with self._unit_of_work() as db:
            # Unlocked read; the service re-reads the row under the ticket lock.
            booking = _load_booking(db, booking_id)
            if not self.authorizer.can_amend(actor, booking.user_id):
                raise NotAuthorizedError("update this booking")

            booking = self._booking_service(db).amend_quantity(booking, quantity)
            return self._record(db, booking)

    def process_payment(self, booking_id: str, actor: Actor) -> BookingRecord:
        with self._unit_of_work("booking") as db:
            booking = _load_booking(db, booking_id, for_update=True)
            if not self.authorizer.can_pay(actor, booking.user_id):
                raise NotAuthorizedError("pay for this booking")

            service = self._booking_service(db)
            payment = service.payment_service.process_payment(booking)
            succeeded = payment.status == PaymentStatus.SUCCESS
            if succeeded:
                service.queue_confirmation_notice(booking)
            record = self._record(db, booking)

        if succeeded:
            self._dispatch_after_commit()
        return record

    def refund(self, booking_id: str, actor: Actor) -> BookingRecord:
        with self._unit_of_work("booking") as db:
            booking = _load_booking(db, booking_id, for_update=True)
            organizer_id = _organizer_of(db, booking)
            if not self.authorizer.can_refund(actor, booking.user_id, organizer_id):
                raise NotAuthorizedError("refund this booking")

            service = self._booking_service(db)
            service.payment_service.refund(booking)
            return self._record(db, booking)

    def delete(self, booking_id: str, actor: Actor) -> None:
        if not self.authorizer.can_delete(actor):
            raise NotAuthorizedError("delete bookings")

        with self._unit_of_work("booking") as db:
            booking = _load_booking(db, booking_id, for_update=True)
            self._booking_service(db).delete(booking)

    # -----------------------------
    # Outbox
    # -----------------------------
    # A None actor is a trusted in-process caller such as a scheduler.
    def dispatch_notifications(
        self,
        limit: int | None = None,
        actor: Actor | None = None,
    ) -> DispatchResult:
        self._ensure_outbox_operator(actor, "dispatch notifications")
        with self._translated_database_errors("outbox"):
            return self.dispatcher.dispatch_pending(limit)

    def list_outbox_events(
        self,
        status: str = OUTBOX_PENDING,
        limit: int = 50,
        actor: Actor | None = None,
    ) -> list[OutboxEventRecord]:
        self._ensure_outbox_operator(actor, "view queued notifications")
        safe_limit = max(1, min(limit, 200))
        with self._unit_of_work("outbox") as db:
            events = OutboxRepository(db).list_by_status(status, safe_limit)
            return [_outbox_record(item) for item in events]

    def mark_outbox_event_published(
        self,
        event_id: str,
        actor: Actor | None = None,
    ) -> OutboxEventRecord:
        self._ensure_outbox_operator(actor, "settle queued notifications")
        with self._unit_of_work("outbox") as db:
            outbox = OutboxRepository(db)
            item = outbox.get_by_id(event_id)
            if not item:
                raise OutboxEventNotFoundError(event_id)
            outbox.mark_published(item)
            db.flush()
            return _outbox_record(item)

    # -----------------------------
    # Internals
    # -----------------------------
    @contextmanager
    def _unit_of_work(self, resource: str = "ticket"):
        with self._translated_database_errors(resource):
            with get_db_session(self.session_factory) as db:
                yield db

    @contextmanager
    def _translated_database_errors(self, resource: str):
        try:
            yield
        except OperationalError as exc:
            if _is_lock_wait(exc):
                logger.warning("Lock wait gave up resource=%s error=%s", resource, exc.orig)
                raise LockTimeoutError(resource) from exc
            logger.error("Database operation failed resource=%s error=%s", resource, exc.orig)
            raise DatabaseUnavailableError() from exc
        except SQLAlchemyTimeoutError as exc:
            logger.error("No database connection available resource=%s error=%s", resource, exc)
            raise DatabaseUnavailableError() from exc

    def _ensure_outbox_operator(self, actor: Actor | None, action: str) -> None:
        if actor is not None and not self.authorizer.can_operate_outbox(actor):
            raise NotAuthorizedError(action)

    def _booking_service(self, db: Session) -> BookingService:
        return BookingService(
            db,
            payment_service=PaymentService(db, outcome=self.payment_outcome),
            clock=self.clock,
            max_quantity=self.max_quantity,
        )

    def _record(self, db: Session, booking: Booking) -> BookingRecord:
        payment = PaymentRepository(db).get_by_booking_id(booking.id)
        return _booking_record(booking, payment)

    def _dispatch_after_commit(self) -> None:
        # The booking is already committed; delivery problems stay in the outbox.
        try:
            self.dispatcher.dispatch_pending()
        except Exception:
            logger.exception("Notification dispatch failed after commit")


def _load_booking(db: Session, booking_id: str, for_update: bool = False) -> Booking:
    bookings = BookingRepository(db)
    if for_update:
        booking = bookings.get_by_id_for_update(booking_id)
    else:
        booking = bookings.get_by_id(booking_id)
    if not booking:
        raise BookingNotFoundError(booking_id)
    return booking


def _organizer_of(db: Session, booking: Booking) -> str:
    tickets = TicketRepository(db)
    ticket = tickets.get_by_id(booking.ticket_id)
    if not ticket:
        raise TicketNotFoundError(booking.ticket_id)
    event = tickets.get_event(ticket)
    if not event:
        raise EventNotFoundError(ticket.event_id)
    return event.created_by


def _event_record(event: Event) -> EventRecord:
    return EventRecord(
        id=event.id,
        title=event.title,
        starts_at=event.starts_at,
        location=event.location,
        created_by=event.created_by,
    )


def _ticket_record(ticket: Ticket, available: int) -> TicketRecord:
    return TicketRecord(
        id=ticket.id,
        event_id=ticket.event_id,
        ticket_type=ticket.ticket_type,
        total_stock=ticket.total_stock,
        price=Decimal(ticket.price),
        available_quantity=available,
    )


def _payment_record(payment: Payment) -> PaymentRecord:
    return PaymentRecord(
        id=payment.id,
        booking_id=payment.booking_id,
        amount=Decimal(payment.amount),
        status=payment.status,
    )


def _booking_record(booking: Booking, payment: Payment | None) -> BookingRecord:
    return BookingRecord(
        id=booking.id,
        user_id=booking.user_id,
        ticket_id=booking.ticket_id,
        quantity=booking.quantity,
        status=booking.status,
        payment=_payment_record(payment) if payment else None,
    )


def _outbox_record(item: OutboxEvent) -> OutboxEventRecord:
    return OutboxEventRecord(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        last_error=item.last_error,
        created_at=item.created_at,
    )


# PostgreSQL lock_not_available, raised when lock_timeout expires.
_PG_LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_wait(exc: OperationalError) -> bool:
    if getattr(exc.orig, "pgcode", None) == _PG_LOCK_NOT_AVAILABLE:
        return True
    # sqlite3 reports busy-timeout expiry only through the message.
    return "is locked" in str(exc.orig)
