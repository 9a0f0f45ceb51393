# ticket_booking/infrastructure/repositories/ticket_repository.py

from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import select, func

from ticket_booking.infrastructure.db.models import Booking, Event, Ticket
from ticket_booking.infrastructure.repositories.locking import apply_lock_timeout
from ticket_booking.domain.state_machine import ACTIVE_BOOKING_STATUSES


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def find_ticket_locked(self, ticket_id: str) -> Ticket | None:
        """
        SELECT ... FOR UPDATE
        Serializes every reservation decision on this ticket until commit.
        """
        apply_lock_timeout(self.db)

        stmt = (
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, ticket_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_event(self, ticket: Ticket) -> Event | None:
        stmt = select(Event).where(Event.id == ticket.event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def sum_active_booking_quantities(
        self,
        ticket_id: str,
        excluding_booking_id: str | None = None,
    ) -> int:
        stmt = (
            select(func.coalesce(func.sum(Booking.quantity), 0))
            .where(Booking.ticket_id == ticket_id)
            .where(Booking.status.in_(ACTIVE_BOOKING_STATUSES))
        )
        if excluding_booking_id is not None:
            stmt = stmt.where(Booking.id != excluding_booking_id)

        return int(self.db.execute(stmt).scalar_one())

    def create_ticket(
        self,
        event_id: str,
        ticket_type: str,
        price: Decimal,
        total_stock: int,
    ) -> Ticket:
        ticket = Ticket(
            event_id=event_id,
            ticket_type=ticket_type,
            price=price,
            total_stock=total_stock,
        )
        self.db.add(ticket)
        self.db.flush()
        return ticket
