"""Inventory ledger: derived availability for a ticket.

Availability is never stored. It is recomputed from the booking rows each
time, so a write path that holds the ticket lock always sees the current
figure. Read paths may call it without the lock for display purposes only.
"""

from ticket_booking.infrastructure.db.models import Ticket
from ticket_booking.infrastructure.repositories.ticket_repository import TicketRepository


def available_quantity(
    tickets: TicketRepository,
    ticket: Ticket,
    excluding_booking_id: str | None = None,
) -> int:
    booked = tickets.sum_active_booking_quantities(
        ticket.id,
        excluding_booking_id=excluding_booking_id,
    )
    return max(0, ticket.total_stock - booked)
