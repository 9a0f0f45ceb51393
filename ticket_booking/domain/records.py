"""Domain records handed out of the engine.

These are owned value objects: once a unit of work commits, callers
get a snapshot, never a live ORM row or a lazily loaded graph.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ticket_booking.domain.state_machine import BookingStatus, PaymentStatus


@dataclass(frozen=True)
class EventRecord:
    id: str
    title: str
    starts_at: datetime
    location: str
    created_by: str


@dataclass(frozen=True)
class TicketRecord:
    """A purchasable allotment with its display availability."""

    id: str
    event_id: str
    ticket_type: str
    total_stock: int
    price: Decimal
    available_quantity: int


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    booking_id: str
    amount: Decimal
    status: PaymentStatus


@dataclass(frozen=True)
class BookingRecord:
    id: str
    user_id: str
    ticket_id: str
    quantity: int
    status: BookingStatus
    payment: PaymentRecord | None = None

    @property
    def is_active(self) -> bool:
        return self.status in (BookingStatus.PENDING, BookingStatus.CONFIRMED)


@dataclass(frozen=True)
class OutboxEventRecord:
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    last_error: str | None
    created_at: datetime
