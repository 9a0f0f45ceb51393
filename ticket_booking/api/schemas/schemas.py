from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from ticket_booking.domain.records import (
    BookingRecord,
    EventRecord,
    OutboxEventRecord,
    PaymentRecord,
    TicketRecord,
)


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=128)
    starts_at: datetime
    location: str = Field(min_length=1, max_length=128)


class EventResponse(BaseModel):
    id: str
    title: str
    starts_at: datetime
    location: str
    created_by: str

    @classmethod
    def from_record(cls, record: EventRecord) -> "EventResponse":
        return cls(
            id=record.id,
            title=record.title,
            starts_at=record.starts_at,
            location=record.location,
            created_by=record.created_by,
        )


class TicketCreate(BaseModel):
    ticket_type: str = Field(min_length=1, max_length=32)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    total_stock: int = Field(ge=0)


class TicketResponse(BaseModel):
    id: str
    event_id: str
    ticket_type: str
    price: Decimal
    total_stock: int
    available_quantity: int

    @classmethod
    def from_record(cls, record: TicketRecord) -> "TicketResponse":
        return cls(
            id=record.id,
            event_id=record.event_id,
            ticket_type=record.ticket_type,
            price=record.price,
            total_stock=record.total_stock,
            available_quantity=record.available_quantity,
        )


class BookingRequest(BaseModel):
    ticket_id: str
    # Range is checked by the engine so the error carries the configured cap.
    quantity: int


class BookingUpdate(BaseModel):
    quantity: int


class PaymentResponse(BaseModel):
    id: str
    booking_id: str
    amount: Decimal
    status: str

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "PaymentResponse":
        return cls(
            id=record.id,
            booking_id=record.booking_id,
            amount=record.amount,
            status=record.status.value,
        )


class BookingResponse(BaseModel):
    id: str
    user_id: str
    ticket_id: str
    quantity: int
    status: str
    payment: PaymentResponse | None = None

    @classmethod
    def from_record(cls, record: BookingRecord) -> "BookingResponse":
        return cls(
            id=record.id,
            user_id=record.user_id,
            ticket_id=record.ticket_id,
            quantity=record.quantity,
            status=record.status.value,
            payment=PaymentResponse.from_record(record.payment) if record.payment else None,
        )


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    last_error: str | None = None
    created_at: str

    @classmethod
    def from_record(cls, record: OutboxEventRecord) -> "OutboxEventResponse":
        return cls(
            id=record.id,
            aggregate_type=record.aggregate_type,
            aggregate_id=record.aggregate_id,
            event_type=record.event_type,
            status=record.status,
            attempts=record.attempts,
            last_error=record.last_error,
            created_at=record.created_at.isoformat(),
        )


class DispatchResponse(BaseModel):
    delivered: int
    failed: int


class ErrorResponse(BaseModel):
    code: str
    message: str
    retryable: bool
