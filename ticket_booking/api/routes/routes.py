import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from ticket_booking.api.schemas.schemas import (
    BookingRequest,
    BookingResponse,
    BookingUpdate,
    DispatchResponse,
    EventCreate,
    ErrorResponse,
    EventResponse,
    OutboxEventResponse,
    TicketCreate,
    TicketResponse,
)
from ticket_booking.application.authorization import Actor, Role
from ticket_booking.application.engine import BookingEngine
from ticket_booking.infrastructure.repositories.outbox_repository import OUTBOX_PENDING


router = APIRouter(
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
)
logger = logging.getLogger(__name__)

_booking_engine: BookingEngine | None = None


def get_booking_engine() -> BookingEngine:
    global _booking_engine
    if _booking_engine is None:
        _booking_engine = BookingEngine()
    return _booking_engine


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str = Header(default=Role.CUSTOMER.value),
) -> Actor:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    try:
        role = Role(x_user_role.lower())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role: {x_user_role}",
        ) from exc
    return Actor(user_id=x_user_id, role=role)


@router.get("/health")
def health():
    return {"message": "Ticket Booking Engine is running"}


# -----------------------------
# Catalog
# -----------------------------
@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    request: EventCreate,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    record = engine.create_event(
        actor,
        title=request.title,
        starts_at=request.starts_at,
        location=request.location,
    )
    return EventResponse.from_record(record)


@router.post(
    "/events/{event_id}/tickets",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_ticket(
    event_id: str,
    request: TicketCreate,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    record = engine.create_ticket(
        actor,
        event_id=event_id,
        ticket_type=request.ticket_type,
        price=request.price,
        total_stock=request.total_stock,
    )
    return TicketResponse.from_record(record)


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
def get_ticket(
    ticket_id: str,
    engine: BookingEngine = Depends(get_booking_engine),
):
    return TicketResponse.from_record(engine.get_ticket(ticket_id))


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingRequest,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    record = engine.reserve(
        ticket_id=request.ticket_id,
        user_id=actor.user_id,
        quantity=request.quantity,
        actor=actor,
    )
    return BookingResponse.from_record(record)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return BookingResponse.from_record(engine.get_booking(booking_id, actor=actor))


@router.patch("/bookings/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    request: BookingUpdate,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    record = engine.amend_quantity(booking_id, request.quantity, actor)
    return BookingResponse.from_record(record)


@router.post("/bookings/{booking_id}/confirm", response_model=BookingResponse)
def confirm_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return BookingResponse.from_record(engine.confirm(booking_id, actor))


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return BookingResponse.from_record(engine.cancel(booking_id, actor))


@router.post("/bookings/{booking_id}/pay", response_model=BookingResponse)
def pay_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return BookingResponse.from_record(engine.process_payment(booking_id, actor))


@router.post("/bookings/{booking_id}/refund", response_model=BookingResponse)
def refund_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return BookingResponse.from_record(engine.refund(booking_id, actor))


@router.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    engine.delete(booking_id, actor)


# -----------------------------
# Outbox
# -----------------------------
@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = OUTBOX_PENDING,
    limit: int = 50,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    events = engine.list_outbox_events(status=status_filter, limit=limit, actor=actor)
    return [OutboxEventResponse.from_record(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return OutboxEventResponse.from_record(engine.mark_outbox_event_published(event_id, actor=actor))


@router.post("/outbox/dispatch", response_model=DispatchResponse)
def dispatch_outbox(
    limit: int | None = None,
    actor: Actor = Depends(get_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    result = engine.dispatch_notifications(limit, actor=actor)
    logger.info("Manual outbox dispatch delivered=%s failed=%s", result.delivered, result.failed)
    return DispatchResponse(delivered=result.delivered, failed=result.failed)
