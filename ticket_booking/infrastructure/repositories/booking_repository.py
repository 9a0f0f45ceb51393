# ticket_booking/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, exists

from ticket_booking.infrastructure.db.models import Booking
from ticket_booking.domain.state_machine import ACTIVE_BOOKING_STATUSES, BookingStatus
from ticket_booking.infrastructure.repositories.locking import apply_lock_timeout


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def has_active_booking(
        self,
        user_id: str,
        ticket_id: str,
    ) -> bool:
        stmt = select(
            exists()
            .where(Booking.user_id == user_id)
            .where(Booking.ticket_id == ticket_id)
            .where(Booking.status.in_(ACTIVE_BOOKING_STATUSES))
        )
        return bool(self.db.execute(stmt).scalar())

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id_for_update(
        self,
        booking_id: str,
    ) -> Booking | None:
        apply_lock_timeout(self.db)
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_booking(
        self,
        user_id: str,
        ticket_id: str,
        quantity: int,
    ) -> Booking:

        booking = Booking(
            user_id=user_id,
            ticket_id=ticket_id,
            quantity=quantity,
            status=BookingStatus.PENDING,
        )

        self.db.add(booking)
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def delete(self, booking: Booking) -> None:
        self.db.delete(booking)
