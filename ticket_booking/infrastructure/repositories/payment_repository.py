# ticket_booking/infrastructure/repositories/payment_repository.py

from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticket_booking.infrastructure.db.models import Payment
from ticket_booking.domain.state_machine import PaymentStatus


class PaymentRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_booking_id(self, booking_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.booking_id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_payment(
        self,
        booking_id: str,
        amount: Decimal,
        status: PaymentStatus,
    ) -> Payment:
        payment = Payment(
            booking_id=booking_id,
            amount=amount,
            status=status,
        )
        self.db.add(payment)
        return payment

    def update_status(
        self,
        payment: Payment,
        new_status: PaymentStatus,
    ) -> None:
        payment.status = new_status

    def delete(self, payment: Payment) -> None:
        self.db.delete(payment)
