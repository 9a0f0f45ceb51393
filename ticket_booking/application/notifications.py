"""
Confirmation notices, delivered at least once from the outbox.

A confirmation writes its outbox row in the same transaction as the status
change. Delivery runs afterwards, outside any lock. A failure bumps the
attempt counter and sends the event behind fresh ones; after
NOTIFICATION_MAX_ATTEMPTS it is parked as FAILED. The booking is never touched.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import json
import logging
import os

from sqlalchemy.orm import sessionmaker

from ticket_booking.application.booking_service import BOOKING_CONFIRMED_EVENT
from ticket_booking.domain.records import BookingRecord
from ticket_booking.domain.state_machine import BookingStatus
from ticket_booking.infrastructure.db.session import SessionLocal, get_db_session
from ticket_booking.infrastructure.repositories.outbox_repository import (
    OUTBOX_FAILED,
    OutboxRepository,
)

logger = logging.getLogger(__name__)

NOTIFICATION_BATCH_SIZE = int(os.getenv("NOTIFICATION_BATCH_SIZE", "50"))
NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "5"))


class Notifier(ABC):
    @abstractmethod
    def send(self, booking: BookingRecord, recipient: str) -> None:
        """Deliver a confirmation for booking to recipient. Raise on failure."""


class LoggingNotifier(Notifier):
    def send(self, booking: BookingRecord, recipient: str) -> None:
        logger.info(
            "Booking confirmation sent booking_id=%s recipient=%s quantity=%s",
            booking.id,
            recipient,
            booking.quantity,
        )


@dataclass(frozen=True)
class DispatchResult:
    delivered: int
    failed: int


class NotificationDispatcher:

    def __init__(
        self,
        notifier: Notifier,
        session_factory: sessionmaker = SessionLocal,
        batch_size: int = NOTIFICATION_BATCH_SIZE,
        max_attempts: int = NOTIFICATION_MAX_ATTEMPTS,
    ):
        self.notifier = notifier
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.max_attempts = max_attempts

    def dispatch_pending(self, limit: int | None = None) -> DispatchResult:
        with get_db_session(self.session_factory) as db:
            events = OutboxRepository(db).claim_pending(limit or self.batch_size)
            batch = [
                (item.id, item.event_type, json.loads(item.payload))
                for item in events
            ]

        delivered = 0
        failures: dict[str, str] = {}
        for event_id, event_type, payload in batch:
            if event_type != BOOKING_CONFIRMED_EVENT:
                logger.warning("Skipping unknown outbox event event_id=%s type=%s", event_id, event_type)
                failures[event_id] = f"Unknown event type: {event_type}"
                continue
            try:
                self.notifier.send(_booking_from_payload(payload), payload["user_id"])
            except Exception as exc:
                logger.exception("Notification delivery failed event_id=%s", event_id)
                failures[event_id] = f"{type(exc).__name__}: {exc}"
            else:
                delivered += 1

        with get_db_session(self.session_factory) as db:
            outbox = OutboxRepository(db)
            for event_id, _, _ in batch:
                event = outbox.get_by_id(event_id)
                if event is None:
                    continue
                if event_id in failures:
                    outbox.mark_failed(event, failures[event_id], self.max_attempts)
                    if event.status == OUTBOX_FAILED:
                        logger.error(
                            "Notification retired after %s attempts event_id=%s aggregate_id=%s",
                            event.attempts,
                            event_id,
                            event.aggregate_id,
                        )
                else:
                    outbox.mark_published(event)

        if batch:
            logger.info(
                "Outbox dispatch finished delivered=%s failed=%s",
                delivered,
                len(failures),
            )
        return DispatchResult(delivered=delivered, failed=len(failures))


def _booking_from_payload(payload: dict) -> BookingRecord:
    return BookingRecord(
        id=payload["booking_id"],
        user_id=payload["user_id"],
        ticket_id=payload["ticket_id"],
        quantity=payload["quantity"],
        status=BookingStatus.CONFIRMED,
    )
