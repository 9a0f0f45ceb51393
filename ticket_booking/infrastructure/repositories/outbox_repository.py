# ticket_booking/infrastructure/repositories/outbox_repository.py

from datetime import datetime, timezone
import json

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticket_booking.infrastructure.db.models import OutboxEvent

OUTBOX_PENDING = "PENDING"
OUTBOX_PUBLISHED = "PUBLISHED"
OUTBOX_FAILED = "FAILED"


class OutboxRepository:

    def __init__(self, db: Session):
        self.db = db

    def add_event(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
        dedupe_key: str,
    ) -> OutboxEvent | None:
        """
        Queue an event unless one with the same dedupe key already exists.
        """
        existing = self.db.execute(
            select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key)
        ).scalar_one_or_none()
        if existing:
            return None

        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=json.dumps(payload, sort_keys=True),
            dedupe_key=dedupe_key,
            status=OUTBOX_PENDING,
            attempts=0,
        )
        self.db.add(event)
        return event

    def get_by_id(self, event_id: str) -> OutboxEvent | None:
        stmt = select(OutboxEvent).where(OutboxEvent.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_by_status(self, status: str, limit: int) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == status)
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def claim_pending(self, limit: int) -> list[OutboxEvent]:
        """
        Lock a batch of pending events so concurrent dispatchers skip them.
        Fresh events go first; ones that already failed wait behind them.
        """
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == OUTBOX_PENDING)
            .order_by(OutboxEvent.attempts, OutboxEvent.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(self.db.execute(stmt).scalars().all())

    def mark_published(self, event: OutboxEvent) -> None:
        event.status = OUTBOX_PUBLISHED
        event.published_at = datetime.now(timezone.utc)
        event.attempts += 1
        event.last_error = None

    def mark_failed(self, event: OutboxEvent, error: str, max_attempts: int) -> None:
        event.attempts += 1
        event.last_error = error
        if event.attempts >= max_attempts:
            event.status = OUTBOX_FAILED
