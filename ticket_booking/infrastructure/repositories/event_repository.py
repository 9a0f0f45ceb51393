# ticket_booking/infrastructure/repositories/event_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticket_booking.infrastructure.db.models import Event


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: str) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_event(
        self,
        title: str,
        starts_at: datetime,
        location: str,
        created_by: str,
    ) -> Event:
        event = Event(
            title=title,
            starts_at=starts_at,
            location=location,
            created_by=created_by,
        )
        self.db.add(event)
        self.db.flush()
        return event
