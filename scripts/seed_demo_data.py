from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import delete, select

from ticket_booking.infrastructure.db.models import Base, Event, Ticket
from ticket_booking.infrastructure.db.session import SessionLocal, engine

DEMO_ORGANIZER_ID = "organizer-demo"


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_events(db) -> list[Event]:
    event_defs = [
        {
            "title": "Sunidhi Chauhan Live Concert",
            "starts_at": _dt(days_from_now=10, hour=14, minute=0),
            "location": "Indira Gandhi Arena, New Delhi",
            "tickets": [
                {"ticket_type": "Regular", "price": "1800.00", "total_stock": 400},
                {"ticket_type": "VIP", "price": "4500.00", "total_stock": 120},
            ],
        },
        {
            "title": "Holi Festival 2026",
            "starts_at": _dt(days_from_now=15, hour=5, minute=30),
            "location": "Jawaharlal Nehru Stadium Grounds, Delhi",
            "tickets": [
                {"ticket_type": "General", "price": "1200.00", "total_stock": 700},
                {"ticket_type": "Premium", "price": "2800.00", "total_stock": 180},
            ],
        },
    ]

    seeded = []
    for item in event_defs:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            # Bookings cascade with their tickets; the demo data is disposable.
            db.execute(delete(Ticket).where(Ticket.event_id == existing.id))
            event = existing
            event.starts_at = item["starts_at"]
            event.location = item["location"]
        else:
            event = Event(
                title=item["title"],
                starts_at=item["starts_at"],
                location=item["location"],
                created_by=DEMO_ORGANIZER_ID,
            )
            db.add(event)
            db.flush()

        for ticket in item["tickets"]:
            db.add(
                Ticket(
                    event_id=event.id,
                    ticket_type=ticket["ticket_type"],
                    price=Decimal(ticket["price"]),
                    total_stock=ticket["total_stock"],
                )
            )
        seeded.append(event)

    return seeded


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        events = seed_events(db)
        db.commit()
        print(f"Seed complete: {len(events)} events added for {DEMO_ORGANIZER_ID}.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
