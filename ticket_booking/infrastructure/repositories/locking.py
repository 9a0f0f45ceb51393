# ticket_booking/infrastructure/repositories/locking.py

from sqlalchemy import text
from sqlalchemy.orm import Session

from ticket_booking.infrastructure.db.session import DB_LOCK_TIMEOUT_MS


def apply_lock_timeout(db: Session, timeout_ms: int = DB_LOCK_TIMEOUT_MS) -> None:
    """
    Bound the next row-lock wait in this transaction.
    PostgreSQL only; SQLite waits on its busy timeout instead.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    # SET does not take bind parameters.
    db.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))
