# Overview: Allocates human-readable, collision-free order numbers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderSequence
from hive.time_utils import utcnow


ORDER_PREFIX = "ORD"


class OrderNumberError(Exception):
    """Raised when an order number cannot be allocated."""
    pass


def _claim_next(day_key: str) -> int | None:
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.day_key == day_key)
        .values(next_number=OrderSequence.next_number + 1)
    )
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    if not result.rowcount:
        return None
    current = (
        db.session.query(OrderSequence.next_number)
        .filter_by(day_key=day_key)
        .scalar()
    )
    return current - 1


def next_order_number(*, now: datetime | None = None, pad: int = 4) -> str:
    """
    Atomically allocate the next order number for the day.

    Format: ORD + YYMMDD + zero-padded daily sequence, e.g. ORD2610190001.

    The counter row is advanced with a single UPDATE, which holds the row lock
    until the caller's transaction ends. The first allocation of a day
    inserts the row inside a savepoint; losing that insert race falls back
    to the UPDATE path. Does not commit.
    """
    day_key = (now or utcnow()).strftime("%y%m%d")

    number = _claim_next(day_key)
    if number is None:
        try:
            with db.session.begin_nested():
                db.session.add(OrderSequence(day_key=day_key, next_number=2))
            number = 1
        except IntegrityError:
            number = _claim_next(day_key)
            if number is None:
                raise OrderNumberError(f"Could not allocate order number for {day_key}")

    return f"{ORDER_PREFIX}{day_key}{number:0{pad}d}"
