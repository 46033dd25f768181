from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow.app.config import settings
from orderflow.app.db.models.models_v1 import OrderNumberCounter
from orderflow.services.errors import ConflictError


def format_order_number(year: int, value: int, prefix: str | None = None) -> str:
    return f"{prefix or settings.order_number_prefix}-{year}-{value:04d}"


def next_order_number(db: Session, *, on: date | None = None, prefix: str | None = None) -> str:
    """
    Next order number of the year, e.g. WF-PO-2026-0042.

    The per-year counter row is locked (FOR UPDATE) and bumped inside the
    caller's transaction, so two concurrent creations never share a number.
    Two transactions racing to create the first row of a year surface as a
    ConflictError, which the unit-of-work runner retries.
    """
    year = (on or date.today()).year

    counter = (
        db.execute(select(OrderNumberCounter).where(OrderNumberCounter.year == year).with_for_update())
        .scalar_one_or_none()
    )
    if not counter:
        counter = OrderNumberCounter(year=year, last_value=0)
        db.add(counter)
        try:
            db.flush()
        except IntegrityError as e:
            raise ConflictError(f"Order number counter for {year} created concurrently") from e

    counter.last_value += 1
    db.flush()
    return format_order_number(year, counter.last_value, prefix)
