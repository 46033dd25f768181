from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from orderflow.app.config import settings
from orderflow.services.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (ConflictError, StaleDataError)):
        return True
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        return sqlstate in TRANSIENT_SQLSTATES
    return False


def run_transaction(
    db: Session,
    work: Callable[..., T],
    *args,
    attempts: int | None = None,
    backoff: float | None = None,
    **kwargs,
) -> T:
    """
    Run ``work(db, *args, **kwargs)`` as one unit of work and commit it.

    Transient conflicts roll back and retry with exponential backoff
    (backoff, 2*backoff, 4*backoff...). Anything else rolls back and
    propagates unchanged. After the last attempt a ConflictError is raised.
    """
    attempts = attempts or settings.tx_max_attempts
    backoff = settings.tx_backoff_seconds if backoff is None else backoff

    last_error: BaseException | None = None
    for attempt in range(attempts):
        try:
            result = work(db, *args, **kwargs)
            db.commit()
            return result
        except Exception as exc:
            db.rollback()
            if not is_transient(exc):
                raise
            last_error = exc
            if attempt + 1 < attempts:
                wait = backoff * (2 ** attempt)
                logger.warning(
                    f"Transient conflict in {getattr(work, '__name__', work)}: {exc}. "
                    f"Retry {attempt + 1}/{attempts - 1} in {wait:.2f}s"
                )
                time.sleep(wait)

    raise ConflictError(f"Gave up after {attempts} attempts: {last_error}") from last_error
