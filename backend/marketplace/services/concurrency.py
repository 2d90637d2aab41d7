# Overview: Transient-failure retry and conditional-update helpers shared by the order and catalog services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on transient failures.

    Retries on OperationalError (dropped connections, lock timeouts) and
    StaleDataError (row changed underneath the session).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def execute_conditional_update(stmt) -> bool:
    """
    Run a single UPDATE whose WHERE clause encodes the precondition.

    Returns True when exactly one row matched. The check and the write
    happen in one statement, so two callers racing on the same row cannot
    both succeed.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1
