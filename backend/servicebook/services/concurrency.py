# Overview: Service-layer helpers for concurrency; row locks and retry of whole units of work.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)

DEFAULT_RETRY_ON = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _configured_attempts() -> int:
    try:
        return int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3))
    except RuntimeError:
        # outside an application context
        return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1, retry_on=DEFAULT_RETRY_ON):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default. Callers guarding a uniqueness
    race pass IntegrityError in retry_on.

    func must be a complete unit of work: it re-reads every row it depends
    on, so a retry acts on fresh state rather than on what the failed
    attempt saw.
    """
    if attempts is None:
        attempts = _configured_attempts()
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info("Retrying after %s (attempt %d of %d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc

