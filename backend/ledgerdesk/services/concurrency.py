# Overview: Retry helpers for store-level lock failures and compare-and-set conflicts.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentMatchConflict, StoreConflict
from ..extensions import db

logger = logging.getLogger(__name__)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on lock/deadlock failures.

    Retries OperationalError and StaleDataError. The last failure propagates
    after rolling back, so callers see a transient failure, never a partial
    write.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def run_compare_and_set(func, *, description: str, retries: int = 1):
    """
    Run a unit of work built on guarded updates.

    A StoreConflict (zero rows matched, or a unique collision reported by
    the record store) rolls the unit back and re-runs func, which must re-read
    fresh state. After `retries` re-runs the conflict surfaces as
    ConcurrentMatchConflict.
    """
    for attempt in range(retries + 1):
        try:
            return func()
        except StoreConflict as exc:
            db.session.rollback()
            logger.info("Compare-and-set conflict on %s (attempt %d): %s", description, attempt + 1, exc)
            if attempt >= retries:
                raise ConcurrentMatchConflict(f"Lost concurrent update on {description}") from exc
