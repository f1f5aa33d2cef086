# Overview: Retry helpers for short write transactions on the shared lock/cache tables.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, label: str = "db operation"):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError ("database is locked" when a scheduled run and
    a step request write at the same time) and StaleDataError (version_id
    conflicts on catalog items / codes). The session is rolled back between
    attempts, so `func` must redo all of its work.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            current_app.logger.warning(
                "%s failed (%s), retrying in %.2fs (attempt %d/%d)",
                label, type(exc).__name__, delay, attempt + 1, attempts,
            )
            time.sleep(delay)
    return None

