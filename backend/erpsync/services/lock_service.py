"""
Lock Service

Single-holder, expiring locks keyed by sync type ("catalog", "stock", "code").

RULES:
- acquire fails while an unexpired lock exists for the key
- an expired lock is free and gets replaced by the next acquirer
- release by holder only deletes the row that holder still owns; a run
  whose lock expired and was taken over never frees the new owner's lock
- release without a holder is unconditional (operator command)
- the primary key on resource_key makes two concurrent acquirers collide on
  INSERT; the loser sees IntegrityError and reports the lock as held
"""
from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Iterator

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import LockHeld
from ..extensions import db
from ..models import SyncLock
from erpsync.time_utils import expires_in, utcnow
from .concurrency import run_with_retry


def get_lock(resource_key: str) -> SyncLock | None:
    """Return the unexpired lock for a key, or None."""
    lock = db.session.get(SyncLock, resource_key)
    if lock is None or lock.is_expired():
        return None
    return lock


def acquire_lock(resource_key: str, ttl: int, holder: str | None = None) -> bool:
    holder = holder or uuid.uuid4().hex

    def _op() -> bool:
        now = utcnow()
        existing = db.session.get(SyncLock, resource_key)
        if existing is not None:
            if not existing.is_expired(now):
                return False
            db.session.delete(existing)
            db.session.flush()

        db.session.add(
            SyncLock(
                resource_key=resource_key,
                holder=holder,
                acquired_at=now,
                expires_at=expires_in(ttl),
            )
        )
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return False
        return True

    acquired = run_with_retry(_op, label=f"acquire lock {resource_key}")
    if acquired:
        current_app.logger.info("Lock acquired: %s by %s (ttl %ss)", resource_key, holder, ttl)
    else:
        current_app.logger.info("Lock busy: %s", resource_key)
    return bool(acquired)


def refresh_lock(resource_key: str, holder: str, ttl: int) -> bool:
    """Push the expiry of a lock we still hold. Returns False if we lost it."""
    lock = get_lock(resource_key)
    if lock is None or lock.holder != holder:
        return False
    lock.expires_at = expires_in(ttl)
    db.session.commit()
    return True


def keep_lock(resource_key: str, holder: str, ttl: int) -> bool:
    """
    Make sure `holder` still owns the lock, taking it again if it lapsed.

    Returns False when another holder has the lock now.
    """
    if refresh_lock(resource_key, holder, ttl):
        return True
    current_app.logger.warning("Lock for %s lost by %s, taking it again", resource_key, holder)
    return acquire_lock(resource_key, ttl, holder)


def release_lock(resource_key: str, holder: str | None = None) -> None:
    query = db.session.query(SyncLock).filter_by(resource_key=resource_key)
    if holder is not None:
        query = query.filter_by(holder=holder)
    deleted = query.delete()
    db.session.commit()
    if deleted:
        current_app.logger.info("Lock released: %s", resource_key)


def list_locks() -> list[dict]:
    return [lock.to_dict() for lock in db.session.query(SyncLock).order_by(SyncLock.resource_key).all()]


def purge_expired_locks() -> int:
    deleted = db.session.query(SyncLock).filter(SyncLock.expires_at <= utcnow()).delete()
    db.session.commit()
    return deleted


@contextmanager
def hold_lock(resource_key: str, ttl: int, holder: str | None = None) -> Iterator[str]:
    """
    Hold a lock for the duration of a block.

    Raises LockHeld before the block runs if the key is taken; releases the
    lock on normal exit and on any exception, unless another holder owns
    it by then.
    """
    holder = holder or uuid.uuid4().hex
    if not acquire_lock(resource_key, ttl, holder):
        existing = get_lock(resource_key)
        raise LockHeld(resource_key, existing.holder if existing else None)
    try:
        yield holder
    finally:
        db.session.rollback()
        release_lock(resource_key, holder)
