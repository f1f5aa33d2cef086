# Overview: Expiring key/value slots in the database shared by step requests and pollers.

from __future__ import annotations

import copy
import time
from typing import Any

from ..extensions import db
from ..models import SyncCacheEntry
from erpsync.time_utils import expires_in, utcnow
from .concurrency import run_with_retry

PROGRESS_KEY = "sync:progress"


def dataset_key(session_id: str) -> str:
    return f"sync:dataset:{session_id}"


def session_key(session_id: str) -> str:
    return f"sync:session:{session_id}"


def result_key(session_id: str) -> str:
    return f"sync:result:{session_id}"


def active_key(sync_type: str) -> str:
    return f"sync:active:{sync_type}"


def put(key: str, value: Any, ttl: int) -> None:
    def _op():
        entry = db.session.get(SyncCacheEntry, key)
        if entry is None:
            entry = SyncCacheEntry(key=key)
            db.session.add(entry)
        entry.value = copy.deepcopy(value)
        entry.expires_at = expires_in(ttl)
        entry.updated_at = utcnow()
        db.session.commit()
    run_with_retry(_op, label=f"cache put {key}")


def get(key: str, default: Any = None) -> Any:
    """Read a slot; expired slots are deleted and reported as missing."""
    entry = db.session.get(SyncCacheEntry, key)
    if entry is None:
        return default
    if entry.expires_at <= utcnow():
        db.session.delete(entry)
        db.session.commit()
        return default
    # Callers get a private copy; mutating the mapped JSON in place would hide changes from the ORM.
    return copy.deepcopy(entry.value)


def delete(key: str) -> None:
    db.session.query(SyncCacheEntry).filter_by(key=key).delete()
    db.session.commit()


def purge_expired() -> int:
    deleted = db.session.query(SyncCacheEntry).filter(SyncCacheEntry.expires_at <= utcnow()).delete()
    db.session.commit()
    return deleted


def set_progress(current: int, total: int, status: str, *, ttl: int = 300) -> dict:
    progress = {
        "current": current,
        "total": total,
        "percent": round(current / total * 100) if total > 0 else 0,
        "status": status,
        "timestamp": int(time.time()),
    }
    put(PROGRESS_KEY, progress, ttl)
    return progress


def get_progress() -> dict:
    return get(PROGRESS_KEY) or {"current": 0, "total": 0, "percent": 0, "status": "idle"}


def clear_progress() -> None:
    delete(PROGRESS_KEY)
