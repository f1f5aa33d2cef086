# Overview: Housekeeping for the sync store; expired cache slots, stale locks and old audit entries.

from __future__ import annotations

from . import audit_service, cache_service, lock_service


def purge_expired() -> dict[str, int]:
    """
    Delete expired cache slots and expired lock rows.

    Expired rows are already treated as absent by readers; this only keeps
    the tables small.
    """
    return {
        "cache_entries": cache_service.purge_expired(),
        "locks": lock_service.purge_expired_locks(),
    }


def cleanup_audit_log(*, retention_days: int = 90) -> int:
    return audit_service.cleanup_old_entries(retention_days=retention_days)
