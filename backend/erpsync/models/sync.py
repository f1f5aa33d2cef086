from __future__ import annotations

from ..extensions import db
from erpsync.time_utils import to_utc_z, utcnow


class SyncLock(db.Model):
    """
    Time-bounded mutual exclusion marker, one row per resource key.

    INVARIANT: at most one unexpired lock per resource_key. The primary key
    enforces the "one row" part; expired rows are treated as free and are
    replaced by the next acquirer.
    """
    __tablename__ = "sync_locks"

    resource_key = db.Column(db.String(64), primary_key=True)
    holder = db.Column(db.String(64), nullable=False)
    acquired_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def is_expired(self, now=None) -> bool:
        return self.expires_at <= (now or utcnow())

    def to_dict(self) -> dict:
        return {
            "resource_key": self.resource_key,
            "holder": self.holder,
            "acquired_at": to_utc_z(self.acquired_at),
            "expires_at": to_utc_z(self.expires_at),
            "expired": self.is_expired(),
        }


class SyncCacheEntry(db.Model):
    """
    Expiring JSON slot shared between step requests.

    Holds cached remote datasets, step session state, the active-session
    marker and the progress slot. Readers treat expired rows as absent.
    """
    __tablename__ = "sync_cache_entries"

    key = db.Column(db.String(128), primary_key=True)
    value = db.Column(db.JSON, nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class SyncRun(db.Model):
    """Outcome of one full sync run (one-shot or step driven)."""
    __tablename__ = "sync_runs"
    __table_args__ = (
        db.Index("ix_sync_runs_type_finished", "sync_type", "finished_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sync_type = db.Column(db.String(16), nullable=False)
    mode = db.Column(db.String(32), nullable=True)
    session_id = db.Column(db.String(64), nullable=True, index=True)
    success = db.Column(db.Boolean, nullable=False, default=False)
    stats = db.Column(db.JSON, nullable=True)
    error = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=False)
    duration_ms = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sync_type": self.sync_type,
            "mode": self.mode,
            "session_id": self.session_id,
            "success": self.success,
            "stats": self.stats or {},
            "error": self.error,
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
            "duration_ms": self.duration_ms,
        }
