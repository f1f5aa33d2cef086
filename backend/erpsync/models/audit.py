from __future__ import annotations

from ..extensions import db
from erpsync.time_utils import to_utc_z


class AuditEntry(db.Model):
    """
    Append-only record of a field change applied by a sync.

    entity_key / entity_name are copied at write time so the entry stays
    readable after the item is renamed.
    """
    __tablename__ = "audit_entries"
    __table_args__ = (
        db.Index("ix_audit_entries_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    entity_key = db.Column(db.String(64), nullable=True, index=True)
    entity_name = db.Column(db.String(255), nullable=True)

    # stock | price | sale_price | discount
    change_type = db.Column(db.String(32), nullable=False, index=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    message = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_key": self.entity_key,
            "entity_name": self.entity_name,
            "change_type": self.change_type,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "message": self.message,
            "created_at": to_utc_z(self.created_at),
        }
