from __future__ import annotations

from ..extensions import db
from erpsync.time_utils import to_utc_z


class DiscountCode(db.Model):
    """
    Redeemable percentage code tied to a customer card in the remote CRM.

    SOURCE OF TRUTH: the remote row overwrites amount, holder data and the
    deleted flag on every sync. Local edits never survive a sync.
    """
    __tablename__ = "discount_codes"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)

    # Normalized from the remote CardCode; the only lookup key
    code = db.Column(db.String(64), nullable=False, unique=True)
    external_id = db.Column(db.String(64), nullable=True, index=True)

    holder_name = db.Column(db.String(255), nullable=True)
    mobile = db.Column(db.String(32), nullable=True)
    date_of_birth = db.Column(db.String(10), nullable=True)  # YYYY-MM-DD

    percent_amount = db.Column(db.Integer, nullable=False, default=0)
    deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    managed = db.Column(db.Boolean, nullable=False, default=True, index=True)
    allowed_phones = db.Column(db.JSON, nullable=False, default=list)

    description = db.Column(db.String(255), nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    forced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<DiscountCode code={self.code!r} percent={self.percent_amount}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "external_id": self.external_id,
            "holder_name": self.holder_name,
            "mobile": self.mobile,
            "date_of_birth": self.date_of_birth,
            "percent_amount": self.percent_amount,
            "deleted": self.deleted,
            "managed": self.managed,
            "allowed_phones": sorted(self.allowed_phones or []),
            "description": self.description,
            "synced_at": to_utc_z(self.synced_at),
            "forced_at": to_utc_z(self.forced_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
