from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from erpsync.time_utils import to_utc_z

STOCK_IN = "in_stock"
STOCK_OUT = "out_of_stock"
STATUS_PUBLISH = "publish"


def cents_to_decimal(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


catalog_item_branch_terms = db.Table(
    "catalog_item_branch_terms",
    db.Column("item_id", db.Integer, db.ForeignKey("catalog_items.id"), primary_key=True),
    db.Column("term_id", db.Integer, db.ForeignKey("branch_terms.id"), primary_key=True),
)


class CatalogItem(db.Model):
    """
    Sellable unit mirrored from the remote inventory backend.

    IDENTITY: `sku` is the only key used to match remote rows; the internal
    id is never sent to or looked up from the remote side.

    LIFECYCLE:
    - Created the first time a catalog row carries an unseen sku
    - Updated by every catalog and stock batch that mentions it
    - Never hard-deleted: when the remote stops reporting it, the orphan
      sweep zeroes its stock instead

    PRICES are stored in cents; `regular_price` / `sale_price` expose Decimals.
    """
    __tablename__ = "catalog_items"
    __table_args__ = (
        db.Index("ix_catalog_items_session", "last_sync_session_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False, default="")
    status = db.Column(db.String(16), nullable=False, default=STATUS_PUBLISH)

    # Ordered taxonomy -> term name map, e.g. {"brand": "Rolex", "color": "Gold"}
    attributes = db.Column(db.JSON, nullable=False, default=dict)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    stock_status = db.Column(db.String(16), nullable=False, default=STOCK_OUT, index=True)
    regular_price_cents = db.Column(db.Integer, nullable=True)
    sale_price_cents = db.Column(db.Integer, nullable=True)

    # Filtered warehouse rows from the last stock sync: [{"location": ..., "quantity": ...}]
    warehouse_breakdown = db.Column(db.JSON, nullable=False, default=list)

    managed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    last_sync_session_id = db.Column(db.String(64), nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    stock_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch_terms = db.relationship(
        "BranchTerm",
        secondary=catalog_item_branch_terms,
        lazy="selectin",
        order_by="BranchTerm.name",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def regular_price(self) -> Decimal | None:
        return cents_to_decimal(self.regular_price_cents)

    @property
    def sale_price(self) -> Decimal | None:
        return cents_to_decimal(self.sale_price_cents)

    @property
    def branch_names(self) -> list[str]:
        return sorted(t.name for t in self.branch_terms)

    def __repr__(self) -> str:
        return f"<CatalogItem id={self.id} sku={self.sku!r} qty={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "status": self.status,
            "attributes": dict(self.attributes or {}),
            "stock_quantity": self.stock_quantity,
            "stock_status": self.stock_status,
            "regular_price": str(self.regular_price) if self.regular_price is not None else None,
            "sale_price": str(self.sale_price) if self.sale_price is not None else None,
            "warehouse_breakdown": list(self.warehouse_breakdown or []),
            "branch_terms": self.branch_names,
            "managed": self.managed,
            "last_sync_session_id": self.last_sync_session_id,
            "synced_at": to_utc_z(self.synced_at),
            "stock_updated_at": to_utc_z(self.stock_updated_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AttributeTerm(db.Model):
    """A value inside an attribute taxonomy (e.g. taxonomy "brand", name "Rolex")."""
    __tablename__ = "attribute_terms"
    __table_args__ = (
        db.UniqueConstraint("taxonomy", "name", name="uq_attribute_terms_taxonomy_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    taxonomy = db.Column(db.String(64), nullable=False, index=True)
    label = db.Column(db.String(128), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {"id": self.id, "taxonomy": self.taxonomy, "label": self.label, "name": self.name}


class BranchTerm(db.Model):
    """Display tag for a warehouse/branch where an item is available."""
    __tablename__ = "branch_terms"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<BranchTerm {self.name!r}>"
