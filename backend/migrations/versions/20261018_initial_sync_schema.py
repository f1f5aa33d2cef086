"""Initial sync schema: catalog items, terms, discount codes, locks, cache, runs, audit

Revision ID: 20261018_initial_sync
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial_sync"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "catalog_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attributes", sa.JSON(), nullable=False),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stock_status", sa.String(16), nullable=False),
        sa.Column("regular_price_cents", sa.Integer(), nullable=True),
        sa.Column("sale_price_cents", sa.Integer(), nullable=True),
        sa.Column("warehouse_breakdown", sa.JSON(), nullable=False),
        sa.Column("managed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_sync_session_id", sa.String(64), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stock_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_catalog_items"),
        sa.UniqueConstraint("sku", name="uq_catalog_items_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_catalog_items_session", "catalog_items", ["last_sync_session_id"])
    op.create_index("ix_catalog_items_stock_status", "catalog_items", ["stock_status"])
    op.create_index("ix_catalog_items_managed", "catalog_items", ["managed"])

    op.create_table(
        "attribute_terms",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("taxonomy", sa.String(64), nullable=False),
        sa.Column("label", sa.String(128), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_attribute_terms"),
        sa.UniqueConstraint("taxonomy", "name", name="uq_attribute_terms_taxonomy_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_attribute_terms_taxonomy", "attribute_terms", ["taxonomy"])

    op.create_table(
        "branch_terms",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_branch_terms"),
        sa.UniqueConstraint("name", name="uq_branch_terms_name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "catalog_item_branch_terms",
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("term_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["catalog_items.id"], name="fk_catalog_item_branch_terms_item_id_catalog_items"),
        sa.ForeignKeyConstraint(["term_id"], ["branch_terms.id"], name="fk_catalog_item_branch_terms_term_id_branch_terms"),
        sa.PrimaryKeyConstraint("item_id", "term_id", name="pk_catalog_item_branch_terms"),
    )

    op.create_table(
        "discount_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("external_id", sa.String(64), nullable=True),
        sa.Column("holder_name", sa.String(255), nullable=True),
        sa.Column("mobile", sa.String(32), nullable=True),
        sa.Column("date_of_birth", sa.String(10), nullable=True),
        sa.Column("percent_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("managed", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("allowed_phones", sa.JSON(), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("forced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_discount_codes"),
        sa.UniqueConstraint("code", name="uq_discount_codes_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_discount_codes_external_id", "discount_codes", ["external_id"])
    op.create_index("ix_discount_codes_deleted", "discount_codes", ["deleted"])
    op.create_index("ix_discount_codes_managed", "discount_codes", ["managed"])

    op.create_table(
        "sync_locks",
        sa.Column("resource_key", sa.String(64), nullable=False),
        sa.Column("holder", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("resource_key", name="pk_sync_locks"),
    )
    op.create_index("ix_sync_locks_expires_at", "sync_locks", ["expires_at"])

    op.create_table(
        "sync_cache_entries",
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key", name="pk_sync_cache_entries"),
    )
    op.create_index("ix_sync_cache_entries_expires_at", "sync_cache_entries", ["expires_at"])

    op.create_table(
        "sync_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sync_type", sa.String(16), nullable=False),
        sa.Column("mode", sa.String(32), nullable=True),
        sa.Column("session_id", sa.String(64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("stats", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_sync_runs"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sync_runs_type_finished", "sync_runs", ["sync_type", "finished_at"])
    op.create_index("ix_sync_runs_session_id", "sync_runs", ["session_id"])

    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("entity_key", sa.String(64), nullable=True),
        sa.Column("entity_name", sa.String(255), nullable=True),
        sa.Column("change_type", sa.String(32), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_audit_entries"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_entries_entity", "audit_entries", ["entity_type", "entity_id"])
    op.create_index("ix_audit_entries_entity_key", "audit_entries", ["entity_key"])
    op.create_index("ix_audit_entries_change_type", "audit_entries", ["change_type"])
    op.create_index("ix_audit_entries_created_at", "audit_entries", ["created_at"])


def downgrade():
    op.drop_table("audit_entries")
    op.drop_table("sync_runs")
    op.drop_table("sync_cache_entries")
    op.drop_table("sync_locks")
    op.drop_table("discount_codes")
    op.drop_table("catalog_item_branch_terms")
    op.drop_table("branch_terms")
    op.drop_table("attribute_terms")
    op.drop_table("catalog_items")
