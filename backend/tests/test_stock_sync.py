# Overview: Pytest coverage for stock/price rows, warehouse exclusion and audit entries.

"""
Stock Sync Tests

- stock is the sum of non-excluded warehouses, never the remote total
- regular price only moves on a parsed value > 0
- sale price only survives when it is below the regular price
- every changed field leaves one audit entry
"""

from decimal import Decimal

import pytest

from erpsync.models import AuditEntry, CatalogItem
from erpsync.services.stock_service import (
    filter_warehouses,
    location_diff,
    parse_price,
    price_to_cents,
    sync_stock_batch,
)
from conftest import get_item, make_item, stock_row


def _audit(db_session, sku, change_type):
    return (
        db_session.query(AuditEntry)
        .filter_by(entity_key=sku, change_type=change_type)
        .order_by(AuditEntry.id)
        .all()
    )


class TestWarehouseExclusion:
    def test_excluded_locations_do_not_count(self, db_session, settings):
        """Defect holds 100 units but only Main WH is sellable."""
        make_item(db_session, "A")

        stats = sync_stock_batch(
            [stock_row("A", [("Main WH", 3), ("Defect", 100)], quantity=103)], "sync_a", settings
        )

        item = get_item("A")
        assert stats["updated"] == 1
        assert item.stock_quantity == 3
        assert item.stock_status == "in_stock"
        assert item.warehouse_breakdown == [{"location": "Main WH", "quantity": 3}]

    def test_only_excluded_stock_means_out_of_stock(self, db_session, settings):
        make_item(db_session, "A", quantity=4)

        sync_stock_batch([stock_row("A", [("Reserve", 9)])], "sync_a", settings)

        item = get_item("A")
        assert item.stock_quantity == 0
        assert item.stock_status == "out_of_stock"
        assert item.warehouse_breakdown == []

    def test_filter_keeps_remote_order(self):
        kept = filter_warehouses(
            [
                {"Location": "Shop 2", "Quantity": "2"},
                {"Location": "Defect", "Quantity": 7},
                {"Location": "", "Quantity": 1},
                {"Location": "Shop 1", "Quantity": 1.0},
            ],
            {"Defect"},
        )
        assert [(w.location, w.quantity) for w in kept] == [("Shop 2", 2), ("Shop 1", 1)]


class TestPrices:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("100", Decimal("100")),
            ("12,50", Decimal("12.50")),
            (" 7.25 ", Decimal("7.25")),
            (42, Decimal("42")),
            ("", None),
            (None, None),
            ("abc", None),
        ],
    )
    def test_parse_price(self, raw, expected):
        assert parse_price(raw) == expected

    def test_cents_round_half_up(self):
        assert price_to_cents(Decimal("12.345")) == 1235
        assert price_to_cents(Decimal("0.004")) == 0

    def test_comma_price_is_stored(self, db_session, settings):
        make_item(db_session, "A")
        sync_stock_batch([stock_row("A", [("Main WH", 1)], price="12,50")], "sync_a", settings)
        assert get_item("A").regular_price == Decimal("12.50")

    @pytest.mark.parametrize("raw", ["", "0", None, "-5"])
    def test_non_positive_price_keeps_previous(self, db_session, settings, raw):
        make_item(db_session, "A", price_cents=5000)
        sync_stock_batch([stock_row("A", [("Main WH", 1)], price=raw)], "sync_a", settings)
        assert get_item("A").regular_price_cents == 5000

    @pytest.mark.parametrize(
        "sale,expected",
        [
            ("80", 8000),
            ("100", None),
            ("120", None),
            ("0", None),
            (None, None),
        ],
    )
    def test_sale_price_must_undercut_regular(self, db_session, settings, sale, expected):
        make_item(db_session, "A")
        sync_stock_batch(
            [stock_row("A", [("Main WH", 1)], price="100", sale_price=sale)], "sync_a", settings
        )
        assert get_item("A").sale_price_cents == expected

    def test_sale_price_is_compared_with_kept_regular(self, db_session, settings):
        make_item(db_session, "A", price_cents=5000)
        sync_stock_batch(
            [stock_row("A", [("Main WH", 1)], price="", sale_price="40")], "sync_a", settings
        )
        item = get_item("A")
        assert item.regular_price_cents == 5000
        assert item.sale_price_cents == 4000


class TestStockAudit:
    def test_changes_are_audited(self, db_session, settings):
        make_item(db_session, "A", quantity=2, price_cents=9000)

        sync_stock_batch(
            [stock_row("A", [("Main WH", 3), ("Shop 2", 1)], price="100")], "sync_a", settings
        )

        price = _audit(db_session, "A", "price")
        assert len(price) == 1
        assert price[0].old_value == "90.00"
        assert price[0].new_value == "100.00"
        assert price[0].message == "Price 90.00 → 100.00"

        stock = _audit(db_session, "A", "stock")
        assert len(stock) == 1
        assert stock[0].old_value == "2"
        assert stock[0].new_value == "4"
        assert stock[0].message == "Stock 2 → 4 (Main WH: 2→3, Shop 2: 0→1)"

    def test_unchanged_row_writes_no_audit(self, db_session, settings):
        make_item(db_session, "A", quantity=3, price_cents=10000)

        sync_stock_batch([stock_row("A", [("Main WH", 3)], price="100")], "sync_a", settings)

        assert db_session.query(AuditEntry).count() == 0

    def test_sale_price_removal_is_audited(self, db_session, settings):
        item = make_item(db_session, "A", quantity=1, price_cents=10000)
        item.sale_price_cents = 8000
        db_session.commit()

        sync_stock_batch([stock_row("A", [("Main WH", 1)], price="100")], "sync_a", settings)

        sale = _audit(db_session, "A", "sale_price")
        assert [(e.old_value, e.new_value) for e in sale] == [("80.00", "none")]

    def test_location_diff_lists_changed_locations(self):
        diff = location_diff(
            [{"location": "B", "quantity": 1}, {"location": "A", "quantity": 2}],
            [{"location": "A", "quantity": 2}, {"location": "C", "quantity": 5}],
        )
        assert diff == ["B: 1→0", "C: 0→5"]


class TestStockBatch:
    def test_unknown_sku_is_skipped_not_created(self, db_session, settings):
        make_item(db_session, "A")

        stats = sync_stock_batch(
            [stock_row("A", [("Main WH", 1)]), stock_row("GHOST", [("Main WH", 1)])], "sync_a", settings
        )

        assert stats == {"updated": 1, "skipped": 1, "errors": 0, "total": 2, "branch_writes": 1}
        assert db_session.query(CatalogItem).filter_by(sku="GHOST").count() == 0

    def test_row_without_sku_is_an_error(self, db_session, settings):
        stats = sync_stock_batch([{"Price": "10", "Warehouses": []}], "sync_a", settings)
        assert stats["errors"] == 1
        assert stats["updated"] == 0

    def test_applied_row_stamps_session(self, db_session, settings):
        make_item(db_session, "A", managed=False)

        sync_stock_batch([stock_row("A", [("Main WH", 1)])], "sync_42", settings)

        item = get_item("A")
        assert item.managed is True
        assert item.last_sync_session_id == "sync_42"
        assert item.stock_updated_at is not None

    def test_rerun_is_idempotent(self, db_session, settings):
        make_item(db_session, "A")
        rows = [stock_row("A", [("Main WH", 3), ("Defect", 4)], price="55", sale_price="50")]

        sync_stock_batch(rows, "sync_a", settings)
        first = get_item("A").to_dict()
        audits = db_session.query(AuditEntry).count()

        stats = sync_stock_batch(rows, "sync_a", settings)
        second = get_item("A").to_dict()

        assert stats["branch_writes"] == 0
        assert db_session.query(AuditEntry).count() == audits
        for key in ("stock_quantity", "regular_price", "sale_price", "warehouse_breakdown", "branch_terms"):
            assert first[key] == second[key]
