# Overview: Pytest coverage for the orphan sweep run after a full sync session.

"""
Orphan Sweep Tests

- anything the session did not stamp ends at stock 0 with no branches
- already-empty orphans only get managed=True
- skus whose rows errored are left for the next run
"""

from erpsync.models import AuditEntry
from erpsync.services import session_service
from erpsync.services.branch_service import branch_stock
from erpsync.services.session_service import new_session_id, sweep_orphans
from erpsync.services.stock_service import sync_stock_batch
from conftest import get_item, make_item, stock_row


class TestSweep:
    def test_unreported_item_is_zeroed(self, db_session, settings):
        """A is reported this session, B (stock 5 in Main WH) is not."""
        make_item(db_session, "A", quantity=2)
        make_item(db_session, "B", quantity=5, managed=False)
        sync_stock_batch(
            [stock_row("A", [("Main WH", 2)]), stock_row("B", [("Main WH", 5)])], "sync_old", settings
        )
        assert get_item("B").branch_names == ["Tbilisi Mall"]

        sync_stock_batch([stock_row("A", [("Main WH", 2)])], "sync_now", settings)
        zeroed = sweep_orphans("sync_now")

        a = get_item("A")
        b = get_item("B")
        assert zeroed == 1
        assert a.stock_quantity == 2
        assert a.stock_status == "in_stock"
        assert b.stock_quantity == 0
        assert b.stock_status == "out_of_stock"
        assert b.managed is True
        assert b.warehouse_breakdown == []
        assert b.branch_names == []
        assert branch_stock(b, settings) == []

        entries = db_session.query(AuditEntry).filter_by(entity_key="B", change_type="stock").all()
        assert len(entries) == 1
        assert entries[0].change_type == "stock"
        assert entries[0].old_value == "5"
        assert entries[0].new_value == "0"
        assert "sync_now" in entries[0].message

    def test_never_synced_items_are_swept(self, db_session):
        make_item(db_session, "LOCAL", quantity=3, session_id=None, managed=False)

        assert sweep_orphans("sync_now") == 1
        assert get_item("LOCAL").stock_quantity == 0

    def test_zero_stock_orphan_only_gets_managed(self, db_session):
        make_item(db_session, "EMPTY", quantity=0, managed=False)

        zeroed = sweep_orphans("sync_now")

        assert zeroed == 0
        assert get_item("EMPTY").managed is True
        assert db_session.query(AuditEntry).count() == 0

    def test_excluded_skus_are_untouched(self, db_session):
        make_item(db_session, "FAILED", quantity=4)

        zeroed = sweep_orphans("sync_now", exclude_skus={"FAILED"})

        assert zeroed == 0
        assert get_item("FAILED").stock_quantity == 4

    def test_second_sweep_is_a_noop(self, db_session):
        make_item(db_session, "B", quantity=5)

        sweep_orphans("sync_now")
        audits = db_session.query(AuditEntry).count()

        assert sweep_orphans("sync_now") == 0
        assert db_session.query(AuditEntry).count() == audits

    def test_chunks_cover_every_item(self, db_session, monkeypatch):
        for i in range(7):
            make_item(db_session, f"S-{i}", quantity=i + 1)
        collected = []
        monkeypatch.setattr(session_service.gc, "collect", lambda: collected.append(1))

        zeroed = sweep_orphans("sync_now", chunk_size=2, gc_every=3)

        assert zeroed == 7
        assert len(collected) == 2
        assert all(get_item(f"S-{i}").stock_quantity == 0 for i in range(7))


class TestSessionIds:
    def test_session_ids_are_unique(self):
        ids = {new_session_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(i.startswith("sync_") for i in ids)
