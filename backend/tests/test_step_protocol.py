# Overview: Pytest coverage for the client-driven init/process/cleanup protocol.

"""
Step Protocol Tests

- offsets advance by batch_size until next_offset reaches total
- re-sending an acknowledged offset does not double count
- skipping ahead is rejected, running past the end is "done"
- cleanup sweeps once, releases the lock, and can be repeated
- a session whose lock was taken over neither sweeps nor frees it
- session-level failures release the lock
"""

import pytest

from erpsync.errors import InvalidStep, LockHeld, RemoteUnavailable
from erpsync.models import CatalogItem, SyncRun
from erpsync.services import cache_service, lock_service
from erpsync.services.step_service import StepRunner, active_session, aggregate_stats, resolve_action
from conftest import card_row, catalog_row, get_code, get_item, make_item, stock_row


@pytest.fixture
def runner(orchestrator):
    return StepRunner(orchestrator)


@pytest.fixture
def stock_dump(db_session, gateway):
    """120 known items reported by the remote, plus one it no longer reports."""
    for i in range(120):
        db_session.add(
            CatalogItem(sku=f"SKU-{i:03d}", name=f"Item {i}", attributes={}, warehouse_breakdown=[], managed=True)
        )
    db_session.commit()
    make_item(db_session, "ORPHAN", quantity=5)
    gateway.stock = [stock_row(f"SKU-{i:03d}", [("Main WH", 1)]) for i in range(120)]
    return gateway


def _init(runner, action="stock", **payload):
    return runner.run({"step": "init", "action": action, **payload})


def _process(runner, session_id, offset, **payload):
    return runner.run({"step": "process", "session_id": session_id, "offset": offset, **payload})


def _cleanup(runner, session_id):
    return runner.run({"step": "cleanup", "session_id": session_id})


class TestInit:
    def test_init_fetches_and_locks(self, runner, stock_dump):
        result = _init(runner)

        assert result["step"] == "init"
        assert result["total"] == 120
        assert result["next_offset"] == 0
        assert result["done"] is False
        assert lock_service.get_lock("stock").holder == result["session_id"]
        assert active_session("stock") == result["session_id"]
        assert cache_service.get_progress()["total"] == 120

    def test_second_init_is_rejected(self, runner, stock_dump):
        _init(runner)
        with pytest.raises(LockHeld):
            _init(runner)

    def test_empty_dataset_is_done_at_once(self, runner, gateway, db_session):
        result = _init(runner)
        assert result["total"] == 0
        assert result["done"] is True

    def test_unknown_action(self, runner, db_session):
        with pytest.raises(InvalidStep):
            _init(runner, action="prices")

    def test_gateway_failure_releases_lock(self, runner, gateway, db_session):
        gateway.error = RemoteUnavailable("connection refused")

        with pytest.raises(RemoteUnavailable):
            _init(runner)

        assert lock_service.get_lock("stock") is None
        run = db_session.query(SyncRun).one()
        assert run.success is False
        assert "connection refused" in run.error


class TestProcess:
    def test_offsets_walk_the_dataset(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]

        first = _process(runner, session_id, 0)
        second = _process(runner, session_id, first["next_offset"])
        third = _process(runner, session_id, second["next_offset"])

        assert [first["next_offset"], second["next_offset"], third["next_offset"]] == [50, 100, 120]
        assert [first["done"], second["done"], third["done"]] == [False, False, True]
        assert third["step_stats"]["updated"] == 20
        assert third["stats"]["updated"] == 120

    def test_resent_offset_is_not_double_counted(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]

        _process(runner, session_id, 0)
        again = _process(runner, session_id, 0)

        assert again["next_offset"] == 50
        assert again["stats"]["updated"] == 50
        assert again["stats"]["total"] == 50

    def test_skipping_ahead_is_rejected(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]
        with pytest.raises(InvalidStep):
            _process(runner, session_id, 100)

    def test_offset_past_end_reports_done(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]

        result = _process(runner, session_id, 500)

        assert result["done"] is True
        assert result["next_offset"] == 120
        assert result["step_stats"]["updated"] == 0

    def test_negative_offset(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]
        with pytest.raises(InvalidStep):
            _process(runner, session_id, -1)

    def test_non_numeric_offset(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]
        with pytest.raises(InvalidStep):
            _process(runner, session_id, "ten")

    def test_unknown_session(self, runner, db_session):
        with pytest.raises(InvalidStep):
            _process(runner, "sync_missing", 0)

    def test_missing_session_id(self, runner, db_session):
        with pytest.raises(InvalidStep):
            runner.run({"step": "process", "offset": 0})

    def test_unknown_step(self, runner, db_session):
        with pytest.raises(InvalidStep):
            runner.run({"step": "rewind", "session_id": "sync_x"})

    def test_expired_dataset_is_fetched_again(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]
        cache_service.delete(cache_service.dataset_key(session_id))

        result = _process(runner, session_id, 0)

        assert stock_dump.calls == ["stock", "stock"]
        assert result["next_offset"] == 50

    def test_refetch_failure_aborts_session(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]
        cache_service.delete(cache_service.dataset_key(session_id))
        stock_dump.error = RemoteUnavailable("timeout")

        with pytest.raises(RemoteUnavailable):
            _process(runner, session_id, 0)

        assert lock_service.get_lock("stock") is None
        assert active_session("stock") is None
        with pytest.raises(InvalidStep):
            _process(runner, session_id, 0)

    def test_lost_lock_is_taken_again(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]
        lock_service.release_lock("stock")

        _process(runner, session_id, 0)

        assert lock_service.get_lock("stock").holder == session_id

    def test_lock_taken_by_other_run(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]
        lock_service.release_lock("stock")
        lock_service.acquire_lock("stock", 600, "sync_other")

        with pytest.raises(LockHeld):
            _process(runner, session_id, 0)


class TestCleanup:
    def _run_all(self, runner, action="stock"):
        session_id = _init(runner, action)["session_id"]
        offset = 0
        while True:
            result = _process(runner, session_id, offset)
            offset = result["next_offset"]
            if result["done"]:
                break
        return session_id

    def test_full_session_sweeps_and_releases(self, runner, stock_dump, db_session):
        session_id = self._run_all(runner)

        result = _cleanup(runner, session_id)

        assert result["done"] is True
        assert result["stats"]["updated"] == 120
        assert result["stats"]["zeroed"] == 1
        assert get_item("ORPHAN").stock_quantity == 0
        assert get_item("SKU-000").stock_quantity == 1
        assert lock_service.get_lock("stock") is None
        assert active_session("stock") is None
        assert cache_service.get(cache_service.dataset_key(session_id)) is None

        run = db_session.query(SyncRun).one()
        assert run.success is True
        assert run.session_id == session_id
        assert run.stats["zeroed"] == 1

    def test_repeated_cleanup_returns_stored_result(self, runner, stock_dump, db_session):
        session_id = self._run_all(runner)

        first = _cleanup(runner, session_id)
        second = _cleanup(runner, session_id)

        assert first == second
        assert db_session.query(SyncRun).count() == 1

    def test_partial_session_skips_sweep(self, runner, stock_dump):
        session_id = _init(runner)["session_id"]
        _process(runner, session_id, 0)

        result = _cleanup(runner, session_id)

        assert "zeroed" not in result["stats"]
        assert get_item("ORPHAN").stock_quantity == 5
        assert lock_service.get_lock("stock") is None

    def test_lock_taken_over_skips_sweep_and_release(self, runner, stock_dump):
        stale = self._run_all(runner)
        lock_service.release_lock("stock")
        current = _init(runner)["session_id"]
        _process(runner, current, 0)

        result = _cleanup(runner, stale)

        assert "zeroed" not in result["stats"]
        assert get_item("SKU-000").stock_quantity == 1
        assert get_item("SKU-049").stock_quantity == 1
        assert get_item("ORPHAN").stock_quantity == 5
        assert lock_service.get_lock("stock").holder == current
        assert active_session("stock") == current
        assert cache_service.get_progress()["current"] == 50

    def test_lapsed_lock_is_taken_again_for_sweep(self, runner, stock_dump):
        session_id = self._run_all(runner)
        lock_service.release_lock("stock")

        result = _cleanup(runner, session_id)

        assert result["stats"]["zeroed"] == 1
        assert get_item("ORPHAN").stock_quantity == 0
        assert lock_service.get_lock("stock") is None

    def test_empty_dataset_never_sweeps(self, runner, gateway, db_session):
        make_item(db_session, "KEEP", quantity=3)
        session_id = _init(runner)["session_id"]

        result = _cleanup(runner, session_id)

        assert "zeroed" not in result["stats"]
        assert get_item("KEEP").stock_quantity == 3

    def test_catalog_session(self, runner, gateway, db_session):
        gateway.catalog = [catalog_row(f"W-{i}", Brand="Rolex") for i in range(70)]
        gateway.catalog.append(catalog_row("HIDDEN", Branch="Office"))

        session_id = self._run_all(runner, "catalog")
        result = _cleanup(runner, session_id)

        assert result["total"] == 70
        assert result["stats"]["created"] == 70
        assert db_session.query(CatalogItem).filter_by(sku="HIDDEN").count() == 0

    def test_code_session_with_mode(self, runner, gateway, db_session):
        gateway.cards = [card_row("1001"), card_row("1002")]

        session_id = _init(runner, "import_new")["session_id"]
        _process(runner, session_id, 0)
        result = _cleanup(runner, session_id)

        assert result["stats"]["created"] == 2
        assert "zeroed" not in result["stats"]
        assert get_code("1001") is not None
        assert db_session.query(SyncRun).one().mode == "import_new"


class TestHelpers:
    def test_resolve_action(self):
        assert resolve_action("stock") == ("stock", None)
        assert resolve_action("code") == ("code", "full_sync")
        assert resolve_action("code", "force_import") == ("code", "force_import")
        with pytest.raises(InvalidStep):
            resolve_action("code", "everything")

    def test_aggregate_stats_orders_batches(self):
        state = {
            "sync_type": "stock",
            "batches": {
                "50": {"updated": 2, "skipped": 1, "errors": 0, "total": 3, "branch_writes": 0},
                "0": {"updated": 5, "skipped": 0, "errors": 1, "total": 6, "branch_writes": 2},
            },
        }
        assert aggregate_stats(state) == {
            "updated": 7, "skipped": 1, "errors": 1, "total": 9, "branch_writes": 2,
        }
