# Overview: Pytest coverage for cache slots, housekeeping and the Flask CLI commands.

"""
Maintenance & CLI Tests

- cache slots expire and hand out private copies
- purge removes only expired cache slots and locks
- CLI commands drive the same services as the API
"""

from erpsync.errors import RemoteUnavailable
from erpsync.models import SyncCacheEntry
from erpsync.services import cache_service, lock_service, maintenance_service
from conftest import make_item, stock_row


class TestCache:
    def test_put_get_roundtrip_is_a_copy(self, db_session):
        cache_service.put("k", {"rows": [1, 2]}, 60)

        value = cache_service.get("k")
        value["rows"].append(3)

        assert cache_service.get("k") == {"rows": [1, 2]}

    def test_expired_slot_reads_as_missing(self, db_session):
        cache_service.put("k", "v", 0)

        assert cache_service.get("k", "default") == "default"
        assert db_session.query(SyncCacheEntry).count() == 0

    def test_progress_slot(self, db_session):
        progress = cache_service.set_progress(25, 100, "Processing")
        assert progress["percent"] == 25
        assert cache_service.get_progress()["status"] == "Processing"

        cache_service.clear_progress()
        assert cache_service.get_progress() == {"current": 0, "total": 0, "percent": 0, "status": "idle"}

    def test_purge_expired(self, db_session):
        cache_service.put("old", 1, 0)
        cache_service.put("fresh", 2, 60)
        lock_service.acquire_lock("stock", 0, "sync_dead")

        assert maintenance_service.purge_expired() == {"cache_entries": 1, "locks": 1}
        assert cache_service.get("fresh") == 2


class TestCli:
    def test_sync_stock(self, app, db_session, gateway):
        make_item(db_session, "A")
        gateway.stock = [stock_row("A", [("Main WH", 2)])]

        result = app.test_cli_runner().invoke(args=["sync", "stock"])

        assert result.exit_code == 0
        assert "PASS Stock sync" in result.output
        assert "updated" in result.output

    def test_sync_failure_exits_non_zero(self, app, db_session, gateway):
        gateway.error = RemoteUnavailable("connection refused")

        result = app.test_cli_runner().invoke(args=["sync", "catalog"])

        assert result.exit_code == 1
        assert "FAIL Catalog sync" in result.output
        assert "retryable" in result.output

    def test_status_and_locks(self, app, db_session, gateway):
        runner = app.test_cli_runner()
        runner.invoke(args=["sync", "codes", "--mode", "full_sync"])
        lock_service.acquire_lock("stock", 600, "sync_running")

        status = runner.invoke(args=["sync", "status"])
        locks = runner.invoke(args=["sync", "locks"])

        assert "full_sync" in status.output
        assert "never" in status.output
        assert "holder=sync_running" in locks.output

    def test_release_lock(self, app, db_session):
        lock_service.acquire_lock("stock", 600, "sync_running")

        result = app.test_cli_runner().invoke(args=["sync", "release-lock", "stock", "--yes"])

        assert result.exit_code == 0
        assert lock_service.get_lock("stock") is None

    def test_purge_expired_command(self, app, db_session):
        cache_service.put("old", 1, 0)

        result = app.test_cli_runner().invoke(args=["maintenance", "purge-expired"])

        assert "Deleted 1 cache entries and 0 expired locks." in result.output

    def test_audit_cleanup_command(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["audit", "cleanup", "--retention-days", "30"])
        assert "Deleted 0 audit entries older than 30 days." in result.output
