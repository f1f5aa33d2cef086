"""
Sync Orchestrator

One-shot entry points for each sync type plus the building blocks the step
protocol reuses (fetch_dataset / process_batch / sweep / report_progress).

FULL RUN:
1. acquire the sync type's lock (LockHeld before any fetch)
2. fetch the whole remote dataset
3. process it in batch_size slices, reporting progress after each
4. sweep orphans (catalog and unfiltered stock runs with at least one row)
5. record a SyncRun; the lock is released whatever happens

Row-level failures stay inside the batch stats. Anything raised from the
gateway or the database aborts the run and is re-raised after the failed
SyncRun is recorded.
"""
from __future__ import annotations

from typing import Any, Iterable

from flask import current_app

from ..config import SyncSettings
from ..extensions import db
from ..models import SyncRun
from erpsync.time_utils import utcnow
from . import cache_service, discount_service, lock_service, session_service
from .catalog_service import AttributeResolver, filter_catalog_rows, sync_catalog_batch
from .gateway import RemoteGateway
from .stock_service import sync_stock_batch

SYNC_CATALOG = "catalog"
SYNC_STOCK = "stock"
SYNC_CODE = "code"
SYNC_TYPES = (SYNC_CATALOG, SYNC_STOCK, SYNC_CODE)

EMPTY_STATS = {
    SYNC_CATALOG: {"created": 0, "updated": 0, "errors": 0, "total": 0},
    SYNC_STOCK: {"updated": 0, "skipped": 0, "errors": 0, "total": 0, "branch_writes": 0},
    SYNC_CODE: {"created": 0, "updated": 0, "total_remote": 0},
}


def empty_stats(sync_type: str) -> dict[str, Any]:
    return dict(EMPTY_STATS.get(sync_type, {}))


def merge_stats(total: dict[str, Any], batch: dict[str, Any]) -> dict[str, Any]:
    """Add numeric counters of `batch` into `total` (in place)."""
    for key, value in batch.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        total[key] = total.get(key, 0) + value
    return total


def should_sweep(sync_type: str, processed_rows: int, sku_filter: str | None = None) -> bool:
    """Catalog and full stock runs sweep; filtered runs and empty dumps never do."""
    if sync_type not in (SYNC_CATALOG, SYNC_STOCK):
        return False
    if sku_filter:
        return False
    return processed_rows > 0


def record_run(
    sync_type: str,
    *,
    session_id: str | None,
    started_at,
    stats: dict | None,
    mode: str | None = None,
    error: str | None = None,
) -> SyncRun:
    finished_at = utcnow()
    run = SyncRun(
        sync_type=sync_type,
        mode=mode,
        session_id=session_id,
        success=error is None,
        stats=dict(stats or {}),
        error=error,
        started_at=started_at,
        finished_at=finished_at,
        duration_ms=int((finished_at - started_at).total_seconds() * 1000),
    )
    db.session.add(run)
    db.session.commit()
    return run


def last_runs() -> dict[str, dict | None]:
    """Most recent SyncRun per sync type."""
    result: dict[str, dict | None] = {}
    for sync_type in SYNC_TYPES:
        run = (
            db.session.query(SyncRun)
            .filter(SyncRun.sync_type == sync_type)
            .order_by(SyncRun.finished_at.desc(), SyncRun.id.desc())
            .first()
        )
        result[sync_type] = run.to_dict() if run else None
    return result


class SyncOrchestrator:
    def __init__(self, gateway: RemoteGateway, settings: SyncSettings):
        self.gateway = gateway
        self.settings = settings

    # -- building blocks -------------------------------------------------

    def fetch_dataset(self, sync_type: str, *, sku_filter: str | None = None) -> list[dict]:
        if sync_type == SYNC_CODE:
            return list(self.gateway.fetch_discount_codes())
        if sync_type == SYNC_CATALOG:
            return filter_catalog_rows(list(self.gateway.fetch_catalog()), self.settings)
        if sync_type == SYNC_STOCK:
            rows = list(self.gateway.fetch_stock(sku_filter))
            if sku_filter:
                rows = [r for r in rows if str(r.get("VendorCode") or "").strip() == sku_filter]
            return rows
        raise ValueError(f"Unknown sync type: {sync_type}")

    def process_batch(
        self,
        sync_type: str,
        rows: list[dict],
        session_id: str,
        *,
        mode: str | None = None,
        failed_skus: set[str] | None = None,
        resolver: AttributeResolver | None = None,
    ) -> dict[str, int]:
        if sync_type == SYNC_CATALOG:
            return sync_catalog_batch(
                rows, session_id, self.settings, resolver=resolver, failed_skus=failed_skus
            )
        if sync_type == SYNC_STOCK:
            return sync_stock_batch(rows, session_id, self.settings, failed_skus=failed_skus)
        if sync_type == SYNC_CODE:
            return discount_service.upsert_codes(rows, mode or discount_service.MODE_FULL_SYNC)
        raise ValueError(f"Unknown sync type: {sync_type}")

    def sweep(self, session_id: str, exclude_skus: Iterable[str] = ()) -> int:
        return session_service.sweep_orphans(
            session_id,
            exclude_skus=exclude_skus,
            chunk_size=self.settings.sweep_chunk_size,
            gc_every=self.settings.gc_every,
        )

    def report_progress(self, current: int, total: int, status: str) -> dict:
        return cache_service.set_progress(current, total, status, ttl=self.settings.progress_ttl)

    # -- full runs -------------------------------------------------------

    def _run(self, sync_type: str, *, mode: str | None = None, sku_filter: str | None = None) -> dict[str, Any]:
        session_id = session_service.new_session_id()
        ttl = self.settings.lock_ttl(sync_type)
        label = f"{sync_type} ({mode})" if mode else sync_type

        with lock_service.hold_lock(sync_type, ttl, holder=session_id):
            started_at = utcnow()
            stats = empty_stats(sync_type)
            current_app.logger.info("Sync %s started, session %s", label, session_id)
            try:
                self.report_progress(0, 0, f"Fetching {sync_type} data...")
                rows = self.fetch_dataset(sync_type, sku_filter=sku_filter)
                total = len(rows)
                failed_skus: set[str] = set()
                resolver = AttributeResolver(self.settings.attribute_mapping) if sync_type == SYNC_CATALOG else None

                lock_held = True
                batch_size = self.settings.batch_size
                for offset in range(0, total, batch_size):
                    batch = rows[offset:offset + batch_size]
                    batch_stats = self.process_batch(
                        sync_type, batch, session_id, mode=mode, failed_skus=failed_skus, resolver=resolver
                    )
                    merge_stats(stats, batch_stats)
                    done = min(offset + batch_size, total)
                    self.report_progress(done, total, f"Processing {done} of {total}...")
                    if lock_held and not lock_service.keep_lock(sync_type, session_id, ttl):
                        current_app.logger.warning(
                            "Sync %s lost the %s lock to another run, orphan sweep skipped", label, sync_type
                        )
                        lock_held = False

                if lock_held and should_sweep(sync_type, total, sku_filter):
                    stats["zeroed"] = self.sweep(session_id, failed_skus)
            except Exception as exc:
                db.session.rollback()
                current_app.logger.error("Sync %s failed: %s", label, exc)
                record_run(sync_type, mode=mode, session_id=session_id, started_at=started_at, stats=stats, error=str(exc))
                cache_service.clear_progress()
                raise

            record_run(sync_type, mode=mode, session_id=session_id, started_at=started_at, stats=stats)
            cache_service.clear_progress()
            current_app.logger.info("Sync %s completed: %s", label, stats)
            return stats

    def import_new_codes(self) -> dict[str, Any]:
        return self._run(SYNC_CODE, mode=discount_service.MODE_IMPORT_NEW)

    def update_existing_codes(self) -> dict[str, Any]:
        return self._run(SYNC_CODE, mode=discount_service.MODE_UPDATE_EXISTING)

    def full_sync_codes(self) -> dict[str, Any]:
        return self._run(SYNC_CODE, mode=discount_service.MODE_FULL_SYNC)

    def force_import_codes(self) -> dict[str, Any]:
        return self._run(SYNC_CODE, mode=discount_service.MODE_FORCE_IMPORT)

    def sync_codes(self, mode: str) -> dict[str, Any]:
        if mode not in discount_service.MODES:
            raise ValueError(f"Unknown discount sync mode: {mode}")
        return self._run(SYNC_CODE, mode=mode)

    def sync_catalog(self) -> dict[str, Any]:
        return self._run(SYNC_CATALOG)

    def sync_stock(self, sku_filter: str | None = None) -> dict[str, Any]:
        return self._run(SYNC_STOCK, sku_filter=(sku_filter or "").strip() or None)

    def refresh_item(self, sku: str) -> dict[str, Any]:
        """Pull stock/price for one sku right away; no lock, no sweep."""
        sku = (sku or "").strip()
        if not sku:
            raise ValueError("sku is required")
        rows = self.fetch_dataset(SYNC_STOCK, sku_filter=sku)
        # Join a running stock or catalog session so its sweep does not zero this item.
        running = lock_service.get_lock(SYNC_STOCK) or lock_service.get_lock(SYNC_CATALOG)
        session_id = running.holder if running else session_service.new_session_id()
        stats = sync_stock_batch(rows, session_id, self.settings)
        current_app.logger.info("Item %s refreshed: %s", sku, stats)
        return stats


def build_orchestrator(app=None) -> SyncOrchestrator:
    """Orchestrator wired to the app's gateway and settings."""
    app = app or current_app
    gateway = app.extensions["erpsync_gateway"]
    return SyncOrchestrator(gateway, SyncSettings.from_config(app.config))
