"""
Step Protocol

Client-driven version of a full run, split over separate requests:

    init -> process(offset=0) -> process(offset=n) ... -> cleanup

STATE (cache slots, all keyed by session id):
- sync:session:<id>  {sync_type, mode, started_at, total, next_offset,
                      batches: {offset: stats}, failed_skus}
- sync:dataset:<id>  the remote rows fetched at init (re-fetched if expired)
- sync:active:<type> the session id currently running for a sync type
- sync:result:<id>   the cleanup result, returned again on repeated cleanup

RULES:
- init holds the sync type's lock until cleanup (or until the TTL lapses)
- process may repeat an offset already acknowledged (client retry); the
  stats of that offset are replaced, never added twice
- process may not skip ahead of next_offset (InvalidStep)
- an empty slice means the dataset is exhausted (done=True)
- any session-level failure in init/process releases the lock
- cleanup sweeps orphans only when every row was processed
"""
from __future__ import annotations

from typing import Any

from flask import current_app

from ..errors import InvalidStep, LockHeld
from ..extensions import db
from erpsync.time_utils import utcnow, parse_iso_datetime
from . import cache_service, discount_service, lock_service, session_service
from .sync_service import (
    SYNC_CATALOG,
    SYNC_CODE,
    SYNC_STOCK,
    SyncOrchestrator,
    empty_stats,
    merge_stats,
    record_run,
    should_sweep,
)

STEP_INIT = "init"
STEP_PROCESS = "process"
STEP_CLEANUP = "cleanup"
STEPS = (STEP_INIT, STEP_PROCESS, STEP_CLEANUP)

# Step-protocol action names accepted from clients
ACTIONS = {
    "catalog": (SYNC_CATALOG, None),
    "stock": (SYNC_STOCK, None),
    "code": (SYNC_CODE, discount_service.MODE_FULL_SYNC),
    "import_new": (SYNC_CODE, discount_service.MODE_IMPORT_NEW),
    "update_existing": (SYNC_CODE, discount_service.MODE_UPDATE_EXISTING),
    "full_sync": (SYNC_CODE, discount_service.MODE_FULL_SYNC),
    "force_import": (SYNC_CODE, discount_service.MODE_FORCE_IMPORT),
}


def resolve_action(action: str | None, mode: str | None = None) -> tuple[str, str | None]:
    if not action or action not in ACTIONS:
        raise InvalidStep(f"Unknown sync action: {action}")
    sync_type, default_mode = ACTIONS[action]
    if sync_type == SYNC_CODE:
        mode = mode or default_mode
        if mode not in discount_service.MODES:
            raise InvalidStep(f"Unknown discount sync mode: {mode}")
        return sync_type, mode
    return sync_type, None


def _as_int(value: Any, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidStep(f"{name} must be an integer")


def _response(
    step: str,
    session_id: str,
    state: dict,
    *,
    step_stats=None,
    stats=None,
    next_offset: int | None = None,
    done: bool = False,
    message: str = "",
) -> dict:
    return {
        "step": step,
        "session_id": session_id,
        "total": state.get("total", 0),
        "next_offset": state.get("next_offset", 0) if next_offset is None else next_offset,
        "done": done,
        "step_stats": step_stats or {},
        "stats": stats if stats is not None else aggregate_stats(state),
        "message": message,
    }


def aggregate_stats(state: dict) -> dict[str, Any]:
    totals = empty_stats(state.get("sync_type", ""))
    for _, batch in sorted(state.get("batches", {}).items(), key=lambda kv: int(kv[0])):
        merge_stats(totals, batch)
    return totals


class StepRunner:
    """Runs one protocol step per call; all state lives in the cache store."""

    def __init__(self, orchestrator: SyncOrchestrator):
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings

    def run(self, payload: dict) -> dict:
        step = (payload.get("step") or "").strip()
        if step == STEP_INIT:
            action = payload.get("action") or payload.get("sync_type")
            return self.init(action, mode=payload.get("mode"))

        session_id = (payload.get("session_id") or "").strip()
        if not session_id:
            raise InvalidStep("session_id is required")
        if step == STEP_PROCESS:
            return self.process(
                session_id,
                offset=_as_int(payload.get("offset"), "offset", 0),
                batch_size=_as_int(payload.get("batch_size"), "batch_size", self.settings.batch_size),
            )
        if step == STEP_CLEANUP:
            return self.cleanup(session_id)
        raise InvalidStep(f"Unknown step: {step or '(empty)'}")

    # -- state helpers ---------------------------------------------------

    def _state_ttl(self, sync_type: str) -> int:
        return max(self.settings.dataset_ttl, self.settings.lock_ttl(sync_type))

    def _load_state(self, session_id: str) -> dict:
        state = cache_service.get(cache_service.session_key(session_id))
        if state is None:
            raise InvalidStep(f"Unknown or expired sync session: {session_id}")
        return state

    def _save_state(self, session_id: str, state: dict) -> None:
        cache_service.put(cache_service.session_key(session_id), state, self._state_ttl(state["sync_type"]))

    def _dataset(self, session_id: str, state: dict) -> list[dict]:
        rows = cache_service.get(cache_service.dataset_key(session_id))
        if rows is None:
            current_app.logger.info("Dataset for %s expired, fetching again", session_id)
            rows = self.orchestrator.fetch_dataset(state["sync_type"])
            cache_service.put(cache_service.dataset_key(session_id), rows, self.settings.dataset_ttl)
            state["total"] = len(rows)
        return rows

    def _abort(self, session_id: str, state: dict, exc: Exception) -> None:
        db.session.rollback()
        sync_type = state["sync_type"]
        lock_service.release_lock(sync_type, session_id)
        cache_service.delete(cache_service.dataset_key(session_id))
        cache_service.delete(cache_service.session_key(session_id))
        if cache_service.get(cache_service.active_key(sync_type)) == session_id:
            cache_service.delete(cache_service.active_key(sync_type))
        cache_service.clear_progress()
        started_at = parse_iso_datetime(state.get("started_at")) or utcnow()
        record_run(
            sync_type, mode=state.get("mode"), session_id=session_id,
            started_at=started_at, stats=aggregate_stats(state), error=str(exc),
        )
        current_app.logger.error("Step session %s aborted: %s", session_id, exc)

    # -- steps -----------------------------------------------------------

    def init(self, action: str | None, *, mode: str | None = None) -> dict:
        sync_type, mode = resolve_action(action, mode)
        session_id = session_service.new_session_id()
        ttl = self.settings.lock_ttl(sync_type)

        if not lock_service.acquire_lock(sync_type, ttl, session_id):
            existing = lock_service.get_lock(sync_type)
            raise LockHeld(sync_type, existing.holder if existing else None)

        state = {
            "sync_type": sync_type,
            "mode": mode,
            "started_at": utcnow().isoformat(),
            "total": 0,
            "next_offset": 0,
            "batches": {},
            "failed_skus": [],
        }
        try:
            rows = self.orchestrator.fetch_dataset(sync_type)
        except Exception as exc:
            self._abort(session_id, state, exc)
            raise

        state["total"] = len(rows)
        cache_service.put(cache_service.dataset_key(session_id), rows, self.settings.dataset_ttl)
        self._save_state(session_id, state)
        cache_service.put(cache_service.active_key(sync_type), session_id, self._state_ttl(sync_type))
        self.orchestrator.report_progress(0, len(rows), f"Fetched {len(rows)} {sync_type} rows")

        current_app.logger.info("Step session %s started: %s, %d rows", session_id, sync_type, len(rows))
        return _response(STEP_INIT, session_id, state, done=len(rows) == 0, message=f"Fetched {len(rows)} rows")

    def process(self, session_id: str, *, offset: int, batch_size: int) -> dict:
        state = self._load_state(session_id)
        sync_type = state["sync_type"]

        if offset < 0:
            raise InvalidStep("offset must be >= 0")
        batch_size = max(1, batch_size)

        ttl = self.settings.lock_ttl(sync_type)
        if not lock_service.keep_lock(sync_type, session_id, ttl):
            raise LockHeld(sync_type)

        try:
            rows = self._dataset(session_id, state)
        except Exception as exc:
            self._abort(session_id, state, exc)
            raise

        if offset >= len(rows):
            self._save_state(session_id, state)
            return _response(
                STEP_PROCESS, session_id, state, step_stats=empty_stats(sync_type),
                next_offset=len(rows), done=True, message="Nothing left to process",
            )
        if offset > state["next_offset"]:
            raise InvalidStep(f"offset {offset} skips ahead of {state['next_offset']}")

        batch = rows[offset:offset + batch_size]
        failed = set(state.get("failed_skus") or [])
        try:
            step_stats = self.orchestrator.process_batch(
                sync_type, batch, session_id, mode=state.get("mode"), failed_skus=failed,
            )
        except Exception as exc:
            self._abort(session_id, state, exc)
            raise

        state["batches"][str(offset)] = step_stats
        state["failed_skus"] = sorted(failed)
        state["next_offset"] = max(state["next_offset"], offset + len(batch))
        self._save_state(session_id, state)

        done = state["next_offset"] >= state["total"]
        self.orchestrator.report_progress(
            state["next_offset"], state["total"], f"Processed {state['next_offset']} of {state['total']}"
        )
        return _response(
            STEP_PROCESS, session_id, state, step_stats=step_stats, done=done,
            message=f"Processed rows {offset}-{offset + len(batch) - 1}",
        )

    def cleanup(self, session_id: str) -> dict:
        stored = cache_service.get(cache_service.result_key(session_id))
        if stored is not None:
            return stored

        state = self._load_state(session_id)
        sync_type = state["sync_type"]
        stats = aggregate_stats(state)

        processed = state.get("next_offset", 0)
        owns_lock = lock_service.keep_lock(sync_type, session_id, self.settings.lock_ttl(sync_type))
        if not owns_lock:
            current_app.logger.warning(
                "Step session %s lost the %s lock to another run, orphan sweep skipped", session_id, sync_type
            )
        elif processed < state.get("total", 0):
            current_app.logger.warning(
                "Step session %s cleaned up after %d of %d rows, orphan sweep skipped",
                session_id, processed, state.get("total", 0),
            )
        elif should_sweep(sync_type, processed):
            stats["zeroed"] = self.orchestrator.sweep(session_id, state.get("failed_skus") or [])

        if owns_lock:
            lock_service.release_lock(sync_type, session_id)
            cache_service.clear_progress()
        cache_service.delete(cache_service.dataset_key(session_id))
        cache_service.delete(cache_service.session_key(session_id))
        if cache_service.get(cache_service.active_key(sync_type)) == session_id:
            cache_service.delete(cache_service.active_key(sync_type))

        started_at = parse_iso_datetime(state.get("started_at")) or utcnow()
        record_run(sync_type, mode=state.get("mode"), session_id=session_id, started_at=started_at, stats=stats)

        result = _response(STEP_CLEANUP, session_id, state, stats=stats, done=True, message="Sync completed")
        cache_service.put(cache_service.result_key(session_id), result, self.settings.result_ttl)
        current_app.logger.info("Step session %s completed: %s", session_id, stats)
        return result


def active_session(sync_type: str) -> str | None:
    return cache_service.get(cache_service.active_key(sync_type))
