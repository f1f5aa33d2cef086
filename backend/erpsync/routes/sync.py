# Overview: Flask API routes for triggering syncs, the step protocol and progress polling.

"""
Sync Routes

POST /api/sync/run/<action>   one-shot run (codes modes, catalog, stock, item)
POST /api/sync/step           step protocol: {action, step, offset, batch_size, session_id}
GET  /api/sync/progress       progress slot
GET  /api/sync/status         last runs, held locks, active step sessions
POST /api/sync/trigger        webhook: import new discount codes
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_sync_secret, sync_errors_as_json
from ..services import cache_service, lock_service, step_service
from ..services.sync_service import SYNC_TYPES, build_orchestrator, last_runs

sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")

RUN_ACTIONS = {
    "import_new": lambda o, data: o.import_new_codes(),
    "update_existing": lambda o, data: o.update_existing_codes(),
    "full_sync": lambda o, data: o.full_sync_codes(),
    "force_import": lambda o, data: o.force_import_codes(),
    "catalog": lambda o, data: o.sync_catalog(),
    "stock": lambda o, data: o.sync_stock(data.get("sku")),
    "item": lambda o, data: o.refresh_item(data.get("sku") or ""),
}


@sync_bp.post("/run/<action>")
@require_sync_secret
@sync_errors_as_json
def run_sync_route(action: str):
    handler = RUN_ACTIONS.get(action)
    if handler is None:
        return jsonify({"error": f"Unknown sync action: {action}"}), 404

    data = request.get_json(silent=True) or {}
    if action == "item" and not (data.get("sku") or "").strip():
        return jsonify({"error": "sku is required"}), 400

    stats = handler(build_orchestrator(), data)
    return jsonify({"action": action, "stats": stats})


@sync_bp.post("/step")
@require_sync_secret
@sync_errors_as_json
def step_route():
    data = request.get_json(silent=True) or {}
    runner = step_service.StepRunner(build_orchestrator())
    return jsonify(runner.run(data))


@sync_bp.get("/progress")
def progress_route():
    return jsonify(cache_service.get_progress())


@sync_bp.get("/status")
def status_route():
    return jsonify({
        "last_runs": last_runs(),
        "locks": lock_service.list_locks(),
        "active_sessions": {t: step_service.active_session(t) for t in SYNC_TYPES},
    })


@sync_bp.post("/trigger")
@require_sync_secret
@sync_errors_as_json
def webhook_trigger_route():
    current_app.logger.info("Webhook sync trigger from %s", request.remote_addr)
    stats = build_orchestrator().import_new_codes()
    return jsonify({"success": True, "stats": stats})
