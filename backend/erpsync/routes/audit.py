# Overview: Flask API routes for reading the sync audit log.

from flask import Blueprint, jsonify, request

from ..services import audit_service
from erpsync.time_utils import parse_iso_datetime

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


def _parse_bound(name: str, *, end: bool = False):
    raw = request.args.get(name)
    if not raw:
        return None
    value = parse_iso_datetime(raw)
    # A bare date as the end bound covers the whole day
    if end and len(raw.strip()) == 10:
        value = value.replace(hour=23, minute=59, second=59, microsecond=999999)
    return value


@audit_bp.get("")
def list_audit_route():
    """
    Query params:
        start, end: ISO dates/datetimes (inclusive)
        search: substring on sku/code, name, message
        change_type, entity_type: exact filters
        page, per_page, order_by, order
    """
    try:
        start = _parse_bound("start")
        end = _parse_bound("end", end=True)
    except ValueError:
        return jsonify({"error": "start/end must be ISO-8601 dates"}), 400

    try:
        page = int(request.args.get("page", 1))
        per_page = int(request.args.get("per_page", 20))
    except ValueError:
        return jsonify({"error": "page and per_page must be integers"}), 400

    result = audit_service.list_audit_entries(
        start=start,
        end=end,
        search=request.args.get("search"),
        change_type=request.args.get("change_type"),
        entity_type=request.args.get("entity_type"),
        page=page,
        per_page=per_page,
        order_by=request.args.get("order_by", "created_at"),
        order=request.args.get("order", "desc"),
    )
    return jsonify(result)


@audit_bp.get("/months")
def audit_months_route():
    return jsonify({"months": audit_service.available_months()})
