# Overview: Flask API routes for read access to synced catalog items and discount codes.

from flask import Blueprint, current_app, jsonify

from ..config import SyncSettings
from ..extensions import db
from ..models import CatalogItem
from ..services import branch_service, discount_service

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _get_item(sku: str):
    return db.session.query(CatalogItem).filter_by(sku=sku).one_or_none()


@catalog_bp.get("/catalog/items/<sku>")
def get_item_route(sku: str):
    item = _get_item(sku)
    if item is None:
        return jsonify({"error": "Item not found"}), 404
    return jsonify({"item": item.to_dict()})


@catalog_bp.get("/catalog/items/<sku>/branches")
def item_branches_route(sku: str):
    item = _get_item(sku)
    if item is None:
        return jsonify({"error": "Item not found"}), 404
    settings = SyncSettings.from_config(current_app.config)
    return jsonify({"sku": item.sku, "branches": branch_service.branch_stock(item, settings)})


@catalog_bp.get("/discounts/stats")
def discount_stats_route():
    return jsonify(discount_service.discount_stats())


@catalog_bp.get("/discounts/<code>")
def get_discount_route(code: str):
    discount = discount_service.find_code(code)
    if discount is None:
        return jsonify({"error": "Discount code not found"}), 404
    settings = SyncSettings.from_config(current_app.config)
    payload = discount.to_dict()
    payload["effective_percent"] = discount_service.effective_discount(
        discount, birthday_percent=settings.birthday_discount
    )
    return jsonify({"discount": payload})
