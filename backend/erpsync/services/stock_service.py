"""
Stock & Price Batch Processor

Applies rows of the remote stock dump to existing catalog items.

RULES:
- sku is the only lookup key; unknown skus are skipped, never created
- regular price is overwritten only by a parsed value > 0
- sale price is kept only if > 0 and strictly below the regular price
- stock_quantity = sum of warehouse quantities outside the exclusion
  denylist; the remote top-level Quantity is ignored
- every applied row stamps managed / last_sync_session_id / stock_updated_at
- one audit entry per changed field (price, sale_price, stock)
- each row runs in its own savepoint; a failing row is counted and skipped
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from flask import current_app

from ..config import SyncSettings
from ..errors import RowError
from ..extensions import db
from ..models import CatalogItem
from ..models.catalog import STOCK_IN, STOCK_OUT, cents_to_decimal
from erpsync.time_utils import utcnow
from . import audit_service, branch_service
from .gateway import row_key


@dataclass(frozen=True)
class WarehouseRecord:
    location: str
    quantity: int

    def to_dict(self) -> dict:
        return {"location": self.location, "quantity": self.quantity}


def parse_price(value: Any) -> Decimal | None:
    """
    Parse a remote price, accepting comma decimals ("12,50").

    Returns None for missing/blank/unparseable input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    else:
        raw = str(value).strip().replace(" ", "").replace(",", ".")
    if not raw:
        return None
    try:
        price = Decimal(raw)
    except InvalidOperation:
        return None
    if not price.is_finite():
        return None
    return price


def price_to_cents(price: Decimal) -> int:
    return int((price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_quantity(value: Any) -> int:
    price = parse_price(value)
    return int(price) if price is not None else 0


def filter_warehouses(rows: Iterable[dict] | None, excluded: Iterable[str]) -> list[WarehouseRecord]:
    """Drop denylisted locations; keep the remote order of the rest."""
    excluded = set(excluded)
    kept = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        location = str(row.get("Location") or "").strip()
        if not location or location in excluded:
            continue
        kept.append(WarehouseRecord(location=location, quantity=parse_quantity(row.get("Quantity"))))
    return kept


def location_diff(old: Iterable[dict], new: Iterable[dict]) -> list[str]:
    """["Loc1: 2→3", ...] for every location whose quantity changed."""
    before: dict[str, int] = {}
    for row in old or []:
        before[row["location"]] = before.get(row["location"], 0) + int(row["quantity"])
    after: dict[str, int] = {}
    for row in new or []:
        after[row["location"]] = after.get(row["location"], 0) + int(row["quantity"])

    parts = []
    for location in sorted(set(before) | set(after)):
        a, b = before.get(location, 0), after.get(location, 0)
        if a != b:
            parts.append(f"{location}: {a}→{b}")
    return parts


def _fmt_cents(cents: int | None) -> str:
    value = cents_to_decimal(cents)
    return str(value) if value is not None else "none"


def apply_stock_row(item: CatalogItem, row: dict, session_id: str, settings: SyncSettings) -> int:
    """
    Apply one stock row to an item and audit the changes.

    Returns the number of branch term writes (0 or 1).
    """
    old_regular = item.regular_price_cents
    old_sale = item.sale_price_cents
    old_quantity = item.stock_quantity or 0
    old_breakdown = list(item.warehouse_breakdown or [])

    price = parse_price(row.get("Price"))
    if price is not None and price > 0:
        item.regular_price_cents = price_to_cents(price)

    sale = parse_price(row.get("SalePrice"))
    regular = item.regular_price_cents
    if sale is not None and sale > 0 and regular is not None and price_to_cents(sale) < regular:
        item.sale_price_cents = price_to_cents(sale)
    else:
        item.sale_price_cents = None

    warehouses = filter_warehouses(row.get("Warehouses"), settings.excluded_warehouses)
    breakdown = [w.to_dict() for w in warehouses]
    quantity = sum(w.quantity for w in warehouses)

    item.stock_quantity = quantity
    item.stock_status = STOCK_IN if quantity > 0 else STOCK_OUT
    item.warehouse_breakdown = breakdown
    item.managed = True
    item.last_sync_session_id = session_id
    item.stock_updated_at = utcnow()

    writes = branch_service.assign_branch_terms(item, breakdown, settings)
    db.session.flush()

    if item.regular_price_cents != old_regular:
        audit_service.log_item_change(
            item, "price", _fmt_cents(old_regular), _fmt_cents(item.regular_price_cents),
            f"Price {_fmt_cents(old_regular)} → {_fmt_cents(item.regular_price_cents)}",
        )
    if item.sale_price_cents != old_sale:
        audit_service.log_item_change(
            item, "sale_price", _fmt_cents(old_sale), _fmt_cents(item.sale_price_cents),
            f"Sale price {_fmt_cents(old_sale)} → {_fmt_cents(item.sale_price_cents)}",
        )
    if quantity != old_quantity:
        message = f"Stock {old_quantity} → {quantity}"
        diff = location_diff(old_breakdown, breakdown)
        if diff:
            message += f" ({', '.join(diff)})"
        audit_service.log_item_change(item, "stock", old_quantity, quantity, message)

    return writes


def sync_stock_batch(
    rows: list[dict],
    session_id: str,
    settings: SyncSettings,
    *,
    failed_skus: set[str] | None = None,
) -> dict[str, int]:
    """
    Apply a slice of the stock dump.

    Returns {updated, skipped, errors, total, branch_writes}. Skus whose row
    failed are added to `failed_skus` so the orphan sweep leaves them alone.
    """
    stats = {"updated": 0, "skipped": 0, "errors": 0, "total": len(rows), "branch_writes": 0}
    not_found: list[str] = []

    for row in rows:
        try:
            sku = row_key(row)
        except RowError:
            stats["errors"] += 1
            continue

        item = db.session.query(CatalogItem).filter_by(sku=sku).one_or_none()
        if item is None:
            not_found.append(sku)
            stats["skipped"] += 1
            continue

        nested = db.session.begin_nested()
        try:
            writes = apply_stock_row(item, row, session_id, settings)
            nested.commit()
        except Exception as exc:  # noqa: BLE001
            nested.rollback()
            stats["errors"] += 1
            if failed_skus is not None:
                failed_skus.add(sku)
            current_app.logger.warning("Stock row failed for %s: %s", sku, exc)
            continue

        stats["updated"] += 1
        stats["branch_writes"] += writes

    db.session.commit()

    if not_found:
        sample = not_found[: settings.not_found_sample]
        current_app.logger.info(
            "Stock batch: %d sku(s) not found locally (sample: %s)", len(not_found), ", ".join(sample)
        )
    current_app.logger.info(
        "Stock batch completed: updated=%d skipped=%d errors=%d total=%d branch_writes=%d",
        stats["updated"], stats["skipped"], stats["errors"], stats["total"], stats["branch_writes"],
    )
    return stats
