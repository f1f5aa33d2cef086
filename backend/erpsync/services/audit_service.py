# Overview: Service-layer operations for the sync audit log; append, query and retention.

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Optional

from flask import current_app
from sqlalchemy import extract, func, or_

from ..extensions import db
from ..models import AuditEntry
from erpsync.time_utils import utcnow

"""
Audit log invariants

- Append-only: entries are never updated. The only deletions are the
  retention helpers below (cleanup_old_entries / clear_all_entries).
- Entries are written inside the same transaction (savepoint) as the change
  they describe, so a rolled back row leaves no audit trace.
- Date filters are inclusive on both ends.
"""

ENTITY_CATALOG_ITEM = "catalog_item"
ENTITY_DISCOUNT_CODE = "discount_code"

SORTABLE_COLUMNS = {"id", "entity_key", "entity_name", "change_type", "created_at"}


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def log_change(
    *,
    entity_type: str,
    entity_id: int,
    change_type: str,
    old_value: Any,
    new_value: Any,
    message: str,
    entity_key: str | None = None,
    entity_name: str | None = None,
    occurred_at: datetime | None = None,
) -> AuditEntry:
    """Append one audit entry to the current session (flushed, not committed)."""
    entry = AuditEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        entity_key=entity_key,
        entity_name=entity_name,
        change_type=change_type,
        old_value=_stringify(old_value),
        new_value=_stringify(new_value),
        message=message,
        created_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def log_item_change(item, change_type: str, old_value: Any, new_value: Any, message: str) -> AuditEntry:
    return log_change(
        entity_type=ENTITY_CATALOG_ITEM,
        entity_id=item.id,
        entity_key=item.sku,
        entity_name=item.name,
        change_type=change_type,
        old_value=old_value,
        new_value=new_value,
        message=message,
    )


def _filtered_query(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    change_type: str | None = None,
    entity_type: str | None = None,
):
    query = db.session.query(AuditEntry)
    if start is not None:
        query = query.filter(AuditEntry.created_at >= start)
    if end is not None:
        query = query.filter(AuditEntry.created_at <= end)
    if change_type:
        query = query.filter(AuditEntry.change_type == change_type)
    if entity_type:
        query = query.filter(AuditEntry.entity_type == entity_type)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(
                AuditEntry.entity_key.ilike(like),
                AuditEntry.entity_name.ilike(like),
                AuditEntry.message.ilike(like),
            )
        )
    return query


def list_audit_entries(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    change_type: str | None = None,
    entity_type: str | None = None,
    page: int = 1,
    per_page: int = 20,
    order_by: str = "created_at",
    order: str = "desc",
) -> dict[str, Any]:
    """
    Paginated audit log reader.

    Args:
        start / end: inclusive created_at bounds (UTC-naive)
        search: substring match on sku/code, name and message
        page: 1-indexed page number
        per_page: page size (max 200)
        order_by: one of SORTABLE_COLUMNS, falls back to created_at
        order: "asc" or "desc"
    """
    page = max(1, int(page or 1))
    per_page = max(1, min(200, int(per_page or 20)))
    column = getattr(AuditEntry, order_by if order_by in SORTABLE_COLUMNS else "created_at")
    direction = column.asc() if str(order).lower() == "asc" else column.desc()

    query = _filtered_query(
        start=start, end=end, search=search, change_type=change_type, entity_type=entity_type
    )
    total = query.count()
    rows = (
        query.order_by(direction, AuditEntry.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [r.to_dict() for r in rows],
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": (total + per_page - 1) // per_page if total else 1,
    }


def available_months() -> list[dict[str, int]]:
    """Distinct (year, month) pairs present in the log, newest first."""
    year = extract("year", AuditEntry.created_at)
    month = extract("month", AuditEntry.created_at)
    rows = (
        db.session.query(year.label("year"), month.label("month"))
        .group_by(year, month)
        .order_by(year.desc(), month.desc())
        .all()
    )
    return [{"year": int(r.year), "month": int(r.month)} for r in rows]


def count_entries() -> int:
    return db.session.query(func.count(AuditEntry.id)).scalar() or 0


def cleanup_old_entries(*, retention_days: int = 90) -> int:
    """Delete entries older than retention_days. Returns deleted count."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(AuditEntry).filter(AuditEntry.created_at < cutoff).delete()
    db.session.commit()
    if deleted:
        current_app.logger.info("Old audit entries cleaned: %d (retention %d days)", deleted, retention_days)
    return deleted


def clear_all_entries() -> int:
    deleted = db.session.query(AuditEntry).delete()
    db.session.commit()
    current_app.logger.info("All audit entries cleared: %d", deleted)
    return deleted
