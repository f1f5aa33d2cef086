"""
Sync Sessions & Orphan Sweep

A sync session is the set of upserts belonging to one full run. Every
applied row stamps `last_sync_session_id`; after the last batch the sweep
zeroes every item the session did not touch.

SWEEP RULES:
- all items are scanned, managed or not
- an item counts as touched when its stamp equals the session id
- skus whose rows errored in the session are left alone (revisited next run)
- untouched items already at 0 only get managed=True (no audit entry)
- other untouched items go to 0 / out_of_stock with one "stock" audit entry
- work is done in id-ordered chunks; each chunk commits and clears the
  identity map so memory stays flat on large catalogs
"""
from __future__ import annotations

import gc
import uuid
from typing import Iterable

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import CatalogItem
from ..models.catalog import STOCK_OUT
from erpsync.time_utils import utcnow
from . import audit_service


def new_session_id() -> str:
    return f"sync_{uuid.uuid4().hex}"


def sweep_orphans(
    session_id: str,
    *,
    exclude_skus: Iterable[str] = (),
    chunk_size: int = 200,
    gc_every: int = 1000,
) -> int:
    """
    Zero every item not stamped by `session_id`, dropping its warehouse
    breakdown and branch terms. Returns the zeroed count.
    """
    excluded = set(exclude_skus)
    zeroed = 0
    fixed = 0
    scanned = 0
    last_id = 0

    while True:
        chunk = (
            db.session.query(CatalogItem)
            .filter(CatalogItem.id > last_id)
            .filter(
                or_(
                    CatalogItem.last_sync_session_id.is_(None),
                    CatalogItem.last_sync_session_id != session_id,
                )
            )
            .order_by(CatalogItem.id)
            .limit(chunk_size)
            .all()
        )
        if not chunk:
            break

        for item in chunk:
            last_id = item.id
            scanned += 1
            if scanned % gc_every == 0:
                gc.collect()
            if item.sku in excluded:
                continue

            if (item.stock_quantity or 0) == 0:
                if not item.managed:
                    item.managed = True
                    fixed += 1
                continue

            previous = item.stock_quantity
            item.stock_quantity = 0
            item.stock_status = STOCK_OUT
            item.managed = True
            item.stock_updated_at = utcnow()
            item.warehouse_breakdown = []
            if item.branch_terms:
                item.branch_terms = []
            audit_service.log_item_change(
                item, "stock", previous, 0,
                f"Stock {previous} → 0 (not reported by remote, session {session_id})",
            )
            zeroed += 1

        db.session.commit()
        db.session.expunge_all()

    current_app.logger.info(
        "Orphan sweep for %s: scanned=%d zeroed=%d managed_fixed=%d excluded=%d",
        session_id, scanned, zeroed, fixed, len(excluded),
    )
    return zeroed
