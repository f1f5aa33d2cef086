# Overview: Catalog batch processor; creates/updates items by sku and rebuilds mapped attributes.

from __future__ import annotations

from typing import Iterable, Mapping

from flask import current_app

from ..config import SyncSettings
from ..errors import RowError
from ..extensions import db
from ..models import AttributeTerm, CatalogItem
from ..models.catalog import STATUS_PUBLISH
from erpsync.time_utils import utcnow
from . import branch_service
from .gateway import clean_string, row_key


class AttributeResolver:
    """
    Resolve-or-create attribute terms, memoized for one processor run.

    Cache keys are (taxonomy, name); a term created inside a savepoint that
    is later rolled back is evicted by `forget`.
    """

    def __init__(self, mapping: Mapping[str, tuple[str, str]]):
        self.mapping = dict(mapping)
        self._cache: dict[tuple[str, str], AttributeTerm] = {}

    def resolve(self, taxonomy: str, label: str, name: str) -> AttributeTerm:
        key = (taxonomy, name)
        term = self._cache.get(key)
        if term is not None:
            return term
        term = db.session.query(AttributeTerm).filter_by(taxonomy=taxonomy, name=name).one_or_none()
        if term is None:
            term = AttributeTerm(taxonomy=taxonomy, label=label, name=name)
            db.session.add(term)
            db.session.flush()
        self._cache[key] = term
        return term

    def cached_keys(self) -> set[tuple[str, str]]:
        return set(self._cache)

    def forget(self, keys: Iterable[tuple[str, str]]) -> None:
        for key in keys:
            self._cache.pop(key, None)

    def mapped_attributes(self, row: dict) -> dict[str, str]:
        """Ordered taxonomy -> term name for the non-empty mapped fields of a row."""
        attributes: dict[str, str] = {}
        for field, (taxonomy, label) in self.mapping.items():
            value = clean_string(row.get(field))
            if not value:
                continue
            term = self.resolve(taxonomy, label, value)
            attributes[taxonomy] = term.name
        return attributes

    def clear(self) -> None:
        self._cache.clear()


def filter_catalog_rows(rows: list[dict], settings: SyncSettings) -> list[dict]:
    """
    Drop rows whose Branch names a hidden branch.

    Rows without a Branch field are always kept.
    """
    kept = []
    for row in rows:
        branch = clean_string(row.get("Branch")) if "Branch" in row else ""
        if branch and branch_service.is_hidden(branch, settings):
            continue
        kept.append(row)
    dropped = len(rows) - len(kept)
    if dropped:
        current_app.logger.info("Catalog: %d row(s) dropped for hidden branches", dropped)
    return kept


def merge_attributes(current: Mapping[str, str] | None, mapped: Mapping[str, str], taxonomies: set[str]) -> dict[str, str]:
    """
    Rebuild the mapped part of an item's attributes.

    Mapped taxonomies come from the row only (in mapping order); keys outside
    the mapping are kept after them. An empty `mapped` leaves `current` as is.
    """
    current = dict(current or {})
    if not mapped:
        return current
    merged = dict(mapped)
    for key, value in current.items():
        if key not in taxonomies:
            merged[key] = value
    return merged


def apply_catalog_row(item: CatalogItem, row: dict, session_id: str, resolver: AttributeResolver) -> None:
    item.name = clean_string(row.get("ProductName")) or item.name or item.sku
    item.status = STATUS_PUBLISH
    item.managed = True
    item.last_sync_session_id = session_id
    item.synced_at = utcnow()

    taxonomies = {taxonomy for taxonomy, _ in resolver.mapping.values()}
    mapped = resolver.mapped_attributes(row)
    merged = merge_attributes(item.attributes, mapped, taxonomies)
    if merged != (item.attributes or {}):
        item.attributes = merged


def sync_catalog_batch(
    rows: list[dict],
    session_id: str,
    settings: SyncSettings,
    *,
    resolver: AttributeResolver | None = None,
    failed_skus: set[str] | None = None,
) -> dict[str, int]:
    """
    Create or update catalog items from a slice of the catalog dump.

    Returns {created, updated, errors, total}. A row that fails is rolled
    back on its own savepoint and its sku added to `failed_skus`.
    """
    resolver = resolver or AttributeResolver(settings.attribute_mapping)
    stats = {"created": 0, "updated": 0, "errors": 0, "total": len(rows)}

    for row in rows:
        try:
            sku = row_key(row)
        except RowError:
            stats["errors"] += 1
            continue

        known_terms = resolver.cached_keys()
        nested = db.session.begin_nested()
        try:
            item = db.session.query(CatalogItem).filter_by(sku=sku).one_or_none()
            created = item is None
            if created:
                item = CatalogItem(sku=sku, name="", attributes={}, warehouse_breakdown=[])
                db.session.add(item)
            apply_catalog_row(item, row, session_id, resolver)
            db.session.flush()
            nested.commit()
        except Exception as exc:  # noqa: BLE001
            nested.rollback()
            resolver.forget(resolver.cached_keys() - known_terms)
            stats["errors"] += 1
            if failed_skus is not None:
                failed_skus.add(sku)
            current_app.logger.warning("Catalog row failed for %s: %s", sku, exc)
            continue

        stats["created" if created else "updated"] += 1

    db.session.commit()
    current_app.logger.info(
        "Catalog batch completed: created=%d updated=%d errors=%d total=%d",
        stats["created"], stats["updated"], stats["errors"], stats["total"],
    )
    return stats
