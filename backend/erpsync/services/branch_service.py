# Overview: Branch (warehouse location) terms on catalog items; diff-based assignment and display.

from __future__ import annotations

from typing import Iterable

from ..config import SyncSettings
from ..extensions import db
from ..models import BranchTerm, CatalogItem


def display_name(location: str, settings: SyncSettings) -> str | None:
    """Alias or raw location name; None when the location is hidden."""
    branch = settings.branch(location)
    if branch.hidden:
        return None
    return branch.alias or location


def is_hidden(location: str, settings: SyncSettings) -> bool:
    return settings.branch(location).hidden


def target_branch_names(warehouses: Iterable[dict], settings: SyncSettings) -> list[str]:
    """Sorted distinct display names of visible warehouses holding stock."""
    names = set()
    for row in warehouses:
        if row.get("quantity", 0) <= 0:
            continue
        name = display_name(row.get("location", ""), settings)
        if name:
            names.add(name)
    return sorted(names)


def resolve_branch_terms(names: Iterable[str]) -> list[BranchTerm]:
    """Fetch terms by name, creating the missing ones in the current transaction."""
    names = list(names)
    if not names:
        return []
    existing = {t.name: t for t in db.session.query(BranchTerm).filter(BranchTerm.name.in_(names)).all()}
    terms = []
    for name in names:
        term = existing.get(name)
        if term is None:
            term = BranchTerm(name=name)
            db.session.add(term)
            db.session.flush()
            existing[name] = term
        terms.append(term)
    return terms


def assign_branch_terms(item: CatalogItem, warehouses: Iterable[dict], settings: SyncSettings) -> int:
    """
    Replace the item's branch terms with the target set.

    Returns the number of writes: 0 when the target equals the current set
    (the common case for frequent stock syncs), 1 when the set was replaced.
    """
    target = target_branch_names(warehouses, settings)
    if target == item.branch_names:
        return 0
    item.branch_terms = resolve_branch_terms(target)
    return 1


def branch_stock(item: CatalogItem, settings: SyncSettings) -> list[dict]:
    """
    Per-branch availability for display.

    Quantities of locations sharing an alias are added up; hidden locations
    and empty warehouses are left out.
    """
    totals: dict[str, int] = {}
    for row in item.warehouse_breakdown or []:
        quantity = int(row.get("quantity", 0))
        if quantity <= 0:
            continue
        name = display_name(row.get("location", ""), settings)
        if not name:
            continue
        totals[name] = totals.get(name, 0) + quantity
    return [{"name": name, "quantity": totals[name]} for name in sorted(totals)]
