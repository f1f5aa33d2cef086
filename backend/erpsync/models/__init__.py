from .catalog import CatalogItem, AttributeTerm, BranchTerm, catalog_item_branch_terms
from .discounts import DiscountCode
from .sync import SyncLock, SyncCacheEntry, SyncRun
from .audit import AuditEntry

__all__ = [
    'CatalogItem', 'AttributeTerm', 'BranchTerm', 'catalog_item_branch_terms',
    'DiscountCode',
    'SyncLock', 'SyncCacheEntry', 'SyncRun',
    'AuditEntry',
]
