"""
Policy store.

Persistence for policies and the bounded reconciliation history log,
plus the async accessor used by the reconciliation engine.
"""

from geoprofile.store.accessor import PolicyStoreAccessor, PolicyStoreBackend
from geoprofile.store.database import PolicyStore, PolicyStoreError, create_store
from geoprofile.store.history import (
    DEFAULT_HISTORY_LIMIT,
    append,
    latest_entry,
    prune,
    recently_applied,
)
from geoprofile.store.models import Base, HistoryRecord, PolicyRecord

__all__ = [
    # Accessor
    "PolicyStoreAccessor",
    "PolicyStoreBackend",
    # Database
    "PolicyStore",
    "PolicyStoreError",
    "create_store",
    # History helpers
    "DEFAULT_HISTORY_LIMIT",
    "append",
    "latest_entry",
    "prune",
    "recently_applied",
    # Models
    "Base",
    "HistoryRecord",
    "PolicyRecord",
]
