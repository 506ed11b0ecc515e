"""
Policy Store Accessor.

Async wrapper around a blocking policy/history store. Every call runs in a
worker thread and any failure surfaces as PolicyStoreError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol, Sequence, TypeVar

from geoprofile.policy.models import HistoryEntry, Policy
from geoprofile.store.database import PolicyStoreError
from geoprofile.store.history import DEFAULT_HISTORY_LIMIT, append


logger = logging.getLogger(__name__)

T = TypeVar("T")


class PolicyStoreBackend(Protocol):
    """Persistence collaborator holding policies and history."""

    def load_policies(self) -> list[Policy]: ...

    def load_history(self) -> list[HistoryEntry]: ...

    def save_history(self, entries: Sequence[HistoryEntry]) -> None: ...


class PolicyStoreAccessor:
    """
    Stateless async access to the policy store.
    """

    def __init__(
        self,
        backend: PolicyStoreBackend,
        history_limit: int | None = None,
    ) -> None:
        """
        Initialize the accessor.

        Args:
            backend: Blocking store implementation
            history_limit: Retention bound used when the backend cannot
                append on its own (defaults to the backend's own limit)
        """
        self.backend = backend
        if history_limit is None:
            history_limit = getattr(backend, "history_limit", DEFAULT_HISTORY_LIMIT)
        self.history_limit = history_limit

    async def _call(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except PolicyStoreError:
            raise
        except Exception as e:
            raise PolicyStoreError(f"{operation} failed: {e}") from e

    async def load_policies(self) -> list[Policy]:
        """Load the current policy set."""
        return await self._call("load_policies", self.backend.load_policies)

    async def load_history(self) -> list[HistoryEntry]:
        """Load the reconciliation history, oldest first."""
        return await self._call("load_history", self.backend.load_history)

    async def save_history(self, entries: Sequence[HistoryEntry]) -> None:
        """Persist a full history snapshot."""
        await self._call("save_history", self.backend.save_history, list(entries))

    async def append_history(
        self,
        entry: HistoryEntry,
        snapshot: Sequence[HistoryEntry] | None = None,
    ) -> None:
        """
        Append one entry and prune to the retention bound.

        Uses the backend's own append when it has one; otherwise writes
        back the snapshot with the entry appended.
        """
        backend_append = getattr(self.backend, "append_history", None)
        if backend_append is not None:
            await self._call("append_history", backend_append, entry)
            return

        if snapshot is None:
            snapshot = await self.load_history()
        await self.save_history(append(snapshot, entry, self.history_limit))
