"""
Policy Store Operations.

Provides SQLite-backed persistence for policies and the bounded
reconciliation history log.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Sequence

from sqlalchemy import create_engine, delete, func, select, text
from sqlalchemy.orm import Session, sessionmaker

from geoprofile.policy.models import (
    LEGACY_DEFAULT_POLICY_ID,
    HistoryEntry,
    Policy,
    find_default_policy,
)
from geoprofile.store.history import DEFAULT_HISTORY_LIMIT
from geoprofile.store.models import Base, HistoryRecord, PolicyRecord


logger = logging.getLogger(__name__)


class PolicyStoreError(Exception):
    """Policy or history store could not be read or written."""

    pass


class PolicyStore:
    """
    High-level interface for policy and history persistence.

    Policies are returned in their stored order. The history log is
    append-only and pruned to ``history_limit`` entries, oldest first.
    """

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        create_if_missing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            wal_mode: Enable WAL mode for better concurrency
            history_limit: Maximum number of history entries kept
            create_if_missing: Create database if it doesn't exist
        """
        self.db_path = Path(db_path)
        self.history_limit = history_limit

        if create_if_missing:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            pool_pre_ping=True,
        )
        self.Session = sessionmaker(bind=self.engine)

        if create_if_missing or not self.db_path.exists():
            Base.metadata.create_all(self.engine)
            logger.info("Store schema initialized: %s", self.db_path)

        if wal_mode:
            with self.engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.commit()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Get a database session context manager.

        Yields:
            SQLAlchemy Session object
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Policy Operations
    # =========================================================================

    def load_policies(self) -> list[Policy]:
        """
        Load all policies in stored order.

        Returns:
            List of normalized policies
        """
        with self.session() as session:
            records = session.scalars(
                select(PolicyRecord).order_by(PolicyRecord.position, PolicyRecord.created_at)
            ).all()
            return [record.to_policy() for record in records]

    def get_policy(self, policy_id: str) -> Policy | None:
        """
        Get a policy by id.

        The legacy ``default-policy`` id resolves to the current default.
        """
        with self.session() as session:
            record = session.get(PolicyRecord, policy_id)
            if record is not None:
                return record.to_policy()

        if policy_id == LEGACY_DEFAULT_POLICY_ID:
            return find_default_policy(self.load_policies())
        return None

    def save_policy(self, policy: Policy) -> Policy:
        """
        Create or update a policy.

        New policies are appended after existing ones.

        Args:
            policy: Policy to save

        Returns:
            The saved policy
        """
        if policy.id == LEGACY_DEFAULT_POLICY_ID:
            default = find_default_policy(self.load_policies())
            if default is not None:
                logger.info("Converting legacy default-policy id to %s", default.id)
                policy.id = default.id

        with self.session() as session:
            record = session.get(PolicyRecord, policy.id)
            if record is None:
                position = session.scalar(select(func.max(PolicyRecord.position)))
                record = PolicyRecord(
                    id=policy.id,
                    position=(position + 1) if position is not None else 0,
                )
                session.add(record)
                logger.info("Policy created: %s (%s)", policy.name, policy.id)
            else:
                logger.info("Policy updated: %s (%s)", policy.name, policy.id)
            record.update_from(policy)

        return policy

    def replace_policies(self, policies: Sequence[Policy]) -> int:
        """
        Replace the whole policy set, keeping the given order.

        Returns:
            Number of policies stored
        """
        with self.session() as session:
            session.execute(delete(PolicyRecord))
            for position, policy in enumerate(policies):
                record = PolicyRecord(id=policy.id, position=position)
                record.update_from(policy)
                session.add(record)

        logger.info("Policy set replaced: %d policies", len(policies))
        return len(policies)

    def delete_policy(self, policy_id: str) -> bool:
        """
        Delete a policy.

        The default policy cannot be deleted.

        Returns:
            True if a policy was deleted
        """
        with self.session() as session:
            record = session.get(PolicyRecord, policy_id)
            if record is None:
                return False
            if record.is_default:
                logger.warning("Refusing to delete default policy %s", policy_id)
                return False
            session.delete(record)

        logger.info("Policy deleted: %s", policy_id)
        return True

    def ensure_default_policy(self) -> Policy:
        """
        Return the default policy, creating an empty one if missing.
        """
        default = find_default_policy(self.load_policies())
        if default is not None:
            return default

        default = Policy.from_dict({
            "name": "Default Policy",
            "description": "Applied when no other policies match",
            "is_default": True,
        })
        return self.save_policy(default)

    # =========================================================================
    # History Operations
    # =========================================================================

    def load_history(self) -> list[HistoryEntry]:
        """
        Load the reconciliation history, oldest first.
        """
        with self.session() as session:
            records = session.scalars(
                select(HistoryRecord).order_by(HistoryRecord.id)
            ).all()
            return [record.to_entry() for record in records]

    def save_history(self, entries: Sequence[HistoryEntry]) -> None:
        """
        Replace the stored history with the given entries.

        Entries beyond the retention bound are dropped, oldest first.
        """
        entries = list(entries)[-self.history_limit:] if self.history_limit > 0 else []
        with self.session() as session:
            session.execute(delete(HistoryRecord))
            for entry in entries:
                session.add(HistoryRecord.from_entry(entry))

    def append_history(self, entry: HistoryEntry) -> None:
        """
        Append one entry and prune to the retention bound.
        """
        with self.session() as session:
            session.add(HistoryRecord.from_entry(entry))
            session.flush()
            self._prune(session)

    def latest_entry(self, device_id: str) -> HistoryEntry | None:
        """
        Get the most recent history entry for a device.
        """
        with self.session() as session:
            record = session.scalars(
                select(HistoryRecord)
                .where(HistoryRecord.device_id == str(device_id))
                .order_by(HistoryRecord.id.desc())
                .limit(1)
            ).first()
            return record.to_entry() if record else None

    def device_history(self, device_id: str, limit: int | None = None) -> list[HistoryEntry]:
        """
        Get history entries for one device, newest first.
        """
        with self.session() as session:
            query = (
                select(HistoryRecord)
                .where(HistoryRecord.device_id == str(device_id))
                .order_by(HistoryRecord.id.desc())
            )
            if limit:
                query = query.limit(limit)
            return [record.to_entry() for record in session.scalars(query).all()]

    def count_history(self) -> int:
        """Count stored history entries."""
        with self.session() as session:
            return session.scalar(select(func.count(HistoryRecord.id))) or 0

    def prune_history(self) -> int:
        """
        Prune history to the retention bound.

        Returns:
            Number of entries removed
        """
        with self.session() as session:
            return self._prune(session)

    def _prune(self, session: Session) -> int:
        """Delete all but the newest ``history_limit`` rows."""
        keep = (
            select(HistoryRecord.id)
            .order_by(HistoryRecord.id.desc())
            .limit(max(self.history_limit, 0))
        )
        result = session.execute(
            delete(HistoryRecord).where(HistoryRecord.id.not_in(keep))
        )
        if result.rowcount:
            logger.debug("Pruned %d history entries", result.rowcount)
        return result.rowcount or 0

    # =========================================================================
    # Export
    # =========================================================================

    def export_to_json(self, output_path: str | Path) -> None:
        """
        Export policies and history to a JSON file.

        Args:
            output_path: Path to output file
        """
        data = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "policies": [p.to_dict() for p in self.load_policies()],
            "history": [e.to_dict() for e in self.load_history()],
        }

        with open(output_path, "w") as f:
            json.dump(data, f, indent=2)

        logger.info("Exported store to %s", output_path)

    def close(self) -> None:
        """Close database connections."""
        self.engine.dispose()


def create_store(
    db_path: str | Path,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> PolicyStore:
    """
    Create and initialize a new store.

    Args:
        db_path: Path for database file
        history_limit: Maximum number of history entries kept

    Returns:
        Initialized PolicyStore
    """
    return PolicyStore(db_path, history_limit=history_limit, create_if_missing=True)
