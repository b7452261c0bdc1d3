"""
Snapshot store.

Thin repository over the ``comments_backup`` table. Every mutation is a single
statement committed on its own.
"""

import logging
from typing import Dict, Iterable, List, Optional, Any

from sqlalchemy import LargeBinary, cast, func, delete, select
from sqlalchemy.exc import SQLAlchemyError

from twikoo_backup.models import Snapshot

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a snapshot store operation fails."""

    retryable = True


class SnapshotStore:
    """
    Repository for Snapshot rows.

    Takes the SQLAlchemy session to work with; nothing is looked up globally.
    """

    def __init__(self, session):
        """
        Initialize the store.

        Args:
            session: SQLAlchemy session (e.g. ``db.session``)
        """
        self.session = session

    def add(self, capture_date: str, content: str) -> Snapshot:
        """
        Insert a new snapshot.

        Args:
            capture_date: UTC date string (YYYY-MM-DD)
            content: Serialized export, stored verbatim

        Returns:
            The persisted Snapshot with its id assigned

        Raises:
            StorageError: If the insert fails
        """
        snapshot = Snapshot(date=capture_date, content=content)
        try:
            self.session.add(snapshot)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to insert snapshot: {e}") from e

        logger.info(f"Stored snapshot {snapshot.id} for {capture_date}")
        return snapshot

    def get(self, snapshot_id: int) -> Optional[Snapshot]:
        """Return the snapshot with this id, or None."""
        try:
            return self.session.get(Snapshot, snapshot_id)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to load snapshot {snapshot_id}: {e}") from e

    def list_ids(self) -> List[int]:
        """Return all snapshot ids, ascending."""
        try:
            return list(self.session.scalars(select(Snapshot.id).order_by(Snapshot.id)))
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to list snapshot ids: {e}") from e

    def list_summaries(self) -> List[Dict[str, Any]]:
        """
        List stored snapshots without their payloads.

        Returns:
            List of {'id', 'date', 'size'} dicts, newest (highest id) first;
            size is the byte length of the stored content
        """
        size = func.length(cast(Snapshot.content, LargeBinary))
        query = select(Snapshot.id, Snapshot.date, size.label('size')).order_by(Snapshot.id.desc())
        try:
            rows = self.session.execute(query).all()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to list snapshots: {e}") from e

        return [{'id': row.id, 'date': row.date, 'size': row.size or 0} for row in rows]

    def delete(self, snapshot_ids: Iterable[int]) -> int:
        """
        Delete snapshots by id in one statement.

        Args:
            snapshot_ids: Ids to delete (unknown ids are ignored)

        Returns:
            Number of rows deleted
        """
        ids = list(snapshot_ids)
        if not ids:
            return 0

        try:
            result = self.session.execute(delete(Snapshot).where(Snapshot.id.in_(ids)))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to delete snapshots {ids}: {e}") from e

        logger.info(f"Deleted {result.rowcount} snapshot(s): {ids}")
        return result.rowcount

    def count(self) -> int:
        """Return the number of stored snapshots."""
        try:
            return self.session.scalar(select(func.count()).select_from(Snapshot)) or 0
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to count snapshots: {e}") from e
