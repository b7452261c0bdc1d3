"""
Unit tests for the snapshot store (twikoo_backup/backup/storage.py).
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from twikoo_backup.backup.storage import SnapshotStore, StorageError
from twikoo_backup.models import Snapshot


class TestSnapshotStore:
    """Test SnapshotStore against the in-memory database."""

    def test_add_assigns_increasing_ids(self, store):
        first = store.add('2024-01-01', '[]')
        second = store.add('2024-01-01', '[]')

        assert first.id is not None
        assert second.id > first.id
        assert store.count() == 2

    def test_add_stores_content_verbatim(self, store, db):
        content = '[{"nick":"小明","comment":"<p>hi</p>"}]'

        snapshot = store.add('2024-01-01', content)

        assert db.session.get(Snapshot, snapshot.id).content == content

    def test_get_missing_returns_none(self, store):
        assert store.get(999) is None

    def test_list_ids_ascending(self, store, make_snapshots):
        rows = make_snapshots(['2024-01-03', '2024-01-01', '2024-01-02'])

        assert store.list_ids() == sorted(row.id for row in rows)

    def test_list_summaries_newest_first(self, store, make_snapshots):
        rows = make_snapshots(['2024-01-01', '2024-01-02', '2024-01-02'])

        summaries = store.list_summaries()

        assert [s['id'] for s in summaries] == [row.id for row in reversed(rows)]
        assert summaries[0]['date'] == '2024-01-02'
        assert set(summaries[0]) == {'id', 'date', 'size'}

    def test_list_summaries_size_is_byte_length(self, store):
        content = '[{"nick":"小明"}]'
        store.add('2024-01-01', content)

        summary = store.list_summaries()[0]

        assert summary['size'] == len(content.encode('utf-8'))
        assert summary['size'] > len(content)

    def test_list_summaries_empty(self, store):
        assert store.list_summaries() == []

    def test_delete_by_ids(self, store, make_snapshots):
        rows = make_snapshots(['2024-01-01', '2024-01-02', '2024-01-03'])

        deleted = store.delete([rows[0].id, rows[1].id])

        assert deleted == 2
        assert store.list_ids() == [rows[2].id]

    def test_delete_nothing(self, store, make_snapshots):
        make_snapshots(['2024-01-01'])

        assert store.delete([]) == 0
        assert store.count() == 1

    def test_delete_unknown_ids_ignored(self, store, make_snapshots):
        make_snapshots(['2024-01-01'])

        assert store.delete([12345]) == 0
        assert store.count() == 1


class TestSnapshotStoreErrors:
    """Test database failures are reported as StorageError."""

    def _failing_session(self):
        session = MagicMock()
        error = OperationalError('INSERT', {}, Exception('database is locked'))
        session.commit.side_effect = error
        session.execute.side_effect = error
        session.scalars.side_effect = error
        session.get.side_effect = error
        return session

    def test_add_failure(self):
        session = self._failing_session()

        with pytest.raises(StorageError, match='insert') as exc_info:
            SnapshotStore(session).add('2024-01-01', '[]')

        assert exc_info.value.retryable is True
        session.rollback.assert_called_once()

    def test_delete_failure(self):
        session = self._failing_session()

        with pytest.raises(StorageError):
            SnapshotStore(session).delete([1, 2])

        session.rollback.assert_called_once()

    def test_list_failure(self):
        with pytest.raises(StorageError):
            SnapshotStore(self._failing_session()).list_ids()

    def test_get_failure(self):
        with pytest.raises(StorageError):
            SnapshotStore(self._failing_session()).get(1)
