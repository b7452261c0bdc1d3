"""
Shared pytest fixtures for twikoo-backup tests.

This module provides fixtures for:
- Flask app and test client (in-memory SQLite, scheduler disabled)
- Logged-in test client
- Snapshot and pipeline run fixtures
- Fake Twikoo HTTP responses
- Mock APScheduler
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from twikoo_backup import create_app, db as _db
from twikoo_backup.models import Snapshot
from twikoo_backup.backup.storage import SnapshotStore


@pytest.fixture(scope='function')
def app():
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing')
    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def auth_client(client, db):
    """Test client logged in as the admin."""
    response = client.post('/login', data={'password': 'Admin123'})
    assert response.status_code == 302
    return client


@pytest.fixture(scope='function')
def store(db):
    """SnapshotStore bound to the test session."""
    return SnapshotStore(db.session)


@pytest.fixture(scope='function')
def make_snapshots(db):
    """
    Factory inserting snapshots.

    Usage: make_snapshots(['2024-01-01', '2024-01-02'], content='[]')
    """
    def _make(dates, content='[]'):
        rows = []
        for date in dates:
            row = Snapshot(date=date, content=content)
            db.session.add(row)
            db.session.commit()
            rows.append(row)
        return rows

    return _make


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None, text=None, reason='OK'):
        self.status_code = status_code
        self.reason = reason
        self._payload = payload
        if text is None:
            text = json.dumps(payload, ensure_ascii=False) if payload is not None else ''
        self.text = text
        self.content = text.encode('utf-8')

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.text)


@pytest.fixture
def fake_response():
    """Factory for FakeResponse objects."""
    return FakeResponse


@pytest.fixture
def mock_session():
    """
    Mock requests.Session for the Twikoo client.

    Set ``mock_session.post.return_value`` or ``side_effect`` in the test.
    """
    session = MagicMock(spec=requests.Session)
    return session


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('twikoo_backup.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        # Mock scheduler methods
        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
