"""
Unit tests for the HTTP routes (twikoo_backup/routes/).
"""

from unittest.mock import patch

import pytest

from twikoo_backup import create_app
from twikoo_backup.config import TestingConfig
from twikoo_backup.backup.pipeline import create_run
from twikoo_backup.backup.storage import StorageError
from twikoo_backup.models import PipelineRun, PipelineStep


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}


class TestLogin:
    """Test admin login."""

    def test_panel_requires_login(self, client, db):
        response = client.get('/')

        assert response.status_code == 302
        assert '/login' in response.headers['Location']

    def test_api_requires_login(self, client, db):
        assert client.get('/list').status_code == 302
        assert client.post('/backup').status_code == 302

    def test_login_page(self, client):
        response = client.get('/login')

        assert response.status_code == 200
        assert b'name="password"' in response.data

    def test_wrong_password(self, client, db):
        response = client.post('/login', data={'password': 'wrong'})

        assert response.status_code == 401
        assert client.get('/').status_code == 302

    def test_empty_password(self, client, db):
        assert client.post('/login', data={'password': ''}).status_code == 400

    def test_login_and_logout(self, client, db):
        response = client.post('/login', data={'password': 'Admin123'})
        assert response.status_code == 302
        assert client.get('/').status_code == 200

        client.get('/logout')
        assert client.get('/').status_code == 302

    def test_login_sets_remember_cookie(self, client, db):
        response = client.post('/login', data={'password': 'Admin123'})

        cookies = response.headers.getlist('Set-Cookie')
        remember = [cookie for cookie in cookies if cookie.startswith('remember_token=')]
        assert len(remember) == 1
        assert 'SameSite=Lax' in remember[0]
        assert 'HttpOnly' in remember[0]

    def test_login_redirects_to_relative_next_only(self, client, db):
        response = client.post('/login?next=/list', data={'password': 'Admin123'})
        assert response.headers['Location'].endswith('/list')

        client.get('/logout')
        response = client.post('/login?next=https://evil.example.com/', data={'password': 'Admin123'})
        assert 'evil' not in response.headers['Location']

    def test_no_admin_password_disables_login(self, monkeypatch):
        monkeypatch.setattr(TestingConfig, 'ADMIN_PASSWORD', '')
        app = create_app('testing')

        with app.test_client() as client:
            assert client.get('/').status_code == 200
            assert client.get('/login').status_code == 302


class TestPanel:

    def test_panel_page(self, auth_client):
        response = auth_client.get('/')

        assert response.status_code == 200
        assert b'backupBtn' in response.data

    def test_index_html_alias(self, auth_client):
        assert auth_client.get('/index.html').status_code == 200


class TestListAndDownload:
    """Test snapshot listing and download."""

    def test_list_empty(self, auth_client):
        response = auth_client.get('/list')

        assert response.status_code == 200
        assert response.get_json() == []

    def test_list_newest_first(self, auth_client, make_snapshots):
        rows = make_snapshots(['2024-01-01', '2024-01-02'], content='[{"nick":"小明"}]')

        data = auth_client.get('/list').get_json()

        assert [item['id'] for item in data] == [rows[1].id, rows[0].id]
        assert data[0]['date'] == '2024-01-02'
        assert data[0]['size'] == len('[{"nick":"小明"}]'.encode('utf-8'))

    def test_download(self, auth_client, make_snapshots):
        content = '[{"nick":"小明","comment":"你好"}]'
        row = make_snapshots(['2024-01-02'], content=content)[0]

        response = auth_client.get(f'/download/{row.id}')

        assert response.status_code == 200
        assert response.mimetype == 'application/json'
        assert response.headers['Content-Disposition'] == \
            'attachment; filename="twikoo-comment-2024-01-02.json"'
        assert response.data == content.encode('utf-8')

    def test_download_missing(self, auth_client):
        response = auth_client.get('/download/999')

        assert response.status_code == 404
        assert response.data == b'not found'


class TestTriggerBackup:
    """Test manual backup triggering."""

    def test_backup_returns_run_handle(self, auth_client, db):
        response = auth_client.post('/backup')

        assert response.status_code == 200
        data = response.get_json()
        assert data['msg'] == 'backup started'
        run = db.session.get(PipelineRun, data['id'])
        assert run.trigger == 'manual'
        assert run.status == 'queued'

    def test_backup_does_not_wait_for_pipeline(self, auth_client, db):
        with patch('twikoo_backup.scheduler.execute_pipeline_run') as mock_execute:
            auth_client.post('/backup')

        mock_execute.assert_not_called()

    def test_backup_failure_returns_500(self, auth_client):
        with patch('twikoo_backup.routes.backup_routes.start_run', side_effect=StorageError('down')):
            response = auth_client.post('/backup')

        assert response.status_code == 500
        assert response.data == b'backup failed'


class TestRunStatus:
    """Test run status lookup."""

    def test_run_status(self, auth_client, db):
        run = create_run('manual')
        db.session.add(PipelineStep(run_id=run.id, name='fetch', status='failed',
                                    attempts=2, error_message='timeout'))
        db.session.commit()

        data = auth_client.get(f'/runs/{run.id}').get_json()

        assert data['id'] == run.id
        assert data['status'] == 'queued'
        assert data['date'] == run.capture_date
        assert data['steps'] == [
            {'name': 'fetch', 'status': 'failed', 'attempts': 2, 'error_message': 'timeout'}
        ]

    def test_unknown_run(self, auth_client):
        assert auth_client.get('/runs/nope').status_code == 404

    def test_status(self, auth_client):
        data = auth_client.get('/status').get_json()

        assert data == {'scheduler_status': 'stopped', 'jobs': []}
