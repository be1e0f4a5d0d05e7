"""
HTTP layer tests - request validation, refresh gate and error status mapping
"""

import pytest
import responses
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import app as app_module
from sync.normalizer import StandardWebinarPayload, normalize

INCOMPLETE_CREDENTIALS = {'account_id': 'acct-1', 'client_id': '', 'client_secret': ''}


@pytest.fixture
def http(engine, monkeypatch):
    monkeypatch.setattr(app_module, 'sync_engine', engine)
    monkeypatch.setattr(app_module, 'scheduler', None)
    monkeypatch.setattr(app_module, '_components_initialized', True)
    app_module.app.config['TESTING'] = True
    return app_module.app.test_client()


class TestEndpoints:

    @pytest.mark.api
    def test_health(self, http):
        response = http.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'
        assert response.headers['X-Content-Type-Options'] == 'nosniff'

    @pytest.mark.api
    def test_sync_requires_user_id(self, http):
        response = http.post('/api/sync', json={})

        assert response.status_code == 400
        assert response.get_json()['error_type'] == 'validation'

    @pytest.mark.api
    def test_history_lists_entries(self, http, engine):
        engine.history.add_entry('user-1', 'webinars', 'success', 3, 'Synced webinars: 3 new')

        response = http.get('/api/history', headers={'X-User-Id': 'user-1'})

        body = response.get_json()
        assert response.status_code == 200
        assert body['entries'][0]['items_synced'] == 3
        assert body['statistics']['successful_syncs'] == 1


class TestRefreshGate:

    @pytest.mark.api
    @responses.activate
    def test_recent_sync_serves_cache(self, http, engine):
        engine.upserter.upsert('user-1', [normalize(StandardWebinarPayload({
            'id': 1, 'topic': 'Cached', 'start_time': '2024-05-01T15:00:00Z'
        }))])
        engine.history.add_entry('user-1', 'webinars', 'success', 1, 'Synced webinars: 1 new')

        response = http.post('/api/sync', json={'user_id': 'user-1', 'credentials': INCOMPLETE_CREDENTIALS})

        assert response.status_code == 200
        assert response.get_json()['source'] == 'database'
        assert len(responses.calls) == 0

    @pytest.mark.api
    @responses.activate
    def test_never_synced_user_gets_a_real_sync(self, http, engine):
        engine.upserter.upsert('user-1', [normalize(StandardWebinarPayload({
            'id': 1, 'topic': 'Cached', 'start_time': '2024-05-01T15:00:00Z'
        }))])

        response = http.post('/api/sync', json={'user_id': 'user-1', 'credentials': INCOMPLETE_CREDENTIALS})

        assert response.status_code == 401
        assert response.get_json()['error_type'] == 'authentication'

    @pytest.mark.api
    @responses.activate
    def test_failed_sync_does_not_count_as_recent(self, http, engine):
        engine.history.add_entry('user-1', 'webinars', 'error', 0, 'Sync failed: boom')

        response = http.post('/api/sync', headers={'X-User-Id': 'user-1'},
                             json={'credentials': INCOMPLETE_CREDENTIALS})

        assert response.status_code == 401


class TestChunkEndpoint:

    @pytest.mark.api
    def test_webinar_ids_must_be_a_list(self, http):
        response = http.post('/api/sync/chunk', json={
            'user_id': 'user-1', 'data_type': 'chat', 'webinar_ids': '111'
        })

        assert response.status_code == 400

    @pytest.mark.api
    @responses.activate
    def test_unknown_data_type_is_rejected(self, http):
        response = http.post('/api/sync/chunk', json={
            'user_id': 'user-1', 'dataType': 'whiteboards', 'webinarIds': ['111']
        })

        assert response.status_code == 400
        assert 'Unknown data type' in response.get_json()['error']
        assert len(responses.calls) == 0
