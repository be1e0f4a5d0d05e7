"""
Chunked detail-sync tests - participants, chat and participant replacement
"""

import pytest
import responses
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import SYNC_HISTORY_TABLE
from sync.chunked import ChunkedSyncer, PARTICIPANTS_TABLE, CHAT_TABLE
from sync.history import SyncHistory
from conftest import API

REGISTRANTS = {'registrants': [
    {'id': 'r1', 'email': 'mary@example.org', 'first_name': 'Mary', 'last_name': 'Jones', 'status': 'approved'}
]}
ATTENDEES = {'participants': [
    {'id': 'p1', 'name': 'Mary Jones', 'user_email': 'mary@example.org',
     'join_time': '2024-05-20T15:01:00Z', 'leave_time': '2024-05-20T15:50:00Z', 'duration': 2940},
    {'name': 'Dial-in Guest', 'join_time': '2024-05-20T15:05:00Z'}
]}


@pytest.fixture
def syncer(client, store, clock):
    return ChunkedSyncer(client, store, SyncHistory(store, clock))


class TestSyncChunk:

    @pytest.mark.chunked
    @responses.activate
    def test_participants_chunk_stores_registrants_and_attendees(self, syncer, store):
        responses.add(responses.GET, f"{API}/webinars/111/registrants", json=REGISTRANTS)
        responses.add(responses.GET, f"{API}/past_webinars/111/participants", json=ATTENDEES)

        result = syncer.sync_chunk('user-1', 'participants', ['111'], chunk_index=0, total_chunks=2)

        assert result.successful == 1
        assert result.items_stored == 3
        assert result.is_complete is False
        rows = store.select(PARTICIPANTS_TABLE)
        assert sorted(r['participant_type'] for r in rows) == ['attendee', 'attendee', 'registrant']
        registrant = next(r for r in rows if r['participant_type'] == 'registrant')
        assert registrant['name'] == 'Mary Jones'
        guest = next(r for r in rows if r['name'] == 'Dial-in Guest')
        assert guest['participant_id'] == 'Dial-in Guest|2024-05-20T15:05:00Z'

    @pytest.mark.chunked
    @responses.activate
    def test_rerunning_a_chunk_does_not_duplicate_rows(self, syncer, store):
        responses.add(responses.GET, f"{API}/webinars/111/registrants", json=REGISTRANTS)
        responses.add(responses.GET, f"{API}/past_webinars/111/participants", json=ATTENDEES)

        syncer.sync_chunk('user-1', 'participants', ['111'])
        syncer.sync_chunk('user-1', 'participants', ['111'])

        assert len(store.select(PARTICIPANTS_TABLE)) == 3

    @pytest.mark.chunked
    @responses.activate
    def test_missing_chat_counts_as_processed(self, syncer, store):
        responses.add(responses.GET, f"{API}/past_webinars/111/chat", status=404,
                      json={'code': 3001, 'message': 'Meeting does not exist'})
        responses.add(responses.GET, f"{API}/past_webinars/222/chat", json={'messages': [
            {'sender_name': 'Fr. Tom', 'message': 'Welcome!', 'date_time': '2024-05-20T15:02:00Z'}
        ]})

        result = syncer.sync_chunk('user-1', 'chat', ['111', '222'])

        assert (result.processed, result.successful, result.errors) == (2, 2, 0)
        assert result.is_complete is True
        assert store.select(CHAT_TABLE)[0]['sender_id'] == 'Fr. Tom'

    @pytest.mark.chunked
    @responses.activate
    def test_server_error_is_counted_per_webinar(self, syncer, store):
        responses.add(responses.GET, f"{API}/past_webinars/111/qa", status=500, json={'message': 'Oops'})
        responses.add(responses.GET, f"{API}/past_webinars/222/qa", json={'questions': []})

        result = syncer.sync_chunk('user-1', 'questions', ['111', '222'])

        assert result.errors == 1
        assert result.successful == 1
        assert result.error_details[0].startswith('111:')
        history = store.select(SYNC_HISTORY_TABLE)
        assert history[0]['sync_type'] == 'chunk-questions'
        assert history[0]['status'] == 'partial'

    @pytest.mark.chunked
    def test_unknown_data_type_raises(self, syncer):
        with pytest.raises(ValueError):
            syncer.sync_chunk('user-1', 'whiteboards', ['111'])


class TestReplaceParticipants:

    @pytest.mark.chunked
    @responses.activate
    def test_stale_participants_are_removed(self, syncer, store):
        store.insert(PARTICIPANTS_TABLE, {
            'user_id': 'user-1', 'webinar_id': '111', 'participant_id': 'gone',
            'participant_type': 'registrant'
        })
        store.insert(PARTICIPANTS_TABLE, {
            'user_id': 'user-1', 'webinar_id': '999', 'participant_id': 'other-webinar',
            'participant_type': 'registrant'
        })
        responses.add(responses.GET, f"{API}/webinars/111/registrants", json=REGISTRANTS)
        responses.add(responses.GET, f"{API}/past_webinars/111/participants", status=404, json={})

        counts = syncer.replace_participants('user-1', '111')

        assert counts == {'registrants': 1, 'attendees': 0}
        ids = sorted(r['participant_id'] for r in store.select(PARTICIPANTS_TABLE))
        assert ids == ['other-webinar', 'r1']

    @pytest.mark.chunked
    @responses.activate
    def test_every_registrant_page_is_kept(self, syncer, store):
        first_page = [{'id': f"r{i}", 'email': f"guest{i}@example.org"} for i in range(300)]
        responses.add(responses.GET, f"{API}/webinars/9/registrants",
                      json={'registrants': first_page, 'next_page_token': 'page-2'})
        responses.add(responses.GET, f"{API}/webinars/9/registrants",
                      json={'registrants': [{'id': 'r300', 'email': 'late@example.org'}], 'next_page_token': ''})
        responses.add(responses.GET, f"{API}/past_webinars/9/participants", json={'participants': []})

        counts = syncer.replace_participants('user-1', '9')

        assert counts == {'registrants': 301, 'attendees': 0}
        assert len(store.select(PARTICIPANTS_TABLE, {'webinar_id': '9'})) == 301
        assert 'next_page_token=page-2' in responses.calls[1].request.url
