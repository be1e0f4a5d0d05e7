"""
Instance sync tests - synthesized single instances and recurring occurrences
"""

import pytest
import responses
from datetime import timedelta
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import INSTANCES_TABLE, WebinarInstance
from sync.instances import InstanceSyncer
from sync.normalizer import StandardWebinarPayload, normalize
from utils.timezone import Deadline, to_iso
from zoom_ops.past_data import PastDataFetcher
from conftest import API, NOW


def _syncer(client, store, sync_config, clock):
    return InstanceSyncer(client, store, PastDataFetcher(client), sync_config, clock)


def _webinar(**data):
    return normalize(StandardWebinarPayload(data))


class TestSingleWebinar:

    @pytest.mark.instances
    @responses.activate
    def test_single_webinar_gets_one_synthesized_instance(self, client, store, sync_config, clock):
        responses.add(responses.GET, f"{API}/past_webinars/555", json={
            'start_time': '2024-05-20T15:02:00Z', 'duration': 47,
            'end_time': '2024-05-20T15:49:00Z', 'participants_count': 12
        })
        webinar = _webinar(id=555, topic='Parent Night', status='ended',
                           start_time='2024-05-20T15:00:00Z', duration=60)

        outcome = _syncer(client, store, sync_config, clock).sync_webinar('user-1', webinar)

        assert outcome.synced == 1
        assert outcome.actual_data_fetched == 1
        instance = outcome.instances[0]
        assert instance.instance_id == '555'
        assert instance.end_time == '2024-05-20T15:49:00Z'
        assert instance.actual_duration == 47
        assert instance.participants_count == 12
        assert instance.status == 'ended'
        assert instance.raw_data['data_sources']['end_time'] == 'api'
        assert instance.raw_data['synthesized'] is True

    @pytest.mark.instances
    @responses.activate
    def test_future_single_webinar_has_calculated_end(self, client, store, sync_config, clock):
        start = NOW + timedelta(days=2)
        webinar = _webinar(id=556, start_time=to_iso(start), duration=90)

        outcome = _syncer(client, store, sync_config, clock).sync_webinar('user-1', webinar)

        instance = outcome.instances[0]
        assert len(responses.calls) == 0
        assert instance.end_time == to_iso(start + timedelta(minutes=90))
        assert instance.status == 'waiting'
        assert instance.raw_data['data_sources']['end_time'] == 'calculated'


class TestRecurringWebinar:

    @pytest.mark.instances
    @responses.activate
    def test_each_occurrence_becomes_a_row(self, client, store, sync_config, clock):
        responses.add(responses.GET, f"{API}/webinars/900/instances", json={'occurrences': [
            {'occurrence_id': '1718000000000', 'start_time': to_iso(NOW + timedelta(days=1)), 'duration': 45},
            {'occurrence_id': '1718600000000', 'start_time': to_iso(NOW + timedelta(days=8)), 'duration': 45}
        ]})
        webinar = _webinar(id=900, type=9, topic='Weekly Rosary',
                           start_time=to_iso(NOW + timedelta(days=1)), duration=30)

        syncer = _syncer(client, store, sync_config, clock)
        outcome = syncer.sync_webinar('user-1', webinar)

        assert outcome.synced == 2
        assert outcome.api_ok == 1
        rows = syncer.load_instances('user-1', '900')
        assert [r['instance_id'] for r in rows] == ['1718600000000', '1718000000000']
        assert all(r['topic'] == 'Weekly Rosary' for r in rows)
        assert all(r['duration'] == 45 for r in rows)
        assert all(r['status'] == 'waiting' for r in rows)

    @pytest.mark.instances
    @responses.activate
    def test_instances_endpoint_failure_is_reported(self, client, store, sync_config, clock):
        responses.add(responses.GET, f"{API}/webinars/901/instances", status=500,
                      json={'message': 'Internal error'})
        webinar = _webinar(id=901, type=9, start_time=to_iso(NOW + timedelta(days=1)))

        outcome = _syncer(client, store, sync_config, clock).sync_webinar('user-1', webinar)

        assert outcome.synced == 0
        assert outcome.api_failed == 1
        assert 'instances unavailable' in outcome.errors[0]
        assert store.select(INSTANCES_TABLE) == []


class TestInstanceUpsert:

    @pytest.mark.instances
    def test_upsert_twice_keeps_one_row_and_created_at(self, client, store, sync_config, clock):
        syncer = _syncer(client, store, sync_config, clock)
        instance = WebinarInstance(instance_id='abc', webinar_id='1', topic='First')

        assert syncer.upsert_instance('user-1', instance, '2024-06-01T12:00:00Z')
        instance.topic = 'Second'
        assert syncer.upsert_instance('user-1', instance, '2024-06-02T12:00:00Z')

        rows = store.select(INSTANCES_TABLE)
        assert len(rows) == 1
        assert rows[0]['topic'] == 'Second'
        assert rows[0]['created_at'] == '2024-06-01T12:00:00Z'
        assert rows[0]['updated_at'] == '2024-06-02T12:00:00Z'

    @pytest.mark.instances
    @responses.activate
    def test_sync_all_skips_everything_once_budget_is_spent(self, client, store, sync_config, clock):
        deadline = Deadline(clock, 25)
        clock.advance(30)
        webinars = [_webinar(id=i, start_time=to_iso(NOW + timedelta(days=1))) for i in range(1, 4)]

        results = _syncer(client, store, sync_config, clock).sync_all('user-1', webinars, deadline)

        assert results.skipped_webinars == 3
        assert results.total_instances_synced == 0
        assert len(responses.calls) == 0
