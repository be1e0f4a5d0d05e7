"""
Dual-endpoint collector tests - merge, dedupe and monthly fallback
"""

import json
import pytest
import responses
from datetime import datetime
import sys
import os

import pytz

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import SyncConfig
from sync.normalizer import HistoricalWebinarPayload, StandardWebinarPayload
from utils.timezone import Deadline
from zoom_ops.collector import (
    WebinarCollector, merge_payloads, monthly_ranges,
    STRATEGY_DUAL_ENDPOINT, STRATEGY_MONTHLY_FALLBACK
)
from zoom_ops.errors import SCOPE_REPORT_READ
from conftest import API, NOW

REPORT_URL = f"{API}/report/users/zoom-user/webinars"
LIST_URL = f"{API}/users/zoom-user/webinars"

HISTORICAL = {
    'id': 101, 'topic': 'Spring Gala Recap', 'start_time': '2024-04-10T23:00:00Z',
    'end_time': '2024-04-11T00:05:00Z', 'duration': 65, 'participants_count': 48
}
UPCOMING = {'id': 202, 'topic': 'Summer Camp Info', 'start_time': '2024-07-01T15:00:00Z', 'duration': 60}


class TestMergePayloads:

    @pytest.mark.collector
    def test_duplicate_id_keeps_historical_version(self):
        merged = merge_payloads(
            [HistoricalWebinarPayload(HISTORICAL)],
            [StandardWebinarPayload({'id': '101', 'status': 'waiting'}), StandardWebinarPayload(UPCOMING)]
        )

        assert [p.webinar_id for p in merged] == ['101', '202']
        assert isinstance(merged[0], HistoricalWebinarPayload)

    @pytest.mark.collector
    def test_items_without_id_are_dropped(self):
        merged = merge_payloads([], [StandardWebinarPayload({'topic': 'x'}), StandardWebinarPayload(UPCOMING)])
        assert len(merged) == 1


class TestMonthlyRanges:

    @pytest.mark.collector
    def test_current_month_is_capped_at_now(self):
        assert monthly_ranges(NOW, 3) == [
            ('2024-06-01', '2024-06-01'),
            ('2024-05-01', '2024-05-31'),
            ('2024-04-01', '2024-04-30')
        ]

    @pytest.mark.collector
    def test_year_boundary(self):
        now = datetime(2024, 1, 15, tzinfo=pytz.UTC)
        assert monthly_ranges(now, 2) == [('2024-01-01', '2024-01-15'), ('2023-12-01', '2023-12-31')]


class TestCollect:

    @pytest.mark.collector
    @responses.activate
    def test_dual_endpoint_dedupes_and_keeps_historical_timing(self, client, sync_config, clock):
        responses.add(responses.GET, REPORT_URL, json={'webinars': [HISTORICAL], 'next_page_token': ''})
        responses.add(responses.GET, LIST_URL, json={
            'webinars': [dict(HISTORICAL, status='waiting', participants_count=None), UPCOMING]
        })

        result = WebinarCollector(client, sync_config, clock).collect('zoom-user')

        assert result.strategy == STRATEGY_DUAL_ENDPOINT
        assert len(result.webinars) == 2
        assert result.historical_count == 1
        assert result.upcoming_count == 1

        historical = next(w for w in result.webinars if w.id == '101')
        assert historical.status == 'ended'
        assert historical.is_historical is True
        assert historical.actual_duration == 65
        assert historical.participants_count == 48

    @pytest.mark.collector
    @responses.activate
    def test_report_window_is_bounded(self, client, sync_config, clock):
        responses.add(responses.GET, REPORT_URL, json={'webinars': []})
        responses.add(responses.GET, LIST_URL, json={'webinars': []})

        WebinarCollector(client, sync_config, clock).collect('zoom-user')

        report_call = responses.calls[0].request
        assert 'from=2022-06-02' in report_call.url
        assert 'to=2024-06-01' in report_call.url

    @pytest.mark.collector
    @responses.activate
    def test_pagination_follows_next_page_token(self, client, sync_config, clock):
        responses.add(responses.GET, REPORT_URL, json={'webinars': [HISTORICAL], 'next_page_token': 'p2'})
        responses.add(responses.GET, REPORT_URL, json={'webinars': [dict(HISTORICAL, id=103)]})
        responses.add(responses.GET, LIST_URL, json={'webinars': []})

        result = WebinarCollector(client, sync_config, clock).collect('zoom-user')

        assert sorted(w.id for w in result.webinars) == ['101', '103']
        assert 'next_page_token=p2' in responses.calls[1].request.url

    @pytest.mark.collector
    @responses.activate
    def test_missing_report_scope_falls_back_to_monthly_scan(self, client, sync_config, clock):
        responses.add(responses.GET, REPORT_URL, status=403, json={'code': 200, 'message': 'Forbidden'})
        responses.add(responses.GET, LIST_URL, json={'webinars': [UPCOMING, dict(UPCOMING)]})

        result = WebinarCollector(client, sync_config, clock).collect('zoom-user')

        assert result.strategy == STRATEGY_MONTHLY_FALLBACK
        assert result.scope_error is not None
        assert result.scope_error.required_scope == SCOPE_REPORT_READ
        assert [w.id for w in result.webinars] == ['202']
        # 1 report call + 2 monthly ranges + 1 unbounded "recent" call
        assert len(responses.calls) == 4
        # Chunks of one month are separated by the batch delay
        assert clock.sleeps == [sync_config.batch_delay]
        assert any('missing scope' in e for e in result.errors)

    @pytest.mark.collector
    @responses.activate
    def test_empty_month_codes_are_not_errors(self, client, sync_config, clock):
        responses.add(responses.GET, REPORT_URL, status=403, json={'message': 'Forbidden'})
        responses.add(responses.GET, LIST_URL, status=404, json={'code': 1001, 'message': 'User does not exist'})
        responses.add(responses.GET, LIST_URL, status=404, json={'code': 1001, 'message': 'User does not exist'})
        responses.add(responses.GET, LIST_URL, json={'webinars': [UPCOMING]})

        result = WebinarCollector(client, sync_config, clock).collect('zoom-user')

        assert [w.id for w in result.webinars] == ['202']
        assert result.errors == ['reporting API unavailable: missing scope report:read:admin']

    @pytest.mark.collector
    @responses.activate
    def test_fetch_then_normalize_are_separate_steps(self, client, sync_config, clock):
        responses.add(responses.GET, REPORT_URL, json={'webinars': [HISTORICAL, {'topic': 'no id'}]})
        responses.add(responses.GET, LIST_URL, json={'webinars': [UPCOMING]})
        collector = WebinarCollector(client, sync_config, clock)

        fetched = collector.fetch('zoom-user')
        assert len(fetched.payloads) == 2
        assert fetched.webinars == []

        collector.normalize(fetched)
        assert fetched.summary()['totalCollected'] == 2
        assert fetched.summary()['apiCallsMade'] == 2

    @pytest.mark.collector
    @responses.activate
    def test_monthly_scan_stops_when_time_budget_runs_out(self, client, clock):
        config = SyncConfig(batch_delay=0, fallback_months=12, fallback_chunk_months=1)

        def slow_listing(request):
            clock.advance(10)
            return 200, {}, json.dumps({'webinars': []})

        responses.add(responses.GET, REPORT_URL, status=403, json={'message': 'Forbidden'})
        responses.add_callback(responses.GET, LIST_URL, callback=slow_listing)

        result = WebinarCollector(client, config, clock).fetch('zoom-user', Deadline(clock, 25))

        monthly_calls = [c for c in responses.calls
                         if c.request.url.startswith(LIST_URL) and 'from=' in c.request.url]
        assert len(monthly_calls) == 3
        assert result.skipped_months == 9
        assert 'time budget exhausted: skipped 9 month(s) 2023-07-01..2024-03-31' in result.errors
        assert result.summary()['skippedMonths'] == 9
