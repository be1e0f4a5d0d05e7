"""
Enhancement pipeline tests - batching, wall-clock budget and circuit breaker
"""

import pytest
import re
import responses
from datetime import timedelta
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import SyncConfig
from sync.batching import BatchRunner, SKIPPED_TIME_LIMIT, SKIPPED_CIRCUIT_BREAKER
from sync.enhancement import EnhancementPipeline, merge_past_data
from sync.normalizer import StandardWebinarPayload, normalize
from models import PastDataResult
from utils.circuit_breaker import CircuitBreaker
from utils.timezone import Deadline, to_iso
from zoom_ops.past_data import PastDataFetcher, CALCULATED_FALLBACK
from conftest import API, NOW

PAST_URL = re.compile(rf"{API}/past_webinars/.*")


def _completed(webinar_id):
    return normalize(StandardWebinarPayload({
        'id': webinar_id, 'status': 'ended',
        'start_time': to_iso(NOW - timedelta(days=3)), 'duration': 60
    }))


def _future(webinar_id):
    return normalize(StandardWebinarPayload({
        'id': webinar_id, 'start_time': to_iso(NOW + timedelta(days=3)), 'duration': 60
    }))


class TestCircuitBreaker:

    @pytest.mark.enhancement
    def test_opens_after_threshold_consecutive_failures(self):
        breaker = CircuitBreaker(failure_threshold=3, name='test')
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == 'closed'

        breaker.record_failure()
        assert breaker.is_open()
        assert breaker.get_statistics()['total_failures'] == 3

    @pytest.mark.enhancement
    def test_success_resets_the_streak(self):
        breaker = CircuitBreaker(failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()

        assert not breaker.is_open()
        assert breaker.consecutive_failures == 2

    @pytest.mark.enhancement
    def test_stays_open_until_reset(self):
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure()
        breaker.record_success()
        assert breaker.is_open()

        breaker.reset()
        assert breaker.state == 'closed'


class TestBatchRunner:

    @pytest.mark.enhancement
    def test_results_keep_input_order_and_errors_are_contained(self, clock):
        runner = BatchRunner(batch_size=2, batch_delay=1.0, clock=clock)

        def worker(item):
            if item == 3:
                raise RuntimeError('boom')
            return item * 10

        report = runner.run([1, 2, 3, 4, 5], worker,
                            on_error=lambda item, e: f"error:{item}",
                            on_skip=lambda item, reason: f"skip:{item}")

        assert report.results == [10, 20, 'error:3', 40, 50]
        assert report.batches_run == 3
        assert clock.sleeps == [1.0, 1.0]

    @pytest.mark.enhancement
    def test_deadline_checked_before_each_batch(self, clock):
        deadline = Deadline(clock, 5)
        runner = BatchRunner(batch_size=2, batch_delay=10, clock=clock, deadline=deadline)

        report = runner.run([1, 2, 3, 4], lambda i: i,
                            on_error=lambda item, e: None,
                            on_skip=lambda item, reason: reason)

        assert report.results == [1, 2, SKIPPED_TIME_LIMIT, SKIPPED_TIME_LIMIT]
        assert report.skipped_time_limit == 2


class TestEnhancementPipeline:

    @pytest.mark.enhancement
    @responses.activate
    def test_breaker_opens_on_consecutive_api_failures(self, client, clock):
        responses.add(responses.GET, PAST_URL, status=503, json={'message': 'Service Unavailable'})
        config = SyncConfig(batch_size=5, batch_delay=0, max_consecutive_failures=3)
        records = [_completed(str(i)) for i in range(8)]

        report = EnhancementPipeline(PastDataFetcher(client), config, clock).enhance(records)

        # Every record comes back, the last batch untouched
        assert [w.id for w in report.webinars] == [str(i) for i in range(8)]
        assert report.skipped_circuit_breaker == 3
        assert report.circuit_breaker['state'] == 'open'
        assert report.degraded is True
        assert len(responses.calls) == 5
        for record in report.webinars[5:]:
            assert record.enhancement_error == SKIPPED_CIRCUIT_BREAKER
            assert record.enhanced_with_past_data is False

    @pytest.mark.enhancement
    @responses.activate
    def test_not_found_does_not_trip_breaker(self, client, clock):
        responses.add(responses.GET, PAST_URL, status=404, json={'code': 3001, 'message': 'Not found'})
        config = SyncConfig(batch_size=5, batch_delay=0, max_consecutive_failures=3)

        report = EnhancementPipeline(PastDataFetcher(client), config, clock).enhance(
            [_completed(str(i)) for i in range(8)]
        )

        assert report.skipped_circuit_breaker == 0
        assert report.calculated == 8
        assert all(w.actual_end_time for w in report.webinars)

    @pytest.mark.enhancement
    @responses.activate
    def test_future_webinars_make_no_calls(self, client, clock):
        config = SyncConfig(batch_size=5, batch_delay=0)

        report = EnhancementPipeline(PastDataFetcher(client), config, clock).enhance(
            [_future('1'), _future('2')]
        )

        assert report.not_completed == 2
        assert len(responses.calls) == 0
        assert report.webinars[0].completion_analysis.should_fetch_actual_data is False

    @pytest.mark.enhancement
    def test_time_budget_passes_remaining_records_through(self, client, clock):
        config = SyncConfig(batch_size=2, batch_delay=30, processing_time_limit=25)
        deadline = Deadline(clock, config.processing_time_limit)
        records = [_future(str(i)) for i in range(4)]

        report = EnhancementPipeline(PastDataFetcher(client), config, clock).enhance(records, deadline)

        assert len(report.webinars) == 4
        assert report.not_completed == 2
        assert report.skipped_time_limit == 2
        assert report.webinars[3].enhancement_error == SKIPPED_TIME_LIMIT


class TestMergePastData:

    @pytest.mark.enhancement
    def test_calculated_values_do_not_overwrite_reported_actuals(self):
        record = _completed('1')
        record.actual_start_time = '2024-05-29T12:03:00Z'
        result = PastDataResult(success=True, actual_start_time='2024-05-29T12:00:00Z',
                                actual_duration=60, actual_end_time='2024-05-29T13:00:00Z',
                                participants_count=0, strategy_used=CALCULATED_FALLBACK)

        merge_past_data(record, result)

        assert record.actual_start_time == '2024-05-29T12:03:00Z'
        assert record.actual_duration == 60
        assert record.enhanced_with_past_data is True
