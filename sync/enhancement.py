# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Enhancement Pipeline - Attach actual-execution timing to completed webinars

Every record comes back out, enhanced or not. Failures degrade one record at
a time; a run of consecutive failures opens the circuit breaker and the rest
of the batch passes through untouched.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from config import SyncConfig
from models import WebinarRecord
from sync.batching import BatchRunner
from sync.completion import detect_completion
from utils.circuit_breaker import CircuitBreaker
from utils.timezone import Clock, Deadline
from zoom_ops.past_data import PastDataFetcher, CALCULATED_FALLBACK

logger = logging.getLogger(__name__)

OUTCOME_ENHANCED = 'enhanced'
OUTCOME_CALCULATED = 'calculated'
OUTCOME_NOT_COMPLETED = 'not_completed'
OUTCOME_UNAVAILABLE = 'unavailable'
OUTCOME_FAILED = 'failed'
OUTCOME_SKIPPED = 'skipped'


@dataclass
class EnhancedItem:
    record: WebinarRecord
    outcome: str
    api_failed: bool = False


@dataclass
class EnhancementReport:
    webinars: List[WebinarRecord] = field(default_factory=list)
    enhanced: int = 0
    calculated: int = 0
    not_completed: int = 0
    failed: int = 0
    skipped_time_limit: int = 0
    skipped_circuit_breaker: int = 0
    circuit_breaker: Dict = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return bool(self.skipped_time_limit or self.skipped_circuit_breaker)

    def to_dict(self) -> Dict:
        return {
            'enhanced': self.enhanced,
            'calculated': self.calculated,
            'notCompleted': self.not_completed,
            'failed': self.failed,
            'skippedTimeLimit': self.skipped_time_limit,
            'skippedCircuitBreaker': self.skipped_circuit_breaker,
            'circuitBreaker': self.circuit_breaker
        }


def merge_past_data(record: WebinarRecord, result) -> WebinarRecord:
    """API values replace what the record has; calculated values only fill gaps"""
    calculated = result.strategy_used == CALCULATED_FALLBACK

    for attr in ('actual_start_time', 'actual_duration', 'actual_end_time'):
        value = getattr(result, attr)
        if value is None:
            continue
        if not calculated or getattr(record, attr) is None:
            setattr(record, attr, value)

    if result.participants_count or record.participants_count is None:
        record.participants_count = result.participants_count or 0

    record.enhanced_with_past_data = result.success
    return record


class EnhancementPipeline:
    """Completion detection plus past-data lookup for a batch of webinars"""

    def __init__(self, fetcher: PastDataFetcher, sync_config: SyncConfig, clock: Optional[Clock] = None):
        self.fetcher = fetcher
        self.config = sync_config
        self.clock = clock or Clock()

    def enhance_record(self, record: WebinarRecord, now: datetime) -> EnhancedItem:
        completion = detect_completion(record, now)
        record.completion_analysis = completion

        if not completion.should_fetch_actual_data:
            record.enhanced_with_past_data = False
            return EnhancedItem(record, OUTCOME_NOT_COMPLETED)

        result = self.fetcher.fetch(record, completion)
        merge_past_data(record, result)

        if not result.success:
            record.enhancement_error = '; '.join(result.error_details) or 'No actual data available'
            return EnhancedItem(record, OUTCOME_UNAVAILABLE, api_failed=result.api_failed)

        outcome = OUTCOME_CALCULATED if result.strategy_used == CALCULATED_FALLBACK else OUTCOME_ENHANCED
        return EnhancedItem(record, outcome, api_failed=result.api_failed)

    def enhance(self, records: List[WebinarRecord], deadline: Optional[Deadline] = None) -> EnhancementReport:
        breaker = CircuitBreaker(failure_threshold=self.config.max_consecutive_failures,
                                 name='EnhancementPipeline')
        runner = BatchRunner(
            batch_size=self.config.batch_size,
            batch_delay=self.config.batch_delay,
            clock=self.clock,
            deadline=deadline,
            breaker=breaker,
            name='enhancement'
        )
        now = self.clock.now()

        def on_error(record, error):
            record.enhanced_with_past_data = False
            record.enhancement_error = f"Enhancement failed: {type(error).__name__}: {error}"
            return EnhancedItem(record, OUTCOME_FAILED)

        def on_skip(record, reason):
            record.enhanced_with_past_data = False
            record.enhancement_error = reason
            return EnhancedItem(record, OUTCOME_SKIPPED)

        def classify(item: EnhancedItem):
            if item.outcome == OUTCOME_NOT_COMPLETED:
                return None
            return not item.api_failed

        batch = runner.run(records, lambda r: self.enhance_record(r, now),
                           on_error=on_error, on_skip=on_skip, classify=classify)

        report = EnhancementReport(
            webinars=[item.record for item in batch.results],
            skipped_time_limit=batch.skipped_time_limit,
            skipped_circuit_breaker=batch.skipped_circuit_breaker,
            circuit_breaker=breaker.get_statistics()
        )
        for item in batch.results:
            if item.outcome == OUTCOME_ENHANCED:
                report.enhanced += 1
            elif item.outcome == OUTCOME_CALCULATED:
                report.calculated += 1
            elif item.outcome == OUTCOME_NOT_COMPLETED:
                report.not_completed += 1
            elif item.outcome in (OUTCOME_FAILED, OUTCOME_UNAVAILABLE):
                report.failed += 1

        logger.info(
            f"✨ Enhancement: {report.enhanced} from API, {report.calculated} calculated, "
            f"{report.not_completed} not completed, {report.failed} failed, "
            f"{report.skipped_time_limit + report.skipped_circuit_breaker} skipped"
        )
        return report
