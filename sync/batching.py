# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Batch Runner - Parallel-within-batch, sequential-across-batch processing

Each batch is dispatched on a small thread pool; batches are separated by a
fixed delay to respect provider rate limits. Before every batch the shared
deadline and the circuit breaker are checked, and once either trips the
remaining items are handed to `on_skip` instead of the worker.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from utils.circuit_breaker import CircuitBreaker
from utils.timezone import Clock, Deadline

logger = logging.getLogger(__name__)

SKIPPED_TIME_LIMIT = 'Skipped due to time limit'
SKIPPED_CIRCUIT_BREAKER = 'Skipped: circuit breaker open'


@dataclass
class BatchReport:
    results: List[Any] = field(default_factory=list)
    processed: int = 0
    batches_run: int = 0
    skipped_time_limit: int = 0
    skipped_circuit_breaker: int = 0

    @property
    def skipped(self) -> int:
        return self.skipped_time_limit + self.skipped_circuit_breaker


class BatchRunner:
    """Runs a worker over items in rate-limited parallel batches"""

    def __init__(self, batch_size: int, batch_delay: float, clock: Optional[Clock] = None,
                 deadline: Optional[Deadline] = None, breaker: Optional[CircuitBreaker] = None,
                 name: str = 'batch'):
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.clock = clock or Clock()
        self.deadline = deadline
        self.breaker = breaker
        self.name = name

    def run(self, items: Sequence[Any], worker: Callable[[Any], Any],
            on_error: Callable[[Any, Exception], Any],
            on_skip: Callable[[Any, str], Any],
            classify: Optional[Callable[[Any], Optional[bool]]] = None) -> BatchReport:
        """
        Process items, returning one result per item in input order

        Args:
            worker: called once per item, in a pool thread
            on_error: builds the result for an item whose worker raised
            on_skip: builds the result for an item that was never attempted
            classify: maps a result to True (success), False (failure) or
                None (neither) for the circuit breaker
        """
        report = BatchReport()
        total_batches = (len(items) + self.batch_size - 1) // self.batch_size

        def guarded(item):
            try:
                return worker(item), None
            except Exception as e:
                logger.warning(f"{self.name}: item failed with {type(e).__name__}: {e}")
                return on_error(item, e), e

        for batch_index, start in enumerate(range(0, len(items), self.batch_size)):
            if batch_index:
                self.clock.sleep(self.batch_delay)

            skip_reason = None
            if self.deadline is not None and self.deadline.expired():
                skip_reason = SKIPPED_TIME_LIMIT
            elif self.breaker is not None and self.breaker.is_open():
                skip_reason = SKIPPED_CIRCUIT_BREAKER

            if skip_reason:
                remaining = items[start:]
                logger.warning(f"⏱️ {self.name}: {skip_reason}, passing through {len(remaining)} items")
                report.results.extend(on_skip(item, skip_reason) for item in remaining)
                if skip_reason == SKIPPED_TIME_LIMIT:
                    report.skipped_time_limit += len(remaining)
                else:
                    report.skipped_circuit_breaker += len(remaining)
                break

            batch = items[start:start + self.batch_size]
            logger.debug(f"{self.name}: batch {batch_index + 1}/{total_batches} ({len(batch)} items)")
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                outcomes = list(pool.map(guarded, batch))

            for result, error in outcomes:
                report.results.append(result)
                report.processed += 1
                if self.breaker is None:
                    continue
                verdict = False if error is not None else (classify(result) if classify else True)
                if verdict is True:
                    self.breaker.record_success()
                elif verdict is False:
                    self.breaker.record_failure()

            report.batches_run += 1

        return report
