# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Circuit Breaker - Stop spending the sync budget on a provider that keeps failing
"""
from datetime import datetime
from enum import Enum
from typing import Optional
import logging
from threading import Lock

from utils.timezone import get_utc_time

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Possible states of the circuit breaker"""
    CLOSED = "closed"      # Normal operation, work allowed
    OPEN = "open"          # Too many consecutive failures, work skipped


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED -> OPEN once `failure_threshold` failures are recorded in a row.
    A success in between resets the streak. The breaker stays open for the
    rest of its lifetime (one sync run) unless `reset()` is called.
    """

    def __init__(self, failure_threshold: int = 3, name: Optional[str] = None):
        self.failure_threshold = failure_threshold
        self.name = name or "CircuitBreaker"

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[datetime] = None
        self._lock = Lock()

        # Statistics
        self._total_successes = 0
        self._total_failures = 0

    @property
    def state(self) -> str:
        with self._lock:
            return self._state.value

    def is_open(self) -> bool:
        with self._lock:
            return self._state == CircuitState.OPEN

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def record_success(self):
        with self._lock:
            self._total_successes += 1
            if self._state == CircuitState.CLOSED:
                self._consecutive_failures = 0

    def record_failure(self):
        with self._lock:
            self._total_failures += 1
            self._consecutive_failures += 1

            if self._state == CircuitState.CLOSED and \
               self._consecutive_failures >= self.failure_threshold:
                logger.error(
                    f"{self.name}: {self._consecutive_failures} consecutive failures, opening circuit"
                )
                self._state = CircuitState.OPEN
                self._opened_at = get_utc_time()

    def reset(self):
        """Manually reset the circuit breaker to closed state"""
        with self._lock:
            logger.info(f"{self.name}: Manually resetting circuit breaker")
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None

    def get_statistics(self) -> dict:
        """Get statistics about the circuit breaker"""
        with self._lock:
            return {
                'name': self.name,
                'state': self._state.value,
                'failure_threshold': self.failure_threshold,
                'consecutive_failures': self._consecutive_failures,
                'total_successes': self._total_successes,
                'total_failures': self._total_failures,
                'opened_at': self._opened_at.isoformat() if self._opened_at else None
            }
