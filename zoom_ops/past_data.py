# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Past-Data Fetcher - Best-effort lookup of actual execution data for a webinar

The lookup is an ordered list of strategies tried until one yields both a
start time and a duration. When every API strategy comes up short, the
scheduled start and duration are used to calculate the actual end time.
Nothing here raises to the caller.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from models import CompletionResult, PastDataResult
from sync.normalizer import to_int
from utils.timezone import add_minutes
from zoom_ops.client import ZoomClient, encode_uuid
from zoom_ops.errors import ZoomApiError

logger = logging.getLogger(__name__)

CALCULATED_FALLBACK = 'calculated_fallback'


@dataclass(frozen=True)
class PastDataStrategy:
    """One identifier to try against /past_webinars/{identifier}"""
    name: str
    identifier: str

    @property
    def path(self) -> str:
        return f"/past_webinars/{encode_uuid(self.identifier)}"


@dataclass
class StrategyOutcome:
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    transient: bool = False


def build_strategies(webinar: Any, instance: Optional[Any] = None) -> List[PastDataStrategy]:
    """Ordered identifier strategies for a webinar, or for one of its instances"""
    webinar_id = str(webinar.get('id'))
    webinar_uuid = webinar.get('uuid')
    strategies = []

    if instance is not None:
        instance_uuid = instance.get('uuid') or instance.get('instance_id')
        # A recurring occurrence is only addressable by its own UUID
        if instance_uuid and str(instance_uuid) not in (webinar_id, str(webinar_uuid)):
            strategies.append(PastDataStrategy('instance_uuid', str(instance_uuid)))

    strategies.append(PastDataStrategy('webinar_id', webinar_id))

    if webinar_uuid and str(webinar_uuid) != webinar_id:
        strategies.append(PastDataStrategy('webinar_uuid', str(webinar_uuid)))

    return strategies


def _timing_from(data: Dict[str, Any]) -> Dict[str, Any]:
    """Pull the meaningful timing fields out of a past-webinar response"""
    timing = {}
    if data.get('start_time'):
        timing['start_time'] = data['start_time']
    if data.get('end_time'):
        timing['end_time'] = data['end_time']
    duration = to_int(data.get('duration'))
    if duration:
        timing['duration'] = duration
    participants = to_int(data.get('participants_count'))
    if participants is not None:
        timing['participants_count'] = participants
    return timing


class PastDataFetcher:
    """Runs the past-webinar strategy chain for completed webinars"""

    def __init__(self, client: ZoomClient, timeout: float = 5.0):
        self.client = client
        self.timeout = timeout

    def _attempt(self, strategy: PastDataStrategy) -> StrategyOutcome:
        try:
            return StrategyOutcome(data=self.client.get(strategy.path, timeout=self.timeout))
        except requests.exceptions.Timeout:
            return StrategyOutcome(error=f"timeout after {self.timeout:g}s", transient=True)
        except requests.exceptions.RequestException as e:
            return StrategyOutcome(error=f"network error: {e}", transient=True)
        except ZoomApiError as e:
            return StrategyOutcome(error=str(e), transient=e.retryable)

    def fetch(self, webinar: Any, completion: CompletionResult,
              instance: Optional[Any] = None) -> PastDataResult:
        """
        Fetch actual start/duration/end/participants for a completed webinar

        Args:
            webinar: WebinarRecord or raw webinar dict
            completion: detector verdict; no calls are made unless it
                recommends fetching
            instance: optional occurrence (raw dict) for recurring webinars

        Returns:
            PastDataResult
        """
        result = PastDataResult()
        if not completion.should_fetch_actual_data:
            return result

        collected: Dict[str, Any] = {}

        for strategy in build_strategies(webinar, instance):
            result.identifiers_used.append(f"{strategy.name}:{strategy.identifier}")
            result.api_calls_made.append(strategy.path)

            outcome = self._attempt(strategy)
            if outcome.error:
                result.error_details.append(f"{strategy.name}: {outcome.error}")
                if outcome.transient:
                    result.transient_errors += 1
                logger.debug(f"Past data strategy {strategy.name} failed for {webinar.get('id')}: {outcome.error}")
                continue

            for key, value in _timing_from(outcome.data or {}).items():
                collected.setdefault(key, value)

            if 'start_time' in collected and 'duration' in collected:
                result.success = True
                result.strategy_used = strategy.name
                break

        if not result.success:
            self._apply_calculated_fallback(result, collected, webinar, instance)

        result.actual_start_time = collected.get('start_time')
        result.actual_duration = collected.get('duration')
        result.actual_end_time = collected.get('end_time') or add_minutes(
            collected.get('start_time'), collected.get('duration')
        )
        result.participants_count = collected.get('participants_count', 0)

        if result.success:
            logger.debug(f"✅ Actual data for {webinar.get('id')} via {result.strategy_used}")
        return result

    def _apply_calculated_fallback(self, result: PastDataResult, collected: Dict[str, Any],
                                   webinar: Any, instance: Optional[Any]):
        """Fill missing timing from scheduled values (instance first, then webinar)"""
        sources = [s for s in (instance, webinar) if s is not None]
        scheduled_start = next((s.get('start_time') for s in sources if s.get('start_time')), None)
        scheduled_duration = next(
            (to_int(s.get('duration')) for s in sources if to_int(s.get('duration'))), None
        )

        if scheduled_start:
            collected.setdefault('start_time', scheduled_start)
        if scheduled_duration:
            collected.setdefault('duration', scheduled_duration)

        if collected.get('start_time') and collected.get('duration'):
            result.success = True
            result.strategy_used = CALCULATED_FALLBACK
            result.identifiers_used.append(CALCULATED_FALLBACK)
