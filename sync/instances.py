# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Instance Sync - Per-occurrence rows for recurring and single webinars

Recurring webinars list their occurrences from the provider; single webinars
get one synthesized instance so the instance table is uniformly queryable.
Each instance runs its own completion check and past-data lookup, falling
back to the parent webinar for anything the occurrence does not report.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import requests

from config import SyncConfig
from models import (
    WebinarInstance, WebinarRecord, PastDataResult, CompletionResult,
    RECURRING_WEBINAR_TYPES, UNTITLED_WEBINAR, INSTANCES_TABLE, INSTANCE_CONFLICT_KEYS
)
from store.row_store import RowStore, StoreError
from sync.batching import BatchRunner
from sync.completion import detect_completion
from sync.normalizer import TOPIC_FIELDS, first_text, to_int
from utils.timezone import Clock, Deadline, add_minutes, parse_iso, to_iso
from zoom_ops.client import ZoomClient
from zoom_ops.errors import ZoomApiError
from zoom_ops.past_data import PastDataFetcher, CALCULATED_FALLBACK

logger = logging.getLogger(__name__)


@dataclass
class WebinarInstanceOutcome:
    webinar_id: str
    instances: List[WebinarInstance] = field(default_factory=list)
    synced: int = 0
    actual_data_fetched: int = 0
    api_ok: int = 0
    api_failed: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: bool = False


@dataclass
class InstanceSyncResults:
    total_instances_synced: int = 0
    webinars_with_instances: int = 0
    actual_data_fetched: int = 0
    api_calls_successful: int = 0
    api_calls_failed: int = 0
    skipped_webinars: int = 0
    errors: List[str] = field(default_factory=list)

    def add(self, outcome: WebinarInstanceOutcome):
        if outcome.skipped:
            self.skipped_webinars += 1
            return
        self.total_instances_synced += outcome.synced
        if outcome.synced:
            self.webinars_with_instances += 1
        self.actual_data_fetched += outcome.actual_data_fetched
        self.api_calls_successful += outcome.api_ok
        self.api_calls_failed += outcome.api_failed
        self.errors.extend(outcome.errors)

    def to_dict(self) -> Dict:
        return {
            'totalInstancesSynced': self.total_instances_synced,
            'webinarsWithInstances': self.webinars_with_instances,
            'actualDataFetched': self.actual_data_fetched,
            'apiCallsSuccessful': self.api_calls_successful,
            'apiCallsFailed': self.api_calls_failed,
            'skippedWebinars': self.skipped_webinars,
            'errors': list(self.errors)
        }


def _infer_status(occurrence: Dict, webinar: WebinarRecord, is_recurring: bool,
                  completion: CompletionResult, start: Optional[str], now: datetime) -> Tuple[str, str]:
    """Status plus the name of the source it came from"""
    reported = first_text(occurrence, ('status',))
    if reported:
        return reported, 'instance'
    if not is_recurring and webinar.status:
        return webinar.status, 'webinar'
    if completion.is_completed:
        return 'ended', 'calculated'
    start_dt = parse_iso(start)
    if start_dt is not None and now >= start_dt:
        return 'started', 'calculated'
    return 'waiting', 'default'


class InstanceSyncer:
    """Builds and upserts WebinarInstance rows"""

    def __init__(self, client: ZoomClient, store: RowStore, fetcher: PastDataFetcher,
                 sync_config: SyncConfig, clock: Optional[Clock] = None):
        self.client = client
        self.store = store
        self.fetcher = fetcher
        self.config = sync_config
        self.clock = clock or Clock()

    def fetch_occurrences(self, webinar: WebinarRecord) -> List[Dict]:
        """
        Raises:
            ZoomApiError / requests.exceptions.RequestException on failure
        """
        data = self.client.get(f"/webinars/{webinar.id}/instances", timeout=self.config.api_call_timeout)
        return data.get('instances') or data.get('webinars') or data.get('occurrences') or []

    def build_instance(self, webinar: WebinarRecord, occurrence: Optional[Dict],
                       now: datetime) -> Tuple[WebinarInstance, PastDataResult]:
        is_recurring = webinar.type in RECURRING_WEBINAR_TYPES
        occ = occurrence or {}

        completion = detect_completion(webinar, now, instance=occurrence)
        past = self.fetcher.fetch(webinar, completion, instance=occurrence if is_recurring else None)
        api_actuals = past.success and past.strategy_used != CALCULATED_FALLBACK

        sources = {}
        instance_id = occ.get('uuid') or occ.get('occurrence_id') or webinar.uuid or webinar.id

        topic = first_text(occ, TOPIC_FIELDS)
        sources['topic'] = 'instance' if topic else 'webinar'
        if not topic:
            topic = webinar.topic or UNTITLED_WEBINAR

        start_time = occ.get('start_time')
        sources['start_time'] = 'instance' if start_time else 'webinar'
        start_time = start_time or webinar.start_time

        duration = to_int(occ.get('duration'))
        sources['duration'] = 'instance' if duration else 'webinar'
        duration = duration or webinar.duration

        actual_start = past.actual_start_time if past.success else None
        actual_duration = past.actual_duration if past.success else None

        if api_actuals and past.actual_end_time:
            end_time = past.actual_end_time
            sources['end_time'] = 'api'
        else:
            end_time = add_minutes(actual_start or start_time, actual_duration or duration)
            sources['end_time'] = 'calculated' if end_time else 'none'

        status, sources['status'] = _infer_status(occ, webinar, is_recurring, completion, start_time, now)

        participants = past.participants_count or to_int(occ.get('participants_count')) or 0
        registrants = to_int(occ.get('registrants_count')) or webinar.registrants_count or 0

        instance = WebinarInstance(
            instance_id=str(instance_id),
            webinar_id=str(webinar.id),
            topic=topic,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
            actual_start_time=actual_start,
            actual_duration=actual_duration,
            status=status,
            participants_count=participants,
            registrants_count=registrants,
            raw_data={
                'occurrence': dict(occ),
                'synthesized': occurrence is None,
                'timing_calculation': {
                    'completion': completion.to_dict(),
                    'strategy_used': past.strategy_used,
                    'identifiers_used': list(past.identifiers_used),
                    'error_details': list(past.error_details)
                },
                'data_sources': sources
            }
        )
        return instance, past

    def upsert_instance(self, user_id: str, instance: WebinarInstance, synced_at: str) -> bool:
        """Update the row if it exists, insert otherwise; never delete"""
        row = instance.to_row(user_id, synced_at)
        key = {k: row[k] for k in INSTANCE_CONFLICT_KEYS}
        try:
            if self.store.select(INSTANCES_TABLE, key):
                self.store.update(INSTANCES_TABLE, key, row)
            else:
                row['created_at'] = synced_at
                self.store.insert(INSTANCES_TABLE, row)
            return True
        except StoreError as e:
            logger.error(f"❌ Failed to store instance {instance.instance_id} of {instance.webinar_id}: {e}")
            return False

    def sync_webinar(self, user_id: str, webinar: WebinarRecord,
                     now: Optional[datetime] = None) -> WebinarInstanceOutcome:
        now = now or self.clock.now()
        outcome = WebinarInstanceOutcome(webinar_id=str(webinar.id))

        if webinar.type in RECURRING_WEBINAR_TYPES:
            try:
                occurrences = self.fetch_occurrences(webinar)
                outcome.api_ok += 1
            except (ZoomApiError, requests.exceptions.RequestException) as e:
                outcome.api_failed += 1
                outcome.errors.append(f"Webinar {webinar.id}: instances unavailable ({e})")
                logger.warning(f"Could not list instances for webinar {webinar.id}: {e}")
                return outcome
        else:
            occurrences = [None]

        synced_at = to_iso(now)
        for occurrence in occurrences:
            instance, past = self.build_instance(webinar, occurrence, now)
            outcome.instances.append(instance)
            if past.success and past.strategy_used != CALCULATED_FALLBACK:
                outcome.actual_data_fetched += 1
            if past.api_calls_made:
                failed_calls = len(past.error_details)
                outcome.api_failed += failed_calls
                outcome.api_ok += len(past.api_calls_made) - failed_calls
            if self.upsert_instance(user_id, instance, synced_at):
                outcome.synced += 1
            else:
                outcome.errors.append(f"Webinar {webinar.id}: failed to store instance {instance.instance_id}")

        return outcome

    def sync_all(self, user_id: str, webinars: List[WebinarRecord],
                 deadline: Optional[Deadline] = None) -> InstanceSyncResults:
        runner = BatchRunner(
            batch_size=self.config.batch_size,
            batch_delay=self.config.batch_delay,
            clock=self.clock,
            deadline=deadline,
            name='instances'
        )
        now = self.clock.now()

        def on_error(webinar, error):
            return WebinarInstanceOutcome(
                webinar_id=str(webinar.id),
                errors=[f"Webinar {webinar.id}: {type(error).__name__}: {error}"]
            )

        def on_skip(webinar, reason):
            return WebinarInstanceOutcome(webinar_id=str(webinar.id), skipped=True)

        batch = runner.run(webinars, lambda w: self.sync_webinar(user_id, w, now),
                           on_error=on_error, on_skip=on_skip)

        results = InstanceSyncResults()
        for outcome in batch.results:
            results.add(outcome)

        logger.info(
            f"🔁 Instance sync: {results.total_instances_synced} instances across "
            f"{results.webinars_with_instances} webinars, {results.skipped_webinars} skipped"
        )
        return results

    def load_instances(self, user_id: str, webinar_id: str) -> List[Dict]:
        return self.store.select(
            INSTANCES_TABLE, {'user_id': user_id, 'webinar_id': str(webinar_id)},
            order_by='start_time', descending=True
        )
