# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync Engine - Top-level webinar sync for one user

Drives collect -> normalize -> enhance -> upsert -> instance sync under a
single wall-clock budget and writes one history row per run. Anything that
escapes a stage is turned into a structured error response here; nothing
propagates past this module.
"""
import logging
from enum import Enum
from threading import Lock
from typing import Callable, Dict, List, Optional

import requests

from auth.zoom_auth import ZoomAuth, ZoomCredentials, validate_scopes, get_user_info
from config import SyncConfig
from models import SyncResults, WebinarRecord, WEBINARS_TABLE, SOURCE_DATABASE
from store.row_store import RowStore, StoreError
from sync.chunked import ChunkedSyncer, DATA_TYPES
from sync.enhancement import EnhancementPipeline
from sync.history import (
    SyncHistory, STATUS_SUCCESS, STATUS_PARTIAL, STATUS_PARTIAL_SUCCESS, STATUS_ERROR,
    SYNC_TYPE_WEBINARS, SYNC_TYPE_SINGLE_WEBINAR
)
from sync.instances import InstanceSyncer
from sync.normalizer import StandardWebinarPayload, normalize
from sync.upsert import NonDestructiveUpsert
from utils.logger import StructuredLogger
from utils.metrics import MetricsCollector
from utils.timezone import Clock, Deadline
from zoom_ops.client import ZoomClient
from zoom_ops.collector import WebinarCollector
from zoom_ops.errors import ZoomApiError, ErrorCategory, classify_error, SCOPE_REPORT_READ
from zoom_ops.past_data import PastDataFetcher

logger = logging.getLogger(__name__)


class SyncPhase(Enum):
    IDLE = 'idle'
    CHECKING_CACHE = 'checking-cache'
    FETCHING = 'fetching'
    NORMALIZING = 'normalizing'
    ENHANCING = 'enhancing'
    UPSERTING = 'upserting'
    SYNCING_INSTANCES = 'syncing-instances'
    RECORDING_HISTORY = 'recording-history'
    DONE = 'done'
    FAILED = 'failed'


class SyncEngine:
    """Core engine for webinar synchronization"""

    def __init__(self, store: RowStore, auth: Optional[ZoomAuth] = None,
                 sync_config: Optional[SyncConfig] = None, clock: Optional[Clock] = None,
                 client_factory: Optional[Callable[[str], ZoomClient]] = None,
                 metrics: Optional[MetricsCollector] = None, history: Optional[SyncHistory] = None):
        self.store = store
        self.clock = clock or Clock()
        self.config = sync_config or SyncConfig.from_env()
        self.auth = auth or ZoomAuth(clock=self.clock)
        self.metrics = metrics or MetricsCollector()
        self.history = history or SyncHistory(store, self.clock)
        self.client_factory = client_factory or (lambda token: ZoomClient(token, metrics=self.metrics))
        self.upserter = NonDestructiveUpsert(store, self.config.upsert_batch_size, self.clock)

        # Sync state
        self.sync_lock = Lock()
        self._active_users = set()
        self._phases: Dict[str, SyncPhase] = {}
        self.last_sync_result: Dict[str, Dict] = {}

        self.structured_logger = StructuredLogger(__name__)

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    def sync(self, user_id: str, credentials: Optional[ZoomCredentials], force_sync: bool = False) -> Dict:
        """
        Sync every webinar for a user, or serve the cache when not forced

        Returns:
            Dict with success, webinars, source and syncResults on success;
            success False plus error, error_type and retryable on failure
        """
        with self.sync_lock:
            if user_id in self._active_users:
                logger.warning(f"Sync already in progress for {user_id}")
                return {
                    'success': False,
                    'error': 'Sync already in progress',
                    'error_type': 'conflict',
                    'retryable': True
                }
            self._active_users.add(user_id)

        try:
            result = self._do_sync(user_id, credentials, force_sync)
            with self.sync_lock:
                self.last_sync_result[user_id] = {
                    k: v for k, v in result.items() if k != 'webinars'
                }
            return result
        finally:
            with self.sync_lock:
                self._active_users.discard(user_id)

    def _do_sync(self, user_id: str, credentials: Optional[ZoomCredentials], force_sync: bool) -> Dict:
        started = self.clock.monotonic()

        self._set_phase(user_id, SyncPhase.CHECKING_CACHE)
        if not force_sync:
            try:
                cached = self._cached_response(user_id)
            except StoreError as e:
                logger.warning(f"Cache check failed for {user_id}, syncing instead: {e}")
                cached = None
            if cached is not None:
                self._set_phase(user_id, SyncPhase.DONE)
                logger.info(f"📦 Serving {len(cached['webinars'])} cached webinars for {user_id}")
                return cached

        logger.info(f"🚀 Starting webinar sync for {user_id} (force={force_sync})")
        self.structured_logger.log_sync_event('sync_started', {
            'user_id': user_id,
            'force_sync': force_sync
        })

        try:
            deadline = Deadline(self.clock, self.config.processing_time_limit)
            client = self._client(credentials)

            scope_validation = validate_scopes(client)
            user = get_user_info(client)
            provider_user_id = user['id']

            existing_rows = self.upserter.load_existing(user_id)
            collector = WebinarCollector(client, self.config, self.clock)

            self._set_phase(user_id, SyncPhase.FETCHING)
            collection = collector.fetch(provider_user_id, deadline)
            if collection.scope_error is not None:
                scope_validation.has_reporting_access = False
                scope_validation.add_missing(collection.scope_error.required_scope or SCOPE_REPORT_READ)

            self._set_phase(user_id, SyncPhase.NORMALIZING)
            collector.normalize(collection)

            self._set_phase(user_id, SyncPhase.ENHANCING)
            fetcher = PastDataFetcher(client, timeout=self.config.api_call_timeout)
            enhancement = EnhancementPipeline(fetcher, self.config, self.clock).enhance(
                collection.webinars, deadline
            )

            self._set_phase(user_id, SyncPhase.UPSERTING)
            sync_results = self.upserter.upsert(user_id, enhancement.webinars, existing_rows)

            self._set_phase(user_id, SyncPhase.SYNCING_INSTANCES)
            instance_syncer = InstanceSyncer(client, self.store, fetcher, self.config, self.clock)
            instance_results = instance_syncer.sync_all(user_id, enhancement.webinars, deadline)

            self._set_phase(user_id, SyncPhase.RECORDING_HISTORY)
            degraded = (enhancement.degraded or sync_results.failed_upserts
                        or instance_results.skipped_webinars
                        or collection.skipped_months or deadline.expired())
            status = STATUS_PARTIAL if degraded else STATUS_SUCCESS
            message = self._summary_message(sync_results, enhancement, instance_results, deadline,
                                           collection.skipped_months)
            duration = self.clock.monotonic() - started

            self.history.add_entry(
                user_id, SYNC_TYPE_WEBINARS, status,
                sync_results.new_webinars + sync_results.updated_webinars,
                message,
                details={
                    'collection': collection.summary(),
                    'enhancement': enhancement.to_dict(),
                    'instances': instance_results.to_dict(),
                    'duration_seconds': round(duration, 3)
                }
            )
            self._record_metrics(sync_results, duration)
            self.structured_logger.log_sync_event(
                'sync_completed' if status == STATUS_SUCCESS else 'sync_partial',
                {
                    'user_id': user_id,
                    'duration_seconds': duration,
                    'strategy': collection.strategy,
                    **sync_results.to_dict()
                }
            )
            self.structured_logger.log_performance('webinar_sync', duration,
                                                   item_count=len(collection.webinars))

            rows = self.store.select(WEBINARS_TABLE, {'user_id': user_id},
                                     order_by='start_time', descending=True)
            self._set_phase(user_id, SyncPhase.DONE)
            logger.info(f"🎉 Sync for {user_id} finished in {duration:.2f}s: {message}")

            return {
                'success': True,
                'status': status,
                'source': 'api',
                'webinars': [WebinarRecord.from_row(row).to_dict() for row in rows],
                'syncResults': {**sync_results.to_dict(), 'enhancement': enhancement.to_dict()},
                'scopeValidation': scope_validation.to_dict(),
                'instanceSyncResults': instance_results.to_dict(),
                'collection': collection.summary()
            }

        except Exception as e:
            return self._fail(user_id, SYNC_TYPE_WEBINARS, e, started)

    def _cached_response(self, user_id: str) -> Optional[Dict]:
        rows = self.store.select(WEBINARS_TABLE, {'user_id': user_id},
                                 order_by='start_time', descending=True)
        if not rows:
            return None

        total, data_range = self.upserter.calculate_stats(user_id)
        results = SyncResults(preserved_webinars=len(rows), total_webinars=total, data_range=data_range)
        return {
            'success': True,
            'status': 'cached',
            'source': SOURCE_DATABASE,
            'webinars': [WebinarRecord.from_row(row).to_dict() for row in rows],
            'syncResults': results.to_dict(),
            'scopeValidation': None
        }

    def _summary_message(self, sync_results: SyncResults, enhancement, instance_results,
                         deadline: Deadline, skipped_months: int = 0) -> str:
        parts = [
            f"{sync_results.new_webinars} new",
            f"{sync_results.updated_webinars} updated",
            f"{sync_results.preserved_webinars} preserved"
        ]
        if sync_results.failed_upserts:
            parts.append(f"{sync_results.failed_upserts} failed upserts")
        if enhancement.skipped_time_limit:
            parts.append(f"{enhancement.skipped_time_limit} not enhanced (time limit)")
        if enhancement.skipped_circuit_breaker:
            parts.append(f"{enhancement.skipped_circuit_breaker} not enhanced (circuit breaker open)")
        if skipped_months:
            parts.append(f"{skipped_months} months not scanned")
        if instance_results.skipped_webinars:
            parts.append(f"instances skipped for {instance_results.skipped_webinars} webinars")
        if deadline.expired():
            parts.append(f"time budget of {deadline.seconds:g}s exhausted")
        return "Synced webinars: " + ', '.join(parts)

    # ------------------------------------------------------------------
    # Single webinar / instances / chunks
    # ------------------------------------------------------------------

    def sync_single_webinar(self, user_id: str, credentials: Optional[ZoomCredentials],
                            webinar_id: str) -> Dict:
        """Refresh one webinar, its participants and its instances"""
        started = self.clock.monotonic()
        logger.info(f"🎯 Syncing single webinar {webinar_id} for {user_id}")

        try:
            client = self._client(credentials)
            timeout = self.config.api_call_timeout
            warnings: List[str] = []

            record = normalize(StandardWebinarPayload(
                client.get(f"/webinars/{webinar_id}", timeout=timeout)
            ))
            self._resolve_host(client, record, warnings)
            panelists_count = self._count_panelists(client, record.id, warnings)

            fetcher = PastDataFetcher(client, timeout=timeout)
            EnhancementPipeline(fetcher, self.config, self.clock).enhance_record(record, self.clock.now())

            sync_results = self.upserter.upsert(user_id, [record])

            participants = {'registrants': 0, 'attendees': 0}
            chunked = ChunkedSyncer(client, self.store, self.history, self.config.page_size, timeout)
            try:
                participants = chunked.replace_participants(user_id, record.id)
            except (ZoomApiError, requests.exceptions.RequestException, StoreError) as e:
                warnings.append(f"participants: {e}")
                logger.warning(f"Participant resync failed for {record.id}: {e}")

            instance_syncer = InstanceSyncer(client, self.store, fetcher, self.config, self.clock)
            instance_outcome = instance_syncer.sync_webinar(user_id, record)
            warnings.extend(instance_outcome.errors)

            status = STATUS_PARTIAL_SUCCESS if warnings or sync_results.failed_upserts else STATUS_SUCCESS
            self.history.add_entry(
                user_id, SYNC_TYPE_SINGLE_WEBINAR, status,
                0 if sync_results.failed_upserts else 1,
                f"Webinar {record.id}: {participants['registrants']} registrants, "
                f"{participants['attendees']} attendees, {instance_outcome.synced} instances",
                details={'webinar_id': record.id, 'warnings': warnings} if warnings else None
            )
            self.structured_logger.log_sync_event('single_webinar_synced', {
                'user_id': user_id,
                'webinar_id': record.id,
                'status': status,
                'duration_seconds': self.clock.monotonic() - started
            })

            return {
                'success': True,
                'status': status,
                'webinar': record.to_dict(),
                'syncResults': sync_results.to_dict(),
                'participants': participants,
                'panelistsCount': panelists_count,
                'instancesSynced': instance_outcome.synced,
                'warnings': warnings
            }

        except Exception as e:
            return self._fail(user_id, SYNC_TYPE_SINGLE_WEBINAR, e, started)

    def _resolve_host(self, client: ZoomClient, record: WebinarRecord, warnings: List[str]):
        if record.host_name or not record.host_id:
            return
        try:
            host = client.get(f"/users/{record.host_id}", timeout=self.config.api_call_timeout)
        except (ZoomApiError, requests.exceptions.RequestException) as e:
            warnings.append(f"host lookup: {e}")
            return
        record.host_first_name = host.get('first_name') or record.host_first_name
        record.host_last_name = host.get('last_name') or record.host_last_name
        record.host_email = record.host_email or host.get('email')
        name = ' '.join(p for p in (record.host_first_name, record.host_last_name) if p)
        record.host_name = name or host.get('display_name') or None

    def _count_panelists(self, client: ZoomClient, webinar_id: str, warnings: List[str]) -> int:
        try:
            data = client.get(f"/webinars/{webinar_id}/panelists", timeout=self.config.api_call_timeout)
        except ZoomApiError as e:
            if e.status_code == 404:
                return 0
            warnings.append(f"panelists: {e}")
            return 0
        except requests.exceptions.RequestException as e:
            warnings.append(f"panelists: {e}")
            return 0
        return data.get('total_records') or len(data.get('panelists') or [])

    def get_instances(self, user_id: str, credentials: Optional[ZoomCredentials], webinar_id: str) -> Dict:
        """Sync and return the instance rows of one webinar"""
        try:
            client = self._client(credentials)
            try:
                record = normalize(StandardWebinarPayload(
                    client.get(f"/webinars/{webinar_id}", timeout=self.config.api_call_timeout)
                ))
            except (ZoomApiError, requests.exceptions.RequestException) as e:
                rows = self.store.select(WEBINARS_TABLE, {'user_id': user_id, 'webinar_id': str(webinar_id)})
                if not rows:
                    raise
                logger.warning(f"Webinar {webinar_id} lookup failed ({e}); using cached row")
                record = WebinarRecord.from_row(rows[0])

            fetcher = PastDataFetcher(client, timeout=self.config.api_call_timeout)
            syncer = InstanceSyncer(client, self.store, fetcher, self.config, self.clock)
            outcome = syncer.sync_webinar(user_id, record)

            return {
                'success': True,
                'webinarId': str(webinar_id),
                'instances': syncer.load_instances(user_id, webinar_id),
                'synced': outcome.synced,
                'errors': outcome.errors
            }
        except Exception as e:
            logger.error(f"❌ Failed to get instances for webinar {webinar_id}: {e}")
            return self._error_response(e)

    def chunked_sync(self, user_id: str, credentials: Optional[ZoomCredentials], data_type: str,
                     webinar_ids: List[str], batch_index: int = 0, total_batches: int = 1) -> Dict:
        """Sync one detail data type for one chunk of webinar ids"""
        if data_type not in DATA_TYPES:
            return {
                'success': False,
                'error': f"Unknown data type: {data_type}. Expected one of: {', '.join(DATA_TYPES)}",
                'error_type': ErrorCategory.VALIDATION.value,
                'retryable': False
            }

        started = self.clock.monotonic()
        try:
            client = self._client(credentials)
            syncer = ChunkedSyncer(client, self.store, self.history,
                                   self.config.page_size, self.config.api_call_timeout)
            return syncer.sync_chunk(user_id, data_type, webinar_ids, batch_index, total_batches).to_dict()
        except Exception as e:
            return self._fail(user_id, f"chunk-{data_type}", e, started)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _client(self, credentials: Optional[ZoomCredentials]) -> ZoomClient:
        return self.client_factory(self.auth.get_access_token(credentials))

    def _set_phase(self, user_id: str, phase: SyncPhase):
        with self.sync_lock:
            self._phases[user_id] = phase
        logger.debug(f"Sync phase for {user_id}: {phase.value}")

    def get_phase(self, user_id: str) -> SyncPhase:
        with self.sync_lock:
            return self._phases.get(user_id, SyncPhase.IDLE)

    def _record_metrics(self, sync_results: SyncResults, duration: float):
        self.metrics.record_sync_duration(duration)
        self.metrics.record_sync_result(
            sync_results.new_webinars,
            sync_results.updated_webinars,
            sync_results.preserved_webinars,
            sync_results.failed_upserts
        )

    def _error_response(self, error: Exception) -> Dict:
        classified = classify_error(error)
        response = {
            'success': False,
            'error': classified.message,
            'error_type': classified.category,
            'retryable': classified.retryable
        }
        if classified.required_scope:
            response['required_scope'] = classified.required_scope
        return response

    def _fail(self, user_id: str, sync_type: str, error: Exception, started: float) -> Dict:
        """Record a fatal run and turn it into a structured error response"""
        duration = self.clock.monotonic() - started
        response = self._error_response(error)
        self._set_phase(user_id, SyncPhase.FAILED)

        logger.error(f"💥 {sync_type} sync failed for {user_id} after {duration:.2f}s: "
                     f"{type(error).__name__}: {error}")
        self.structured_logger.log_sync_event('sync_failed', {
            'user_id': user_id,
            'sync_type': sync_type,
            'error': str(error),
            'error_type': response['error_type'],
            'duration_seconds': duration
        })

        self.metrics.record_error(response['error_type'], response['error'])
        self.metrics.record_sync_duration(duration)
        self.metrics.record_sync_result(0, 0, 0, 1)

        self.history.add_entry(
            user_id, sync_type, STATUS_ERROR, 0,
            f"Sync failed: {response['error']}",
            details={'error_type': response['error_type'], 'retryable': response['retryable']}
        )
        return response

    def get_status(self, user_id: Optional[str] = None) -> Dict:
        """Current phase and last result, for one user or all of them"""
        with self.sync_lock:
            if user_id is not None:
                return {
                    'user_id': user_id,
                    'phase': self._phases.get(user_id, SyncPhase.IDLE).value,
                    'sync_in_progress': user_id in self._active_users,
                    'last_sync_result': self.last_sync_result.get(user_id)
                }
            return {
                'active_syncs': sorted(self._active_users),
                'phases': {uid: phase.value for uid, phase in self._phases.items()},
                'circuit_breaker_threshold': self.config.max_consecutive_failures,
                'processing_time_limit': self.config.processing_time_limit
            }
