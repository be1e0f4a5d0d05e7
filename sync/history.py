# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync History - Append-only log of sync runs, kept in the cache store
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from models import SYNC_HISTORY_TABLE
from store.row_store import RowStore, StoreError
from utils.timezone import Clock, parse_iso, to_iso

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_PARTIAL = 'partial'
STATUS_PARTIAL_SUCCESS = 'partial_success'
STATUS_ERROR = 'error'

SYNC_TYPE_WEBINARS = 'webinars'
SYNC_TYPE_SINGLE_WEBINAR = 'single-webinar'


class SyncHistory:
    """Writes one row per sync run and answers questions about past runs"""

    def __init__(self, store: RowStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or Clock()

    def add_entry(self, user_id: str, sync_type: str, status: str,
                  items_synced: int, message: str, details: Optional[Dict] = None) -> Optional[Dict]:
        """Record a run; a store failure is logged, never raised"""
        row = {
            'user_id': user_id,
            'sync_type': sync_type,
            'status': status,
            'items_synced': items_synced,
            'message': message,
            'created_at': to_iso(self.clock.now())
        }
        if details:
            row['details'] = details
        try:
            return self.store.insert(SYNC_HISTORY_TABLE, row)
        except StoreError as e:
            logger.error(f"Failed to record sync history for {user_id}: {e}")
            return None

    def get_entries(self, user_id: Optional[str] = None, sync_type: Optional[str] = None,
                    limit: int = 50) -> List[Dict]:
        filters = {}
        if user_id:
            filters['user_id'] = user_id
        if sync_type:
            filters['sync_type'] = sync_type
        rows = self.store.select(SYNC_HISTORY_TABLE, filters, order_by='created_at', descending=True)
        return rows[:limit]

    def last_sync_time(self, user_id: str, sync_type: str = SYNC_TYPE_WEBINARS) -> Optional[datetime]:
        """When the last non-error run of this type finished, if ever"""
        for entry in self.get_entries(user_id, sync_type):
            if entry.get('status') != STATUS_ERROR:
                return parse_iso(entry.get('created_at'))
        return None

    def get_statistics(self, user_id: Optional[str] = None, hours: int = 24) -> Dict:
        """Counts by status and type for the given time period"""
        cutoff_time = self.clock.now() - timedelta(hours=hours)
        recent = [
            e for e in self.get_entries(user_id, limit=10000)
            if (parse_iso(e.get('created_at')) or cutoff_time) > cutoff_time
        ]

        by_status = defaultdict(int)
        by_type = defaultdict(int)
        for entry in recent:
            by_status[entry.get('status')] += 1
            by_type[entry.get('sync_type')] += 1

        last_sync = recent[0] if recent else None
        last_successful = next((e for e in recent if e.get('status') == STATUS_SUCCESS), None)

        return {
            'period_hours': hours,
            'total_syncs': len(recent),
            'successful_syncs': by_status.get(STATUS_SUCCESS, 0),
            'partial_syncs': by_status.get(STATUS_PARTIAL, 0) + by_status.get(STATUS_PARTIAL_SUCCESS, 0),
            'failed_syncs': by_status.get(STATUS_ERROR, 0),
            'success_rate': by_status.get(STATUS_SUCCESS, 0) / len(recent) * 100 if recent else 0,
            'items_synced': sum(e.get('items_synced') or 0 for e in recent),
            'by_type': dict(by_type),
            'last_sync': last_sync.get('created_at') if last_sync else None,
            'last_successful_sync': last_successful.get('created_at') if last_successful else None
        }

    def get_recent_failures(self, user_id: Optional[str] = None, limit: int = 10) -> List[Dict]:
        failures = [
            {'timestamp': e.get('created_at'), 'sync_type': e.get('sync_type'), 'error': e.get('message')}
            for e in self.get_entries(user_id, limit=1000)
            if e.get('status') == STATUS_ERROR
        ]
        return failures[:limit]
