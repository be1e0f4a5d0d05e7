# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Non-Destructive Upsert - Reconcile fetched webinars against cached rows

New webinars are inserted, changed ones updated, and cached rows missing
from the fetch are left alone. This module never deletes a webinar row.
"""
import logging
from typing import Dict, List, Optional, Tuple

from models import SyncResults, WebinarRecord, WEBINARS_TABLE, WEBINAR_CONFLICT_KEYS
from store.row_store import RowStore, StoreError
from utils.timezone import Clock, parse_iso, to_iso

logger = logging.getLogger(__name__)

SIGNIFICANT_FIELDS = (
    'topic', 'start_time', 'duration', 'actual_start_time', 'actual_duration', 'status'
)


def _comparable(field_name: str, value):
    if value in (None, ''):
        return None
    if field_name.endswith('_time'):
        parsed = parse_iso(value)
        return to_iso(parsed) if parsed else str(value)
    if field_name.endswith('duration'):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return value
    if isinstance(value, str):
        return value.strip()
    return value


def changed_fields(new_row: Dict, cached_row: Dict) -> List[str]:
    """Significant fields whose values differ between a fresh row and the cache"""
    return [
        name for name in SIGNIFICANT_FIELDS
        if _comparable(name, new_row.get(name)) != _comparable(name, cached_row.get(name))
    ]


class NonDestructiveUpsert:
    """Inserts new webinars, updates changed ones, preserves the rest"""

    def __init__(self, store: RowStore, batch_size: int = 10, clock: Optional[Clock] = None):
        self.store = store
        self.batch_size = max(1, batch_size)
        self.clock = clock or Clock()

    def load_existing(self, user_id: str) -> List[Dict]:
        return self.store.select(WEBINARS_TABLE, {'user_id': user_id})

    def detect_changes(self, user_id: str, fetched: List[WebinarRecord],
                       existing_rows: List[Dict]) -> Dict[str, list]:
        """
        Classify fetched webinars against the cache

        Returns:
            Dict with 'added', 'updated', 'unchanged' (lists of (record, row))
            and 'preserved' (cached rows absent from the fetch)
        """
        synced_at = to_iso(self.clock.now())
        cached = {str(row.get('webinar_id')): row for row in existing_rows}
        fetched_ids = set()
        changes = {'added': [], 'updated': [], 'unchanged': [], 'preserved': []}

        for record in fetched:
            row = record.to_row(user_id, synced_at)
            fetched_ids.add(row['webinar_id'])
            cached_row = cached.get(row['webinar_id'])

            if cached_row is None:
                changes['added'].append((record, row))
                continue

            diff = changed_fields(row, cached_row)
            if diff:
                logger.debug(f"📝 Webinar {record.id} changed: {', '.join(diff)}")
                changes['updated'].append((record, row))
            else:
                changes['unchanged'].append((record, row))

        changes['preserved'] = [
            row for webinar_id, row in cached.items() if webinar_id not in fetched_ids
        ]
        return changes

    def upsert(self, user_id: str, fetched: List[WebinarRecord],
               existing_rows: Optional[List[Dict]] = None) -> SyncResults:
        if existing_rows is None:
            existing_rows = self.load_existing(user_id)

        changes = self.detect_changes(user_id, fetched, existing_rows)
        results = SyncResults(preserved_webinars=len(changes['preserved']))

        # Unchanged rows are rewritten too so raw_data and last_synced_at stay fresh
        work: List[Tuple[str, WebinarRecord, Dict]] = (
            [('added', rec, row) for rec, row in changes['added']] +
            [('updated', rec, row) for rec, row in changes['updated']] +
            [('unchanged', rec, row) for rec, row in changes['unchanged']]
        )

        for start in range(0, len(work), self.batch_size):
            for kind, record, row in work[start:start + self.batch_size]:
                try:
                    self.store.upsert(WEBINARS_TABLE, row, WEBINAR_CONFLICT_KEYS)
                except StoreError as e:
                    results.failed_upserts += 1
                    logger.error(f"❌ Failed to upsert webinar {record.id}: {e}")
                    continue
                if kind == 'added':
                    results.new_webinars += 1
                elif kind == 'updated':
                    results.updated_webinars += 1

        total, data_range = self.calculate_stats(user_id)
        results.total_webinars = total
        results.data_range = data_range

        logger.info(
            f"💾 Upsert summary: {results.new_webinars} new, {results.updated_webinars} updated, "
            f"{results.preserved_webinars} preserved, {results.failed_upserts} failed"
        )
        return results

    def calculate_stats(self, user_id: str) -> Tuple[int, Dict[str, Optional[str]]]:
        """Total cached webinars and the oldest/newest scheduled start"""
        try:
            rows = self.store.select(WEBINARS_TABLE, {'user_id': user_id})
        except StoreError as e:
            logger.error(f"Failed to compute sync stats: {e}")
            return 0, {'oldest': None, 'newest': None}

        starts = sorted(dt for dt in (parse_iso(r.get('start_time')) for r in rows) if dt)
        return len(rows), {
            'oldest': to_iso(starts[0]) if starts else None,
            'newest': to_iso(starts[-1]) if starts else None
        }
