# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Row Store - Generic row-level cache access (select/upsert/insert/update/delete)

The sync pipeline only ever talks to the cache through this interface, so a
relational backend can be dropped in without touching sync code. The bundled
JsonRowStore keeps tables in memory and optionally mirrors them to a JSON
file on disk.
"""
import contextlib
import copy
import json
import logging
import os
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from utils.timezone import get_utc_time

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when a cache read or write fails"""
    pass


class RowStore:
    """Interface every cache backend implements"""

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
               order_by: Optional[str] = None, descending: bool = False) -> List[Dict]:
        raise NotImplementedError

    def upsert(self, table: str, row: Dict, conflict_keys: Iterable[str]) -> Dict:
        raise NotImplementedError

    def insert(self, table: str, row: Dict) -> Dict:
        raise NotImplementedError

    def update(self, table: str, filters: Dict[str, Any], changes: Dict) -> int:
        raise NotImplementedError

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        raise NotImplementedError


def _matches(row: Dict, filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    for column, expected in filters.items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class JsonRowStore(RowStore):
    """In-memory tables with optional JSON persistence"""

    def __init__(self, path: Optional[str] = None):
        self.path = path or None
        self.tables: Dict[str, List[Dict]] = {}
        self._lock = Lock()
        self._load()

    def _load(self):
        if not self.path:
            return
        try:
            if os.path.exists(self.path):
                with open(self.path, 'r') as f:
                    data = json.load(f)
                self.tables = data.get('tables', {})
                total = sum(len(rows) for rows in self.tables.values())
                logger.info(f"✅ Loaded {total} cached rows from {self.path}")
            else:
                logger.info("No cache file found - starting with an empty store")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load cache file {self.path}: {e}")
            self.tables = {}

    def _save(self):
        """Write every table to a sibling temp file, then swap it into place"""
        if not self.path:
            return
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, 'w') as f:
                json.dump({
                    'tables': self.tables,
                    'saved_at': get_utc_time().isoformat(),
                    'cache_version': '1.0'
                }, f, default=str)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError) as e:
            with contextlib.suppress(OSError):
                os.remove(tmp_path)
            raise StoreError(f"Failed to persist cache to {self.path}: {e}") from e

    def _commit(self, table: str, previous: Optional[List[Dict]]):
        """Persist; if that fails put the table back so memory matches disk"""
        try:
            self._save()
        except StoreError:
            if previous is None:
                self.tables.pop(table, None)
            else:
                self.tables[table] = previous
            raise

    def _snapshot(self, table: str) -> Optional[List[Dict]]:
        rows = self.tables.get(table)
        return list(rows) if rows is not None else None

    def select(self, table, filters=None, order_by=None, descending=False):
        with self._lock:
            rows = [copy.deepcopy(r) for r in self.tables.get(table, []) if _matches(r, filters)]

        if order_by:
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing
        return rows

    def upsert(self, table, row, conflict_keys):
        keys = list(conflict_keys)
        missing = [k for k in keys if row.get(k) is None]
        if missing:
            raise StoreError(f"Upsert into {table} missing conflict columns: {', '.join(missing)}")

        key_filter = {k: row[k] for k in keys}
        with self._lock:
            previous = self._snapshot(table)
            rows = self.tables.setdefault(table, [])
            for index, existing in enumerate(rows):
                if _matches(existing, key_filter):
                    merged = {**existing, **copy.deepcopy(row)}
                    rows[index] = merged
                    break
            else:
                merged = copy.deepcopy(row)
                rows.append(merged)
            self._commit(table, previous)
            return copy.deepcopy(merged)

    def insert(self, table, row):
        with self._lock:
            previous = self._snapshot(table)
            stored = copy.deepcopy(row)
            self.tables.setdefault(table, []).append(stored)
            self._commit(table, previous)
            return copy.deepcopy(stored)

    def update(self, table, filters, changes):
        with self._lock:
            previous = self._snapshot(table)
            rows = self.tables.get(table, [])
            count = 0
            for index, existing in enumerate(rows):
                if _matches(existing, filters):
                    # Replace rather than mutate so the snapshot stays untouched
                    rows[index] = {**existing, **copy.deepcopy(changes)}
                    count += 1
            if count:
                self._commit(table, previous)
            return count

    def delete(self, table, filters):
        if not filters:
            raise StoreError(f"Refusing unfiltered delete on {table}")
        with self._lock:
            rows = self.tables.get(table, [])
            kept = [r for r in rows if not _matches(r, filters)]
            count = len(rows) - len(kept)
            if count:
                previous = self._snapshot(table)
                self.tables[table] = kept
                self._commit(table, previous)
            return count
