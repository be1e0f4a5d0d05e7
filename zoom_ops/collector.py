# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Dual-Endpoint Collector - Fetch the full webinar set for one provider user

Concluded webinars come from the reporting API (bounded to a rolling
window), scheduled ones from the standard list endpoint. When the reporting
path fails (usually a missing report scope) the collector degrades to a
month-by-month scan of the standard endpoint.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import pytz
import requests

from config import SyncConfig
from models import WebinarRecord
from sync.normalizer import (
    HistoricalWebinarPayload, StandardWebinarPayload, WebinarPayload, normalize
)
from utils.timezone import Clock, Deadline, format_date
from zoom_ops.client import ZoomClient
from zoom_ops.errors import (
    MissingScopeError, ZoomApiError, SCOPE_REPORT_READ,
    CODE_USER_NOT_FOUND, CODE_WEBINAR_NOT_FOUND
)

logger = logging.getLogger(__name__)

STRATEGY_DUAL_ENDPOINT = 'dual_endpoint'
STRATEGY_MONTHLY_FALLBACK = 'monthly_fallback'

# Codes the list endpoint returns for a month with nothing in it
EMPTY_RANGE_CODES = (CODE_USER_NOT_FOUND, CODE_WEBINAR_NOT_FOUND)


@dataclass
class CollectionResult:
    strategy: str
    payloads: List[WebinarPayload] = field(default_factory=list)
    webinars: List[WebinarRecord] = field(default_factory=list)
    historical_count: int = 0
    upcoming_count: int = 0
    api_calls_made: int = 0
    scope_error: Optional[MissingScopeError] = None
    errors: List[str] = field(default_factory=list)
    skipped_months: int = 0

    def summary(self) -> Dict:
        return {
            'strategy': self.strategy,
            'historicalCount': self.historical_count,
            'upcomingCount': self.upcoming_count,
            'totalCollected': len(self.webinars),
            'apiCallsMade': self.api_calls_made,
            'skippedMonths': self.skipped_months,
            'errors': list(self.errors)
        }


def merge_payloads(historical: Sequence[HistoricalWebinarPayload],
                   standard: Sequence[StandardWebinarPayload]) -> List[WebinarPayload]:
    """Concatenate both sources, keeping one payload per id (historical wins)"""
    merged: Dict[str, WebinarPayload] = {}
    for payload in list(historical) + list(standard):
        webinar_id = payload.webinar_id
        if webinar_id is None:
            logger.warning("Skipping webinar payload without an id")
            continue
        if webinar_id not in merged:
            merged[webinar_id] = payload
    return list(merged.values())


def monthly_ranges(now: datetime, months: int) -> List[tuple]:
    """(from, to) date strings for the current and previous calendar months"""
    ranges = []
    year, month = now.year, now.month
    for _ in range(months):
        start = datetime(year, month, 1, tzinfo=pytz.UTC)
        next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
        end = min(datetime(next_year, next_month, 1, tzinfo=pytz.UTC) - timedelta(days=1), now)
        ranges.append((format_date(start), format_date(end)))
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    return ranges


class WebinarCollector:
    """Collects and normalizes every webinar visible to a provider user"""

    def __init__(self, client: ZoomClient, sync_config: SyncConfig, clock: Optional[Clock] = None):
        self.client = client
        self.config = sync_config
        self.clock = clock or Clock()
        self._calls = 0

    def collect(self, provider_user_id: str) -> CollectionResult:
        """Fetch and normalize in one step"""
        return self.normalize(self.fetch(provider_user_id))

    def fetch(self, provider_user_id: str, deadline: Optional[Deadline] = None) -> CollectionResult:
        """
        Fetch tagged payloads, degrading to the monthly scan if needed

        When a deadline is given the monthly scan stops before the next chunk
        once it has expired; the months it never asked for are listed in
        result.errors and counted in result.skipped_months.
        """
        self._calls = 0
        scope_error = None
        errors = []

        try:
            result = self._fetch_dual(provider_user_id)
            logger.info(f"📥 Fetched {len(result.payloads)} webinars from reporting + standard endpoints")
            return result
        except MissingScopeError as e:
            scope_error = e
            errors.append(f"reporting API unavailable: missing scope {e.required_scope}")
            logger.warning(f"⚠️ Reporting API needs {e.required_scope}; falling back to monthly scan")
        except (ZoomApiError, requests.exceptions.RequestException) as e:
            errors.append(f"dual-endpoint fetch failed: {e}")
            logger.warning(f"⚠️ Dual-endpoint fetch failed ({e}); falling back to monthly scan")

        result = self._fetch_monthly(provider_user_id, deadline)
        result.scope_error = scope_error
        result.errors = errors + result.errors
        logger.info(f"📥 Monthly fallback fetched {len(result.payloads)} webinars")
        return result

    def normalize(self, result: CollectionResult) -> CollectionResult:
        """Turn the tagged payloads into WebinarRecords"""
        records = []
        for payload in result.payloads:
            try:
                records.append(normalize(payload))
            except ValueError as e:
                logger.warning(f"Skipping malformed webinar payload: {e}")
        result.webinars = records
        result.historical_count = sum(1 for w in records if w.is_historical)
        result.upcoming_count = len(records) - result.historical_count
        return result

    def fetch_historical(self, provider_user_id: str) -> List[HistoricalWebinarPayload]:
        """
        Concluded webinars from the reporting API over the rolling window

        Raises:
            MissingScopeError: reporting endpoint answered 403
        """
        now = self.clock.now()
        params = {
            'from': format_date(now - timedelta(days=self.config.historical_window_days)),
            'to': format_date(now),
            'page_size': self.config.page_size
        }
        path = f"/report/users/{provider_user_id}/webinars"
        self._calls += 1
        try:
            items = self.client.get_paginated(path, 'webinars', params=params,
                                              timeout=self.config.list_call_timeout,
                                              max_pages=self.config.max_pages)
        except ZoomApiError as e:
            if isinstance(e, MissingScopeError) or e.status_code == 403:
                raise MissingScopeError(
                    f"Reporting API access denied: {e.message}",
                    required_scope=SCOPE_REPORT_READ, status_code=e.status_code,
                    code=e.code, endpoint=path
                ) from e
            raise
        return [HistoricalWebinarPayload(item) for item in items]

    def fetch_upcoming(self, provider_user_id: str) -> List[StandardWebinarPayload]:
        self._calls += 1
        items = self.client.get_paginated(
            f"/users/{provider_user_id}/webinars", 'webinars',
            params={'page_size': self.config.page_size},
            timeout=self.config.list_call_timeout,
            max_pages=self.config.max_pages
        )
        return [StandardWebinarPayload(item) for item in items]

    def _fetch_dual(self, provider_user_id: str) -> CollectionResult:
        historical = self.fetch_historical(provider_user_id)
        upcoming = self.fetch_upcoming(provider_user_id)
        return CollectionResult(
            strategy=STRATEGY_DUAL_ENDPOINT,
            payloads=merge_payloads(historical, upcoming),
            api_calls_made=self._calls
        )

    def _fetch_monthly(self, provider_user_id: str,
                       deadline: Optional[Deadline] = None) -> CollectionResult:
        path = f"/users/{provider_user_id}/webinars"
        ranges = monthly_ranges(self.clock.now(), self.config.fallback_months)
        chunk_size = max(1, self.config.fallback_chunk_months)
        found: List[StandardWebinarPayload] = []
        errors = []
        skipped = 0

        for chunk_start in range(0, len(ranges), chunk_size):
            if deadline is not None and deadline.expired():
                remaining = ranges[chunk_start:]
                skipped = len(remaining)
                # ranges run newest first
                errors.append(f"time budget exhausted: skipped {skipped} month(s) "
                              f"{remaining[-1][0]}..{remaining[0][1]}")
                logger.warning(f"⏱️ Time budget exhausted after {deadline.elapsed():.0f}s; "
                               f"skipping {skipped} month(s) of the monthly scan")
                break
            if chunk_start:
                self.clock.sleep(self.config.batch_delay)
            for date_from, date_to in ranges[chunk_start:chunk_start + chunk_size]:
                self._calls += 1
                try:
                    items = self.client.get_paginated(
                        path, 'webinars',
                        params={'from': date_from, 'to': date_to, 'page_size': self.config.page_size},
                        timeout=self.config.list_call_timeout,
                        max_pages=self.config.max_pages
                    )
                except ZoomApiError as e:
                    if e.code in EMPTY_RANGE_CODES:
                        continue
                    errors.append(f"{date_from}..{date_to}: {e}")
                    logger.warning(f"Monthly scan {date_from}..{date_to} failed: {e}")
                    continue
                except requests.exceptions.RequestException as e:
                    errors.append(f"{date_from}..{date_to}: {e}")
                    logger.warning(f"Monthly scan {date_from}..{date_to} failed: {e}")
                    continue
                found.extend(StandardWebinarPayload(item) for item in items)

        # One unbounded call to catch anything scheduled or in flight right now
        self._calls += 1
        try:
            recent = self.client.get(path, params={'page_size': self.config.page_size},
                                     timeout=self.config.list_call_timeout)
            found.extend(StandardWebinarPayload(item) for item in recent.get('webinars') or [])
        except (ZoomApiError, requests.exceptions.RequestException) as e:
            errors.append(f"recent webinars: {e}")
            logger.warning(f"Recent webinars call failed: {e}")

        return CollectionResult(
            strategy=STRATEGY_MONTHLY_FALLBACK,
            payloads=merge_payloads([], found),
            api_calls_made=self._calls,
            errors=errors,
            skipped_months=skipped
        )
