# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Completion Detector - Decide whether a webinar (or one instance) has concluded

Provider status is frequently stale or missing for older webinars, so the
explicit status is only the first of several signals:

1. status ended/aborted                -> completed (high)
2. scheduled start + duration + buffer -> completed / in progress / future
3. created_at older than 24 hours      -> completed (medium)
4. otherwise                           -> not completed (low)

Only a completed result recommends fetching actual-execution data.
"""
import re
from datetime import datetime, timedelta
from typing import Any, Optional

from models import CompletionResult, TERMINAL_STATUSES
from utils.timezone import parse_iso

DEFAULT_DURATION_MINUTES = 60
COMPLETION_BUFFER_MINUTES = 30
STALE_FALLBACK_HOURS = 24

_UUID_PATTERN = re.compile(r'^[a-zA-Z0-9\-_=+/]+$')


def _duration_minutes(*sources: Optional[Any]) -> float:
    for source in sources:
        if source is None:
            continue
        value = source.get('duration')
        try:
            if value is not None and float(value) > 0:
                return float(value)
        except (TypeError, ValueError):
            continue
    return DEFAULT_DURATION_MINUTES


def detect_completion(webinar: Any, now: datetime, instance: Optional[Any] = None) -> CompletionResult:
    """
    Infer whether a webinar has concluded.

    Args:
        webinar: WebinarRecord or raw webinar dict (anything with .get)
        now: current time, injected so buffer edge cases are testable
        instance: optional occurrence whose values override the webinar's

    Returns:
        CompletionResult
    """
    data = instance if instance is not None else webinar

    status = (data.get('status') or '').lower()
    if not status and instance is not None:
        status = (webinar.get('status') or '').lower()

    if status in TERMINAL_STATUSES:
        return CompletionResult(
            is_completed=True,
            reason=f"Explicit status: {status}",
            confidence_level='high',
            should_fetch_actual_data=True
        )

    start = parse_iso(data.get('start_time'))
    if start is None and instance is not None:
        start = parse_iso(webinar.get('start_time'))

    if start is not None:
        duration = _duration_minutes(instance, webinar)
        calculated_end = start + timedelta(minutes=duration)
        end_with_buffer = calculated_end + timedelta(minutes=COMPLETION_BUFFER_MINUTES)

        if now > end_with_buffer:
            minutes_ago = int((now - calculated_end).total_seconds() // 60)
            return CompletionResult(
                is_completed=True,
                reason=f"Time-based: webinar ended {minutes_ago} minutes ago",
                confidence_level='high',
                should_fetch_actual_data=True
            )
        if now >= start:
            return CompletionResult(
                is_completed=False,
                reason="Webinar is in progress or within the completion buffer",
                confidence_level='medium',
                should_fetch_actual_data=False
            )
        minutes_until = int((start - now).total_seconds() // 60)
        return CompletionResult(
            is_completed=False,
            reason=f"Webinar is scheduled for the future (starts in {minutes_until} minutes)",
            confidence_level='high',
            should_fetch_actual_data=False
        )

    reference = parse_iso(webinar.get('created_at'))
    if reference is not None and now - reference > timedelta(hours=STALE_FALLBACK_HOURS):
        return CompletionResult(
            is_completed=True,
            reason=f"Fallback: created more than {STALE_FALLBACK_HOURS}h ago with no usable start time",
            confidence_level='medium',
            should_fetch_actual_data=True
        )

    return CompletionResult(
        is_completed=False,
        reason="Insufficient data to determine completion",
        confidence_level='low',
        should_fetch_actual_data=False
    )


def is_valid_webinar_uuid(uuid: Any) -> bool:
    """Provider UUIDs are base64-ish strings; reject numeric IDs and junk"""
    if not isinstance(uuid, str):
        return False
    if not 10 <= len(uuid) <= 100:
        return False
    return bool(_UUID_PATTERN.match(uuid))
