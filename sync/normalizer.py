# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Field Normalizer - Map raw provider payloads onto WebinarRecord

Payloads are tagged with the endpoint that produced them as soon as they
leave the collector; nothing past this module looks at provider-shaped dicts.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

from models import (
    WebinarRecord, UNTITLED_WEBINAR, WEBINAR_TYPE_SINGLE,
    SOURCE_REPORTING_API, SOURCE_STANDARD_API
)

TOPIC_FIELDS = ('topic', 'title', 'subject', 'webinar_name')


@dataclass(frozen=True)
class HistoricalWebinarPayload:
    """Item from /report/users/{id}/webinars (concluded webinars only)"""
    data: Dict[str, Any]

    @property
    def webinar_id(self) -> Optional[str]:
        return payload_id(self.data)


@dataclass(frozen=True)
class StandardWebinarPayload:
    """Item from /users/{id}/webinars or /webinars/{id}"""
    data: Dict[str, Any]

    @property
    def webinar_id(self) -> Optional[str]:
        return payload_id(self.data)


WebinarPayload = Union[HistoricalWebinarPayload, StandardWebinarPayload]


def payload_id(data: Dict[str, Any]) -> Optional[str]:
    value = data.get('id') or data.get('webinar_id')
    return str(value) if value not in (None, '') else None


def first_text(data: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    """First non-blank string among keys, stripped"""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def resolve_topic(data: Dict[str, Any]) -> str:
    return first_text(data, TOPIC_FIELDS) or UNTITLED_WEBINAR


def to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _flag(settings: Dict[str, Any], key: str) -> bool:
    """Only a literal True counts"""
    return settings.get(key) is True


def _flag_default_on(settings: Dict[str, Any], key: str) -> bool:
    """Video flags are on unless explicitly disabled"""
    return settings.get(key) is not False


def _host_name(data: Dict[str, Any]) -> Optional[str]:
    name = first_text(data, ('host_name', 'user_name'))
    if name:
        return name
    parts = [first_text(data, ('host_first_name',)), first_text(data, ('host_last_name',))]
    joined = ' '.join(p for p in parts if p)
    return joined or None


def _base_record(data: Dict[str, Any]) -> WebinarRecord:
    settings = data.get('settings') if isinstance(data.get('settings'), dict) else {}

    return WebinarRecord(
        id=payload_id(data),
        uuid=data.get('uuid') or None,
        topic=resolve_topic(data),
        start_time=data.get('start_time') or None,
        duration=to_int(data.get('duration')),
        timezone=first_text(data, ('timezone',)) or 'UTC',
        type=to_int(data.get('type')) or WEBINAR_TYPE_SINGLE,
        status=first_text(data, ('status',)) or '',
        agenda=first_text(data, ('agenda', 'description')),
        join_url=data.get('join_url') or None,
        registration_url=data.get('registration_url') or settings.get('registration_url') or None,
        created_at=data.get('created_at') or None,
        password=data.get('password') or None,
        registrants_count=to_int(data.get('registrants_count')),
        host_id=data.get('host_id') or None,
        host_email=first_text(data, ('host_email', 'user_email')),
        host_name=_host_name(data),
        host_first_name=first_text(data, ('host_first_name',)),
        host_last_name=first_text(data, ('host_last_name',)),
        host_video=_flag_default_on(settings, 'host_video'),
        panelists_video=_flag_default_on(settings, 'panelists_video'),
        is_simulive=_flag(data, 'is_simulive'),
        enforce_login=_flag(settings, 'enforce_login'),
        on_demand=_flag(settings, 'on_demand'),
        practice_session=_flag(settings, 'practice_session'),
        hd_video=_flag(settings, 'hd_video'),
        audio_type=first_text(settings, ('audio',)) or 'both',
        language=first_text(settings, ('language',)) or 'en-US',
        approval_type=to_int(settings.get('approval_type')),
        registration_type=to_int(settings.get('registration_type')),
        auto_recording_type=first_text(settings, ('auto_recording',)),
        contact_name=first_text(settings, ('contact_name',)),
        contact_email=first_text(settings, ('contact_email',)),
        raw_data=dict(data)
    )


def normalize(payload: WebinarPayload) -> WebinarRecord:
    """
    Normalize one tagged payload

    Raises:
        ValueError: the payload carries no webinar id at all
    """
    data = payload.data
    if payload_id(data) is None:
        raise ValueError("Webinar payload has no id")

    record = _base_record(data)

    if isinstance(payload, HistoricalWebinarPayload):
        # Concluded by construction; the report carries actual timing directly
        record.status = 'ended'
        record.actual_start_time = data.get('start_time') or None
        record.actual_end_time = data.get('end_time') or None
        record.actual_duration = to_int(data.get('duration'))
        record.participants_count = to_int(data.get('participants_count')) or 0
        record.data_source = SOURCE_REPORTING_API
        record.is_historical = True
    else:
        record.data_source = SOURCE_STANDARD_API
        record.is_historical = False

    return record
