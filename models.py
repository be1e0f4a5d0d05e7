# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Data models for webinar sync
"""
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Optional

# Provider webinar types
WEBINAR_TYPE_SINGLE = 5
WEBINAR_TYPE_RECURRING_NO_FIXED_TIME = 6
WEBINAR_TYPE_RECURRING_FIXED_TIME = 9
RECURRING_WEBINAR_TYPES = (WEBINAR_TYPE_RECURRING_NO_FIXED_TIME, WEBINAR_TYPE_RECURRING_FIXED_TIME)

TERMINAL_STATUSES = ('ended', 'aborted')
UNTITLED_WEBINAR = 'Untitled Webinar'

SOURCE_REPORTING_API = 'reporting_api'
SOURCE_STANDARD_API = 'standard_api'
SOURCE_DATABASE = 'database'

WEBINARS_TABLE = 'zoom_webinars'
INSTANCES_TABLE = 'zoom_webinar_instances'
SYNC_HISTORY_TABLE = 'zoom_sync_history'
WEBINAR_CONFLICT_KEYS = ('user_id', 'webinar_id')
INSTANCE_CONFLICT_KEYS = ('user_id', 'webinar_id', 'instance_id')

# Debug keys folded into the stored raw_data blob
_RAW_DEBUG_KEYS = ('_data_source', '_is_historical', '_enhanced_with_past_data',
                   '_completion_analysis', '_enhancement_error')


@dataclass
class CompletionResult:
    """Inferred completion state of a webinar or instance"""
    is_completed: bool
    reason: str
    confidence_level: str  # 'high' | 'medium' | 'low'
    should_fetch_actual_data: bool

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class PastDataResult:
    """Outcome of the past-webinar lookup chain"""
    success: bool = False
    actual_start_time: Optional[str] = None
    actual_duration: Optional[int] = None
    actual_end_time: Optional[str] = None
    participants_count: Optional[int] = None
    identifiers_used: List[str] = field(default_factory=list)
    api_calls_made: List[str] = field(default_factory=list)
    error_details: List[str] = field(default_factory=list)
    strategy_used: Optional[str] = None
    transient_errors: int = 0

    @property
    def api_failed(self) -> bool:
        """Every API call hit a network, timeout or 5xx/429 error"""
        return bool(self.api_calls_made) and self.transient_errors >= len(self.api_calls_made)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class WebinarRecord:
    """Canonical webinar shape shared by every sync stage and the cache"""
    id: str
    uuid: Optional[str] = None
    topic: str = UNTITLED_WEBINAR
    start_time: Optional[str] = None
    duration: Optional[int] = None
    timezone: str = 'UTC'
    type: int = WEBINAR_TYPE_SINGLE
    status: str = ''
    agenda: Optional[str] = None
    join_url: Optional[str] = None
    registration_url: Optional[str] = None
    created_at: Optional[str] = None
    password: Optional[str] = None

    # Actual execution, only populated after enhancement or from the reporting API
    actual_start_time: Optional[str] = None
    actual_duration: Optional[int] = None
    actual_end_time: Optional[str] = None
    participants_count: Optional[int] = None
    registrants_count: Optional[int] = None

    # Host
    host_id: Optional[str] = None
    host_email: Optional[str] = None
    host_name: Optional[str] = None
    host_first_name: Optional[str] = None
    host_last_name: Optional[str] = None

    # Settings
    host_video: bool = True
    panelists_video: bool = True
    is_simulive: bool = False
    enforce_login: bool = False
    on_demand: bool = False
    practice_session: bool = False
    hd_video: bool = False
    audio_type: str = 'both'
    language: str = 'en-US'
    approval_type: Optional[int] = None
    registration_type: Optional[int] = None
    auto_recording_type: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None

    # Provenance
    raw_data: Dict[str, Any] = field(default_factory=dict)
    data_source: str = SOURCE_STANDARD_API
    is_historical: bool = False
    enhanced_with_past_data: bool = False
    completion_analysis: Optional[CompletionResult] = None
    enhancement_error: Optional[str] = None

    def get(self, key: str, default=None):
        """Mapping-style read so records and raw instance dicts share code paths"""
        value = getattr(self, key, None)
        return default if value is None else value

    def to_dict(self) -> Dict:
        """Shape handed to UI collaborators"""
        data = {}
        for f in fields(self):
            if f.name in ('data_source', 'is_historical', 'enhanced_with_past_data',
                          'completion_analysis', 'enhancement_error'):
                continue
            data[f.name] = getattr(self, f.name)
        data['_data_source'] = self.data_source
        data['_is_historical'] = self.is_historical
        data['_enhanced_with_past_data'] = self.enhanced_with_past_data
        data['_completion_analysis'] = (
            self.completion_analysis.to_dict() if self.completion_analysis else None
        )
        if self.enhancement_error:
            data['_enhancement_error'] = self.enhancement_error
        return data

    def to_row(self, user_id: str, synced_at: str) -> Dict:
        row = {'user_id': user_id, 'webinar_id': str(self.id)}
        for f in fields(self):
            if f.name in ('id', 'raw_data', 'completion_analysis', 'enhancement_error'):
                continue
            row[f.name] = getattr(self, f.name)

        raw = dict(self.raw_data)
        raw['_data_source'] = self.data_source
        raw['_is_historical'] = self.is_historical
        raw['_enhanced_with_past_data'] = self.enhanced_with_past_data
        raw['_completion_analysis'] = (
            self.completion_analysis.to_dict() if self.completion_analysis else None
        )
        if self.enhancement_error:
            raw['_enhancement_error'] = self.enhancement_error
        row['raw_data'] = raw
        row['last_synced_at'] = synced_at
        return row

    @classmethod
    def from_row(cls, row: Dict) -> 'WebinarRecord':
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in row.items() if k in known and k not in ('id', 'raw_data')}
        raw = dict(row.get('raw_data') or {})
        analysis = raw.get('_completion_analysis')
        kwargs['completion_analysis'] = CompletionResult(**analysis) if analysis else None
        kwargs['enhancement_error'] = raw.get('_enhancement_error')
        kwargs['raw_data'] = {k: v for k, v in raw.items() if k not in _RAW_DEBUG_KEYS}
        return cls(id=str(row['webinar_id']), **kwargs)


@dataclass
class WebinarInstance:
    """One occurrence of a recurring (or synthesized single) webinar"""
    instance_id: str
    webinar_id: str
    topic: str = UNTITLED_WEBINAR
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration: Optional[int] = None
    actual_start_time: Optional[str] = None
    actual_duration: Optional[int] = None
    status: str = 'waiting'
    participants_count: int = 0
    registrants_count: int = 0
    raw_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)

    def to_row(self, user_id: str, synced_at: str) -> Dict:
        row = self.to_dict()
        row['user_id'] = user_id
        row['webinar_id'] = str(self.webinar_id)
        row['instance_id'] = str(self.instance_id)
        row['updated_at'] = synced_at
        return row


@dataclass
class SyncResults:
    """Per-run counters reported back to the caller"""
    new_webinars: int = 0
    updated_webinars: int = 0
    preserved_webinars: int = 0
    failed_upserts: int = 0
    total_webinars: int = 0
    data_range: Dict[str, Optional[str]] = field(
        default_factory=lambda: {'oldest': None, 'newest': None}
    )

    def to_dict(self) -> Dict:
        return {
            'newWebinars': self.new_webinars,
            'updatedWebinars': self.updated_webinars,
            'preservedWebinars': self.preserved_webinars,
            'failedUpserts': self.failed_upserts,
            'totalWebinars': self.total_webinars,
            'dataRange': dict(self.data_range)
        }
