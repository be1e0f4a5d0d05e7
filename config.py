# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Environment-based configuration for Webinar Sync
"""
import os
import secrets
from dataclasses import dataclass

# Environment Detection
ENVIRONMENT = os.environ.get('ENVIRONMENT', 'production')
DEBUG = ENVIRONMENT == 'development'

# Zoom Server-to-Server OAuth (fallback when a request carries no credentials)
ZOOM_ACCOUNT_ID = os.environ.get('ZOOM_ACCOUNT_ID', '')
ZOOM_CLIENT_ID = os.environ.get('ZOOM_CLIENT_ID', '')
ZOOM_CLIENT_SECRET = os.environ.get('ZOOM_CLIENT_SECRET', '')

ZOOM_API_BASE = os.environ.get('ZOOM_API_BASE', 'https://api.zoom.us/v2')
ZOOM_OAUTH_URL = os.environ.get('ZOOM_OAUTH_URL', 'https://zoom.us/oauth/token')

# Application Settings
SECRET_KEY = os.environ.get('SECRET_KEY', secrets.token_hex(32))
PORT = int(os.environ.get('PORT', 5000))

# Request gate: non-forced syncs closer together than this are served from cache
MIN_SYNC_INTERVAL_MINUTES = int(os.environ.get('MIN_SYNC_INTERVAL_MINUTES', 5))

# Sync Settings
API_CALL_TIMEOUT = float(os.environ.get('API_CALL_TIMEOUT', 5))
LIST_CALL_TIMEOUT = float(os.environ.get('LIST_CALL_TIMEOUT', 15))
BATCH_SIZE = int(os.environ.get('BATCH_SIZE', 5))
BATCH_DELAY = float(os.environ.get('BATCH_DELAY', 1.0))
MAX_CONSECUTIVE_FAILURES = int(os.environ.get('MAX_CONSECUTIVE_FAILURES', 3))
PROCESSING_TIME_LIMIT = float(os.environ.get('PROCESSING_TIME_LIMIT', 25))
UPSERT_BATCH_SIZE = int(os.environ.get('UPSERT_BATCH_SIZE', 10))
HISTORICAL_WINDOW_DAYS = int(os.environ.get('HISTORICAL_WINDOW_DAYS', 730))
FALLBACK_MONTHS = int(os.environ.get('FALLBACK_MONTHS', 12))
FALLBACK_CHUNK_MONTHS = int(os.environ.get('FALLBACK_CHUNK_MONTHS', 6))
PAGE_SIZE = int(os.environ.get('PAGE_SIZE', 300))
MAX_PAGES = int(os.environ.get('MAX_PAGES', 50))

# Scheduled background sync
SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'False').lower() == 'true'
SYNC_INTERVAL_MIN = int(os.environ.get('SYNC_INTERVAL_MIN', 60))
SCHEDULED_SYNC_USER_IDS = [
    user_id.strip()
    for user_id in os.environ.get('SCHEDULED_SYNC_USER_IDS', '').split(',')
    if user_id.strip()
]

# Retry Settings
MAX_RETRIES = int(os.environ.get('MAX_RETRIES', 3))
BASE_DELAY = float(os.environ.get('BASE_DELAY', 1.0))

# Cache store (empty path keeps rows in memory only)
CACHE_FILE = os.environ.get('CACHE_FILE', '/data/webinar_cache.json')

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
STRUCTURED_LOGGING = os.environ.get('STRUCTURED_LOGGING', 'True').lower() == 'true'

# Development Settings
if DEBUG:
    LOG_LEVEL = 'DEBUG'
    CACHE_FILE = ''


@dataclass
class SyncConfig:
    """Tunables handed to the sync pipeline instead of read as globals"""
    api_call_timeout: float = 5.0
    list_call_timeout: float = 15.0
    batch_size: int = 5
    batch_delay: float = 1.0
    max_consecutive_failures: int = 3
    processing_time_limit: float = 25.0
    upsert_batch_size: int = 10
    historical_window_days: int = 730
    fallback_months: int = 12
    fallback_chunk_months: int = 6
    page_size: int = 300
    max_pages: int = 50

    @classmethod
    def from_env(cls) -> 'SyncConfig':
        return cls(
            api_call_timeout=API_CALL_TIMEOUT,
            list_call_timeout=LIST_CALL_TIMEOUT,
            batch_size=BATCH_SIZE,
            batch_delay=BATCH_DELAY,
            max_consecutive_failures=MAX_CONSECUTIVE_FAILURES,
            processing_time_limit=PROCESSING_TIME_LIMIT,
            upsert_batch_size=UPSERT_BATCH_SIZE,
            historical_window_days=HISTORICAL_WINDOW_DAYS,
            fallback_months=FALLBACK_MONTHS,
            fallback_chunk_months=FALLBACK_CHUNK_MONTHS,
            page_size=PAGE_SIZE,
            max_pages=MAX_PAGES
        )
