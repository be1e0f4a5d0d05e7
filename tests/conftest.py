"""
Shared fixtures for the webinar sync tests
"""
import os
import sys
from datetime import datetime

import pytest
import pytz

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth.zoom_auth import ZoomAuth, ZoomCredentials
from config import SyncConfig
from store.row_store import JsonRowStore
from sync.engine import SyncEngine
from utils.timezone import Clock
from zoom_ops.client import ZoomClient

API = 'https://api.zoom.us/v2'
OAUTH_URL = 'https://zoom.us/oauth/token'
NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=pytz.UTC)


class FixedClock(Clock):
    """Wall clock frozen at `now`; sleeping only advances monotonic time"""

    def __init__(self, now=NOW):
        self._now = now
        self._monotonic = 0.0
        self.sleeps = []

    def now(self):
        return self._now

    def monotonic(self):
        return self._monotonic

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self._monotonic += seconds

    def advance(self, seconds):
        self._monotonic += seconds


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return JsonRowStore()


@pytest.fixture
def sync_config():
    return SyncConfig(batch_delay=0, fallback_months=2, fallback_chunk_months=1)


@pytest.fixture
def client():
    return ZoomClient('test-token', base_url=API)


@pytest.fixture
def credentials():
    return ZoomCredentials(account_id='acct-1', client_id='client-1', client_secret='secret-1')


@pytest.fixture
def engine(store, sync_config, clock):
    return SyncEngine(
        store,
        auth=ZoomAuth(clock=clock, oauth_url=OAUTH_URL),
        sync_config=sync_config,
        clock=clock,
        client_factory=lambda token: ZoomClient(token, base_url=API)
    )
