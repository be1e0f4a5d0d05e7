# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Zoom API Client - Bearer-token GET requests with timeouts and pagination
"""
import logging
import time
import urllib.parse
from typing import Dict, List, Optional

import requests

import config
from utils.logger import StructuredLogger
from utils.metrics import MetricsCollector
from utils.retry import retry_with_backoff
from zoom_ops.errors import ZoomApiError, MissingScopeError, is_missing_scope

logger = logging.getLogger(__name__)


def encode_uuid(uuid: str) -> str:
    """Path-encode a webinar UUID; the provider requires double encoding
    when the UUID starts with '/' or contains '//'."""
    encoded = urllib.parse.quote(str(uuid), safe='')
    if str(uuid).startswith('/') or '//' in str(uuid):
        encoded = urllib.parse.quote(encoded, safe='')
    return encoded


def _is_transient(error: Exception) -> bool:
    if isinstance(error, ZoomApiError):
        return error.retryable
    return isinstance(error, requests.exceptions.ConnectionError)


class ZoomClient:
    """Thin wrapper over the Zoom REST API for one access token"""

    def __init__(self, access_token: str, base_url: str = None,
                 timeout: float = None, metrics: Optional[MetricsCollector] = None):
        self.access_token = access_token
        self.base_url = (base_url or config.ZOOM_API_BASE).rstrip('/')
        self.timeout = timeout or config.API_CALL_TIMEOUT
        self.metrics = metrics
        self.structured_logger = StructuredLogger(__name__)

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.access_token}',
            'Content-Type': 'application/json'
        }

    def get(self, path: str, params: Optional[Dict] = None, timeout: Optional[float] = None) -> Dict:
        """
        GET a provider endpoint and return the decoded JSON body

        Raises:
            MissingScopeError: provider reported a missing OAuth scope
            ZoomApiError: any other non-2xx response
            requests.exceptions.RequestException: timeout or connection failure
        """
        url = f"{self.base_url}{path}"
        started = time.monotonic()

        try:
            response = requests.get(url, headers=self._headers(), params=params,
                                    timeout=timeout or self.timeout)
        except requests.exceptions.RequestException as e:
            duration_ms = (time.monotonic() - started) * 1000
            self.structured_logger.log_api_call('GET', path, duration_ms=duration_ms,
                                                error=f"{type(e).__name__}: {e}")
            if self.metrics:
                self.metrics.record_api_call(path, duration_ms, 0)
            raise

        duration_ms = (time.monotonic() - started) * 1000
        self.structured_logger.log_api_call('GET', path, status_code=response.status_code,
                                            duration_ms=duration_ms)
        if self.metrics:
            self.metrics.record_api_call(path, duration_ms, response.status_code)

        if response.ok:
            if response.status_code == 204 or not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                logger.warning(f"Non-JSON body from {path}")
                return {}

        raise self._error_from_response(response, path)

    def _error_from_response(self, response, path: str) -> ZoomApiError:
        code = None
        message = response.reason or f"HTTP {response.status_code}"
        try:
            body = response.json()
            code = body.get('code')
            message = body.get('message') or message
        except ValueError:
            if response.text:
                message = response.text[:200]

        if is_missing_scope(code, message):
            return MissingScopeError(message, status_code=response.status_code,
                                     code=code, endpoint=path)
        return ZoomApiError(message, status_code=response.status_code, code=code, endpoint=path)

    @retry_with_backoff(max_retries=config.MAX_RETRIES, base_delay=config.BASE_DELAY,
                        retry_on=(ZoomApiError, requests.exceptions.ConnectionError),
                        retry_if=_is_transient)
    def _get_page(self, path: str, params: Dict, timeout: Optional[float]) -> Dict:
        return self.get(path, params=params, timeout=timeout)

    def get_paginated(self, path: str, items_key: str, params: Optional[Dict] = None,
                      timeout: Optional[float] = None, max_pages: int = 50) -> List[Dict]:
        """Follow next_page_token until exhausted (or max_pages as a safety guard)"""
        items: List[Dict] = []
        next_token = None
        pages = 0

        while True:
            page_params = dict(params or {})
            if next_token:
                page_params['next_page_token'] = next_token

            data = self._get_page(path, page_params, timeout)
            items.extend(data.get(items_key) or [])
            pages += 1

            next_token = data.get('next_page_token')
            if not next_token:
                break
            if pages >= max_pages:
                logger.warning(f"Stopping pagination of {path} after {max_pages} pages")
                break

        logger.debug(f"Fetched {len(items)} {items_key} from {path} in {pages} page(s)")
        return items
