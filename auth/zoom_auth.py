# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Zoom OAuth - Server-to-Server token acquisition, scope checks and user lookup
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Dict, List, Optional, Tuple

import requests

import config
from utils.retry import retry_with_backoff
from utils.timezone import Clock
from zoom_ops.client import ZoomClient
from zoom_ops.errors import (
    AuthenticationError, MissingScopeError, ZoomApiError, is_missing_scope,
    CODE_INVALID_TOKEN, CODE_USER_NOT_FOUND,
    SCOPE_REPORT_READ, SCOPE_WEBINAR_READ, SCOPE_USER_READ
)

logger = logging.getLogger(__name__)

# Refresh this long before the provider's stated expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass
class ZoomCredentials:
    account_id: str
    client_id: str
    client_secret: str

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional['ZoomCredentials']:
        if not data:
            return None
        return cls(
            account_id=(data.get('account_id') or '').strip(),
            client_id=(data.get('client_id') or '').strip(),
            client_secret=(data.get('client_secret') or '').strip()
        )

    @classmethod
    def from_env(cls) -> 'ZoomCredentials':
        return cls(config.ZOOM_ACCOUNT_ID, config.ZOOM_CLIENT_ID, config.ZOOM_CLIENT_SECRET)

    def is_complete(self) -> bool:
        return bool(self.account_id and self.client_id and self.client_secret)


class ZoomAuth:
    """Fetches and caches Server-to-Server OAuth access tokens per account"""

    def __init__(self, clock: Optional[Clock] = None, oauth_url: Optional[str] = None):
        self.clock = clock or Clock()
        self.oauth_url = oauth_url or config.ZOOM_OAUTH_URL
        self._tokens: Dict[str, Tuple[str, datetime]] = {}
        self._lock = Lock()

    def get_access_token(self, credentials: Optional[ZoomCredentials]) -> str:
        """
        Return a valid access token, reusing the cached one while it is fresh

        Raises:
            AuthenticationError: credentials missing or rejected, or the token
                endpoint could not be reached
        """
        if credentials is None or not credentials.is_complete():
            raise AuthenticationError(
                "Zoom credentials incomplete: account_id, client_id and client_secret are required"
            )

        cache_key = f"{credentials.account_id}:{credentials.client_id}"
        with self._lock:
            cached = self._tokens.get(cache_key)
            if cached and self.clock.now() < cached[1]:
                return cached[0]

        try:
            payload = self._request_token(credentials)
        except requests.exceptions.RequestException as e:
            raise AuthenticationError(f"Could not reach Zoom OAuth endpoint: {e}") from e

        access_token = payload.get('access_token')
        if not access_token:
            raise AuthenticationError("Zoom OAuth response did not include an access token")

        expires_in = int(payload.get('expires_in') or 3600)
        expires_at = self.clock.now() + timedelta(
            seconds=max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        )
        with self._lock:
            self._tokens[cache_key] = (access_token, expires_at)

        logger.info(f"🔑 Obtained Zoom access token for account {credentials.account_id} "
                    f"(expires {expires_at.isoformat()})")
        return access_token

    @retry_with_backoff(max_retries=config.MAX_RETRIES, base_delay=config.BASE_DELAY,
                        retry_on=(requests.exceptions.ConnectionError, requests.exceptions.Timeout))
    def _request_token(self, credentials: ZoomCredentials) -> Dict:
        response = requests.post(
            self.oauth_url,
            params={'grant_type': 'account_credentials', 'account_id': credentials.account_id},
            auth=(credentials.client_id, credentials.client_secret),
            timeout=config.LIST_CALL_TIMEOUT
        )

        if response.status_code == 200:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get('error', '')
        reason = body.get('reason') or body.get('error_description') or response.text[:200]

        logger.error(f"Token request failed: {response.status_code} - {error or reason}")
        if error == 'invalid_client':
            raise AuthenticationError("Invalid Client ID or Client Secret. Check the Zoom app credentials.")
        if error == 'invalid_grant':
            raise AuthenticationError("Invalid Account ID. Check the Zoom account credentials.")
        raise AuthenticationError(f"Zoom OAuth request failed ({response.status_code}): {reason}")

    def clear_tokens(self, account_id: Optional[str] = None):
        """Drop cached tokens (all, or one account's)"""
        with self._lock:
            if account_id is None:
                self._tokens.clear()
            else:
                for key in [k for k in self._tokens if k.startswith(f"{account_id}:")]:
                    del self._tokens[key]


@dataclass
class ScopeValidation:
    has_required_scopes: bool = True
    has_reporting_access: bool = False
    has_webinar_access: bool = False
    missing_scopes: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def add_missing(self, scope: str):
        if scope not in self.missing_scopes:
            self.missing_scopes.append(scope)
        self.has_required_scopes = False

    def to_dict(self) -> Dict:
        return {
            'hasRequiredScopes': self.has_required_scopes,
            'hasReportingAccess': self.has_reporting_access,
            'hasWebinarAccess': self.has_webinar_access,
            'missingScopes': list(self.missing_scopes),
            'recommendations': list(self.recommendations)
        }


def _probe(client: ZoomClient, path: str, params: Dict) -> Optional[bool]:
    """True when accessible, False on a permission error, None if undetermined"""
    try:
        client.get(path, params=params)
        return True
    except MissingScopeError:
        return False
    except ZoomApiError as e:
        if e.status_code == 403:
            return False
        # 400/404 etc. mean the scope was accepted and the request itself was off
        return True
    except requests.exceptions.RequestException as e:
        logger.warning(f"Scope probe {path} failed: {e}")
        return None


def validate_scopes(client: ZoomClient) -> ScopeValidation:
    """Probe the reporting and webinar endpoints to see which scopes the token has"""
    result = ScopeValidation()

    reporting = _probe(client, '/report/users/me/webinars', {'page_size': 1})
    result.has_reporting_access = bool(reporting)
    if reporting is False:
        result.add_missing(SCOPE_REPORT_READ)
        result.recommendations.append(
            f"Add the {SCOPE_REPORT_READ} scope to sync historical webinars from the reporting API"
        )
    elif reporting is None:
        result.recommendations.append("Could not verify reporting access; historical data may be incomplete")

    webinars = _probe(client, '/users/me/webinars', {'page_size': 1})
    result.has_webinar_access = bool(webinars)
    if webinars is False:
        result.add_missing(SCOPE_WEBINAR_READ)
        result.recommendations.append(f"Add the {SCOPE_WEBINAR_READ} scope to list scheduled webinars")

    if result.has_required_scopes:
        logger.info("✅ Token has all required scopes")
    else:
        logger.warning(f"⚠️ Missing scopes: {', '.join(result.missing_scopes)}")
    return result


def get_user_info(client: ZoomClient) -> Dict:
    """
    Look up the token owner via /users/me

    Raises:
        MissingScopeError: token lacks the user read scope
        AuthenticationError: token rejected
        ZoomApiError: user not found or other provider failure
    """
    try:
        user = client.get('/users/me')
    except MissingScopeError as e:
        raise MissingScopeError(
            f"Missing required scopes to read user info: {e.message}",
            required_scope=SCOPE_USER_READ, status_code=e.status_code, code=e.code,
            endpoint='/users/me'
        ) from e
    except ZoomApiError as e:
        if e.code == CODE_INVALID_TOKEN or e.status_code == 401:
            raise AuthenticationError("Invalid or expired Zoom access token") from e
        if e.code == CODE_USER_NOT_FOUND:
            raise ZoomApiError("Zoom user not found", status_code=e.status_code,
                               code=e.code, endpoint='/users/me') from e
        if is_missing_scope(e.code, e.message):
            raise MissingScopeError(e.message, required_scope=SCOPE_USER_READ,
                                    status_code=e.status_code, code=e.code) from e
        raise

    if not user.get('id'):
        raise ZoomApiError("Zoom user lookup returned no user id", endpoint='/users/me')
    return user
