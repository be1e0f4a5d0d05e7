# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Zoom error types and classification
"""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

import requests

# Provider error codes
CODE_MISSING_SCOPES = 4711
CODE_INVALID_TOKEN = 124
CODE_USER_NOT_FOUND = 1001
CODE_WEBINAR_NOT_FOUND = 3001
CODE_NO_PERMISSION = 200

SCOPE_REPORT_READ = 'report:read:admin'
SCOPE_WEBINAR_READ = 'webinar:read:admin'
SCOPE_USER_READ = 'user:read:admin'


class ZoomApiError(Exception):
    """Non-2xx response from the provider, parsed as {code, message}"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 code: Optional[int] = None, endpoint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.endpoint = endpoint

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or (self.status_code is not None and self.status_code >= 500)

    def __str__(self):
        parts = [self.message]
        if self.status_code:
            parts.append(f"status={self.status_code}")
        if self.code:
            parts.append(f"code={self.code}")
        return ' '.join(parts)


class MissingScopeError(ZoomApiError):
    """The token lacks an OAuth scope; re-authorize rather than retry"""

    def __init__(self, message: str, required_scope: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.required_scope = required_scope


class AuthenticationError(Exception):
    """No usable access token could be obtained"""
    pass


def is_missing_scope(code: Optional[int], message: Optional[str]) -> bool:
    return code == CODE_MISSING_SCOPES or 'scopes' in (message or '').lower()


class ErrorCategory(Enum):
    AUTHENTICATION = 'authentication'
    AUTHORIZATION = 'authorization'
    CONFIGURATION = 'configuration'
    NETWORK = 'network'
    RATE_LIMIT = 'rate_limit'
    VALIDATION = 'validation'
    SERVICE_UNAVAILABLE = 'service_unavailable'
    UNKNOWN = 'unknown'


@dataclass
class ClassifiedError:
    category: str
    message: str
    retryable: bool
    status_code: Optional[int] = None
    required_scope: Optional[str] = None

    def to_dict(self):
        return asdict(self)


def classify_error(error: Exception) -> ClassifiedError:
    """Map any exception raised during a sync onto a user-facing category"""
    if isinstance(error, MissingScopeError):
        scope = error.required_scope
        hint = f" ({scope})" if scope else ''
        return ClassifiedError(
            category=ErrorCategory.AUTHORIZATION.value,
            message=f"Zoom app is missing a required OAuth scope{hint}. Add it and re-authorize.",
            retryable=False,
            status_code=error.status_code,
            required_scope=scope
        )

    if isinstance(error, AuthenticationError):
        return ClassifiedError(ErrorCategory.AUTHENTICATION.value, str(error), False)

    if isinstance(error, ZoomApiError):
        status = error.status_code
        if status == 401 or error.code == CODE_INVALID_TOKEN:
            return ClassifiedError(ErrorCategory.AUTHENTICATION.value,
                                   "Zoom rejected the access token", False, status)
        if status == 403:
            return ClassifiedError(ErrorCategory.AUTHORIZATION.value,
                                   f"Access denied by Zoom: {error.message}", False, status)
        if status == 429:
            return ClassifiedError(ErrorCategory.RATE_LIMIT.value,
                                   "Zoom rate limit reached, try again shortly", True, status)
        if status is not None and status >= 500:
            return ClassifiedError(ErrorCategory.SERVICE_UNAVAILABLE.value,
                                   "Zoom API is temporarily unavailable", True, status)
        if status in (400, 404):
            return ClassifiedError(ErrorCategory.VALIDATION.value, error.message, False, status)
        return ClassifiedError(ErrorCategory.UNKNOWN.value, error.message, False, status)

    if isinstance(error, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return ClassifiedError(ErrorCategory.NETWORK.value,
                               f"Network error talking to Zoom: {error}", True)

    if isinstance(error, (KeyError, ValueError)):
        return ClassifiedError(ErrorCategory.CONFIGURATION.value, str(error), False)

    return ClassifiedError(ErrorCategory.UNKNOWN.value, str(error) or type(error).__name__, False)
