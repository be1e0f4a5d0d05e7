# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

from auth.zoom_auth import ZoomAuth, ZoomCredentials, ScopeValidation, validate_scopes, get_user_info

__all__ = ['ZoomAuth', 'ZoomCredentials', 'ScopeValidation', 'validate_scopes', 'get_user_info']
