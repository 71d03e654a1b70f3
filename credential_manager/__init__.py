"""Expiration-aware AWS credentials manager.

This package resolves chained AWS profiles to temporary credentials, caches the
active set and refreshes it in the background.
"""

from .credentials import Credentials
from .errors import (
    CredentialsManagerError,
    FatalError,
    IdentityServiceError,
    MFANeededError,
    MissingDefaultProfileError,
    NotAuthenticatedError,
    ProfileConfigError,
    Severity,
    UnknownProfileError,
    classify,
)
from .identity import IdentityService, SessionHandle, StsIdentityService
from .manager import CredentialsManager, create_manager
from .profiles import Profile, load_profiles
from .refresher import Refresher, RefreshState

__all__ = [
    "Credentials",
    "CredentialsManager",
    "CredentialsManagerError",
    "FatalError",
    "IdentityService",
    "IdentityServiceError",
    "MFANeededError",
    "MissingDefaultProfileError",
    "NotAuthenticatedError",
    "Profile",
    "ProfileConfigError",
    "RefreshState",
    "Refresher",
    "SessionHandle",
    "Severity",
    "StsIdentityService",
    "UnknownProfileError",
    "classify",
    "create_manager",
    "load_profiles",
]
