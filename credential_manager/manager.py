"""Expiration-aware credentials manager.

This module keeps one active set of temporary AWS credentials alive:

    1. A source (base) profile is authenticated with GetSessionToken
    2. Role profiles are assumed through the session of their source profile,
       re-authenticating the source only when it changes or expires
    3. The result is cached as the single active (role, credentials) pair
    4. A background refresher re-assumes the active role shortly before expiry

All shared state sits behind one lock. Failed source authentication latches the
manager: every public operation raises the latched error until the source is
authenticated successfully again. Fatal errors are never cleared.

Usage:
    manager = create_manager(profiles, StsIdentityService())
    manager.assume_role("dev")
    creds = manager.get_credentials()
"""

import threading
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Callable, Mapping, Optional

import structlog

from .config import REFRESH_INTERVAL_SECONDS, REFRESH_WINDOW_SECONDS, SESSION_DURATION_SECONDS
from .credentials import Credentials
from .errors import (
    MFANeededError,
    MissingDefaultProfileError,
    NotAuthenticatedError,
    UnknownProfileError,
    is_fatal,
    make_fatal,
)
from .identity import IdentityService, SessionHandle, generate_session_name
from .profiles import DEFAULT_PROFILE, Profile
from .refresher import Refresher

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialsManager:
    """Resolves, caches and refreshes temporary credentials for one active role.

    Attributes:
        refresh_interval: Seconds between background refresh ticks
        refresh_window: Remaining lifetime below which the active role is re-assumed
        session_duration: Requested lifetime of source sessions in seconds
    """

    def __init__(
        self,
        profiles: Mapping[str, Profile],
        identity_service: IdentityService,
        refresh_interval: float = REFRESH_INTERVAL_SECONDS,
        refresh_window: float = REFRESH_WINDOW_SECONDS,
        session_duration: int = SESSION_DURATION_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize an unauthenticated manager.

        Args:
            profiles: Validated profile table (name -> Profile)
            identity_service: STS access, see identity.StsIdentityService
            refresh_interval: Seconds between refresh ticks (default: 10)
            refresh_window: Seconds before expiry at which to refresh (default: 600)
            session_duration: GetSessionToken duration in seconds (default: 10 hours)
            clock: Returns the current aware datetime (default: UTC now)
        """
        self._profiles = MappingProxyType(dict(profiles))
        self._identity = identity_service
        self.refresh_interval = refresh_interval
        self.refresh_window = timedelta(seconds=refresh_window)
        self.session_duration = session_duration
        self._clock = clock or _utcnow

        self._lock = threading.Lock()

        # Source (base) session
        self._source_profile_name: Optional[str] = None
        self._source_profile: Optional[Profile] = None
        self._source_credentials: Optional[Credentials] = None
        self._source_session: Optional[SessionHandle] = None

        # Active credentials handed out to callers
        self._role: Optional[str] = None
        self._credentials: Optional[Credentials] = None

        # Latched error of the last failed source authentication
        self._error: Optional[Exception] = None

        self._refresher: Optional[Refresher] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def profiles(self) -> Mapping[str, Profile]:
        return self._profiles

    @property
    def role(self) -> Optional[str]:
        """Name of the currently active role."""
        with self._lock:
            return self._role

    @property
    def source_profile_name(self) -> Optional[str]:
        with self._lock:
            return self._source_profile_name

    @property
    def last_error(self) -> Optional[Exception]:
        with self._lock:
            return self._error

    def get_credentials(self) -> Credentials:
        """Return a copy of the active credentials.

        Raises:
            The latched error if the manager is in a failed state
            NotAuthenticatedError: If nothing has been authenticated yet
        """
        with self._lock:
            if self._error is not None:
                raise self._error
            if self._credentials is None:
                raise NotAuthenticatedError("No active credentials")
            return self._credentials.copy()

    def _set_credentials(self, credentials: Credentials, role: str) -> None:
        # Caller holds the lock
        self._credentials = credentials
        self._role = role

    def _raise_if_failed(self) -> None:
        with self._lock:
            error = self._error
        if error is not None:
            raise error

    def _lookup(self, name: str) -> Profile:
        profile = self._profiles.get(name)
        if profile is None:
            raise UnknownProfileError(name)
        return profile

    def _source_is_stale(self, source_name: str) -> bool:
        # Caller holds the lock
        if self._source_session is None or source_name != self._source_profile_name:
            return True
        return self._identity.is_expired(self._source_session)

    # ------------------------------------------------------------------
    # Source session
    # ------------------------------------------------------------------

    def _authenticate_source(self, name: str, mfa_code: str) -> Credentials:
        """Replace the source session with one for ``name``.

        Caller holds the lock. Only the source fields and the error latch are
        touched; the active role is left alone.
        """
        if is_fatal(self._error):
            raise self._error
        self._error = None

        logger.info("Setting source profile", profile=name)

        profile = self._profiles.get(name)
        if profile is None:
            if name == DEFAULT_PROFILE:
                self._error = MissingDefaultProfileError()
            else:
                self._error = make_fatal(UnknownProfileError(name))
            raise self._error

        if not profile.mfa_serial:
            # A code meant for the target role is not sent with GetSessionToken
            mfa_code = ""
        elif not mfa_code:
            self._error = MFANeededError(name, profile.mfa_serial)
            raise self._error

        try:
            credentials = self._identity.exchange_for_session(
                profile.static_credentials,
                profile.region,
                mfa_serial=profile.mfa_serial,
                mfa_code=mfa_code or None,
                duration_seconds=self.session_duration,
            )
            session = self._identity.open_session(credentials, profile.region)
        except Exception as e:
            logger.error(
                "Failed to authenticate source profile",
                profile=name,
                error=str(e),
                error_type=type(e).__name__,
                fatal=bool(mfa_code),
            )
            if not mfa_code:
                self._error = e
                raise
            # A rejected or consumed MFA code must not be replayed
            fatal = make_fatal(e)
            self._error = fatal
            if fatal is e:
                raise
            raise fatal from e

        self._source_profile_name = name
        self._source_profile = profile
        self._source_credentials = credentials
        self._source_session = session

        logger.info(
            "Source profile authenticated",
            profile=name,
            access_key_id=credentials.access_key_id,
            expires_at=credentials.expiration.isoformat(),
        )
        return credentials

    def set_source_profile(self, name: str, mfa_code: str = "") -> Credentials:
        """Authenticate ``name`` as the source profile and make it the active role.

        The exchange with the identity service runs while holding the lock so the
        source session is either fully replaced or left untouched.

        Args:
            name: Profile to authenticate
            mfa_code: Current code of the profile's MFA device, if it has one

        Returns:
            Copy of the new source credentials

        Raises:
            MissingDefaultProfileError: ``default`` is not configured (recoverable)
            FatalError: Unknown non-default profile, or an MFA code was supplied and rejected
            MFANeededError: The profile has an MFA device and no code was given
        """
        with self._lock:
            credentials = self._authenticate_source(name, mfa_code)
            self._set_credentials(credentials, name)
            return credentials.copy()

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def _retrieve(
        self,
        role_arn: Optional[str],
        mfa_serial: Optional[str],
        mfa_code: str,
        source_name: Optional[str] = None,
        role_name: Optional[str] = None,
    ) -> Credentials:
        # Source selection and the session snapshot share one locked section
        with self._lock:
            if self._error is not None:
                raise self._error
            if source_name is None:
                if self._source_session is None:
                    raise NotAuthenticatedError()
                source_name = self._source_profile_name
            if self._source_is_stale(source_name):
                self._authenticate_source(source_name, mfa_code)
            source_profile = self._source_profile
            source_credentials = self._source_credentials
            session = self._source_session

        if role_arn == source_profile.role_arn:
            return source_credentials.copy()

        if mfa_serial and not mfa_code:
            raise MFANeededError(role_name, mfa_serial, role_arn=role_arn)

        session_name = source_profile.role_session_name or generate_session_name()
        return self._identity.assume_role(
            session,
            role_arn,
            session_name,
            mfa_serial=mfa_serial,
            mfa_code=mfa_code or None,
        )

    def retrieve_role(self, name: str, mfa_code: str = "") -> Credentials:
        """Fetch credentials for profile ``name`` without changing the active role."""
        self._raise_if_failed()
        profile = self._lookup(name)
        return self._retrieve(
            profile.role_arn,
            profile.mfa_serial,
            mfa_code,
            source_name=profile.source_name,
            role_name=name,
        )

    def assume_role(self, name: str, mfa_code: str = "") -> Credentials:
        """Assume profile ``name`` and make it the active role.

        The source profile of ``name`` is authenticated first when it differs from
        the current one or its session has expired.

        Returns:
            Copy of the new active credentials
        """
        self._raise_if_failed()
        profile = self._lookup(name)

        logger.info("Assuming role", role=name, role_arn=profile.role_arn)
        credentials = self._retrieve(
            profile.role_arn,
            profile.mfa_serial,
            mfa_code,
            source_name=profile.source_name,
            role_name=name,
        )
        return self._commit(name, credentials)

    def retrieve_role_arn(
        self,
        role_arn: Optional[str],
        mfa_serial: Optional[str] = None,
        mfa_code: str = "",
    ) -> Credentials:
        """Assume ``role_arn`` with the current source session and return the credentials.

        An expired source session is authenticated again using the current source
        profile name. Asking for the source profile's own role returns the cached
        source credentials without calling the identity service.

        Raises:
            NotAuthenticatedError: No source session exists
            MFANeededError: ``mfa_serial`` is set and no code was given
        """
        return self._retrieve(role_arn, mfa_serial, mfa_code)

    def assume_role_arn(
        self,
        name: str,
        role_arn: Optional[str],
        mfa_serial: Optional[str] = None,
        mfa_code: str = "",
    ) -> Credentials:
        """Assume ``role_arn`` and store the result as the active role ``name``."""
        credentials = self._retrieve(role_arn, mfa_serial, mfa_code, role_name=name)
        return self._commit(name, credentials)

    def _commit(self, name: str, credentials: Credentials) -> Credentials:
        with self._lock:
            self._set_credentials(credentials, name)

        logger.info(
            "Active role updated",
            role=name,
            access_key_id=credentials.access_key_id,
            expires_at=credentials.expiration.isoformat(),
        )
        return credentials.copy()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def _is_base_role(self, role: Optional[str]) -> bool:
        # Caller holds the lock
        if not role or role == DEFAULT_PROFILE:
            return True
        return role == self._source_profile_name and not self._source_profile.is_role

    def refresh_credentials(self) -> bool:
        """Re-assume the active role if its credentials are about to expire.

        Base profiles are left to expire; authenticating them may need an MFA code
        that only an interactive caller can supply.

        Returns:
            True if the role was re-assumed

        Raises:
            NotAuthenticatedError: No source session exists
        """
        with self._lock:
            if self._error is not None:
                return False
            if self._source_session is None:
                raise NotAuthenticatedError("No source session set for refreshing credentials")
            if self._credentials is None:
                return False
            role = self._role
            expiration = self._credentials.expiration
            base_role = self._is_base_role(role)

        time_to_expire = expiration - self._clock()
        if time_to_expire > self.refresh_window:
            return False

        if base_role:
            logger.debug("Not refreshing base profile", role=role, expires_in=time_to_expire.total_seconds())
            return False

        logger.info("Refreshing credentials", role=role, expires_in=time_to_expire.total_seconds())
        self.assume_role(role, "")
        return True

    def start_refresher(self) -> Refresher:
        """Start the background refresher if it is not already running."""
        if self._refresher is None or not self._refresher.is_running:
            self._refresher = Refresher(self, interval=self.refresh_interval)
            self._refresher.start()
        return self._refresher

    def close(self) -> None:
        """Stop the background refresher."""
        if self._refresher is not None:
            self._refresher.stop()
            self._refresher = None

    def __enter__(self) -> "CredentialsManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_manager(
    profiles: Mapping[str, Profile],
    identity_service: IdentityService,
    profile_name: str = DEFAULT_PROFILE,
    mfa_code: str = "",
    start_refresher: bool = True,
    **options,
) -> CredentialsManager:
    """Create a manager, authenticate ``profile_name`` and start refreshing.

    A recoverable failure (missing default profile, MFA needed, STS error) is
    logged and stays latched so the caller can prompt and call
    ``set_source_profile`` again.

    Raises:
        FatalError: If the initial authentication failed fatally
    """
    manager = CredentialsManager(profiles, identity_service, **options)

    try:
        manager.set_source_profile(profile_name, mfa_code)
    except Exception as e:
        if is_fatal(e):
            raise
        logger.warning(
            "Initial authentication did not complete",
            profile=profile_name,
            error=str(e),
            error_type=type(e).__name__,
        )

    if start_refresher:
        manager.start_refresher()
    return manager
