"""Identity service access (AWS STS).

The manager talks to STS only through ``IdentityService`` so the orchestration
can be exercised without network access. ``StsIdentityService`` is the boto3
implementation:

    - exchange_for_session: GetSessionToken with the profile's static keys
    - open_session: bind an STS client to the temporary source credentials
    - assume_role: AssumeRole with the bound source session
    - is_expired: whether the bound source credentials have expired
"""

import socket
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import boto3
import structlog
from botocore.config import Config as BotocoreConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import SESSION_DURATION_SECONDS
from .credentials import Credentials
from .errors import IdentityServiceError
from .profiles import StaticCredentials

logger = structlog.get_logger(__name__)

SESSION_NAME_PREFIX = "credential-manager"


def generate_session_name() -> str:
    """Generate a role session name for CloudTrail auditing.

    Returns:
        Session name in format: "credential-manager-{hostname}-{timestamp}"
    """
    try:
        hostname = socket.gethostname()
    except Exception:
        hostname = "unknown"

    # AWS session names are limited to 64 chars; the prefix and timestamp take 30
    hostname = hostname[:34]

    # Session names only allow [\w+=,.@-]
    hostname = "".join(c if c.isalnum() or c in "-_." else "-" for c in hostname)

    timestamp = int(time.time())
    return f"{SESSION_NAME_PREFIX}-{hostname}-{timestamp}"


@dataclass
class SessionHandle:
    """A live identity-service session bound to temporary source credentials."""

    credentials: Credentials
    region: str
    client: Any = field(default=None, repr=False)


class IdentityService(ABC):
    """Operations the credentials manager needs from the identity service."""

    @abstractmethod
    def exchange_for_session(
        self,
        static_credentials: StaticCredentials,
        region: str,
        mfa_serial: Optional[str] = None,
        mfa_code: Optional[str] = None,
        duration_seconds: int = SESSION_DURATION_SECONDS,
    ) -> Credentials:
        """Exchange long-lived credentials (plus MFA) for a temporary session."""

    @abstractmethod
    def open_session(self, credentials: Credentials, region: str) -> SessionHandle:
        """Bind a session handle to temporary credentials."""

    @abstractmethod
    def assume_role(
        self,
        handle: SessionHandle,
        role_arn: str,
        role_session_name: str,
        mfa_serial: Optional[str] = None,
        mfa_code: Optional[str] = None,
    ) -> Credentials:
        """Assume ``role_arn`` with the authority of ``handle``."""

    @abstractmethod
    def is_expired(self, handle: SessionHandle) -> bool:
        """Whether the credentials behind ``handle`` have expired."""


def _wrap_error(error: Exception, operation: str) -> IdentityServiceError:
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code")
        message = error.response.get("Error", {}).get("Message", str(error))

        if "MultiFactorAuthentication" in message:
            suggestion = "The MFA code was rejected; wait for the next code before trying again"
        elif code == "ExpiredToken":
            suggestion = "The source session has expired; authenticate the source profile again"
        elif code in ("AccessDenied", "AccessDeniedException"):
            suggestion = "Check that the source identity is allowed to perform this STS operation"
        elif code in ("InvalidClientTokenId", "SignatureDoesNotMatch"):
            suggestion = "Check the static access keys of the source profile"
        else:
            suggestion = "Check AWS credentials and permissions"

        return IdentityServiceError(f"{operation} failed: {message}", code=code, suggestion=suggestion)

    return IdentityServiceError(
        f"{operation} failed: {error}",
        suggestion="Check network connectivity and the AWS credential configuration",
    )


class StsIdentityService(IdentityService):
    """``IdentityService`` backed by boto3 STS clients."""

    def __init__(self, client_config: Optional[BotocoreConfig] = None):
        """Initialize the service.

        Args:
            client_config: botocore client configuration (timeouts, retries), see Settings.botocore_config()
        """
        self._client_config = client_config

    def _client(self, region: str, access_key_id=None, secret_access_key=None, session_token=None):
        session = boto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            aws_session_token=session_token,
            region_name=region,
        )
        return session.client("sts", config=self._client_config)

    def exchange_for_session(
        self,
        static_credentials: StaticCredentials,
        region: str,
        mfa_serial: Optional[str] = None,
        mfa_code: Optional[str] = None,
        duration_seconds: int = SESSION_DURATION_SECONDS,
    ) -> Credentials:
        client = self._client(
            region,
            static_credentials.access_key_id,
            static_credentials.secret_access_key,
            static_credentials.session_token,
        )

        params: dict = {"DurationSeconds": duration_seconds}
        if mfa_serial:
            params["SerialNumber"] = mfa_serial
        if mfa_code:
            params["TokenCode"] = mfa_code

        logger.debug(
            "Requesting session token",
            region=region,
            has_mfa_serial=bool(mfa_serial),
            has_mfa_code=bool(mfa_code),
            duration_seconds=duration_seconds,
        )

        try:
            response = client.get_session_token(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to get session token", region=region, error=str(e), error_type=type(e).__name__)
            raise _wrap_error(e, "GetSessionToken") from e

        credentials = Credentials.from_sts(response["Credentials"])
        logger.info(
            "Session token obtained",
            access_key_id=credentials.access_key_id,
            expires_at=credentials.expiration.isoformat(),
        )
        return credentials

    def open_session(self, credentials: Credentials, region: str) -> SessionHandle:
        client = self._client(
            region,
            credentials.access_key_id,
            credentials.secret_access_key,
            credentials.session_token,
        )
        return SessionHandle(credentials=credentials, region=region, client=client)

    def assume_role(
        self,
        handle: SessionHandle,
        role_arn: str,
        role_session_name: str,
        mfa_serial: Optional[str] = None,
        mfa_code: Optional[str] = None,
    ) -> Credentials:
        params: dict = {"RoleArn": role_arn, "RoleSessionName": role_session_name}
        if mfa_serial:
            params["SerialNumber"] = mfa_serial
        if mfa_code:
            params["TokenCode"] = mfa_code

        logger.debug("Assuming IAM role", role_arn=role_arn, session_name=role_session_name)

        try:
            response = handle.client.assume_role(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to assume role",
                role_arn=role_arn,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise _wrap_error(e, "AssumeRole") from e

        credentials = Credentials.from_sts(response["Credentials"])
        logger.info(
            "Role assumed successfully",
            role_arn=role_arn,
            expires_at=credentials.expiration.isoformat(),
        )
        return credentials

    def is_expired(self, handle: SessionHandle) -> bool:
        return handle.credentials.is_expired()
