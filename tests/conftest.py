"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from itertools import count
from unittest.mock import MagicMock

import pytest

from credential_manager.credentials import Credentials
from credential_manager.identity import IdentityService, SessionHandle
from credential_manager.profiles import Profile, validate_profile_table

DEV_ROLE_ARN = "arn:aws:iam::123456789012:role/Developer"
ADMIN_ROLE_ARN = "arn:aws:iam::123456789012:role/Admin"
SECURE_ROLE_ARN = "arn:aws:iam::210987654321:role/Auditor"
MFA_SERIAL = "arn:aws:iam::123456789012:mfa/alice"


@pytest.fixture(scope="function", autouse=True)
def isolate_environment(monkeypatch, tmp_path):
    """Keep the developer's AWS environment out of every test."""
    env_vars_to_clear = [
        "AWS_PROFILE",
        "AWS_DEFAULT_PROFILE",
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SESSION_TOKEN",
        "AWS_CONFIG_FILE",
        "AWS_SHARED_CREDENTIALS_FILE",
        "LOG_LEVEL",
        "APP_ENV",
        "BUILD_VERSION",
        "CREDENTIAL_MANAGER_REFRESH_INTERVAL",
        "CREDENTIAL_MANAGER_REFRESH_WINDOW",
        "CREDENTIAL_MANAGER_SESSION_DURATION",
        "CREDENTIAL_MANAGER_STS_CONNECT_TIMEOUT",
        "CREDENTIAL_MANAGER_STS_READ_TIMEOUT",
        "CREDENTIAL_MANAGER_STS_MAX_ATTEMPTS",
    ]

    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)

    # A stray .env in the working directory must not leak into CLI tests
    monkeypatch.chdir(tmp_path)

    yield


@pytest.fixture
def now():
    """Fixed reference time for expiration arithmetic."""
    return datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


@pytest.fixture
def make_credentials():
    """Factory for credential sets with unique keys."""
    serial = count(1)

    def _make(prefix: str = "ASIATEST", expiration=None, hours: float = 1) -> Credentials:
        n = next(serial)
        return Credentials(
            access_key_id=f"{prefix}{n:04d}",
            secret_access_key=f"secret-{prefix}-{n}",
            session_token=f"token-{prefix}-{n}",
            expiration=expiration or datetime.now(timezone.utc) + timedelta(hours=hours),
        )

    return _make


@pytest.fixture
def profile_table():
    """Profile table covering base, chained and MFA protected profiles."""
    return validate_profile_table(
        {
            "default": Profile(
                name="default",
                region="us-east-1",
                aws_access_key_id="AKIADEFAULTEXAMPLE",
                aws_secret_access_key="default-secret",
            ),
            "dev": Profile(
                name="dev",
                region="us-east-1",
                source_profile="default",
                role_arn=DEV_ROLE_ARN,
            ),
            "admin": Profile(
                name="admin",
                region="us-east-1",
                source_profile="default",
                role_arn=ADMIN_ROLE_ARN,
                mfa_serial=MFA_SERIAL,
            ),
            "corp": Profile(
                name="corp",
                region="eu-west-1",
                aws_access_key_id="AKIACORPEXAMPLE",
                aws_secret_access_key="corp-secret",
                mfa_serial=MFA_SERIAL,
                role_session_name="alice-corp",
            ),
            "audit": Profile(
                name="audit",
                region="eu-west-1",
                source_profile="corp",
                role_arn=SECURE_ROLE_ARN,
            ),
        }
    )


@pytest.fixture
def identity_service(make_credentials):
    """Mock identity service returning fresh credentials for every call."""
    service = MagicMock(spec=IdentityService)
    service.exchange_for_session.side_effect = lambda *args, **kwargs: make_credentials("ASIASOURCE", hours=10)
    service.open_session.side_effect = lambda credentials, region: SessionHandle(
        credentials=credentials, region=region, client=MagicMock()
    )
    service.assume_role.side_effect = lambda *args, **kwargs: make_credentials("ASIAROLE", hours=1)
    service.is_expired.return_value = False
    return service
