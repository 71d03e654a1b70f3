"""Temporary AWS credentials returned by the identity service."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credentials:
    """A temporary credential set with an absolute expiration.

    Instances are immutable. The manager hands out ``copy()`` results so
    callers never share an object with its internal state.

    Attributes:
        access_key_id: Temporary access key id (ASIA...)
        secret_access_key: Secret access key (sensitive)
        session_token: Session token (sensitive)
        expiration: Timezone-aware expiration timestamp
    """

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str = field(repr=False)
    expiration: datetime

    def __post_init__(self):
        if self.expiration.tzinfo is None:
            # STS always answers in UTC; naive values come from hand-built fixtures
            object.__setattr__(self, "expiration", self.expiration.replace(tzinfo=timezone.utc))

    @classmethod
    def from_sts(cls, payload: Dict[str, Any]) -> "Credentials":
        """Build from the ``Credentials`` dict of a GetSessionToken/AssumeRole response."""
        return cls(
            access_key_id=payload["AccessKeyId"],
            secret_access_key=payload["SecretAccessKey"],
            session_token=payload["SessionToken"],
            expiration=payload["Expiration"],
        )

    def copy(self) -> "Credentials":
        return replace(self)

    def expires_in(self, now: Optional[datetime] = None) -> timedelta:
        return self.expiration - (now or _utcnow())

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_in(now) <= timedelta(0)

    def to_env(self) -> Dict[str, str]:
        """Render as the environment variables understood by AWS SDKs."""
        return {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "AWS_SESSION_TOKEN": self.session_token,
            "AWS_CREDENTIAL_EXPIRATION": self.expiration.isoformat(),
        }

    def to_credential_process(self) -> Dict[str, Any]:
        """Render as a ``credential_process`` document (format version 1)."""
        return {
            "Version": 1,
            "AccessKeyId": self.access_key_id,
            "SecretAccessKey": self.secret_access_key,
            "SessionToken": self.session_token,
            "Expiration": self.expiration.isoformat(),
        }
