"""Error taxonomy for the credentials manager.

Every error raised by this package derives from ``CredentialsManagerError`` and
carries a ``Severity``. Callers decide what to do with ``classify()``:

    - Severity.RECOVERABLE: report it and let the user retry (re-enter an MFA
      code, pick another profile)
    - Severity.FATAL: stop the process, retrying is unsafe (a rejected MFA code
      must not be replayed, a missing base profile cannot be repaired)

Usage:
    from credential_manager.errors import Severity, classify

    try:
        manager.assume_role("dev")
    except Exception as e:
        if classify(e) is Severity.FATAL:
            raise SystemExit(1)
"""

from enum import Enum
from typing import Optional


class Severity(Enum):
    """Whether an error leaves the process usable."""

    RECOVERABLE = "recoverable"
    FATAL = "fatal"


class CredentialsManagerError(Exception):
    """Base class for credentials manager errors."""

    severity = Severity.RECOVERABLE

    def __init__(self, message: str, suggestion: str = "", details: str = ""):
        # Include all parts in the base exception message for better error reporting
        full_message = message
        if suggestion:
            full_message += f"\n\n{suggestion}"
        if details:
            full_message += f"\n\n{details}"
        super().__init__(full_message)
        self.message = message
        self.suggestion = suggestion
        self.details = details

    def format(self) -> str:
        """Format error for console output with suggestions."""
        label = "Fatal error" if self.severity is Severity.FATAL else "Error"
        output = f"❌ {label}: {self.message}"
        if self.suggestion:
            output += f"\n   💡 {self.suggestion}"
        if self.details:
            output += f"\n   ℹ️  {self.details}"
        return output


class UnknownProfileError(CredentialsManagerError):
    """Raised when a profile name is absent from the profile table."""

    def __init__(self, profile: str):
        super().__init__(
            f"Unknown profile: {profile}",
            "Check the profile name against your AWS config and credentials files",
        )
        self.profile = profile


class MissingDefaultProfileError(UnknownProfileError):
    """Raised when the ``default`` profile is needed but not configured."""

    def __init__(self):
        CredentialsManagerError.__init__(
            self,
            "missing profile: default",
            "Add a [default] section with static credentials to your AWS credentials file",
        )
        self.profile = "default"


class MFANeededError(CredentialsManagerError):
    """Raised when an MFA protected profile or role is used without a code."""

    def __init__(
        self,
        profile: Optional[str] = None,
        mfa_serial: Optional[str] = None,
        role_arn: Optional[str] = None,
    ):
        target = profile or role_arn
        super().__init__(
            f"MFA needed for {target}" if target else "MFA needed",
            "Retry with the current code from your MFA device",
            f"MFA device: {mfa_serial}" if mfa_serial else "",
        )
        self.profile = profile
        self.mfa_serial = mfa_serial
        self.role_arn = role_arn


class NotAuthenticatedError(CredentialsManagerError):
    """Raised when no source session or active credentials exist yet."""

    def __init__(self, message: str = "No source session has been authenticated"):
        super().__init__(message, "Authenticate a source profile first")


class ProfileConfigError(CredentialsManagerError):
    """Raised when the profile table is invalid or cannot be loaded."""


class IdentityServiceError(CredentialsManagerError):
    """Raised when the identity service (STS) rejects or fails a request."""

    def __init__(self, message: str, code: Optional[str] = None, suggestion: str = "", details: str = ""):
        super().__init__(message, suggestion, details)
        self.code = code


class FatalError(CredentialsManagerError):
    """Wraps an error that must terminate the process."""

    severity = Severity.FATAL

    def __init__(self, cause: BaseException):
        if isinstance(cause, CredentialsManagerError):
            super().__init__(cause.message, cause.suggestion, cause.details)
        else:
            super().__init__(str(cause))
        self.cause = cause


def make_fatal(err: BaseException) -> FatalError:
    """Promote an error to fatal. Already fatal errors are returned as is."""
    if isinstance(err, FatalError):
        return err
    return FatalError(err)


def classify(err: BaseException) -> Severity:
    """Return the severity of any exception; only ``FatalError`` is fatal."""
    if isinstance(err, CredentialsManagerError):
        return err.severity
    return Severity.RECOVERABLE


def is_fatal(err: Optional[BaseException]) -> bool:
    return err is not None and classify(err) is Severity.FATAL
