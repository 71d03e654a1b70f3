"""AWS profile model and profile table loading.

Profiles are read from the AWS config file (``[default]`` and ``[profile NAME]``
sections) and the shared credentials file (``[NAME]`` sections), merged per
profile name and validated into an immutable table:

    - base profiles carry static keys (or rely on boto3's default chain) and
      may require MFA for GetSessionToken
    - role profiles name a ``source_profile`` whose session assumes ``role_arn``

Usage:
    from credential_manager.profiles import load_profiles

    profiles = load_profiles(Path("~/.aws/config"), Path("~/.aws/credentials"))
    print(profiles["dev"].role_arn)
"""

import configparser
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, field_validator

from .errors import ProfileConfigError

logger = structlog.get_logger(__name__)

DEFAULT_PROFILE = "default"
DEFAULT_REGION = "us-east-1"

# Keys we understand in either file; anything else (sso_*, output, ...) is ignored
PROFILE_KEYS = (
    "region",
    "aws_access_key_id",
    "aws_secret_access_key",
    "aws_session_token",
    "mfa_serial",
    "source_profile",
    "role_arn",
    "role_session_name",
)

ProfileTable = Mapping[str, "Profile"]


@dataclass(frozen=True)
class StaticCredentials:
    """Long-lived credentials of a base profile. All None means "use the default chain"."""

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None


class Profile(BaseModel):
    """A named identity configuration, either a base identity or a chained role."""

    model_config = ConfigDict(frozen=True)

    name: str
    region: str = DEFAULT_REGION
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_session_token: Optional[str] = None
    mfa_serial: Optional[str] = None
    source_profile: Optional[str] = None
    role_arn: Optional[str] = None
    role_session_name: Optional[str] = None

    @field_validator(
        "aws_access_key_id",
        "aws_secret_access_key",
        "aws_session_token",
        "mfa_serial",
        "source_profile",
        "role_arn",
        "role_session_name",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("region", mode="before")
    @classmethod
    def default_region(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_REGION
        return v.strip()

    @property
    def source_name(self) -> str:
        """Name of the profile whose session authenticates this one."""
        return self.source_profile or self.name

    @property
    def is_role(self) -> bool:
        return self.role_arn is not None

    @property
    def static_credentials(self) -> StaticCredentials:
        return StaticCredentials(
            access_key_id=self.aws_access_key_id,
            secret_access_key=self.aws_secret_access_key,
            session_token=self.aws_session_token,
        )


def validate_profile_table(profiles: Mapping[str, Profile]) -> ProfileTable:
    """Check chain references and freeze the table.

    Raises:
        ProfileConfigError: If a role profile has no resolvable source profile
    """
    problems = []
    for name, profile in profiles.items():
        if name != profile.name:
            problems.append(f"{name}: table key does not match profile name {profile.name!r}")
            continue
        if profile.source_profile and profile.source_profile not in profiles:
            problems.append(f"{name}: source_profile {profile.source_profile!r} is not defined")
        elif profile.is_role and not profile.source_profile and name != DEFAULT_PROFILE:
            problems.append(f"{name}: role_arn is set but source_profile is missing")

    if problems:
        raise ProfileConfigError(
            "Invalid profile configuration",
            "Every role profile needs a source_profile that exists in your AWS config",
            "\n".join(problems),
        )

    return MappingProxyType(dict(profiles))


def _read_ini(path: Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None)
    if not path.exists():
        logger.debug("AWS file not found, treating as empty", path=str(path))
        return parser
    try:
        parser.read(path)
    except configparser.Error as e:
        raise ProfileConfigError(f"Could not parse {path}", "Fix the INI syntax of the file", str(e)) from e
    return parser


def _config_section_name(section: str) -> Optional[str]:
    if section == DEFAULT_PROFILE:
        return DEFAULT_PROFILE
    if section.startswith("profile "):
        return section[len("profile ") :].strip()
    # sso-session and services sections are not profiles
    return None


def load_profiles(
    config_file: Path,
    credentials_file: Path,
    default_region: str = DEFAULT_REGION,
) -> ProfileTable:
    """Load and validate profiles from the AWS config and credentials files.

    Args:
        config_file: Path to the AWS config file (~/.aws/config)
        credentials_file: Path to the shared credentials file (~/.aws/credentials)
        default_region: Region for profiles that do not declare one

    Returns:
        Immutable mapping of profile name to Profile

    Raises:
        ProfileConfigError: If a file cannot be parsed or the table is invalid
    """
    raw: Dict[str, Dict[str, str]] = {}

    config = _read_ini(Path(config_file).expanduser())
    for section in config.sections():
        name = _config_section_name(section)
        if name is None:
            continue
        values = raw.setdefault(name, {})
        values.update({k: v for k, v in config.items(section) if k in PROFILE_KEYS})

    # Credentials file sections are bare profile names and win over the config file
    credentials = _read_ini(Path(credentials_file).expanduser())
    for section in credentials.sections():
        values = raw.setdefault(section, {})
        values.update({k: v for k, v in credentials.items(section) if k in PROFILE_KEYS})

    profiles = {}
    for name, values in raw.items():
        values.setdefault("region", default_region)
        profiles[name] = Profile(name=name, **values)

    logger.info(
        "Profiles loaded",
        count=len(profiles),
        has_default=DEFAULT_PROFILE in profiles,
        config_file=str(config_file),
    )
    return validate_profile_table(profiles)
