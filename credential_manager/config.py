import os
from dataclasses import dataclass, field
from pathlib import Path

from botocore.config import Config as BotocoreConfig

from .profiles import DEFAULT_PROFILE, DEFAULT_REGION

REFRESH_INTERVAL_SECONDS = 10
REFRESH_WINDOW_SECONDS = 600
SESSION_DURATION_SECONDS = 10 * 3600


def _int_env(name: str, default: int, invalid: list) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        invalid.append(f"{name}={raw!r}")
        return default
    if value <= 0:
        invalid.append(f"{name}={raw!r}")
        return default
    return value


@dataclass
class Settings:
    """Runtime settings, read from environment variables.

    Standard AWS variables:
        - AWS_PROFILE: Profile to serve (default: default)
        - AWS_REGION / AWS_DEFAULT_REGION: Region for profiles without one (default: us-east-1)
        - AWS_CONFIG_FILE: AWS config file (default: ~/.aws/config)
        - AWS_SHARED_CREDENTIALS_FILE: Shared credentials file (default: ~/.aws/credentials)

    Application variables:
        - LOG_LEVEL: Logging level (default: INFO)
        - APP_ENV: "production" switches to JSON logs (default: development)
        - CREDENTIAL_MANAGER_REFRESH_INTERVAL: Seconds between refresh ticks (default: 10)
        - CREDENTIAL_MANAGER_REFRESH_WINDOW: Refresh when this many seconds are left (default: 600)
        - CREDENTIAL_MANAGER_SESSION_DURATION: GetSessionToken duration in seconds (default: 36000)
        - CREDENTIAL_MANAGER_STS_CONNECT_TIMEOUT: STS connect timeout in seconds (default: 5)
        - CREDENTIAL_MANAGER_STS_READ_TIMEOUT: STS read timeout in seconds (default: 10)
        - CREDENTIAL_MANAGER_STS_MAX_ATTEMPTS: botocore retry attempts for STS (default: 3)
    """

    profile: str = DEFAULT_PROFILE
    aws_region: str = DEFAULT_REGION
    config_file: Path = field(default_factory=lambda: Path.home() / ".aws" / "config")
    credentials_file: Path = field(default_factory=lambda: Path.home() / ".aws" / "credentials")
    log_level: str = "INFO"
    json_logs: bool = False
    refresh_interval: int = REFRESH_INTERVAL_SECONDS
    refresh_window: int = REFRESH_WINDOW_SECONDS
    session_duration: int = SESSION_DURATION_SECONDS
    sts_connect_timeout: int = 5
    sts_read_timeout: int = 10
    sts_max_attempts: int = 3

    def __post_init__(self):
        self.profile = os.getenv("AWS_PROFILE", DEFAULT_PROFILE)
        self.aws_region = os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", DEFAULT_REGION))

        if config_file := os.getenv("AWS_CONFIG_FILE"):
            self.config_file = Path(config_file).expanduser()
        if credentials_file := os.getenv("AWS_SHARED_CREDENTIALS_FILE"):
            self.credentials_file = Path(credentials_file).expanduser()

        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.json_logs = os.getenv("APP_ENV", "development").lower() == "production"

        invalid: list = []
        self.refresh_interval = _int_env("CREDENTIAL_MANAGER_REFRESH_INTERVAL", REFRESH_INTERVAL_SECONDS, invalid)
        self.refresh_window = _int_env("CREDENTIAL_MANAGER_REFRESH_WINDOW", REFRESH_WINDOW_SECONDS, invalid)
        self.session_duration = _int_env("CREDENTIAL_MANAGER_SESSION_DURATION", SESSION_DURATION_SECONDS, invalid)
        self.sts_connect_timeout = _int_env("CREDENTIAL_MANAGER_STS_CONNECT_TIMEOUT", 5, invalid)
        self.sts_read_timeout = _int_env("CREDENTIAL_MANAGER_STS_READ_TIMEOUT", 10, invalid)
        self.sts_max_attempts = _int_env("CREDENTIAL_MANAGER_STS_MAX_ATTEMPTS", 3, invalid)

        if invalid:
            raise ValueError(
                f"Invalid configuration: {', '.join(invalid)}\n"
                "\n"
                "Numeric settings must be positive integers (seconds or attempt counts).\n"
            )

    def botocore_config(self) -> BotocoreConfig:
        """Client configuration for STS calls (timeouts and botocore's own retries)."""
        return BotocoreConfig(
            retries={"max_attempts": self.sts_max_attempts, "mode": "standard"},
            connect_timeout=self.sts_connect_timeout,
            read_timeout=self.sts_read_timeout,
        )


def get_settings() -> Settings:
    """Get a settings instance built from the current environment."""
    return Settings()
