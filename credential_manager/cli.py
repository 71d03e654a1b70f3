#!/usr/bin/env python3
"""
Credentials Manager CLI

Command-line front end for the credentials manager. Authenticates the source
profile of the requested profile, assumes it, and prints the result.

Commands:
    profiles            List configured profiles
    export              Print shell export statements
    credential-process  Print credentials in the AWS credential_process format
    watch               Keep credentials refreshed until interrupted

Usage:
    aws-credential-manager profiles
    aws-credential-manager export dev
    aws-credential-manager credential-process dev --mfa-code 123456
    aws-credential-manager watch dev
"""

import json
import shlex
import sys
import time
from typing import Mapping, NoReturn, Optional

import click
import structlog
from dotenv import load_dotenv

from .config import Settings, get_settings
from .credentials import Credentials
from .errors import CredentialsManagerError, MFANeededError, UnknownProfileError, is_fatal
from .identity import StsIdentityService
from .logging_config import configure_logging
from .manager import CredentialsManager, create_manager
from .profiles import Profile, load_profiles
from .version import __version__

logger = structlog.get_logger(__name__)

MAX_MFA_PROMPTS = 3


def handle_error(error: Exception) -> NoReturn:
    """Print an error and exit with status 1."""
    if isinstance(error, CredentialsManagerError):
        click.echo(error.format(), err=True)
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def _load_profiles(settings: Settings) -> Mapping[str, Profile]:
    return load_profiles(settings.config_file, settings.credentials_file, settings.aws_region)


def _build_manager(
    settings: Settings,
    profiles: Mapping[str, Profile],
    profile_name: str,
    mfa_code: str,
    start_refresher: bool = False,
) -> tuple[CredentialsManager, str]:
    """Create a manager authenticated with the source of ``profile_name``.

    Returns:
        Tuple of (manager, MFA code still unused for the role stage)
    """
    if profile_name not in profiles:
        raise UnknownProfileError(profile_name)

    source_name = profiles[profile_name].source_name
    source = profiles.get(source_name)
    # One code cannot serve both stages; it goes to whichever asks for it first
    source_code = mfa_code if source is not None and source.mfa_serial else ""
    role_code = "" if source_code else mfa_code

    manager = create_manager(
        profiles,
        StsIdentityService(settings.botocore_config()),
        profile_name=source_name,
        mfa_code=source_code,
        start_refresher=start_refresher,
        refresh_interval=settings.refresh_interval,
        refresh_window=settings.refresh_window,
        session_duration=settings.session_duration,
    )
    return manager, role_code


def _assume(manager: CredentialsManager, profile_name: str, mfa_code: str = "") -> Credentials:
    """Assume ``profile_name``, prompting for MFA codes as needed."""
    for _ in range(MAX_MFA_PROMPTS):
        try:
            return manager.assume_role(profile_name, mfa_code)
        except MFANeededError as e:
            code = click.prompt(f"MFA code for {e.mfa_serial or e.profile}", err=True)
            if manager.last_error is e:
                # Latched by the source stage
                manager.set_source_profile(e.profile, code)
                mfa_code = ""
            else:
                mfa_code = code
    return manager.assume_role(profile_name, mfa_code)


def _obtain(settings: Settings, profile_name: Optional[str], mfa_code: str, start_refresher: bool = False):
    # PROFILE falls back to AWS_PROFILE
    profile_name = profile_name or settings.profile
    profiles = _load_profiles(settings)
    manager, role_code = _build_manager(settings, profiles, profile_name, mfa_code, start_refresher)
    credentials = _assume(manager, profile_name, role_code)
    return manager, credentials


@click.group()
@click.version_option(version=__version__, prog_name="aws-credential-manager")
@click.option("--log-level", default=None, help="Logging level (overrides LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, log_level: str):
    """
    AWS Credentials Manager

    Obtains temporary credentials for chained AWS profiles (GetSessionToken for
    the source profile, AssumeRole for the target) and keeps them fresh.
    """
    load_dotenv()
    try:
        settings = get_settings()
    except ValueError as e:
        handle_error(e)

    if log_level:
        settings.log_level = log_level.upper()
    configure_logging(settings.log_level, settings.json_logs)
    ctx.obj = settings


@cli.command("profiles")
@click.pass_obj
def list_profiles(settings: Settings):
    """List configured profiles."""
    try:
        profiles = _load_profiles(settings)
    except CredentialsManagerError as e:
        handle_error(e)

    for name in sorted(profiles):
        profile = profiles[name]
        kind = "role" if profile.is_role else "base"
        source = profile.source_profile or "-"
        mfa = "mfa" if profile.mfa_serial else ""
        click.echo(f"{name}\t{kind}\t{source}\t{profile.region}\t{mfa}".rstrip())


@cli.command("export")
@click.argument("profile", required=False)
@click.option("--mfa-code", "-m", default="", help="Current MFA code")
@click.pass_obj
def export(settings: Settings, profile: Optional[str], mfa_code: str):
    """
    Print shell export statements for PROFILE (default: AWS_PROFILE)

    Example:
        eval "$(aws-credential-manager export dev)"
    """
    try:
        _, credentials = _obtain(settings, profile, mfa_code)
    except CredentialsManagerError as e:
        handle_error(e)

    for key, value in credentials.to_env().items():
        click.echo(f"export {key}={shlex.quote(value)}")


@cli.command("credential-process")
@click.argument("profile", required=False)
@click.option("--mfa-code", "-m", default="", help="Current MFA code")
@click.pass_obj
def credential_process(settings: Settings, profile: Optional[str], mfa_code: str):
    """
    Print credentials for PROFILE (default: AWS_PROFILE) as credential_process JSON

    Example (~/.aws/config):
        [profile dev-cli]
        credential_process = aws-credential-manager credential-process dev
    """
    try:
        _, credentials = _obtain(settings, profile, mfa_code)
    except CredentialsManagerError as e:
        handle_error(e)

    click.echo(json.dumps(credentials.to_credential_process(), indent=2))


@cli.command("watch")
@click.argument("profile", required=False)
@click.option("--mfa-code", "-m", default="", help="Current MFA code")
@click.option("--interval", "-i", default=60, show_default=True, help="Seconds between status lines")
@click.pass_obj
def watch(settings: Settings, profile: Optional[str], mfa_code: str, interval: int):
    """Assume PROFILE (default: AWS_PROFILE) and keep its credentials refreshed until interrupted."""
    try:
        manager, _ = _obtain(settings, profile, mfa_code, start_refresher=True)
    except CredentialsManagerError as e:
        handle_error(e)

    try:
        while True:
            try:
                credentials = manager.get_credentials()
                click.echo(f"{manager.role}\t{credentials.access_key_id}\texpires {credentials.expiration.isoformat()}")
            except CredentialsManagerError as e:
                if is_fatal(e):
                    handle_error(e)
                click.echo(e.format(), err=True)
            time.sleep(interval)
    except KeyboardInterrupt:
        logger.info("Stopping", role=manager.role)
    finally:
        manager.close()


def main():
    cli()


if __name__ == "__main__":
    main()
