"""Version lookup for the CLI."""

import os
import tomllib
from importlib import metadata
from pathlib import Path

DISTRIBUTION_NAME = "aws-credential-manager"


def _version_from_pyproject() -> str:
    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return data.get("project", {}).get("version", "unknown")


def get_version() -> str:
    """
    Resolve the version string.

    Priority:
    1. BUILD_VERSION environment variable (release builds set it from the git tag)
    2. Installed distribution metadata
    3. pyproject.toml next to the package (source checkouts)
    4. "unknown"
    """
    if build_version := os.getenv("BUILD_VERSION"):
        return build_version

    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return _version_from_pyproject()


__version__ = get_version()
