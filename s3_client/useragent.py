from __future__ import annotations
"""User agent derivation from the installed distribution metadata."""
from importlib.metadata import PackageNotFoundError, version
import platform

DIST_NAME = "pys3client"
PRODUCT = "s3-client-python"


def package_version(dist_name: str = DIST_NAME) -> str:
    try:
        return version(dist_name)
    except PackageNotFoundError:
        return "0.0.0"


def default_user_agent() -> str:
    return f"S3Client ({platform.system()}; {platform.machine()}) {PRODUCT}/{package_version()}"


def with_app_info(user_agent: str, name: str | None, version_: str | None) -> str:
    """Append ``name/version`` to a user agent; a missing part leaves it unchanged."""
    if not name or not version_ or not name.strip() or not version_.strip():
        return user_agent
    return f"{user_agent} {name.strip()}/{version_.strip()}"
