from __future__ import annotations

from importlib import metadata

DIST_NAME = "cryptr-guard"


def installed_version(dist: str = DIST_NAME) -> str:
    """Version of the installed distribution, ``0.0.0`` for a bare source tree."""
    try:
        return metadata.version(dist)
    except metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = installed_version()

# Sent on key set fetches and as the demo server's Server header.
USER_AGENT = f"{DIST_NAME}/{__version__}"
