"""Build metadata reported by the health endpoint.

APP_VERSION and GIT_COMMIT come from environment variables set at deploy
time. Without them the installed package version is used, and "dev" when
the project is run from a source checkout.
"""

import os
from importlib.metadata import PackageNotFoundError, version

DISTRIBUTION_NAME = "coaster-clash"


def _installed_version() -> str:
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "dev"


APP_VERSION: str = os.environ.get("APP_VERSION") or _installed_version()
GIT_COMMIT: str = os.environ.get("GIT_COMMIT", "dev")
