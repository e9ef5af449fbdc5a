"""Version information for sharedmailbox."""

__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Release information
__title__ = "sharedmailbox"
__description__ = "Shared mailbox coordination for concurrent end-to-end test runs"
__author__ = "Trade Tariff E2E Team"
__license__ = "MIT"
__copyright__ = "Copyright 2024-2026 Trade Tariff E2E Team"


def get_version() -> str:
    """Return the current version string."""
    return __version__


def get_version_info() -> tuple[int, ...]:
    """Return the version as a tuple of integers."""
    return __version_info__
