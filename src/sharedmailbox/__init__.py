"""sharedmailbox - shared test mailbox coordination for concurrent e2e runs."""

from sharedmailbox.__version__ import (
    __author__,
    __copyright__,
    __description__,
    __license__,
    __title__,
    __version__,
    __version_info__,
    get_version,
    get_version_info,
)

__all__ = [
    "__version__",
    "__version_info__",
    "__title__",
    "__description__",
    "__author__",
    "__license__",
    "__copyright__",
    "get_version",
    "get_version_info",
]
