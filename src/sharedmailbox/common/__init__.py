"""Shared configuration and exceptions for sharedmailbox."""

from .config import Settings, get_settings, reload_settings
from .exceptions import (
    ClassificationError,
    ConfigurationError,
    InvalidConfigError,
    LockError,
    LockTimeoutError,
    MailboxError,
    MessageParseError,
    MissingConfigError,
    NetworkError,
    NoEmailReceivedError,
    NoValidLinksFoundError,
    ObjectNotFoundError,
    ProbeError,
    SharedMailboxError,
    StorageError,
)

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "ClassificationError",
    "ConfigurationError",
    "InvalidConfigError",
    "LockError",
    "LockTimeoutError",
    "MailboxError",
    "MessageParseError",
    "MissingConfigError",
    "NetworkError",
    "NoEmailReceivedError",
    "NoValidLinksFoundError",
    "ObjectNotFoundError",
    "ProbeError",
    "SharedMailboxError",
    "StorageError",
]
