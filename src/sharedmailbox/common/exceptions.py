"""
Custom exceptions for sharedmailbox.

This module defines all custom exceptions used throughout the package
for better error handling and debugging.
"""

from typing import Any, Optional


class SharedMailboxError(Exception):
    """Base exception for all sharedmailbox errors."""

    def __init__(self, message: str,
                 details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


# Configuration Exceptions
class ConfigurationError(SharedMailboxError):
    """Base exception for configuration-related errors."""


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration value is missing."""

    def __init__(
        self, config_key: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        """
        Initialize missing config error.

        Args:
            config_key: The missing configuration key.
            details: Optional dictionary with additional error details.
        """
        super().__init__(
            f"Missing required configuration: '{config_key}'", details)
        self.config_key = config_key


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize invalid config error.

        Args:
            config_key: The configuration key with invalid value.
            value: The invalid value.
            reason: Optional reason why the value is invalid.
            details: Optional dictionary with additional error details.
        """
        message = f"Invalid configuration value for '{config_key}': {value}"
        if reason:
            message += f" - {reason}"
        super().__init__(message, details)
        self.config_key = config_key
        self.value = value
        self.reason = reason


# Storage Exceptions
class StorageError(SharedMailboxError):
    """Raised when an object storage operation fails."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize storage error.

        Args:
            message: Human-readable error message.
            key: The storage key involved, if any.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message, details)
        self.key = key


class ObjectNotFoundError(StorageError):
    """Raised when a requested object does not exist."""

    def __init__(
        self, key: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__(f"Object not found: '{key}'", key, details)


# Lock Exceptions
class LockError(SharedMailboxError):
    """Base exception for mailbox lock errors."""


class LockTimeoutError(LockError):
    """Raised when the mailbox lock could not be acquired in time."""

    def __init__(
        self,
        lock_key: str,
        attempts: int,
        waited: float,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize lock timeout error.

        Args:
            lock_key: The storage key of the lock.
            attempts: Number of acquisition attempts made.
            waited: Seconds spent waiting.
            details: Optional dictionary with additional error details.
        """
        super().__init__(
            f"Failed to acquire lock '{lock_key}' after {waited:.1f}s "
            f"({attempts} attempts)",
            details,
        )
        self.lock_key = lock_key
        self.attempts = attempts
        self.waited = waited


# Mailbox Exceptions
class MailboxError(SharedMailboxError):
    """Base exception for mailbox-related errors."""


class MessageParseError(MailboxError):
    """Raised when a stored message cannot be parsed."""

    def __init__(
        self,
        key: str,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"Failed to parse message '{key}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.key = key
        self.reason = reason


class NoEmailReceivedError(MailboxError):
    """Raised when no qualifying email arrived within the wait window."""

    def __init__(
        self,
        recipient: str,
        waited: float,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize no email received error.

        Args:
            recipient: The mailbox address that was polled.
            waited: Seconds spent waiting.
            details: Optional dictionary with additional error details.
        """
        super().__init__(
            f"No email received for '{recipient}' within {waited:.1f}s",
            details,
        )
        self.recipient = recipient
        self.waited = waited


class NoValidLinksFoundError(MailboxError):
    """Raised when a received email carries no allow-listed callback link."""

    def __init__(
        self,
        recipient: str,
        key: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"No valid email links found for '{recipient}'"
        if key:
            message += f" in message '{key}'"
        super().__init__(message, details)
        self.recipient = recipient
        self.key = key


# Probe Exceptions
class ProbeError(SharedMailboxError):
    """Base exception for HTTP probe errors."""


class NetworkError(ProbeError):
    """Raised when an HTTP request could not be completed."""

    def __init__(
        self,
        url: str,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"Request to '{url}' failed"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.url = url
        self.reason = reason


class ClassificationError(ProbeError):
    """Raised when a classification check does not hold."""
