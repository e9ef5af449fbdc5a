"""
Shared inbox reading for sharedmailbox.

This package parses raw emails from object storage, filters them by
recipient and extracts allow-listed passwordless callback links.
"""

from .links import CallbackLinkFilter, extract_links, normalize_url
from .parser import EmailMessage, EmailParser
from .poller import InboxPoller
from .waiter import MailboxWaiter

__all__ = [
    "CallbackLinkFilter",
    "EmailMessage",
    "EmailParser",
    "InboxPoller",
    "MailboxWaiter",
    "extract_links",
    "normalize_url",
]
