"""
Waiting policy for the next login email.

The login flow asks the service to send a passwordless email and then
polls the inbox. Messages older than the wait window are ignored so a
leftover email from an earlier run is never reused.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..common.config import MailboxSettings
from ..common.exceptions import NoEmailReceivedError, NoValidLinksFoundError
from .parser import EmailMessage
from .poller import DEFAULT_LIST_LIMIT, InboxPoller

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = 20.0
DEFAULT_POLL_INTERVAL = 1.0


class MailboxWaiter:
    """Polls an ``InboxPoller`` until a recent qualifying email arrives."""

    def __init__(
        self,
        poller: InboxPoller,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> None:
        self.poller = poller
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.limit = limit

    @classmethod
    def from_settings(cls, poller: InboxPoller, settings: MailboxSettings) -> "MailboxWaiter":
        return cls(
            poller,
            timeout=settings.wait_timeout,
            poll_interval=settings.poll_interval,
            limit=settings.list_limit,
        )

    def is_recent(self, message: EmailMessage, now: Optional[datetime] = None) -> bool:
        """True if the message was sent within the wait window."""
        now = now or datetime.now(timezone.utc)
        return message.send_date > now - timedelta(seconds=self.timeout)

    async def wait_for_email(self) -> EmailMessage:
        """
        Wait for a recent email addressed to the shared recipient.

        Raises:
            NoEmailReceivedError: If nothing qualifying arrived in time.
        """
        start = time.monotonic()
        polls = 0

        while time.monotonic() - start < self.timeout:
            polls += 1
            message = await self.poller.get_latest_email(self.limit)

            if message is not None:
                if self.is_recent(message):
                    logger.info(
                        "Received email %s after %.1fs",
                        message.storage_key,
                        time.monotonic() - start,
                    )
                    return message
                logger.debug(
                    "Ignoring stale email %s sent at %s",
                    message.storage_key,
                    message.send_date.isoformat(),
                )

            await asyncio.sleep(self.poll_interval)

        raise NoEmailReceivedError(
            self.poller.recipient,
            time.monotonic() - start,
            details={"polls": polls, "prefix": self.poller.prefix},
        )

    def require_callback_link(self, message: Optional[EmailMessage]) -> str:
        """
        Return the first allowed callback link of a message.

        Raises:
            NoValidLinksFoundError: If the message has no allowed links.
        """
        if message is None or message.callback_link is None:
            raise NoValidLinksFoundError(
                self.poller.recipient,
                message.storage_key if message is not None else None,
            )
        return message.callback_link
