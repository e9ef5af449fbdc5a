"""
Inbox reader for the shared test mailbox.

Inbound mail is written by the mail service as raw MIME objects under a
bucket prefix. The poller lists that prefix newest first and returns the
first message addressed to the configured recipient that carries an
allow-listed callback link.
"""

import logging
from typing import Iterable, Optional

from ..common.config import MailboxSettings
from ..common.exceptions import MessageParseError, ObjectNotFoundError
from ..storage.backend import ObjectStorageBackend
from .links import CallbackLinkFilter
from .parser import EmailMessage, EmailParser

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100


class InboxPoller:
    """Stateless reader over the shared inbox prefix."""

    def __init__(
        self,
        storage: ObjectStorageBackend,
        recipient: str,
        hosts: Iterable[str],
        prefix: str = "",
        parser: Optional[EmailParser] = None,
    ) -> None:
        """
        Initialize the inbox poller.

        Args:
            storage: Backend holding the raw messages.
            recipient: Address messages must be sent to.
            hosts: Hostnames allowed in callback links.
            prefix: Key prefix under which messages are stored.
            parser: Parser for raw messages.
        """
        self._storage = storage
        self.recipient = recipient
        self.prefix = prefix
        self._parser = parser or EmailParser()
        self._links = CallbackLinkFilter(recipient, hosts)

    @classmethod
    def from_settings(
        cls, storage: ObjectStorageBackend, settings: MailboxSettings
    ) -> "InboxPoller":
        """Create a poller from mailbox settings."""
        return cls(
            storage,
            recipient=settings.recipient,
            hosts=settings.allowed_hosts,
            prefix=settings.prefix,
        )

    @property
    def link_filter(self) -> CallbackLinkFilter:
        return self._links

    async def get_latest_email(self, limit: int = DEFAULT_LIST_LIMIT) -> Optional[EmailMessage]:
        """
        Find the newest message for the recipient with a callback link.

        Args:
            limit: Maximum number of stored objects to consider.

        Returns:
            The message with its allowed links, or None if none qualifies.

        Raises:
            StorageError: If listing or fetching fails.
        """
        objects = await self._storage.list_prefix(self.prefix, max_keys=limit)
        if not objects:
            return None

        objects.sort(key=lambda obj: obj.last_modified, reverse=True)

        for obj in objects:
            message = await self._fetch_and_parse(obj.key)
            if message is None:
                continue

            if not message.is_addressed_to(self.recipient):
                logger.debug("Skipping %s: addressed to %s", obj.key, message.to)
                continue

            links = self._links.links_in(message.body)
            if links:
                logger.info(
                    "Found email %s for %s with %d callback link(s)",
                    obj.key,
                    self.recipient,
                    len(links),
                )
                return message.with_links(links)

            logger.debug("Skipping %s: no allowed links", obj.key)

        return None

    async def _fetch_and_parse(self, key: str) -> Optional[EmailMessage]:
        try:
            stored = await self._storage.get(key)
        except ObjectNotFoundError:
            # Deleted by another run between list and get
            logger.debug("Message %s disappeared before it could be read", key)
            return None

        try:
            return self._parser.parse(stored.body, key)
        except MessageParseError as e:
            logger.error("Error parsing MIME for %s: %s", key, e)
            return None

    async def delete_email(self, key: str) -> None:
        """Delete a message. Failures are logged, never raised."""
        try:
            await self._storage.delete(key)
            logger.debug("Deleted email %s", key)
        except Exception as e:
            logger.error("Error deleting email with key %s: %s", key, e)
