"""
Passwordless login glue: request an email and return its callback link.

The whole request-and-wait window runs under the mailbox lock so no
other run can trigger an email to the shared address in between.
"""

import logging
from typing import Awaitable, Callable, Optional

from .inbox.waiter import MailboxWaiter
from .lock import LockCoordinator

logger = logging.getLogger(__name__)


async def obtain_callback_link(
    coordinator: LockCoordinator,
    waiter: MailboxWaiter,
    request_email: Optional[Callable[[], Awaitable[None]]] = None,
    delete_after: bool = False,
) -> str:
    """
    Trigger a login email and return its allow-listed callback link.

    Args:
        coordinator: Lock serializing access to the shared mailbox.
        waiter: Waiting policy over the inbox.
        request_email: Coroutine function that makes the service send
            the email (for example, submitting the login form). When
            omitted the email is expected to be sent by someone else.
        delete_after: Delete the consumed message from the inbox.

    Raises:
        LockTimeoutError: If the mailbox lock was not acquired.
        NoEmailReceivedError: If no recent email arrived.
        NoValidLinksFoundError: If the email had no callback link.
    """

    async def _request_and_wait() -> str:
        if request_email is not None:
            await request_email()
        message = await waiter.wait_for_email()
        link = waiter.require_callback_link(message)
        if delete_after:
            await waiter.poller.delete_email(message.storage_key)
        return link

    link = await coordinator.with_lock(_request_and_wait)
    logger.info("Obtained callback link for %s", waiter.poller.recipient)
    return link
