"""
Tests for the inbox poller.
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from sharedmailbox.common.config import MailboxSettings
from sharedmailbox.common.exceptions import ObjectNotFoundError, StorageError
from sharedmailbox.inbox.poller import InboxPoller
from sharedmailbox.storage.memory import InMemoryBackend

from helpers import HOSTS, OTHER_RECIPIENT, RECIPIENT, build_raw_email, callback_url, login_email, make_token


def at(minutes_ago):
    return datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)


class VanishingBackend(InMemoryBackend):
    """Objects listed but deleted before they can be read."""

    def __init__(self, vanished):
        super().__init__()
        self.vanished = set(vanished)

    async def get(self, key):
        if key in self.vanished:
            raise ObjectNotFoundError(key)
        return await super().get(key)


class FailingListBackend(InMemoryBackend):
    async def list_prefix(self, prefix, max_keys=1000):
        raise StorageError("list denied")


class FailingDeleteBackend(InMemoryBackend):
    async def delete(self, key):
        raise StorageError("delete denied", key=key)


class TestGetLatestEmail:
    """Tests for finding the latest qualifying email."""

    @pytest.mark.asyncio
    async def test_empty_inbox(self, poller):
        assert await poller.get_latest_email() is None

    @pytest.mark.asyncio
    async def test_returns_email_with_callback_link(self, storage, poller):
        link = callback_url()
        storage.put("inbound/1", login_email(link=link))

        message = await poller.get_latest_email()

        assert message is not None
        assert message.storage_key == "inbound/1"
        assert message.allowed_links == (link,)
        assert message.callback_link == link

    @pytest.mark.asyncio
    async def test_newest_first(self, storage, poller):
        older = callback_url(token=make_token(1))
        newer = callback_url(token=make_token(2))
        # Key order is the reverse of arrival order
        storage.put("inbound/a", login_email(link=newer), last_modified=at(1))
        storage.put("inbound/b", login_email(link=older), last_modified=at(5))

        message = await poller.get_latest_email()

        assert message.callback_link == newer

    @pytest.mark.asyncio
    async def test_mixed_body_yields_one_link(self, storage, poller):
        link = callback_url()
        body = (
            f'<p><a href="{link.replace("&", "&amp;")}">Sign in</a></p>'
            '<p><a href="https://www.trade-tariff.service.gov.uk/help">Help</a></p>'
            f"<p>Or paste this into your browser: {link}</p>"
        )
        storage.put("inbound/1", build_raw_email(html=body))

        message = await poller.get_latest_email()

        assert message.allowed_links == (link,)

    @pytest.mark.asyncio
    async def test_skips_other_recipients(self, storage, poller):
        mine = callback_url()
        storage.put("inbound/mine", login_email(link=mine), last_modified=at(5))
        storage.put("inbound/theirs", login_email(to=OTHER_RECIPIENT), last_modified=at(1))

        message = await poller.get_latest_email()

        assert message.storage_key == "inbound/mine"
        assert message.callback_link == mine

    @pytest.mark.asyncio
    async def test_skips_emails_without_allowed_links(self, storage, poller):
        storage.put(
            "inbound/newsletter",
            build_raw_email(html='<a href="https://example.com/unsubscribe">x</a>'),
            last_modified=at(1),
        )
        storage.put("inbound/login", login_email(), last_modified=at(5))

        message = await poller.get_latest_email()

        assert message.storage_key == "inbound/login"

    @pytest.mark.asyncio
    async def test_skips_unparseable_messages(self, storage, poller, caplog):
        storage.put("inbound/garbage", b"", last_modified=at(1))
        storage.put("inbound/login", login_email(), last_modified=at(5))

        message = await poller.get_latest_email()

        assert message.storage_key == "inbound/login"
        assert "Error parsing MIME for inbound/garbage" in caplog.text

    @pytest.mark.asyncio
    async def test_skips_messages_deleted_after_listing(self):
        storage = VanishingBackend(["inbound/gone"])
        storage.put("inbound/gone", login_email(), last_modified=at(1))
        storage.put("inbound/kept", login_email(), last_modified=at(5))
        poller = InboxPoller(storage, RECIPIENT, HOSTS, prefix="inbound/")

        message = await poller.get_latest_email()

        assert message.storage_key == "inbound/kept"

    @pytest.mark.asyncio
    async def test_only_reads_under_prefix(self, storage, poller):
        storage.put("locks/myott-e2e.lock", b"{}")
        storage.put("other/1", login_email())

        assert await poller.get_latest_email() is None

    @pytest.mark.asyncio
    async def test_respects_limit(self, storage, poller):
        storage.put("inbound/a", build_raw_email(html="<p>no link</p>"), last_modified=at(1))
        storage.put("inbound/b", login_email(), last_modified=at(5))

        assert await poller.get_latest_email(limit=1) is None
        assert (await poller.get_latest_email(limit=2)).storage_key == "inbound/b"

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self):
        poller = InboxPoller(FailingListBackend(), RECIPIENT, HOSTS)
        with pytest.raises(StorageError):
            await poller.get_latest_email()

    def test_from_settings(self, storage):
        settings = MailboxSettings(recipient=RECIPIENT, prefix="mail/", allowed_hosts=HOSTS)
        poller = InboxPoller.from_settings(storage, settings)

        assert poller.recipient == RECIPIENT
        assert poller.prefix == "mail/"
        assert poller.link_filter.hosts == tuple(HOSTS)


class TestDeleteEmail:
    """Tests for deleting consumed emails."""

    @pytest.mark.asyncio
    async def test_deletes(self, storage, poller):
        storage.put("inbound/1", login_email())

        await poller.delete_email("inbound/1")

        assert not storage.contains("inbound/1")

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        caplog.set_level(logging.ERROR)
        poller = InboxPoller(FailingDeleteBackend(), RECIPIENT, HOSTS)

        await poller.delete_email("inbound/1")

        assert "Error deleting email with key inbound/1" in caplog.text
