"""
Tests for the retry-until-status probe.
"""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
import requests

from sharedmailbox.common.config import ProbeSettings
from sharedmailbox.common.exceptions import InvalidConfigError, NetworkError
from sharedmailbox.probe import ProbeRequest, RetryProbe, status_satisfies

REQUEST = ProbeRequest(
    url="https://api.example.com/classify",
    headers={"Authorization": "Bearer key"},
    json={"description": "tomatoes"},
)


def make_response(status, payload=None):
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(payload or {}).encode("utf-8")
    return response


def scripted_session(*statuses):
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = [make_response(s) for s in statuses]
    return session


@pytest.fixture
def sleeps(monkeypatch):
    """Record probe sleeps without waiting."""
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr("sharedmailbox.probe.asyncio.sleep", fake_sleep)
    return recorded


class TestStatusSatisfies:
    """Tests for the success predicate."""

    @pytest.mark.parametrize(
        "status,expect_failure,expected",
        [
            (200, False, True),
            (403, False, False),
            (500, False, False),
            (200, True, False),
            (401, True, True),
            (None, True, True),
        ],
    )
    def test_predicate(self, status, expect_failure, expected):
        assert status_satisfies(status, expect_failure) is expected


class TestRetryProbe:
    """Tests for RetryProbe.run."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self, sleeps):
        session = scripted_session(500, 500, 200)
        probe = RetryProbe(session=session)

        outcome = await probe.run(REQUEST, retries=5, interval=0.5)

        assert outcome.succeeded
        assert outcome.final_status == 200
        assert outcome.attempts == 3
        assert sleeps == [0.5, 0.5]
        assert session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_retries_until_failure_when_expected(self, sleeps):
        probe = RetryProbe(session=scripted_session(200, 200, 403))

        outcome = await probe.run(REQUEST, expect_failure=True, retries=5, interval=0)

        assert outcome.succeeded
        assert outcome.final_status == 403
        assert outcome.attempts == 3

    @pytest.mark.asyncio
    async def test_exhaustion_returns_last_status(self, sleeps):
        probe = RetryProbe(session=scripted_session(200, 200, 200))

        outcome = await probe.run(REQUEST, expect_failure=True, retries=3, interval=1)

        assert not outcome.succeeded
        assert outcome.final_status == 200
        assert outcome.attempts == 3
        assert len(sleeps) == 2

    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_sleep(self, sleeps):
        probe = RetryProbe(session=scripted_session(200))

        outcome = await probe.run(REQUEST, retries=10)

        assert outcome.attempts == 1
        assert sleeps == []
        assert outcome.response.json() == {}

    @pytest.mark.asyncio
    async def test_sends_request_fields(self):
        session = scripted_session(200)
        probe = RetryProbe(session=session, timeout=12)

        await probe.run(REQUEST, retries=1)

        session.request.assert_called_once_with(
            "POST",
            "https://api.example.com/classify",
            headers={"Authorization": "Bearer key"},
            json={"description": "tomatoes"},
            timeout=12,
        )

    @pytest.mark.asyncio
    async def test_network_failure_raises(self):
        session = MagicMock(spec=requests.Session)
        session.request.side_effect = requests.ConnectionError("refused")
        probe = RetryProbe(session=session)

        with pytest.raises(NetworkError) as exc_info:
            await probe.run(REQUEST, retries=3)

        assert exc_info.value.url == REQUEST.url

    @pytest.mark.asyncio
    @pytest.mark.parametrize("retries", [0, -1])
    async def test_rejects_non_positive_retries(self, retries):
        probe = RetryProbe(session=scripted_session())

        with pytest.raises(InvalidConfigError):
            await probe.run(REQUEST, retries=retries)

    @pytest.mark.asyncio
    async def test_really_waits_between_attempts(self):
        probe = RetryProbe(session=scripted_session(500, 200))
        loop = asyncio.get_running_loop()

        started = loop.time()
        outcome = await probe.run(REQUEST, retries=2, interval=0.1)

        assert outcome.succeeded
        assert loop.time() - started >= 0.1
        assert outcome.elapsed >= 0.1

    def test_from_settings(self):
        probe = RetryProbe.from_settings(ProbeSettings(timeout=5))
        assert probe.timeout == 5
