"""
Retry-until-status probe for eventually consistent APIs.

After an API key is created or revoked in the dashboard, the change
takes a while to reach the API gateway. The probe repeats a request at
a fixed interval until the status says the change has landed, or the
attempts run out. Exhaustion is not an error: the caller inspects the
final status and decides.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from .common.config import ProbeSettings
from .common.exceptions import InvalidConfigError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 120
DEFAULT_INTERVAL = 1.0
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class ProbeRequest:
    """An HTTP request the probe can send repeatedly."""

    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    json: Optional[Any] = None


@dataclass(frozen=True)
class RetryOutcome:
    """Result of one probe run."""

    final_status: Optional[int]
    succeeded: bool
    elapsed: float
    attempts: int
    response: Optional[requests.Response] = None


def status_satisfies(status: Optional[int], expect_failure: bool) -> bool:
    """Success predicate: 200 when expecting success, anything else otherwise."""
    if expect_failure:
        return status != 200
    return status == 200


class RetryProbe:
    """Bounded, fixed-interval retry of an HTTP request."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """
        Initialize the probe.

        Args:
            session: HTTP session; a new one is created when omitted.
            timeout: Per-request timeout in seconds.
        """
        self._session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_settings(
        cls, settings: ProbeSettings, session: Optional[requests.Session] = None
    ) -> "RetryProbe":
        return cls(session=session, timeout=settings.timeout)

    async def send(self, request: ProbeRequest) -> requests.Response:
        """
        Send a request once.

        Raises:
            NetworkError: If no response was received.
        """
        try:
            return await asyncio.to_thread(
                lambda: self._session.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    json=request.json,
                    timeout=self.timeout,
                )
            )
        except requests.RequestException as e:
            raise NetworkError(request.url, str(e)) from e

    async def run(
        self,
        request: ProbeRequest,
        expect_failure: bool = False,
        retries: int = DEFAULT_RETRIES,
        interval: float = DEFAULT_INTERVAL,
    ) -> RetryOutcome:
        """
        Repeat a request until its status satisfies the expectation.

        Args:
            request: Request to send.
            expect_failure: Wait for a non-200 status instead of a 200.
            retries: Maximum number of attempts.
            interval: Seconds to sleep between attempts.

        Returns:
            RetryOutcome holding the last response observed.

        Raises:
            InvalidConfigError: If ``retries`` is less than 1.
            NetworkError: If a request could not be completed.
        """
        if retries < 1:
            raise InvalidConfigError("retries", retries, "must be at least 1")

        start = time.monotonic()
        response: Optional[requests.Response] = None
        status: Optional[int] = None
        attempts = 0

        for attempt in range(1, retries + 1):
            attempts = attempt
            response = await self.send(request)
            status = response.status_code

            if status_satisfies(status, expect_failure):
                break

            logger.debug(
                "Probe attempt %d/%d: status %s, expect_failure=%s",
                attempt,
                retries,
                status,
                expect_failure,
            )
            if attempt < retries:
                await asyncio.sleep(interval)

        elapsed = time.monotonic() - start
        succeeded = status_satisfies(status, expect_failure)
        logger.info(
            "Probe %s %s finished after %d attempt(s) in %.1fs: status %s (%s)",
            request.method,
            request.url,
            attempts,
            elapsed,
            status,
            "satisfied" if succeeded else "exhausted",
        )
        return RetryOutcome(
            final_status=status,
            succeeded=succeeded,
            elapsed=elapsed,
            attempts=attempts,
            response=response,
        )
