"""
Classification API client used to verify API key state.

Sends a commodity description with a customer API key and checks the
response. Key activation and revocation propagate asynchronously, so
every call goes through ``RetryProbe``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .common.config import ProbeSettings
from .common.exceptions import ClassificationError
from .probe import DEFAULT_INTERVAL, DEFAULT_RETRIES, ProbeRequest, RetryOutcome, RetryProbe

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://search.dev.trade-tariff.service.gov.uk/fpo-code-search"


@dataclass(frozen=True)
class ClassificationResult:
    """One entry of the ``results`` array."""

    code: str
    score: Optional[float] = None
    description: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClassificationResult":
        known = {"code", "score", "description"}
        score = data.get("score")
        return cls(
            code=str(data.get("code", "")),
            score=float(score) if isinstance(score, (int, float)) else None,
            description=data.get("description"),
            extra={k: v for k, v in data.items() if k not in known},
        )


class ClassificationClient:
    """Client for the classification endpoint, authenticated by API key."""

    def __init__(
        self,
        api_key: Optional[str],
        url: str = DEFAULT_API_URL,
        probe: Optional[RetryProbe] = None,
        retries: int = DEFAULT_RETRIES,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.probe = probe or RetryProbe()
        self.retries = retries
        self.interval = interval
        self.outcome: Optional[RetryOutcome] = None

    @classmethod
    def from_settings(
        cls,
        api_key: Optional[str],
        settings: ProbeSettings,
        probe: Optional[RetryProbe] = None,
    ) -> "ClassificationClient":
        return cls(
            api_key,
            url=settings.api_url,
            probe=probe or RetryProbe.from_settings(settings),
            retries=settings.retries,
            interval=settings.interval,
        )

    def build_request(self, description: str) -> ProbeRequest:
        """Build the classification request for a description."""
        return ProbeRequest(
            url=self.url,
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={"description": description},
        )

    async def classify(self, description: str, expect_failure: bool = False) -> RetryOutcome:
        """
        Classify a description, retrying until the expected status appears.

        Args:
            description: Free-text goods description.
            expect_failure: Wait for the key to be rejected instead.
        """
        self.outcome = await self.probe.run(
            self.build_request(description),
            expect_failure=expect_failure,
            retries=self.retries,
            interval=self.interval,
        )
        return self.outcome

    @property
    def status(self) -> Optional[int]:
        """Final status of the last classification, if any."""
        return self.outcome.final_status if self.outcome else None

    def assert_successful(self) -> None:
        if self.status != 200:
            raise ClassificationError(
                f"Expected status 200 from {self.url}, got {self.status}",
                details=self._details(),
            )

    def assert_unsuccessful(self) -> None:
        # No response at all counts as unsuccessful
        if self.status == 200:
            raise ClassificationError(
                f"Expected a non-200 status from {self.url}, got 200",
                details=self._details(),
            )

    def results(self) -> list[ClassificationResult]:
        """Decode the results of the last response; empty when absent."""
        if self.outcome is None or self.outcome.response is None:
            return []

        try:
            data = self.outcome.response.json()
        except ValueError:
            logger.warning("Classification response from %s is not JSON", self.url)
            return []

        if not isinstance(data, dict):
            return []

        raw_results = data.get("results")
        if not isinstance(raw_results, list):
            return []

        return [ClassificationResult.from_dict(r) for r in raw_results if isinstance(r, dict)]

    def find_result(self, code: str) -> Optional[ClassificationResult]:
        """Return the result with the given code, if present."""
        return next((r for r in self.results() if r.code == code), None)

    def assert_classification(self, code: str) -> ClassificationResult:
        result = self.find_result(code)
        if result is None:
            raise ClassificationError(
                f"Classification {code} not found in response",
                details={"codes": [r.code for r in self.results()]},
            )
        return result

    def _details(self) -> dict[str, Any]:
        if self.outcome is None:
            return {}
        return {
            "attempts": self.outcome.attempts,
            "elapsed": round(self.outcome.elapsed, 2),
        }
