"""Client for the quarantine and reporting backend."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import aiohttp
from pydantic import ValidationError

from flake_triage.config import FlakeTriageConfig
from flake_triage.errors import ConfigError, ManifestFetchError, UploadError
from flake_triage.models.api import (
    CreateTestSuiteRunRequest,
    TestSuiteManifest,
    TestSuiteRunSummary,
)

log = logging.getLogger(__name__)

USER_AGENT = "flake-triage"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60)


def suite_run_url(base_url: str, suite_id: str, run_id: str) -> str:
    """Web URL of an uploaded run."""
    return f"{base_url.rstrip('/')}/test-suites/{suite_id}/runs/{run_id}"


@dataclass(frozen=True, kw_only=True)
class BackendClient:
    """Backend API client bound to one test suite."""

    config: FlakeTriageConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: FlakeTriageConfig
    ) -> AsyncGenerator["BackendClient", None]:
        """Create client with managed session lifecycle."""
        if config.api_key is None or not config.test_suite_id:
            raise ConfigError("Backend access requires a test suite ID and API key")

        headers = {
            "Authorization": f"Bearer {config.api_key.get_secret_value()}",
            "User-Agent": USER_AGENT,
        }
        async with aiohttp.ClientSession(
            base_url=config.api_base_url,
            headers=headers,
            timeout=REQUEST_TIMEOUT,
        ) as session:
            yield cls(config=config, session=session)

    @property
    def suite_path(self) -> str:
        return f"/api/v1/test-suites/{self.config.test_suite_id}"

    async def get_manifest(self) -> TestSuiteManifest:
        """Fetch the quarantine manifest of the test suite.

        Raises:
            ManifestFetchError: On network errors, unexpected statuses, or a
                malformed response body

        """
        url = f"{self.suite_path}/manifest"
        log.info("Fetching quarantine manifest: %s%s", self.config.api_base_url, url)

        try:
            async with self.session.get(url) as response:
                if response.status != 200:
                    text = await response.text()
                    raise ManifestFetchError(
                        f"Failed to fetch manifest: {response.status} {text}"
                    )
                data = await response.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise ManifestFetchError(f"Failed to fetch manifest: {e}") from e

        try:
            return TestSuiteManifest.model_validate(data)
        except ValidationError as e:
            raise ManifestFetchError(f"Malformed manifest response: {e}") from e

    async def create_run(
        self, request: CreateTestSuiteRunRequest
    ) -> TestSuiteRunSummary:
        """Upload the results of a run.

        Raises:
            UploadError: On network errors, unexpected statuses, or a malformed
                response body

        """
        url = f"{self.suite_path}/runs"
        payload = request.model_dump(mode="json", exclude_none=True)
        log.info(
            "Uploading %d test record(s): %s%s",
            len(request.test_runs),
            self.config.api_base_url,
            url,
        )

        try:
            async with self.session.post(url, json=payload) as response:
                if response.status != 201:
                    text = await response.text()
                    raise UploadError(
                        f"Failed to upload results: {response.status} {text}"
                    )
                data = await response.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise UploadError(f"Failed to upload results: {e}") from e

        try:
            return TestSuiteRunSummary.model_validate(data)
        except ValidationError as e:
            raise UploadError(f"Malformed upload response: {e}") from e

    def run_url(self, summary: TestSuiteRunSummary) -> str:
        return suite_run_url(
            self.config.api_base_url, summary.suite_id, summary.run_id
        )
