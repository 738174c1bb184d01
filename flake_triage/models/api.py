"""Models for the quarantine backend API."""

from collections.abc import Sequence
from datetime import datetime
from typing import Literal

from pydantic import Field

from flake_triage.models.base import Model

type AttemptResult = Literal["pass", "fail", "quarantined"]


class QuarantinedTest(Model):
    """A test currently under quarantine."""

    test_id: str = Field(..., description="Backend identifier of the test")
    filename: str = Field(..., description="Posix path relative to the repo root")
    name: Sequence[str] = Field(..., description="Title path, capped per component")


class TestSuiteManifest(Model):
    """Quarantine manifest of a test suite."""

    __test__ = False

    quarantined_tests: Sequence[QuarantinedTest] = Field(default_factory=list)


class TestRunAttemptRecord(Model):
    """Uploaded record of one attempt."""

    __test__ = False

    start_time: datetime
    duration_ms: int
    result: AttemptResult
    failure_reason: Literal["independent"] | None = None


class TestRunRecord(Model):
    """Uploaded record of every terminal attempt of one test."""

    __test__ = False

    filename: str
    name: Sequence[str]
    attempts: Sequence[TestRunAttemptRecord]


class CreateTestSuiteRunRequest(Model):
    """Body of a run upload."""

    branch: str | None = None
    commit: str | None = None
    start_time: datetime
    end_time: datetime
    test_runs: Sequence[TestRunRecord]


class TestSuiteRunSummary(Model):
    """Backend response to a run upload."""

    __test__ = False

    run_id: str
    suite_id: str
    branch: str | None = None
    commit: str | None = None
