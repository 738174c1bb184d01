"""Roll-up of per-test verdicts into summaries and the upload payload."""

from collections import Counter
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from flake_triage.classifier import VERDICTS, Verdict, classify
from flake_triage.models.api import (
    AttemptResult,
    CreateTestSuiteRunRequest,
    TestRunAttemptRecord,
    TestRunRecord,
)
from flake_triage.models.attempt import Attempt
from flake_triage.models.test_ref import TestRef
from flake_triage.quarantine import ManifestCache
from flake_triage.tracker import AttemptTracker

type SuiteStatus = Literal["failed", "flaky", "quarantined", "skipped", "passed"]

SUITE_STATUSES: tuple[SuiteStatus, ...] = (
    "failed",
    "flaky",
    "quarantined",
    "skipped",
    "passed",
)

_NOT_EXECUTED: frozenset[Verdict] = frozenset({"skipped", "quarantined-pending"})


@dataclass(frozen=True, kw_only=True)
class TestOutcome:
    """Attempts, quarantine membership and verdict of one test."""

    __test__ = False

    ref: TestRef
    attempts: Sequence[Attempt]
    quarantined: bool
    verdict: Verdict


@dataclass(frozen=True, kw_only=True)
class SuiteSummary:
    """Verdict counts of one test file."""

    filename: str
    status: SuiteStatus
    counts: Mapping[Verdict, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True, kw_only=True)
class RunSummary:
    """Verdict counts of a whole run.

    Counts are folded from verdicts, so they always add up to the number of
    tests summarized.
    """

    counts: Mapping[Verdict, int]
    suites: Sequence[SuiteSummary]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def suite_counts(self) -> Mapping[SuiteStatus, int]:
        counter = Counter(suite.status for suite in self.suites)
        return {status: counter[status] for status in SUITE_STATUSES}


def evaluate(tracker: AttemptTracker, manifest: ManifestCache) -> list[TestOutcome]:
    """Classify every test known to the tracker."""
    outcomes: list[TestOutcome] = []
    for ref in tracker.refs():
        attempts = tracker.get_attempts(ref)
        quarantined = manifest.is_quarantined(ref)
        verdict = classify(
            attempts,
            quarantined,
            skipped_by_quarantine=(
                quarantined and manifest.quarantine_mode == "skip_tests"
            ),
        )
        outcomes.append(
            TestOutcome(
                ref=ref, attempts=attempts, quarantined=quarantined, verdict=verdict
            )
        )
    return outcomes


def suite_status(verdicts: Collection[Verdict]) -> SuiteStatus:
    """Status of a file from the verdicts of its tests.

    A file is quarantined only when none of its tests failed or flaked outside
    of quarantine and at least one quarantined test failed or flaked.
    """
    if "fail" in verdicts:
        return "failed"
    if "flaky" in verdicts:
        return "flaky"
    if "quarantined-fail" in verdicts or "quarantined-flaky" in verdicts:
        return "quarantined"
    if verdicts and all(verdict in _NOT_EXECUTED for verdict in verdicts):
        return "skipped"
    return "passed"


def count_verdicts(verdicts: Iterable[Verdict]) -> dict[Verdict, int]:
    counter = Counter(verdicts)
    return {verdict: counter[verdict] for verdict in VERDICTS}


def summarize(results: Iterable[tuple[TestRef, Verdict]]) -> RunSummary:
    """Fold per-test verdicts into suite and run counts."""
    by_file: dict[str, list[Verdict]] = {}
    for ref, verdict in results:
        by_file.setdefault(ref.filename, []).append(verdict)

    suites = [
        SuiteSummary(
            filename=filename,
            status=suite_status(verdicts),
            counts=count_verdicts(verdicts),
        )
        for filename, verdicts in by_file.items()
    ]
    return RunSummary(
        counts=count_verdicts(v for verdicts in by_file.values() for v in verdicts),
        suites=suites,
    )


def to_attempt_record(attempt: Attempt, quarantined: bool) -> TestRunAttemptRecord:
    result: AttemptResult
    if attempt.outcome == "pass":
        result = "pass"
    elif quarantined:
        result = "quarantined"
    else:
        result = "fail"
    return TestRunAttemptRecord(
        start_time=attempt.started_at,
        duration_ms=attempt.duration_ms,
        result=result,
        failure_reason="independent" if attempt.test_independent else None,
    )


def to_upload_payload(outcomes: Iterable[TestOutcome]) -> list[TestRunRecord]:
    """Build one upload record per backend identity.

    Pending attempts are omitted, and tests without any terminal attempt get
    no record. Tests whose names only differ past the backend caps share a
    record.
    """
    attempts_by_name: dict[
        tuple[str, tuple[str, ...]], list[TestRunAttemptRecord]
    ] = {}
    for outcome in outcomes:
        records = [
            to_attempt_record(attempt, outcome.quarantined)
            for attempt in outcome.attempts
            if attempt.is_terminal
        ]
        if not records:
            continue
        key = (outcome.ref.filename, outcome.ref.backend_name)
        attempts_by_name.setdefault(key, []).extend(records)

    return [
        TestRunRecord(filename=filename, name=name, attempts=attempts)
        for (filename, name), attempts in attempts_by_name.items()
    ]


def build_run_request(
    outcomes: Iterable[TestOutcome],
    *,
    start_time: datetime,
    end_time: datetime,
    branch: str | None = None,
    commit: str | None = None,
) -> CreateTestSuiteRunRequest:
    return CreateTestSuiteRunRequest(
        branch=branch,
        commit=commit,
        start_time=start_time,
        end_time=end_time,
        test_runs=to_upload_payload(outcomes),
    )
