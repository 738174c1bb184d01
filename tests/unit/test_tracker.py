"""Tests for the attempt tracker."""

import logging
from datetime import datetime, timezone

import pytest

from flake_triage.models.attempt import Attempt, TestFailure
from flake_triage.models.events import (
    AttemptFailed,
    AttemptFinished,
    AttemptStarted,
    HookFailed,
    TestSkipped,
)
from flake_triage.models.test_ref import TestRef
from flake_triage.testing.factories import TestFailureFactory, TestRefFactory
from flake_triage.tracker import AttemptTracker

STARTED_AT = datetime(2099, 1, 1, 12, 0, tzinfo=timezone.utc)
FILENAME = "tests/test_sample.py"


@pytest.fixture
def tracker() -> AttemptTracker:
    """Create an empty tracker."""
    return AttemptTracker()


def finished(
    title_path: tuple[str, ...],
    outcome: str,
    *,
    attempt_index: int = 0,
    error: TestFailure | None = None,
) -> AttemptFinished:
    return AttemptFinished(
        filename=FILENAME,
        title_path=title_path,
        attempt_index=attempt_index,
        outcome=outcome,  # type: ignore[arg-type]
        started_at=STARTED_AT,
        duration_ms=25,
        error=error,
    )


class TestRecordAttempt:
    """Tests for record_attempt."""

    def test_records_attempts_in_index_order(self, tracker: AttemptTracker) -> None:
        """Attempts are returned ordered by index."""
        ref = TestRefFactory.build()

        tracker.record_attempt(ref, 1, "pass", started_at=STARTED_AT, duration_ms=5)
        tracker.record_attempt(ref, 0, "fail", started_at=STARTED_AT, duration_ms=5)

        assert [a.index for a in tracker.get_attempts(ref)] == [0, 1]
        assert [a.outcome for a in tracker.get_attempts(ref)] == ["fail", "pass"]

    def test_merges_second_failure_into_same_attempt(
        self, tracker: AttemptTracker
    ) -> None:
        """A second failure report for the same attempt adds its error."""
        ref = TestRefFactory.build()
        first = TestFailure(message="first")
        second = TestFailure(message="second")

        tracker.record_attempt(
            ref, 0, "fail", started_at=STARTED_AT, duration_ms=5, error=first
        )
        tracker.record_attempt(
            ref, 0, "fail", started_at=STARTED_AT, duration_ms=9, error=second
        )

        attempts = tracker.get_attempts(ref)
        assert len(attempts) == 1
        assert attempts[0].errors == (second, first)
        assert attempts[0].duration_ms == 9

    def test_deduplicates_identical_errors(self, tracker: AttemptTracker) -> None:
        """The same error reported twice is stored once."""
        ref = TestRefFactory.build()
        error = TestFailureFactory.build()

        for _ in range(2):
            tracker.record_attempt(
                ref, 0, "fail", started_at=STARTED_AT, duration_ms=5, error=error
            )

        assert tracker.get_attempts(ref)[0].errors == (error,)

    def test_failure_is_not_downgraded_by_pass(self, tracker: AttemptTracker) -> None:
        """A later pass report keeps the attempt failed."""
        ref = TestRefFactory.build()

        tracker.record_attempt(
            ref,
            0,
            "fail",
            started_at=STARTED_AT,
            duration_ms=5,
            error=TestFailure(message="boom"),
        )
        tracker.record_attempt(ref, 0, "pass", started_at=STARTED_AT, duration_ms=5)

        assert tracker.get_attempts(ref)[0].outcome == "fail"

    def test_pending_takes_terminal_outcome(self, tracker: AttemptTracker) -> None:
        """A pending attempt is upgraded by its end-of-test report."""
        ref = TestRefFactory.build()

        tracker.record_attempt(ref, 0, "pending", started_at=STARTED_AT, duration_ms=0)
        tracker.record_attempt(ref, 0, "pass", started_at=STARTED_AT, duration_ms=30)

        attempts = tracker.get_attempts(ref)
        assert len(attempts) == 1
        assert attempts[0].outcome == "pass"
        assert attempts[0].duration_ms == 30

    def test_logs_anomaly_for_third_error(
        self, tracker: AttemptTracker, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A third distinct error is merged and logged as an anomaly."""
        ref = TestRefFactory.build()
        errors = [TestFailure(message=f"error {i}") for i in range(3)]

        with caplog.at_level(logging.WARNING):
            for error in errors:
                tracker.record_attempt(
                    ref, 0, "fail", started_at=STARTED_AT, duration_ms=5, error=error
                )

        assert tracker.get_attempts(ref)[0].errors == tuple(reversed(errors))
        assert "Keeping latest failure report" in caplog.text
        assert "already merged 2 errors" in caplog.text

    def test_marks_test_independent_failures(self) -> None:
        """The independence predicate is applied to failed attempts."""

        def is_independent(ref: TestRef, attempt: Attempt) -> bool:
            return any("ECONNRESET" in e.message for e in attempt.errors)

        tracker = AttemptTracker(independence=is_independent)
        ref = TestRefFactory.build()

        tracker.record_attempt(
            ref,
            0,
            "fail",
            started_at=STARTED_AT,
            duration_ms=5,
            error=TestFailure(message="ECONNRESET"),
        )
        tracker.record_attempt(
            ref,
            1,
            "fail",
            started_at=STARTED_AT,
            duration_ms=5,
            error=TestFailure(message="assert 1 == 2"),
        )

        assert [a.test_independent for a in tracker.get_attempts(ref)] == [
            True,
            False,
        ]


class TestHookFailures:
    """Tests for hook failure buffering and reconciliation."""

    def test_merges_hook_failure_with_test_failure(
        self, tracker: AttemptTracker
    ) -> None:
        """A hook failure and the test failure form one attempt."""
        hook_error = TestFailure(message="db unavailable")
        test_error = TestFailure(message="expected 1 row")

        tracker.handle(
            HookFailed(
                filename=FILENAME,
                title_path=("Suite", '"before each" hook for "saves rows"'),
                attempt_index=0,
                started_at=STARTED_AT,
                error=hook_error,
            )
        )
        tracker.handle(finished(("Suite", "saves rows"), "fail", error=test_error))

        ref = TestRef(filename=FILENAME, title_path=("Suite", "saves rows"))
        attempts = tracker.get_attempts(ref)
        assert len(attempts) == 1
        assert attempts[0].outcome == "fail"
        assert attempts[0].errors == (
            test_error,
            TestFailure(message="db unavailable", hook_name="before each"),
        )

    def test_hook_failure_fails_passing_test(self, tracker: AttemptTracker) -> None:
        """A buffered hook failure turns the reconciled attempt into a failure."""
        tracker.handle(
            HookFailed(
                filename=FILENAME,
                title_path=('"before each" hook for "works"',),
                attempt_index=0,
                started_at=STARTED_AT,
                error=TestFailure(message="setup failed"),
            )
        )
        tracker.handle(finished(("works",), "pass"))

        ref = TestRef(filename=FILENAME, title_path=("works",))
        [attempt] = tracker.get_attempts(ref)
        assert attempt.outcome == "fail"
        assert attempt.errors[0].display_message == (
            '"before each" hook failed:\nsetup failed'
        )

    def test_hook_failure_after_test_merges_immediately(
        self, tracker: AttemptTracker
    ) -> None:
        """A hook failing after the test finished fails that attempt."""
        tracker.handle(finished(("works",), "pass"))
        tracker.handle(
            HookFailed(
                filename=FILENAME,
                title_path=('"after each" hook for "works"',),
                attempt_index=0,
                started_at=STARTED_AT,
                error=TestFailure(message="teardown failed"),
            )
        )

        ref = TestRef(filename=FILENAME, title_path=("works",))
        [attempt] = tracker.get_attempts(ref)
        assert attempt.outcome == "fail"
        assert attempt.errors[0].hook_name == "after each"

    def test_finalize_records_unreconciled_hook_failures(
        self, tracker: AttemptTracker
    ) -> None:
        """Hook failures never followed by a test result become failed attempts."""
        tracker.handle(
            HookFailed(
                filename=FILENAME,
                title_path=("Suite", '"before all" hook in "Suite"'),
                attempt_index=0,
                started_at=STARTED_AT,
                error=TestFailure(message="setup failed"),
            )
        )
        ref = TestRef(
            filename=FILENAME, title_path=("Suite", '"before all" hook in "Suite"')
        )
        assert tracker.get_attempts(ref) == ()

        tracker.finalize()

        [attempt] = tracker.get_attempts(ref)
        assert attempt.outcome == "fail"
        assert attempt.errors[0].hook_name == "before all"


class TestHandle:
    """Tests for event handling."""

    def test_started_then_finished_is_one_attempt(
        self, tracker: AttemptTracker
    ) -> None:
        """Start and finish events of one attempt produce a single attempt."""
        tracker.handle(
            AttemptStarted(
                filename=FILENAME,
                title_path=("works",),
                attempt_index=0,
                started_at=STARTED_AT,
            )
        )
        ref = TestRef(filename=FILENAME, title_path=("works",))
        assert tracker.get_attempts(ref)[0].outcome == "pending"

        tracker.handle(finished(("works",), "pass"))

        [attempt] = tracker.get_attempts(ref)
        assert attempt.outcome == "pass"

    def test_extra_failure_merges_into_attempt(self, tracker: AttemptTracker) -> None:
        """An AttemptFailed event adds an error to the in-flight attempt."""
        tracker.handle(finished(("works",), "fail", error=TestFailure(message="a")))
        tracker.handle(
            AttemptFailed(
                filename=FILENAME,
                title_path=("works",),
                attempt_index=0,
                started_at=STARTED_AT,
                duration_ms=25,
                error=TestFailure(message="b"),
            )
        )

        ref = TestRef(filename=FILENAME, title_path=("works",))
        [attempt] = tracker.get_attempts(ref)
        assert [e.message for e in attempt.errors] == ["b", "a"]

    def test_invocation_indexes_are_offset(self, tracker: AttemptTracker) -> None:
        """Each re-invocation appends after the attempts already recorded."""
        for outcome in ("fail", "fail", "pass"):
            tracker.begin_invocation(FILENAME)
            tracker.handle(finished(("flaky",), outcome, attempt_index=0))

        ref = TestRef(filename=FILENAME, title_path=("flaky",))
        assert [(a.index, a.outcome) for a in tracker.get_attempts(ref)] == [
            (0, "fail"),
            (1, "fail"),
            (2, "pass"),
        ]

    def test_in_process_retries_within_invocation(
        self, tracker: AttemptTracker
    ) -> None:
        """Host retry counters within one invocation map to consecutive attempts."""
        tracker.begin_invocation(FILENAME)
        tracker.handle(finished(("flaky",), "fail", attempt_index=0))
        tracker.begin_invocation(FILENAME)
        tracker.handle(finished(("flaky",), "fail", attempt_index=0))
        tracker.handle(finished(("flaky",), "pass", attempt_index=1))

        ref = TestRef(filename=FILENAME, title_path=("flaky",))
        assert [a.index for a in tracker.get_attempts(ref)] == [0, 1, 2]

    def test_retry_with_whitespace_difference_maps_to_same_test(
        self, tracker: AttemptTracker
    ) -> None:
        """Retries reporting different whitespace merge into one test."""
        tracker.begin_invocation(FILENAME)
        tracker.handle(finished(("Suite ", "does  it"), "fail"))
        tracker.begin_invocation(FILENAME)
        tracker.handle(finished(("Suite", "does it"), "pass"))

        assert len(tracker.refs()) == 1
        assert len(tracker.get_attempts(tracker.refs()[0])) == 2

    def test_skip_records_no_attempt(self, tracker: AttemptTracker) -> None:
        """Skipped tests are known but have no attempts."""
        tracker.handle(TestSkipped(filename=FILENAME, title_path=("skipped",)))

        ref = TestRef(filename=FILENAME, title_path=("skipped",))
        assert tracker.refs() == [ref]
        assert tracker.get_attempts(ref) == ()
        assert tracker.was_skipped(ref)

    def test_discover_registers_tests_in_order(self, tracker: AttemptTracker) -> None:
        """Discovered tests are listed before any event arrives."""
        tracker.discover(FILENAME, [("b",), ("a",)])

        assert [ref.title_path for ref in tracker.refs()] == [("b",), ("a",)]
