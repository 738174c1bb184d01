"""Accumulation of attempt outcomes per test across retry generations."""

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import assert_never

from flake_triage.errors import DuplicateAttemptError
from flake_triage.identity import hook_failure_ref, normalize
from flake_triage.models.attempt import Attempt, AttemptOutcome, TestFailure
from flake_triage.models.events import (
    AttemptFailed,
    AttemptFinished,
    AttemptStarted,
    HookFailed,
    TestEvent,
    TestSkipped,
)
from flake_triage.models.test_ref import TestRef

log = logging.getLogger(__name__)

type IndependencePredicate = Callable[[TestRef, Attempt], bool]


@dataclass(kw_only=True)
class TestRun:
    """Ordered attempts of one test within the current run."""

    __test__ = False

    ref: TestRef
    attempts: list[Attempt] = field(default_factory=list)
    skipped: bool = False

    def attempt_at(self, index: int) -> Attempt | None:
        for attempt in self.attempts:
            if attempt.index == index:
                return attempt
        return None

    def store(self, attempt: Attempt) -> None:
        self.attempts = sorted(
            [a for a in self.attempts if a.index != attempt.index] + [attempt],
            key=lambda a: a.index,
        )


@dataclass(kw_only=True)
class _BufferedHookFailure:
    ref: TestRef
    attempt_index: int
    started_at: datetime
    errors: tuple[TestFailure, ...] = ()


@dataclass(kw_only=True)
class AttemptTracker:
    """Per-run attempt bookkeeping.

    Attempts are keyed by (test identity, attempt index). Repeated failure
    reports for the same key merge into a single attempt, with the most
    recently reported error first. Attempts are never removed.

    Hook failures that arrive before the end of the test they belong to are
    buffered and merged once the test's end-of-test result arrives. Hook
    failures still buffered at `finalize`, at the end of a generation, become
    failed attempts.
    """

    root: Path | None = None
    independence: IndependencePredicate | None = None

    _runs: dict[str, TestRun] = field(default_factory=dict, init=False, repr=False)
    _hooks: dict[tuple[str, int], _BufferedHookFailure] = field(
        default_factory=dict, init=False, repr=False
    )
    _invocation_bases: dict[str, dict[str, int]] = field(
        default_factory=dict, init=False, repr=False
    )

    def discover(self, filename: str, title_paths: Iterable[Sequence[str]]) -> None:
        """Register tests known before execution."""
        for title_path in title_paths:
            self._run_for(normalize(filename, title_path, root=self.root))

    def refs(self) -> Sequence[TestRef]:
        """All known test identities, in discovery order."""
        return [run.ref for run in self._runs.values()]

    def get_attempts(self, ref: TestRef) -> Sequence[Attempt]:
        if (run := self._runs.get(ref.key)) is None:
            return ()
        return tuple(run.attempts)

    def was_skipped(self, ref: TestRef) -> bool:
        run = self._runs.get(ref.key)
        return run is not None and run.skipped

    def begin_invocation(self, filename: str) -> None:
        """Start a new host invocation for a file.

        Attempt indexes reported by the host are local to one invocation. The
        first event for each test in the invocation is offset by the attempts
        already recorded for it.
        """
        self._invocation_bases[filename] = {}

    def absolute_index(self, ref: TestRef, local_index: int) -> int:
        bases = self._invocation_bases.setdefault(ref.filename, {})
        if ref.key not in bases:
            run = self._runs.get(ref.key)
            bases[ref.key] = len(run.attempts) if run is not None else 0
        return bases[ref.key] + local_index

    def record_attempt(
        self,
        ref: TestRef,
        attempt_index: int,
        outcome: AttemptOutcome,
        *,
        started_at: datetime,
        duration_ms: int,
        error: TestFailure | None = None,
    ) -> Attempt:
        """Record an attempt outcome, merging with an existing attempt.

        A failed attempt is never downgraded by a later pass. A pending attempt
        takes the outcome of the first terminal report.
        """
        errors = () if error is None else (error,)
        if outcome != "pending":
            buffered = self._hooks.pop((ref.key, attempt_index), None)
            if buffered is not None:
                # The end-of-test error surfaces ahead of earlier hook errors.
                errors = (*errors, *buffered.errors)
                outcome = "fail"
        return self._store(ref, attempt_index, outcome, errors, started_at, duration_ms)

    def record_hook_failure(
        self,
        ref: TestRef,
        attempt_index: int,
        error: TestFailure,
        *,
        started_at: datetime,
    ) -> None:
        """Record a hook failure for the best-available test identity.

        If the attempt already reached a terminal outcome the failure is merged
        into it immediately, otherwise it is buffered until the test finishes.
        """
        run = self._run_for(ref)
        existing = run.attempt_at(attempt_index)
        if existing is not None and existing.is_terminal:
            self._store(ref, attempt_index, "fail", (error,), started_at, 0)
            return

        buffered = self._hooks.setdefault(
            (ref.key, attempt_index),
            _BufferedHookFailure(
                ref=ref, attempt_index=attempt_index, started_at=started_at
            ),
        )
        if error not in buffered.errors:
            buffered.errors = (error, *buffered.errors)

    def record_skip(self, ref: TestRef) -> None:
        self._run_for(ref).skipped = True

    def handle(self, event: TestEvent) -> None:
        """Apply a host event to the tracked state."""
        match event:
            case AttemptStarted():
                ref = normalize(event.filename, event.title_path, root=self.root)
                self.record_attempt(
                    ref,
                    self.absolute_index(ref, event.attempt_index),
                    "pending",
                    started_at=event.started_at,
                    duration_ms=0,
                )
            case AttemptFinished():
                ref = normalize(event.filename, event.title_path, root=self.root)
                self.record_attempt(
                    ref,
                    self.absolute_index(ref, event.attempt_index),
                    event.outcome,
                    started_at=event.started_at,
                    duration_ms=event.duration_ms,
                    error=event.error,
                )
            case AttemptFailed():
                ref = normalize(event.filename, event.title_path, root=self.root)
                self.record_attempt(
                    ref,
                    self.absolute_index(ref, event.attempt_index),
                    "fail",
                    started_at=event.started_at,
                    duration_ms=event.duration_ms,
                    error=event.error,
                )
            case HookFailed():
                ref, hook_name = hook_failure_ref(
                    event.filename, event.title_path, root=self.root
                )
                error = event.error
                if hook_name is not None and error.hook_name is None:
                    error = replace(error, hook_name=hook_name)
                self.record_hook_failure(
                    ref,
                    self.absolute_index(ref, event.attempt_index),
                    error,
                    started_at=event.started_at,
                )
            case TestSkipped():
                self.record_skip(
                    normalize(event.filename, event.title_path, root=self.root)
                )
            case _:
                assert_never(event)

    def finalize(self) -> None:
        """Turn hook failures that were never reconciled into failed attempts.

        Called at the end of every generation.
        """
        hooks, self._hooks = self._hooks, {}
        for buffered in hooks.values():
            log.info(
                "Recording unreconciled hook failure for %s (attempt %d)",
                buffered.ref,
                buffered.attempt_index,
            )
            self._store(
                buffered.ref,
                buffered.attempt_index,
                "fail",
                buffered.errors,
                buffered.started_at,
                0,
            )

    def _run_for(self, ref: TestRef) -> TestRun:
        if (run := self._runs.get(ref.key)) is None:
            run = self._runs[ref.key] = TestRun(ref=ref)
        return run

    def _store(
        self,
        ref: TestRef,
        attempt_index: int,
        outcome: AttemptOutcome,
        errors: tuple[TestFailure, ...],
        started_at: datetime,
        duration_ms: int,
    ) -> Attempt:
        run = self._run_for(ref)
        existing = run.attempt_at(attempt_index)
        if existing is None:
            attempt = Attempt(
                index=attempt_index,
                outcome=outcome,
                started_at=started_at,
                duration_ms=duration_ms,
                errors=_dedupe(errors),
            )
        else:
            attempt = self._merge(ref, existing, outcome, errors, duration_ms)

        if attempt.outcome == "fail" and self.independence is not None:
            attempt = replace(
                attempt, test_independent=self.independence(ref, attempt)
            )
        run.store(attempt)
        return attempt

    def _merge(
        self,
        ref: TestRef,
        existing: Attempt,
        outcome: AttemptOutcome,
        new_errors: tuple[TestFailure, ...],
        duration_ms: int,
    ) -> Attempt:
        if "fail" in (existing.outcome, outcome):
            merged_outcome: AttemptOutcome = "fail"
        elif existing.outcome == "pending":
            merged_outcome = outcome
        else:
            merged_outcome = existing.outcome

        errors = existing.errors
        # Walk oldest first so the last reported error ends up in front.
        for error in reversed(new_errors):
            if error in errors:
                continue
            if len(errors) >= 2:
                anomaly = DuplicateAttemptError(
                    f"{ref} attempt {existing.index} already merged"
                    f" {len(errors)} errors"
                )
                log.warning("Keeping latest failure report: %s", anomaly)
            errors = (error, *errors)

        return replace(
            existing,
            outcome=merged_outcome,
            duration_ms=max(existing.duration_ms, duration_ms),
            errors=errors,
        )


def _dedupe(errors: tuple[TestFailure, ...]) -> tuple[TestFailure, ...]:
    unique: list[TestFailure] = []
    for error in errors:
        if error not in unique:
            unique.append(error)
    return tuple(unique)
