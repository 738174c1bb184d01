"""Classification of a test's attempt history into a verdict."""

import re
from collections.abc import Sequence
from typing import Literal

from flake_triage.models.attempt import Attempt
from flake_triage.models.test_ref import TestRef
from flake_triage.tracker import IndependencePredicate

type Verdict = Literal[
    "pass",
    "flaky",
    "fail",
    "quarantined-fail",
    "quarantined-flaky",
    "quarantined-pending",
    "skipped",
]

VERDICTS: tuple[Verdict, ...] = (
    "pass",
    "flaky",
    "fail",
    "quarantined-fail",
    "quarantined-flaky",
    "quarantined-pending",
    "skipped",
)

BLOCKING_VERDICTS: frozenset[Verdict] = frozenset({"fail", "flaky"})


def classify(
    attempts: Sequence[Attempt],
    is_quarantined: bool,
    *,
    skipped_by_quarantine: bool = False,
) -> Verdict:
    """Derive the verdict of a test from its attempts.

    Pending attempts are never terminal, so a test whose run was cancelled
    before any attempt finished is skipped rather than failed. Attempts marked
    test-independent are ignored when choosing the final attempt, unless every
    terminal attempt is test-independent.

    Args:
        attempts: Attempts ordered by index
        is_quarantined: Whether the test is in the quarantine manifest
        skipped_by_quarantine: Whether a missing execution was caused by
            quarantine skipping

    """
    terminal = [attempt for attempt in attempts if attempt.is_terminal]
    if not terminal:
        return "quarantined-pending" if skipped_by_quarantine else "skipped"

    counted = [attempt for attempt in terminal if not attempt.test_independent]
    if not counted:
        counted = terminal
    final = counted[-1]

    if final.outcome == "pass":
        if len(counted) == 1:
            return "pass"
        return "quarantined-flaky" if is_quarantined else "flaky"
    return "quarantined-fail" if is_quarantined else "fail"


def is_blocking(verdict: Verdict) -> bool:
    return verdict in BLOCKING_VERDICTS


def failure_patterns_predicate(
    patterns: Sequence[str | re.Pattern[str]],
) -> IndependencePredicate | None:
    """Build a predicate marking failures that match any pattern as test-independent.

    Patterns are searched in the display message and stack of every error of
    the attempt. Returns None when there are no patterns.
    """
    compiled = [re.compile(pattern) for pattern in patterns]
    if not compiled:
        return None

    def is_test_independent(ref: TestRef, attempt: Attempt) -> bool:
        for error in attempt.errors:
            text = "\n".join(filter(None, (error.display_message, error.stack)))
            if any(pattern.search(text) for pattern in compiled):
                return True
        return False

    return is_test_independent
