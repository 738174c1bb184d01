"""Human-readable and JSON rendering of run results."""

import logging
from collections.abc import Sequence
from typing import Any

from flake_triage.aggregator import RunSummary, TestOutcome
from flake_triage.classifier import Verdict

VERDICT_SYMBOLS: dict[Verdict, str] = {
    "pass": "✅",
    "flaky": "⚠️",
    "fail": "❌",
    "quarantined-fail": "🔒",
    "quarantined-flaky": "🔒",
    "quarantined-pending": "⏸️",
    "skipped": "⏭️",
}


def last_errors(outcome: TestOutcome) -> Sequence[str]:
    """Error messages of the last failed attempt of a test."""
    for attempt in reversed(outcome.attempts):
        if attempt.outcome == "fail":
            return [error.display_message for error in attempt.errors]
    return []


def log_results_summary(
    log: logging.Logger,
    summary: RunSummary,
    outcomes: Sequence[TestOutcome],
    run_url: str | None = None,
) -> None:
    """Log every test that did not simply pass, followed by the counts."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for outcome in outcomes:
        if outcome.verdict == "pass":
            continue
        symbol = VERDICT_SYMBOLS.get(outcome.verdict, "?")
        log.info(
            "%s %s: %s (%d attempt(s))",
            symbol,
            outcome.ref,
            outcome.verdict,
            len(outcome.attempts),
        )
        for message in last_errors(outcome):
            log.info("  Error: %s", message.partition("\n")[0])
        if any(attempt.test_independent for attempt in outcome.attempts):
            log.info("  Includes test-independent failures")

    log.info(
        "Tests: %d total, %s",
        summary.total,
        ", ".join(f"{count} {verdict}" for verdict, count in summary.counts.items()),
    )
    log.info(
        "Files: %d total, %s",
        len(summary.suites),
        ", ".join(
            f"{count} {status}" for status, count in summary.suite_counts.items()
        ),
    )
    if run_url:
        log.info("Run URL: %s", run_url)


def format_output(
    summary: RunSummary,
    outcomes: Sequence[TestOutcome],
    run_url: str | None = None,
) -> dict[str, Any]:
    """Format run results for JSON output."""
    counts = summary.counts
    return {
        "total": summary.total,
        "passed": counts["pass"],
        "flaky": counts["flaky"],
        "failed": counts["fail"],
        "quarantined": (
            counts["quarantined-fail"]
            + counts["quarantined-flaky"]
            + counts["quarantined-pending"]
        ),
        "skipped": counts["skipped"],
        "verdicts": dict(counts),
        "suites": dict(summary.suite_counts),
        "run_url": run_url,
        "results": [
            {
                "filename": outcome.ref.filename,
                "name": list(outcome.ref.title_path),
                "verdict": outcome.verdict,
                "attempts": len(outcome.attempts),
                "errors": list(last_errors(outcome)),
            }
            for outcome in outcomes
        ],
    }
